"""
On-disk layout of a BVF (Bricked Volume Format) file.

::

    +-------+--------+------------+-----+------------+----------+------------+------------+
    | magic | endian | block 0    | ... | block n    | TOC json | toc offset | toc length |
    | 8 B   | 1 B    | payload    |     | payload    |          | u64 LE     | u64 LE     |
    +-------+--------+------------+-----+------------+----------+------------+------------+

The table of contents is a :class:`GlobalHeader` serialized as JSON. The
checksum covers every payload byte between the endian flag and the TOC and is
computed while the payloads are streamed to disk.
"""

from __future__ import annotations

import hashlib
import struct
import sys
from enum import StrEnum
from pathlib import Path
from typing import Any, BinaryIO, Literal

import numpy as np
from loguru import logger
from pydantic import BaseModel, Field

from constants import BVF_MAGIC, BVF_VERSION
from exceptions import ConversionIOError, DatasetOpenError
from utils.files import remove_file

_TRAILER = struct.Struct("<QQ")
PAYLOAD_START = len(BVF_MAGIC) + 1
_COPY_CHUNK = 1 << 24


class BlockSemantic(StrEnum):
    REG_NDIM_GRID = "REG_NDIM_GRID"
    GEOMETRY = "GEOMETRY"
    MAXMIN = "MAXMIN"
    HISTOGRAM_1D = "HISTOGRAM_1D"
    HISTOGRAM_2D = "HISTOGRAM_2D"


class BlockHeader(BaseModel):
    semantic: BlockSemantic
    offset: int = Field(ge=PAYLOAD_START)
    size: int = Field(ge=0)
    meta: dict[str, Any] = Field(default_factory=dict)


class GlobalHeader(BaseModel):
    version: int = BVF_VERSION
    is_big_endian: bool = sys.byteorder == "big"
    checksum_semantics: Literal["md5", "none"] = "md5"
    checksum: str = ""
    blocks: list[BlockHeader] = Field(default_factory=list)

    def blocks_of(self, semantic: BlockSemantic) -> list[BlockHeader]:
        return [block for block in self.blocks if block.semantic == semantic]


class BVFWriter:
    """
    Stream blocks into a new BVF file.

    Used as a context manager: the table of contents is written on a clean
    exit, and the partial file is removed when the block raises.
    """

    def __init__(self, path: Path, checksum: bool = True):
        self.path = Path(path)
        self.header = GlobalHeader(checksum_semantics="md5" if checksum else "none")
        self._hash = hashlib.md5() if checksum else None
        self._file: BinaryIO | None = None

    def __enter__(self) -> BVFWriter:
        try:
            self._file = open(self.path, "wb")
            self._file.write(BVF_MAGIC)
            self._file.write(b"\x01" if self.header.is_big_endian else b"\x00")
        except OSError as error:
            raise ConversionIOError(f"Unable to create {self.path}: {error}") from error
        return self

    def __exit__(self, exc_type, exc, traceback) -> None:
        assert self._file is not None
        if exc_type is None:
            self._write_toc()
            self._file.close()
            return
        self._file.close()
        logger.debug(f"Removing partial container {self.path}")
        remove_file(self.path)

    def _write(self, chunk: bytes | memoryview) -> None:
        assert self._file is not None, "writer used outside of its context"
        self._file.write(chunk)
        if self._hash is not None:
            self._hash.update(chunk)

    def add_block(
        self, semantic: BlockSemantic, meta: dict[str, Any], payload: bytes | np.ndarray
    ) -> BlockHeader:
        """Append one block whose payload is already in memory."""
        if isinstance(payload, np.ndarray):
            payload = np.ascontiguousarray(payload).tobytes()
        offset = self._file.tell()  # type: ignore[union-attr]
        self._write(payload)
        block = BlockHeader(semantic=semantic, offset=offset, size=len(payload), meta=meta)
        self.header.blocks.append(block)
        return block

    def add_block_from_file(
        self,
        semantic: BlockSemantic,
        meta: dict[str, Any],
        source: Path,
        source_offset: int = 0,
        size: int | None = None,
    ) -> BlockHeader:
        """Append one block by streaming ``size`` bytes of ``source`` into the container."""
        offset = self._file.tell()  # type: ignore[union-attr]
        remaining = Path(source).stat().st_size - source_offset if size is None else size
        written = 0
        with open(source, "rb") as file:
            file.seek(source_offset)
            while remaining > 0:
                chunk = file.read(min(_COPY_CHUNK, remaining))
                if not chunk:
                    raise ConversionIOError(f"Unexpected end of {source}")
                self._write(chunk)
                remaining -= len(chunk)
                written += len(chunk)
        block = BlockHeader(semantic=semantic, offset=offset, size=written, meta=meta)
        self.header.blocks.append(block)
        return block

    def _write_toc(self) -> None:
        assert self._file is not None
        if self._hash is not None:
            self.header.checksum = self._hash.hexdigest()
        toc = self.header.model_dump_json().encode("utf-8")
        toc_offset = self._file.tell()
        self._file.write(toc)
        self._file.write(_TRAILER.pack(toc_offset, len(toc)))


def read_global_header(path: Path) -> GlobalHeader:
    """
    Read and validate the table of contents of a BVF file.

    :raises DatasetOpenError: if the file is missing, truncated or not a BVF file.
    """
    try:
        with open(path, "rb") as file:
            if file.read(len(BVF_MAGIC)) != BVF_MAGIC:
                raise DatasetOpenError(f"{path} is not a {BVF_MAGIC[:3].decode()} file")
            file.seek(-_TRAILER.size, 2)
            toc_offset, toc_length = _TRAILER.unpack(file.read(_TRAILER.size))
            file.seek(toc_offset)
            toc = file.read(toc_length)
    except (OSError, OverflowError) as error:
        raise DatasetOpenError(f"Unable to read {path}: {error}") from error
    if len(toc) != toc_length:
        raise DatasetOpenError(f"Truncated table of contents in {path}")
    try:
        return GlobalHeader.model_validate_json(toc)
    except ValueError as error:
        raise DatasetOpenError(f"Corrupt table of contents in {path}") from error


def is_bvf_file(path: Path) -> bool:
    try:
        read_global_header(path)
    except DatasetOpenError:
        return False
    return True


def verify_checksum(path: Path) -> bool:
    """
    Recompute the payload checksum of a BVF file.

    Files written without a checksum verify trivially.
    """
    header = read_global_header(path)
    if header.checksum_semantics == "none":
        return True
    digest = hashlib.md5()
    with open(path, "rb") as file:
        file.seek(-_TRAILER.size, 2)
        toc_offset, _ = _TRAILER.unpack(file.read(_TRAILER.size))
        file.seek(PAYLOAD_START)
        remaining = toc_offset - PAYLOAD_START
        while remaining > 0:
            chunk = file.read(min(_COPY_CHUNK, remaining))
            if not chunk:
                break
            digest.update(chunk)
            remaining -= len(chunk)
    matches = digest.hexdigest() == header.checksum
    if not matches:
        logger.warning(f"Checksum mismatch in {path}")
    return matches
