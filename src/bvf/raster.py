"""Raster blocks under construction, backed by a temporary file."""

from __future__ import annotations

from functools import cached_property
from itertools import accumulate
from pathlib import Path

import numpy as np
from pydantic import Field

from constants import ElementSemantic
from container_models.base import Aspect, ConfigBaseModel, DomainSize, Triple
from container_models.numeric_kind import NumericKind
from exceptions import ConversionIOError

from .layout import BrickLayout


class RasterMeta(ConfigBaseModel):
    """Structural metadata of a bricked raster block, stored in its block header."""

    domain_size: DomainSize
    component_count: int = Field(default=1, gt=0)
    kind: NumericKind
    aspect: Aspect = Triple(1.0, 1.0, 1.0)
    timesteps: int = Field(default=1, gt=0)
    max_brick_size: int
    overlap: int
    transformation: list[float] = Field(default_factory=list)
    semantic: ElementSemantic = ElementSemantic.UNDEFINED
    title: str = ""
    source: str = ""

    def model_post_init(self, __context) -> None:
        if not self.transformation:
            self.transformation = [
                self.aspect.x, 0, 0, 0,
                0, self.aspect.y, 0, 0,
                0, 0, self.aspect.z, 0,
                0, 0, 0, 1,
            ]  # fmt: skip

    @cached_property
    def layout(self) -> BrickLayout:
        return BrickLayout(
            domain_size=self.domain_size,
            max_brick_size=self.max_brick_size,
            overlap=self.overlap,
        )

    def brick_shape(self, lod: int, brick: int) -> tuple[int, ...]:
        """Array shape ``(z, y, x, components)`` of a stored brick."""
        return (*self.layout.extent(lod, brick).stored_size.zyx, self.component_count)

    @cached_property
    def brick_offsets(self) -> dict[tuple[int, int], int]:
        """Byte offset of every stored brick, relative to the start of the block."""
        keys = list(self.layout.bricks())
        sizes = [
            int(np.prod(self.brick_shape(lod, brick))) * self.kind.byte_width
            for lod, brick in keys
        ]
        return dict(zip(keys, accumulate(sizes, initial=0)))

    @property
    def total_bytes(self) -> int:
        lod = self.layout.lod_count - 1
        brick = self.layout.brick_count(lod) - 1
        last = int(np.prod(self.brick_shape(lod, brick))) * self.kind.byte_width
        return self.brick_offsets[(lod, brick)] + last


class RasterDataBlock:
    """
    A brick/LOD addressable grid that is written incrementally.

    The backing file holds every brick in ascending storage order, in native
    byte order, and is pre-sized with zeros on creation. Bricks are read and
    written through one memory map of that file, opened on first access;
    :meth:`close` flushes it before the file is used on its own.
    """

    def __init__(self, meta: RasterMeta, backing_path: Path):
        self.meta = meta
        self.backing_path = Path(backing_path)
        self._storage: np.memmap | None = None

    @classmethod
    def create(cls, meta: RasterMeta, backing_path: Path) -> RasterDataBlock:
        try:
            with open(backing_path, "wb") as file:
                file.truncate(meta.total_bytes)
        except OSError as error:
            raise ConversionIOError(
                f"Unable to create raster backing file {backing_path}: {error}"
            ) from error
        return cls(meta, backing_path)

    @classmethod
    def create_like(
        cls, meta: RasterMeta, kind: NumericKind, backing_path: Path, **updates
    ) -> RasterDataBlock:
        """Copy the structure of an existing raster with another element type."""
        copied = RasterMeta.model_validate({**meta.model_dump(), "kind": kind, **updates})
        return cls.create(copied, backing_path)

    @property
    def layout(self) -> BrickLayout:
        return self.meta.layout

    def _brick_view(self, lod: int, brick: int) -> np.ndarray:
        if self._storage is None:
            self._storage = np.memmap(
                self.backing_path, dtype=np.uint8, mode="r+", shape=(self.meta.total_bytes,)
            )
        shape = self.meta.brick_shape(lod, brick)
        start = self.meta.brick_offsets[(lod, brick)]
        size = int(np.prod(shape)) * self.meta.kind.byte_width
        return self._storage[start : start + size].view(self.meta.kind.dtype).reshape(shape)

    def set_data(self, lod: int, brick: int, data: np.ndarray) -> None:
        view = self._brick_view(lod, brick)
        view[...] = np.asarray(data, dtype=self.meta.kind.dtype).reshape(view.shape)

    def get_data(self, lod: int, brick: int) -> np.ndarray:
        return np.array(self._brick_view(lod, brick))

    def close(self) -> None:
        """Flush pending brick writes to the backing file and release the map."""
        if self._storage is not None:
            self._storage.flush()
            self._storage = None
