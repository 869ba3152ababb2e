"""
Read access to BVF containers.

::

    with BVFDataset(path) as dataset:
        for lod, brick in dataset.bricks():
            data = dataset.get_brick(lod, brick)

Bricks are memory mapped from the container; nothing is loaded until a brick
is requested.
"""

from __future__ import annotations

import sys
from collections.abc import Callable, Iterator
from pathlib import Path

import numpy as np
from loguru import logger

from container_models.base import Aspect, DomainSize, Triple
from container_models.descriptors import RangeInfo
from container_models.mesh import Mesh
from container_models.numeric_kind import NumericKind
from exceptions import ConversionIOError, DatasetOpenError

from .blocks import Histogram1DBlock, Histogram2DBlock, MaxMinBlock, mesh_from_payload
from .format import BlockHeader, BlockSemantic, GlobalHeader, read_global_header, verify_checksum
from .layout import BrickExtent, BrickLayout
from .raster import RasterMeta

type BrickCallback = Callable[[np.ndarray, Triple[int], Triple[int]], None]
"""Called with ``(brick data (z, y, x, components), brick size, brick offset)``."""


class BVFDataset:
    def __init__(self, path: Path):
        self.path = Path(path)
        self.header: GlobalHeader = read_global_header(self.path)
        rasters = self.header.blocks_of(BlockSemantic.REG_NDIM_GRID)
        if not rasters:
            raise DatasetOpenError(f"{self.path} holds no raster data")
        self._raster_header: BlockHeader = rasters[0]
        self.meta = RasterMeta.model_validate(self._raster_header.meta)
        self._mmap: np.memmap | None = None

    def __enter__(self) -> BVFDataset:
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def close(self) -> None:
        self._mmap = None

    @property
    def _data(self) -> np.memmap:
        if self._mmap is None:
            self._mmap = np.memmap(
                self.path,
                dtype=np.uint8,
                mode="r",
                offset=self._raster_header.offset,
                shape=(self._raster_header.size,),
            )
        return self._mmap

    @property
    def layout(self) -> BrickLayout:
        return self.meta.layout

    @property
    def kind(self) -> NumericKind:
        return self.meta.kind

    @property
    def component_count(self) -> int:
        return self.meta.component_count

    @property
    def timesteps(self) -> int:
        return self.meta.timesteps

    @property
    def lod_count(self) -> int:
        return self.layout.lod_count

    @property
    def overlap(self) -> int:
        return self.meta.overlap

    @property
    def max_brick_size(self) -> int:
        return self.meta.max_brick_size

    @property
    def aspect(self) -> Aspect:
        return self.meta.aspect

    @property
    def is_same_endianness(self) -> bool:
        return self.header.is_big_endian == (sys.byteorder == "big")

    @property
    def stored_dtype(self) -> np.dtype:
        dtype = self.kind.dtype
        return dtype if self.is_same_endianness else dtype.newbyteorder()

    def domain_size(self, lod: int = 0) -> DomainSize:
        return self.layout.domain_size_at(lod)

    def brick_count(self, lod: int) -> int:
        return self.layout.brick_count(lod)

    def valid_lod(self, lod: int) -> bool:
        return self.layout.valid_lod(lod)

    def valid_brick_index(self, lod: int, brick: int) -> bool:
        return self.layout.valid_brick_index(lod, brick)

    def nd_brick_index(self, lod: int, brick: int) -> Triple[int]:
        return self.layout.nd_brick_index(lod, brick)

    def extent(self, lod: int, brick: int) -> BrickExtent:
        return self.layout.extent(lod, brick)

    def bricks(self) -> Iterator[tuple[int, int]]:
        """Ascending ``(lod, flat brick index)`` positions."""
        return self.layout.bricks()

    def get_brick(self, lod: int, brick: int) -> np.ndarray:
        """
        Read one stored brick, overlap included, in native byte order.

        :returns: A ``(z, y, x, components)`` array of the dataset's numeric kind.
        """
        if not self.valid_brick_index(lod, brick):
            raise IndexError(f"No brick {brick} at LOD {lod} in {self.path}")
        shape = self.meta.brick_shape(lod, brick)
        start = self.meta.brick_offsets[(lod, brick)]
        count = int(np.prod(shape))
        raw = self._data[start : start + count * self.kind.byte_width]
        return raw.view(self.stored_dtype).reshape(shape).astype(self.kind.dtype)

    def _block(self, semantic: BlockSemantic) -> tuple[dict, bytes] | None:
        blocks = self.header.blocks_of(semantic)
        if not blocks:
            return None
        block = blocks[0]
        with open(self.path, "rb") as file:
            file.seek(block.offset)
            return block.meta, file.read(block.size)

    @property
    def max_min(self) -> MaxMinBlock | None:
        found = self._block(BlockSemantic.MAXMIN)
        return MaxMinBlock.from_payload(*found) if found else None

    @property
    def histogram_1d(self) -> Histogram1DBlock | None:
        found = self._block(BlockSemantic.HISTOGRAM_1D)
        return Histogram1DBlock.from_payload(*found) if found else None

    @property
    def histogram_2d(self) -> Histogram2DBlock | None:
        found = self._block(BlockSemantic.HISTOGRAM_2D)
        return Histogram2DBlock.from_payload(*found) if found else None

    @property
    def meshes(self) -> list[Mesh]:
        meshes = []
        with open(self.path, "rb") as file:
            for block in self.header.blocks_of(BlockSemantic.GEOMETRY):
                file.seek(block.offset)
                meshes.append(mesh_from_payload(block.meta, file.read(block.size)))
        return meshes

    def compute_range(self) -> tuple[float, float]:
        """Value range over the finest LOD, ignoring any stored accelerator."""
        low, high = float("inf"), float("-inf")
        for brick in range(self.brick_count(0)):
            data = self.get_brick(0, brick)
            low = min(low, float(data.min()))
            high = max(high, float(data.max()))
        return low, high

    def value_range(self) -> tuple[float, float]:
        """Value range from the min/max block, computed when the container has none."""
        max_min = self.max_min
        if max_min is not None and len(max_min.values):
            return max_min.value_range
        return self.compute_range()

    def range_info(self) -> RangeInfo:
        return RangeInfo(
            value_range=self.value_range(),
            numeric_kind=self.kind,
            domain_size=self.domain_size(0),
            aspect=self.aspect,
        )

    def verify(self) -> bool:
        return verify_checksum(self.path)

    def _read_lod(self, lod: int) -> Iterator[tuple[BrickExtent, np.ndarray]]:
        for brick in range(self.brick_count(lod)):
            extent = self.extent(lod, brick)
            data = self.get_brick(lod, brick)
            offset = extent.inner_offset
            size = extent.inner_size
            yield extent, data[
                offset.z : offset.z + size.z,
                offset.y : offset.y + size.y,
                offset.x : offset.x + size.x,
            ]

    def export(
        self,
        lod: int,
        target: Path,
        brick_callback: BrickCallback | None = None,
        overlap: int = 1,
    ) -> Path:
        """
        Write one LOD as a headerless raw file, overlap de-duplicated.

        With a ``brick_callback``, the written raw file doubles as the staging
        file of a brick-streaming export: it is read back brick by brick, each
        brick's inner region grown by ``overlap`` voxels on the high side so
        that neighbouring bricks connect, and handed to the callback.

        :returns: The path of the raw file, samples in native byte order,
            laid out ``(z, y, x, components)``.
        """
        if not self.valid_lod(lod):
            raise IndexError(f"LOD {lod} out of range for {self.path}")
        size = self.domain_size(lod)
        shape = (*size.zyx, self.component_count)
        logger.debug(f"Exporting LOD {lod} of {self.path} ({size}) to {target}")
        try:
            output = np.memmap(target, dtype=self.kind.dtype, mode="w+", shape=shape)
        except OSError as error:
            raise ConversionIOError(f"Unable to create {target}: {error}") from error
        for extent, inner in self._read_lod(lod):
            start, stop = extent.inner_start, extent.inner_stop
            output[start.z : stop.z, start.y : stop.y, start.x : stop.x] = inner
        output.flush()

        if brick_callback is not None:
            for brick in range(self.brick_count(lod)):
                extent = self.extent(lod, brick)
                start = extent.inner_start
                stop = (extent.inner_stop + overlap).map(min, other=size)
                data = np.asarray(
                    output[start.z : stop.z, start.y : stop.y, start.x : stop.x]
                )
                brick_callback(data, stop - start, start)
        del output
        return Path(target)
