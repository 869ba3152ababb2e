"""
Accelerator structures attached to freshly built containers.

- a hierarchical min/max index with one entry per brick of every LOD,
- a 1D value histogram over the finest LOD,
- a 2D histogram of value against gradient magnitude.

All passes read the bricks through a ``read_brick(lod, brick)`` callable, so
they work on raster blocks under construction as well as on finished
containers.
"""

from collections.abc import Callable, Sequence
from pathlib import Path

import numpy as np
from loguru import logger

from bvf.blocks import Histogram1DBlock, Histogram2DBlock, MaxMinBlock, mesh_to_payload
from bvf.format import BlockSemantic, BVFWriter
from bvf.layout import BrickExtent, BrickLayout
from bvf.raster import RasterDataBlock
from constants import GRADIENT_MAX_SENTINEL, GRADIENT_MIN_SENTINEL
from container_models.mesh import Mesh
from container_models.numeric_kind import ALL_KINDS, NumericKind, numeric_dispatch

type BrickReader = Callable[[int, int], np.ndarray]


def compute_max_min(
    layout: BrickLayout,
    read_brick: BrickReader,
    kind: NumericKind,
    supported: Sequence[NumericKind] = ALL_KINDS,
) -> MaxMinBlock:
    """
    Compute the per-brick value range of every LOD.

    LODs are visited from 0 upward and bricks from index 0 upward until the
    layout reports the index as invalid. Gradient bounds are not computed and
    stay at their sentinels.

    64 bit integer ranges are stored as float64 and lose precision beyond 2**53.

    :raises UnsupportedNumericKindError: if ``kind`` is not in ``supported``.
    """

    def scan(dtype: np.dtype) -> MaxMinBlock:
        rows: list[tuple[float, float, float, float]] = []
        bricks_per_lod: list[int] = []
        max_value = float("-inf")
        lod = 0
        while layout.valid_lod(lod):
            brick = 0
            while layout.valid_brick_index(lod, brick):
                data = np.asarray(read_brick(lod, brick), dtype=dtype)
                low, high = float(data.min()), float(data.max())
                rows.append((low, high, GRADIENT_MIN_SENTINEL, GRADIENT_MAX_SENTINEL))
                max_value = max(max_value, high)
                brick += 1
            bricks_per_lod.append(brick)
            lod += 1
        return MaxMinBlock(
            values=np.array(rows, dtype=np.float64).reshape(-1, 4),
            bricks_per_lod=bricks_per_lod,
            max_value=max_value,
        )

    return numeric_dispatch(
        kind, scan, supported=supported, operation="Min/max computation"
    )


def _inner(data: np.ndarray, extent: BrickExtent) -> np.ndarray:
    offset, size = extent.inner_offset, extent.inner_size
    return data[
        offset.z : offset.z + size.z,
        offset.y : offset.y + size.y,
        offset.x : offset.x + size.x,
    ]


def _gradient_magnitude(volume: np.ndarray) -> np.ndarray:
    squared = np.zeros(volume.shape, dtype=np.float64)
    for axis, length in enumerate(volume.shape):
        if length > 1:
            squared += np.gradient(volume, axis=axis) ** 2
    return np.sqrt(squared)


def _first_components(layout: BrickLayout, read_brick: BrickReader):
    """Yield ``(extent, stored component 0 as float64)`` for every LOD 0 brick."""
    for brick in range(layout.brick_count(0)):
        data = np.asarray(read_brick(0, brick)[..., 0], dtype=np.float64)
        yield layout.extent(0, brick), data


def compute_histogram_1d(
    layout: BrickLayout,
    read_brick: BrickReader,
    value_range: tuple[float, float],
    bins: int,
) -> Histogram1DBlock:
    """Histogram of the first component over the inner regions of the finest LOD."""
    counts = np.zeros(bins, dtype=np.uint64)
    for extent, data in _first_components(layout, read_brick):
        brick_counts, _ = np.histogram(_inner(data, extent), bins=bins, range=value_range)
        counts += brick_counts.astype(np.uint64)
    return Histogram1DBlock(counts=counts, value_range=value_range)


def compute_histogram_2d(
    layout: BrickLayout,
    read_brick: BrickReader,
    value_range: tuple[float, float],
    value_ceiling: float,
    value_bins: int,
    gradient_bins: int,
) -> Histogram2DBlock:
    """
    Histogram of value against gradient magnitude.

    A first pass finds the largest gradient magnitude, the second one bins the
    samples. Values are normalized to ``[range minimum, value_ceiling]``.
    """
    max_gradient = 0.0
    for extent, data in _first_components(layout, read_brick):
        max_gradient = max(
            max_gradient, float(_inner(_gradient_magnitude(data), extent).max())
        )
    gradient_ceiling = max_gradient if max_gradient > 0 else 1.0

    counts = np.zeros((value_bins, gradient_bins), dtype=np.uint64)
    for extent, data in _first_components(layout, read_brick):
        gradients = _inner(_gradient_magnitude(data), extent)
        brick_counts, _, _ = np.histogram2d(
            _inner(data, extent).ravel(),
            gradients.ravel(),
            bins=(value_bins, gradient_bins),
            range=((value_range[0], value_ceiling), (0.0, gradient_ceiling)),
        )
        counts += brick_counts.astype(np.uint64)
    logger.debug(f"2D histogram built, max gradient {max_gradient}")
    return Histogram2DBlock(
        counts=counts, value_ceiling=value_ceiling, max_gradient=max_gradient
    )


def create_container_from_raster(
    target: Path,
    raster: RasterDataBlock,
    histogram_bins: int,
    gradient_bins: int,
    meshes: Sequence[Mesh] = (),
    max_min_kinds: Sequence[NumericKind] = ALL_KINDS,
) -> Path:
    """
    Wrap a completed raster block into a new BVF container with its accelerators.

    :param target: The container to create; removed again if building fails.
    :param raster: The finished raster block.
    :param histogram_bins: Bucket count of the 1D histogram, also the value axis of the 2D one.
    :param gradient_bins: Bucket count of the gradient axis of the 2D histogram.
    :param meshes: Geometry to store alongside the raster data.
    :param max_min_kinds: The kinds the min/max pass accepts.
    :returns: The path of the new container.
    """
    layout, kind = raster.layout, raster.meta.kind
    logger.debug(f"Building accelerator blocks for {target}")
    max_min = compute_max_min(layout, raster.get_data, kind, max_min_kinds)
    value_range = max_min.value_range
    histogram_1d = compute_histogram_1d(
        layout, raster.get_data, value_range, histogram_bins
    )
    histogram_2d = compute_histogram_2d(
        layout,
        raster.get_data,
        value_range,
        max_min.max_value,
        len(histogram_1d.counts),
        gradient_bins,
    )
    raster.close()

    with BVFWriter(target) as writer:
        writer.add_block_from_file(
            BlockSemantic.REG_NDIM_GRID,
            raster.meta.model_dump(mode="json"),
            raster.backing_path,
            size=raster.meta.total_bytes,
        )
        for block in (max_min, histogram_1d, histogram_2d):
            meta, payload = block.to_payload()
            writer.add_block(block.semantic, meta, payload)
        for mesh in meshes:
            writer.add_block(BlockSemantic.GEOMETRY, *mesh_to_payload(mesh))
    logger.debug(f"Container {target} written")
    return Path(target)
