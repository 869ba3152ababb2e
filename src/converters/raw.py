"""
RAW to BVF conversion, the last stage of every import.

The raw samples are cut into bricks for every level of detail and written
into a raster block, which is then wrapped into a container together with its
accelerator blocks. Coarser levels are produced by 2x2x2 averaging of the
previous level, each into its own intermediate raw file.
"""

from pathlib import Path

import numpy as np
from loguru import logger

from bvf.raster import RasterDataBlock, RasterMeta
from computations.acceleration import create_container_from_raster
from computations.downsample import downsample_to_file
from computations.widening import interpolate
from constants import ElementSemantic
from container_models.base import Triple
from container_models.descriptors import RawVolume
from container_models.numeric_kind import UINT8, NumericKind
from exceptions import ConversionIOError
from utils.files import remove_file, unique_temp_path


def _slab_range(source: np.ndarray, slab_depth: int) -> tuple[float, float]:
    low, high = float("inf"), float("-inf")
    for z in range(0, source.shape[0], slab_depth):
        slab = np.asarray(source[z : z + slab_depth])
        low, high = min(low, float(slab.min())), max(high, float(slab.max()))
    return low, high


def quantize_to_8bit(raw: RawVolume, temp_dir: Path, incore_size: int) -> RawVolume:
    """
    Rescale a volume into unsigned 8 bit samples, streamed slab by slab.

    :returns: A new, owned raw volume. ``raw`` itself is left untouched.
    """
    source = raw.memmap()
    depth, height, width, components = source.shape
    slab_depth = max(1, incore_size // max(1, height * width * components))
    value_range = _slab_range(source, slab_depth)
    logger.info(f"Quantizing {raw.raw_path.name} from {raw.kind} {value_range} to 8 bit")

    target = unique_temp_path(temp_dir, raw.raw_path.stem, ".q8.raw")
    output = np.memmap(target, dtype=np.uint8, mode="w+", shape=source.shape)
    for z in range(0, depth, slab_depth):
        output[z : z + slab_depth] = interpolate(
            np.asarray(source[z : z + slab_depth], dtype=raw.kind.dtype), value_range, UINT8
        )
    output.flush()
    del output
    return raw.model_copy(
        update={
            "raw_path": target,
            "header_skip": 0,
            "kind": UINT8,
            "convert_endianness": False,
            "owns_temp": True,
        }
    )


def convert_raw_dataset(
    raw: RawVolume,
    target: Path,
    temp_dir: Path,
    max_brick_size: int,
    brick_overlap: int,
    quantize_8bit: bool = False,
    histogram_bins: int = 256,
    gradient_bins: int = 256,
    incore_size: int = 256**3,
) -> Path:
    """
    Build a BVF container from a raw volume.

    :param raw: The raw source. Its file is not removed here, even when owned.
    :param target: The container to create.
    :param temp_dir: Existing directory for the intermediate files.
    :param max_brick_size: Brick edge length including overlap.
    :param brick_overlap: Voxels shared with each neighbouring brick.
    :param quantize_8bit: Rescale wider data to unsigned 8 bit first.
    :returns: The path of the new container.
    """
    intermediates: list[Path] = []
    source_volume = raw
    try:
        if quantize_8bit and source_volume.kind != UINT8:
            source_volume = quantize_to_8bit(raw, temp_dir, incore_size)
            intermediates.append(source_volume.raw_path)

        meta = RasterMeta(
            domain_size=raw.size,
            component_count=raw.component_count,
            kind=source_volume.kind,
            aspect=raw.aspect,
            max_brick_size=max_brick_size,
            overlap=brick_overlap,
            semantic=raw.semantic,
            title=raw.title,
            source=raw.raw_path.name,
        )
        backing = unique_temp_path(temp_dir, target.stem, ".rdb")
        intermediates.append(backing)
        raster = RasterDataBlock.create(meta, backing)
        layout = meta.layout
        logger.debug(
            f"Bricking {raw.size} into {layout.lod_count} LOD(s) of "
            f"{max_brick_size}^3 bricks, overlap {brick_overlap}"
        )

        lod_source: np.ndarray = source_volume.memmap()
        for lod in range(layout.lod_count):
            if lod > 0:
                lod_path = unique_temp_path(temp_dir, target.stem, f".lod{lod}.raw")
                intermediates.append(lod_path)
                size = downsample_to_file(lod_source, lod_path)
                lod_source = np.memmap(
                    lod_path,
                    dtype=lod_source.dtype,
                    mode="r",
                    shape=(*size.zyx, raw.component_count),
                )
            for brick in range(layout.brick_count(lod)):
                extent = layout.extent(lod, brick)
                start, stop = extent.stored_start, extent.stored_stop
                raster.set_data(
                    lod,
                    brick,
                    np.asarray(
                        lod_source[start.z : stop.z, start.y : stop.y, start.x : stop.x],
                        dtype=meta.kind.dtype,
                    ),
                )
        del lod_source

        return create_container_from_raster(
            target, raster, histogram_bins, gradient_bins
        )
    except OSError as error:
        raise ConversionIOError(f"Unable to convert {raw.raw_path} to {target}: {error}") from error
    finally:
        for path in intermediates:
            remove_file(path)


def raw_volume_from_array(
    data: np.ndarray,
    source: Path,
    temp_dir: Path,
    aspect: tuple[float, float, float] = (1.0, 1.0, 1.0),
    title: str = "",
) -> RawVolume:
    """
    Dump an in-memory ``(z, y, x[, components])`` array into an owned raw file.

    Used by converters whose parsing library hands back whole arrays.
    """
    if data.ndim == 3:
        data = data[..., np.newaxis]
    if data.ndim != 4:
        raise ConversionIOError(f"Cannot store {data.ndim}D data of {source} as a volume")
    data = np.ascontiguousarray(data, dtype=data.dtype.newbyteorder("="))
    target = unique_temp_path(temp_dir, Path(source).stem)
    try:
        data.tofile(target)
    except OSError as error:
        remove_file(target)
        raise ConversionIOError(f"Unable to write {target}: {error}") from error
    depth, height, width, components = data.shape
    return RawVolume(
        raw_path=target,
        kind=NumericKind.from_dtype(data.dtype),
        component_count=components,
        size=Triple(width, height, depth),
        aspect=Triple(*aspect),
        title=title,
        semantic=ElementSemantic.RGBA if components == 4 else ElementSemantic.UNDEFINED,
        owns_temp=True,
    )
