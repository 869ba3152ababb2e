from collections.abc import Sequence
from pathlib import Path

import numpy as np
import tifffile
from loguru import logger

from container_models.descriptors import RawVolume
from exceptions import ConversionIOError, ConverterNegotiationError

from .base import AbstractConverter
from .raw import convert_raw_dataset, raw_volume_from_array

TIFF_MAGICS = (b"II*\x00", b"MM\x00*", b"II+\x00", b"MM\x00+")


def _to_volume(data: np.ndarray, axes: str) -> np.ndarray:
    """Arrange a TIFF series as ``(z, y, x[, components])`` from its axes string."""
    if axes.endswith("S"):
        return data.reshape(-1, *data.shape[-3:])
    return data.reshape(-1, *data.shape[-2:])


def _pixel_spacing(tif: tifffile.TiffFile) -> tuple[float, float, float]:
    page = tif.pages[0]
    spacing = [1.0, 1.0, 1.0]
    for axis, tag_name in enumerate(("XResolution", "YResolution")):
        tag = page.tags.get(tag_name)
        if tag is not None:
            numerator, denominator = tag.value
            if numerator:
                spacing[axis] = denominator / numerator
    if tif.imagej_metadata and "spacing" in tif.imagej_metadata:
        spacing[2] = float(tif.imagej_metadata["spacing"])
    elif tif.shaped_metadata and "spacing" in tif.shaped_metadata[0]:
        spacing[2] = float(tif.shaped_metadata[0]["spacing"])
    return spacing[0], spacing[1], spacing[2]


class TIFFConverter(AbstractConverter):
    """Multi-page TIFF volumes and single-slice TIFF stacks, through tifffile."""

    description = "Tagged Image File Format"
    supported_extensions = ("tif", "tiff")
    can_export_data = True

    def can_read(self, path: Path, first_block: bytes) -> bool:
        return super().can_read(path, first_block) and first_block.startswith(TIFF_MAGICS)

    def convert_to_raw(
        self, source: Path, temp_dir: Path, interactive: bool = False
    ) -> RawVolume:
        try:
            with tifffile.TiffFile(source) as tif:
                series = tif.series[0]
                data = _to_volume(series.asarray(), series.axes)
                aspect = _pixel_spacing(tif)
        except (tifffile.TiffFileError, OSError, ValueError) as error:
            raise ConverterNegotiationError(f"Unable to read {source} as TIFF: {error}") from error
        logger.debug(f"TIFF {source.name}: volume {data.shape}, type {data.dtype}")
        return raw_volume_from_array(data, source, temp_dir, aspect=aspect)

    def convert_to_bvf(
        self,
        sources: Sequence[Path],
        target: Path,
        temp_dir: Path,
        max_brick_size: int,
        brick_overlap: int,
        quantize_8bit: bool = False,
        histogram_bins: int = 256,
        gradient_bins: int = 256,
        interactive: bool = False,
    ) -> Path:
        """Convert one TIFF volume, or a sequence of single-slice TIFF files in slice order."""
        if len(sources) == 1:
            return super().convert_to_bvf(
                sources,
                target,
                temp_dir,
                max_brick_size,
                brick_overlap,
                quantize_8bit,
                histogram_bins,
                gradient_bins,
                interactive,
            )
        try:
            data = tifffile.imread([str(source) for source in sources])
        except (tifffile.TiffFileError, OSError, ValueError) as error:
            raise ConverterNegotiationError(f"Unable to read TIFF slice stack: {error}") from error
        logger.info(f"Read {len(sources)} TIFF slices into a {data.shape} volume")
        raw = raw_volume_from_array(data, sources[0], temp_dir)
        try:
            return convert_raw_dataset(
                raw,
                target,
                temp_dir,
                max_brick_size,
                brick_overlap,
                quantize_8bit,
                histogram_bins,
                gradient_bins,
            )
        finally:
            raw.release()

    def convert_to_native(
        self,
        raw: RawVolume,
        target: Path,
        interactive: bool = False,
        quantize_8bit: bool = False,
    ) -> Path:
        data = self.export_samples(raw, quantize_8bit)
        if raw.component_count == 1:
            data, axes, photometric = data[..., 0], "ZYX", "minisblack"
        else:
            axes = "ZYXS"
            photometric = "rgb" if raw.component_count in (3, 4) else "minisblack"
        try:
            tifffile.imwrite(
                target,
                data,
                photometric=photometric,
                resolution=(1.0 / raw.aspect.x, 1.0 / raw.aspect.y),
                metadata={"axes": axes, "spacing": raw.aspect.z},
            )
        except (OSError, ValueError) as error:
            raise ConversionIOError(f"Unable to write {target}: {error}") from error
        return Path(target)
