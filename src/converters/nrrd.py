from pathlib import Path

import nrrd
import numpy as np
from loguru import logger

from container_models.descriptors import RawVolume
from exceptions import ConversionIOError, ConverterNegotiationError

from .base import AbstractConverter
from .raw import raw_volume_from_array

NRRD_MAGIC = b"NRRD"


def _spacings(header: dict, spatial_axes: slice) -> tuple[float, float, float]:
    """Voxel spacing in (x, y, z) order from the header, defaulting to 1."""
    if "spacings" in header:
        values = np.asarray(header["spacings"], dtype=np.float64)[spatial_axes]
    elif "space directions" in header:
        directions = np.asarray(header["space directions"], dtype=np.float64)
        values = np.linalg.norm(directions, axis=1)[spatial_axes]
    else:
        return 1.0, 1.0, 1.0
    values = np.where(np.isfinite(values) & (values > 0), values, 1.0)
    return tuple(float(value) for value in values[:3]) + (1.0,) * (3 - len(values))


class NRRDConverter(AbstractConverter):
    """Nearly Raw Raster Data, read and written with pynrrd."""

    description = "Nearly Raw Raster Data"
    supported_extensions = ("nrrd", "nhdr")
    can_export_data = True

    def can_read(self, path: Path, first_block: bytes) -> bool:
        return super().can_read(path, first_block) and first_block.startswith(NRRD_MAGIC)

    def convert_to_raw(
        self, source: Path, temp_dir: Path, interactive: bool = False
    ) -> RawVolume:
        try:
            data, header = nrrd.read(str(source), index_order="C")
        except (nrrd.NRRDError, OSError, ValueError) as error:
            raise ConverterNegotiationError(f"Unable to read {source} as NRRD: {error}") from error
        logger.debug(f"NRRD {source.name}: shape {data.shape}, type {data.dtype}")

        match data.ndim:
            case 2:
                data, spatial_axes = data[np.newaxis], slice(0, 2)
            case 3:
                spatial_axes = slice(0, 3)
            case 4:
                # the component axis is the fastest one and so comes last in C order
                spatial_axes = slice(1, 4)
            case _:
                raise ConverterNegotiationError(
                    f"{source} holds {data.ndim}D data, expected 2D to 4D"
                )
        return raw_volume_from_array(
            data,
            source,
            temp_dir,
            aspect=_spacings(header, spatial_axes),
            title=str(header.get("content", "")),
        )

    def convert_to_native(
        self,
        raw: RawVolume,
        target: Path,
        interactive: bool = False,
        quantize_8bit: bool = False,
    ) -> Path:
        data = self.export_samples(raw, quantize_8bit)
        header: dict = {"encoding": "raw"}
        if raw.component_count == 1:
            data = data[..., 0]
            header["spacings"] = list(raw.aspect)
        else:
            header["kinds"] = ["vector", "domain", "domain", "domain"]
            header["spacings"] = [np.nan, *raw.aspect]
        if raw.title:
            header["content"] = raw.title
        try:
            nrrd.write(str(target), data, header=header, index_order="C")
        except (OSError, nrrd.NRRDError) as error:
            raise ConversionIOError(f"Unable to write {target}: {error}") from error
        return Path(target)
