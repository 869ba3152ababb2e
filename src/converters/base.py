"""
Converter capabilities
======================

A converter knows one foreign volume format. The pipeline only talks to it
through the operations of :class:`AbstractConverter`; it never needs to know
which concrete format it is dealing with.

::

    foreign file --convert_to_raw--> RawVolume --convert_raw_dataset--> BVF
    BVF --export LOD--> RawVolume --convert_to_native--> foreign file

Converters raise on failure. A converter that claims a file through
:meth:`AbstractConverter.can_read` but then fails to parse it raises
:class:`~exceptions.ConverterNegotiationError`, so the pipeline moves on to the
next candidate.
"""

from abc import ABC, abstractmethod
from collections.abc import Sequence
from pathlib import Path

import numpy as np
from loguru import logger

from computations.widening import interpolate
from container_models.descriptors import RangeInfo, RawVolume
from container_models.mesh import Mesh
from container_models.numeric_kind import UINT8
from exceptions import IncompatibleInputError
from utils.files import get_extension

from .raw import convert_raw_dataset


class AbstractConverter(ABC):
    """A volume format capability."""

    description: str = ""
    supported_extensions: tuple[str, ...] = ()
    can_export_data: bool = False

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.description!r})"

    def supports_extension(self, extension: str) -> bool:
        return extension.lower() in self.supported_extensions

    def can_read(self, path: Path, first_block: bytes) -> bool:
        """
        Whether this converter wants to read ``path``.

        The default only looks at the extension; formats with a magic number
        should check ``first_block`` as well.
        """
        return self.supports_extension(get_extension(path))

    @abstractmethod
    def convert_to_raw(
        self, source: Path, temp_dir: Path, interactive: bool = False
    ) -> RawVolume:
        """
        Extract the samples of ``source`` into a raw stream.

        :param source: The file to read.
        :param temp_dir: Directory for any intermediate file.
        :param interactive: Whether the converter may ask the user questions.
        :returns: The raw volume; ``owns_temp`` is set when the raw file is an
            intermediate that the caller has to remove.
        """

    def convert_to_native(
        self,
        raw: RawVolume,
        target: Path,
        interactive: bool = False,
        quantize_8bit: bool = False,
    ) -> Path:
        """
        Write a raw volume as a file of this format.

        :raises IncompatibleInputError: for converters without export support.
        """
        raise IncompatibleInputError(f"{self.description} files cannot be written")

    @staticmethod
    def export_samples(raw: RawVolume, quantize_8bit: bool = False) -> np.ndarray:
        """
        Load all samples of ``raw`` in native byte order for writing.

        With ``quantize_8bit`` wider data is rescaled from its value range to uint8.
        """
        samples = np.asarray(raw.memmap(), dtype=raw.kind.dtype)
        if quantize_8bit and raw.kind != UINT8:
            value_range = float(samples.min()), float(samples.max())
            logger.info(f"Quantizing {raw.kind} {value_range} to 8 bit for export")
            samples = interpolate(samples, value_range, UINT8)
        return samples

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
        """
        Convert ``sources`` directly into a BVF container.

        The default handles a single source by extracting it to raw and bricking
        that; converters of multi-file formats override it.
        """
        if len(sources) != 1:
            raise IncompatibleInputError(
                f"{self.description} converter reads exactly one file, got {len(sources)}"
            )
        raw = self.convert_to_raw(sources[0], temp_dir, interactive)
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

    def analyze(self, source: Path, temp_dir: Path, interactive: bool = False) -> RangeInfo:
        """Value range, numeric kind and geometry of ``source``."""
        raw = self.convert_to_raw(source, temp_dir, interactive)
        try:
            samples = raw.memmap()
            low, high = float("inf"), float("-inf")
            for z in range(samples.shape[0]):
                plane = np.asarray(samples[z])
                low, high = min(low, float(plane.min())), max(high, float(plane.max()))
            return RangeInfo(
                value_range=(low, high),
                numeric_kind=raw.kind,
                domain_size=raw.size,
                aspect=raw.aspect,
            )
        finally:
            raw.release()


class AbstractGeoConverter(ABC):
    """A mesh format capability."""

    description: str = ""
    supported_extensions: tuple[str, ...] = ()
    can_export_data: bool = False

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.description!r})"

    def supports_extension(self, extension: str) -> bool:
        return extension.lower() in self.supported_extensions

    def can_read(self, path: Path) -> bool:
        return self.supports_extension(get_extension(path))

    @abstractmethod
    def convert_to_mesh(self, path: Path) -> Mesh:
        """
        Read a mesh.

        :raises DatasetOpenError: if the file cannot be read.
        """

    def convert_to_native(self, mesh: Mesh, path: Path) -> Path:
        raise IncompatibleInputError(f"{self.description} files cannot be written")
