"""
Staged conversion between foreign formats and BVF containers.

Every conversion passes through an anonymous raw stream::

    source --(converter)--> raw --(bricking | converter)--> target

Public methods return ``IOResultE``: ``IOSuccess`` with the produced path or
value, or ``IOFailure`` carrying a :class:`~exceptions.VolumeIOError` whose
``kind`` tells the causes apart. A brick size below the minimum is a
programming error and raises ``ValueError`` immediately.

Every intermediate file is created with a unique name in the caller's temp
directory and removed before the call returns, whether it succeeded or not.
"""

from __future__ import annotations

import sys
from collections.abc import Callable, Sequence
from pathlib import Path

import numpy as np
from loguru import logger
from returns.io import IOFailure, IOResultE, IOSuccess, impure_safe
from returns.result import Failure, Success

from bvf.dataset import BVFDataset
from bvf.format import is_bvf_file, verify_checksum
from constants import MIN_BRICK_SIZE, NATIVE_EXTENSION, StackFormat
from container_models.base import Triple
from container_models.descriptors import RangeInfo, RawVolume, StackDescriptor
from container_models.numeric_kind import NumericKind
from converters.base import AbstractConverter
from converters.nrrd import NRRDConverter
from converters.raw import convert_raw_dataset
from exceptions import (
    ConversionIOError,
    ConverterNegotiationError,
    IncompatibleInputError,
    UnknownFormatError,
    VolumeIOError,
)
from settings import Settings, get_settings
from utils.files import (
    get_extension,
    is_native,
    remove_file,
    removed_on_failure,
    unique_temp_path,
)
from utils.logger import describe_error, log_railway_function

from .registry import FormatRegistry, default_registry


def is_soft_failure(error: Exception) -> bool:
    """
    Whether a failed converter trial lets the caller move on to the next candidate.

    Errors raised by third-party parsers count as soft: the converter claimed a
    file it could not read after all.
    """
    if isinstance(error, VolumeIOError):
        return error.kind.is_recoverable
    return not isinstance(error, MemoryError)


def check_brick_size(max_brick_size: int) -> None:
    if max_brick_size < MIN_BRICK_SIZE:
        raise ValueError(
            f"Brick size {max_brick_size} is below the minimum of {MIN_BRICK_SIZE}"
        )


class ConversionPipeline:
    def __init__(
        self, registry: FormatRegistry | None = None, settings: Settings | None = None
    ):
        self.registry = registry if registry is not None else default_registry()
        self.settings = settings if settings is not None else get_settings()

    def resolve_bricking(
        self,
        max_brick_size: int | None,
        brick_overlap: int | None,
        quantize_8bit: bool | None,
    ) -> tuple[int, int, bool]:
        """Resolve bricking parameters, explicit arguments winning over settings."""
        max_brick_size = (
            self.settings.max_brick_size if max_brick_size is None else max_brick_size
        )
        check_brick_size(max_brick_size)
        return (
            max_brick_size,
            self.settings.brick_overlap if brick_overlap is None else brick_overlap,
            self.settings.quantize_to_8bit if quantize_8bit is None else quantize_8bit,
        )

    @staticmethod
    def _first_success[T](
        candidates: Sequence[AbstractConverter],
        action: Callable[[AbstractConverter], T],
        description: str,
    ) -> T:
        """
        Run ``action`` with each candidate in order and return the first success.

        Soft failures move on to the next candidate, hard failures propagate.

        :raises ConverterNegotiationError: when every candidate failed softly.
        """
        for converter in candidates:
            logger.debug(f"Attempting converter {converter!r} for {description}")
            match impure_safe(action)(converter):
                case IOSuccess(Success(value)):
                    return value
                case IOFailure(Failure(error)) if is_soft_failure(error):
                    logger.debug(
                        f"Converter {converter!r} failed on {description}: "
                        f"{describe_error(error)}"
                    )
                case IOFailure(Failure(error)):
                    raise error
        raise ConverterNegotiationError(f"No converter succeeded for {description}")

    def _reading_candidates(self, source: Path) -> list[AbstractConverter]:
        """Converters claiming ``source``, followed by the fallback converter."""
        candidates = self.registry.identify_converters(source)
        fallback = self.registry.fallback
        if fallback is not None and fallback not in candidates:
            candidates.append(fallback)
        return candidates

    def _export_candidates(self, target: Path) -> list[AbstractConverter]:
        extension = get_extension(target)
        candidates = self.registry.converters_for_ext(extension, must_support_export=True)
        if not candidates:
            raise UnknownFormatError(f"No converter can write '.{extension}' files")
        return candidates

    # -- raw stage -----------------------------------------------------------------

    def extract_to_raw(self, source: Path, temp_dir: Path) -> RawVolume:
        """
        Turn any readable file into an owned raw volume.

        BVF containers export their finest LOD; foreign files go through the
        converters claiming them, then the fallback converter.
        """
        source = Path(source)
        if is_bvf_file(source):
            target = unique_temp_path(temp_dir, source.stem)
            with BVFDataset(source) as dataset:
                try:
                    dataset.export(0, target)
                except Exception:
                    remove_file(target)
                    raise
                return RawVolume(
                    raw_path=target,
                    kind=dataset.kind,
                    component_count=dataset.component_count,
                    size=dataset.domain_size(0),
                    aspect=dataset.aspect,
                    title=dataset.meta.title,
                    semantic=dataset.meta.semantic,
                    owns_temp=True,
                )
        return self._first_success(
            self._reading_candidates(source),
            lambda converter: converter.convert_to_raw(source, temp_dir),
            f"reading {source.name}",
        )

    def raw_to_target(
        self,
        raw: RawVolume,
        target: Path,
        temp_dir: Path,
        max_brick_size: int,
        brick_overlap: int,
        quantize_8bit: bool = False,
    ) -> Path:
        """Write a raw volume as a BVF container or through an export-capable converter."""
        target = Path(target)
        if is_native(target):
            return convert_raw_dataset(
                raw,
                target,
                temp_dir,
                max_brick_size,
                brick_overlap,
                quantize_8bit,
                self.settings.histogram_bins,
                self.settings.gradient_bins,
                self.settings.incore_size,
            )
        return self._first_success(
            self._export_candidates(target),
            lambda converter: converter.convert_to_native(
                raw, target, quantize_8bit=quantize_8bit
            ),
            f"writing {target.name}",
        )

    # -- stacks --------------------------------------------------------------------

    @staticmethod
    def _stack_kind(stack: StackDescriptor) -> NumericKind:
        bit_depth = 8 if stack.is_jpeg_encoded else stack.bit_depth
        # stacks carry no signedness, only 32 and 64 bit data is taken as signed
        return NumericKind(bit_width=bit_depth, signed=bit_depth >= 32)

    @staticmethod
    def _element_samples(
        stack: StackDescriptor, element_index: int, kind: NumericKind
    ) -> np.ndarray:
        element = stack.elements[element_index]
        if stack.file_type == StackFormat.IMAGE:
            return element.decode_image().astype(kind.dtype)
        payload = element.read_payload()
        if stack.is_jpeg_encoded:
            return element.decode_image(payload).astype(kind.dtype)
        samples = np.frombuffer(payload, dtype=kind.dtype)
        if stack.is_big_endian != (sys.byteorder == "big"):
            samples = samples.byteswap()
        return samples

    def _write_stack_raw(self, stack: StackDescriptor, raw_path: Path) -> RawVolume:
        kind = self._stack_kind(stack)
        component_count = stack.component_count
        slice_voxels = stack.size.x * stack.size.y
        with open(raw_path, "wb") as raw_file:
            for index in range(len(stack.elements)):
                samples = self._element_samples(stack, index, kind).reshape(
                    slice_voxels, -1
                )
                if samples.shape[1] == 3:
                    alpha = np.full((slice_voxels, 1), kind.max_value, dtype=kind.dtype)
                    samples = np.hstack([samples, alpha])
                raw_file.write(np.ascontiguousarray(samples).tobytes())
                component_count = samples.shape[1]
        if component_count != stack.component_count:
            logger.debug(
                f"Promoted stack from {stack.component_count} to {component_count} components"
            )
        return RawVolume(
            raw_path=raw_path,
            kind=kind,
            component_count=component_count,
            size=Triple(stack.size.x, stack.size.y, len(stack.elements)),
            aspect=stack.aspect,
            title=stack.description,
            owns_temp=True,
        )

    @log_railway_function(
        "Failed to convert image stack", "Successfully converted image stack"
    )
    @impure_safe
    def _convert_stack(
        self,
        stack: StackDescriptor,
        target: Path,
        temp_dir: Path,
        max_brick_size: int,
        brick_overlap: int,
        quantize_8bit: bool,
    ) -> Path:
        raw_path = unique_temp_path(temp_dir, Path(target).stem, ".stack.raw")
        logger.info(f"Concatenating {len(stack.elements)} stack elements into {raw_path.name}")
        try:
            with removed_on_failure(target):
                raw = self._write_stack_raw(stack, raw_path)
                return self.raw_to_target(
                    raw, target, temp_dir, max_brick_size, brick_overlap, quantize_8bit
                )
        except OSError as error:
            raise ConversionIOError(f"Unable to convert stack: {error}") from error
        finally:
            remove_file(raw_path)

    def convert_stack(
        self,
        stack: StackDescriptor,
        target: Path,
        temp_dir: Path | None = None,
        max_brick_size: int | None = None,
        brick_overlap: int | None = None,
        quantize_8bit: bool | None = None,
    ) -> IOResultE[Path]:
        """
        Convert a discovered image stack into ``target``.

        Element payloads are concatenated into one intermediate raw stream,
        byte-swapped when the stack's byte order differs from this machine's,
        and 3-component data is promoted to RGBA with an opaque alpha.
        """
        bricking = self.resolve_bricking(max_brick_size, brick_overlap, quantize_8bit)
        return self._convert_stack(
            stack, Path(target), temp_dir or self.settings.temp_dir, *bricking
        )

    # -- files ---------------------------------------------------------------------

    def _to_native(
        self,
        sources: Sequence[Path],
        target: Path,
        temp_dir: Path,
        max_brick_size: int,
        brick_overlap: int,
        quantize_8bit: bool,
    ) -> Path:
        if len(sources) == 1 and is_bvf_file(sources[0]):
            return self._rebrick(
                sources[0], target, temp_dir, max_brick_size, brick_overlap, quantize_8bit
            )
        return self._first_success(
            self._reading_candidates(sources[0]),
            lambda converter: converter.convert_to_bvf(
                sources,
                target,
                temp_dir,
                max_brick_size,
                brick_overlap,
                quantize_8bit,
                self.settings.histogram_bins,
                self.settings.gradient_bins,
            ),
            f"converting {sources[0].name} to {target.name}",
        )

    def _to_foreign(
        self,
        source: Path,
        target: Path,
        temp_dir: Path,
        max_brick_size: int,
        brick_overlap: int,
        quantize_8bit: bool,
    ) -> Path:
        self._export_candidates(target)
        raw = self.extract_to_raw(source, temp_dir)
        try:
            return self.raw_to_target(
                raw, target, temp_dir, max_brick_size, brick_overlap, quantize_8bit
            )
        finally:
            raw.release()

    @log_railway_function("Failed to convert dataset", "Successfully converted dataset")
    @impure_safe
    def _convert_dataset(
        self,
        sources: Sequence[Path],
        target: Path,
        temp_dir: Path,
        max_brick_size: int,
        brick_overlap: int,
        quantize_8bit: bool,
    ) -> Path:
        if not sources:
            raise IncompatibleInputError("No source files given")
        if len(sources) > 1 and not is_native(target):
            raise IncompatibleInputError(
                f"Multiple source files can only be combined into a .{NATIVE_EXTENSION} container"
            )
        logger.info(f"Converting {', '.join(path.name for path in sources)} to {target.name}")
        with removed_on_failure(target):
            if is_native(target):
                return self._to_native(
                    sources, target, temp_dir, max_brick_size, brick_overlap, quantize_8bit
                )
            return self._to_foreign(
                sources[0], target, temp_dir, max_brick_size, brick_overlap, quantize_8bit
            )

    def convert_dataset(
        self,
        sources: Path | Sequence[Path],
        target: Path,
        temp_dir: Path | None = None,
        max_brick_size: int | None = None,
        brick_overlap: int | None = None,
        quantize_8bit: bool | None = None,
    ) -> IOResultE[Path]:
        """
        Convert one or more files into ``target``.

        :param sources: The source file, or several files forming one volume.
            Several files are only accepted for a BVF target.
        :param target: The file to create; its extension selects the format.
        :param temp_dir: Existing directory for intermediate files.
        :param max_brick_size: Brick edge length including overlap, at least 32.
        :param brick_overlap: Voxels shared with each neighbouring brick.
        :param quantize_8bit: Rescale wider data to unsigned 8 bit.
        :returns: ``IOSuccess(target)`` or an ``IOFailure`` with the cause.
        :raises ValueError: if ``max_brick_size`` is below the minimum.
        """
        if isinstance(sources, (str, Path)):
            sources = [sources]
        bricking = self.resolve_bricking(max_brick_size, brick_overlap, quantize_8bit)
        return self._convert_dataset(
            [Path(source) for source in sources],
            Path(target),
            temp_dir or self.settings.temp_dir,
            *bricking,
        )

    @log_railway_function("Failed to export dataset", "Successfully exported dataset")
    @impure_safe
    def _export_dataset(self, source: Path, lod: int, target: Path, temp_dir: Path) -> Path:
        candidates = self._export_candidates(target)
        raw_path = unique_temp_path(temp_dir, source.stem)
        try:
            with BVFDataset(source) as dataset:
                if not dataset.valid_lod(lod):
                    raise IncompatibleInputError(
                        f"{source.name} has no LOD {lod}, only {dataset.lod_count}"
                    )
                dataset.export(lod, raw_path)
                raw = RawVolume(
                    raw_path=raw_path,
                    kind=dataset.kind,
                    component_count=dataset.component_count,
                    size=dataset.domain_size(lod),
                    aspect=dataset.aspect,
                    title=dataset.meta.title,
                    semantic=dataset.meta.semantic,
                )
            with removed_on_failure(target):
                return self._first_success(
                    candidates,
                    lambda converter: converter.convert_to_native(raw, target),
                    f"exporting {source.name} to {target.name}",
                )
        finally:
            remove_file(raw_path)

    def export_dataset(
        self, source: Path, lod: int, target: Path, temp_dir: Path | None = None
    ) -> IOResultE[Path]:
        """Export one LOD of a BVF container to an export-capable foreign format."""
        return self._export_dataset(
            Path(source), lod, Path(target), temp_dir or self.settings.temp_dir
        )

    def _rebrick(
        self,
        source: Path,
        target: Path,
        temp_dir: Path,
        max_brick_size: int,
        brick_overlap: int,
        quantize_8bit: bool,
    ) -> Path:
        intermediate = unique_temp_path(temp_dir, source.stem, ".nrrd")
        nrrd = NRRDConverter()
        try:
            raw = self.extract_to_raw(source, temp_dir)
            try:
                nrrd.convert_to_native(raw, intermediate)
            finally:
                raw.release()
            return nrrd.convert_to_bvf(
                [intermediate],
                target,
                temp_dir,
                max_brick_size,
                brick_overlap,
                quantize_8bit,
                self.settings.histogram_bins,
                self.settings.gradient_bins,
            )
        finally:
            remove_file(intermediate)

    @log_railway_function("Failed to rebrick dataset", "Successfully rebricked dataset")
    @impure_safe
    def _rebrick_dataset(
        self,
        source: Path,
        target: Path,
        temp_dir: Path,
        max_brick_size: int,
        brick_overlap: int,
        quantize_8bit: bool,
    ) -> Path:
        logger.info(
            f"Rebricking {source.name} to {max_brick_size}^3 bricks, overlap {brick_overlap}"
        )
        with removed_on_failure(target):
            return self._rebrick(
                source, target, temp_dir, max_brick_size, brick_overlap, quantize_8bit
            )

    def rebrick_dataset(
        self,
        source: Path,
        target: Path,
        temp_dir: Path | None = None,
        max_brick_size: int | None = None,
        brick_overlap: int | None = None,
        quantize_8bit: bool | None = None,
    ) -> IOResultE[Path]:
        """Rebuild a BVF container with another brick size, through an NRRD intermediate."""
        bricking = self.resolve_bricking(max_brick_size, brick_overlap, quantize_8bit)
        return self._rebrick_dataset(
            Path(source), Path(target), temp_dir or self.settings.temp_dir, *bricking
        )

    @log_railway_function("Failed to analyze dataset")
    @impure_safe
    def _analyze_dataset(self, source: Path, temp_dir: Path) -> RangeInfo:
        if is_bvf_file(source):
            with BVFDataset(source) as dataset:
                if dataset.component_count != 1:
                    raise IncompatibleInputError(
                        f"Only scalar datasets can be analyzed, {source.name} has "
                        f"{dataset.component_count} components"
                    )
                return dataset.range_info()
        candidates = self.registry.converters_for_ext(get_extension(source))
        if self.registry.fallback is not None:
            candidates.append(self.registry.fallback)
        return self._first_success(
            candidates,
            lambda converter: converter.analyze(source, temp_dir),
            f"analyzing {source.name}",
        )

    def analyze_dataset(
        self, source: Path, temp_dir: Path | None = None
    ) -> IOResultE[RangeInfo]:
        """Value range, numeric kind and geometry of any readable dataset."""
        return self._analyze_dataset(Path(source), temp_dir or self.settings.temp_dir)

    def needs_conversion(self, source: Path) -> bool:
        """True unless ``source`` opens as a BVF container."""
        return not is_bvf_file(Path(source))

    @log_railway_function("Failed to verify container")
    @impure_safe
    def verify(self, source: Path) -> bool:
        """Recompute the checksum of a BVF container."""
        return verify_checksum(Path(source))
