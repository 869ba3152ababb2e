"""
Merging several volumes into one.

1. **Normalize**: every input becomes an anonymous raw stream, and all streams
   must agree on numeric kind, component count, byte order and domain size.
2. **Merge**: the streams are read voxel-aligned in chunks, each sample
   transformed by ``value * scale + bias`` and combined by maximum or sum.
3. **Finalize**: the merged stream is written to the target like any raw volume.
"""

from collections.abc import Sequence
from enum import StrEnum
from pathlib import Path

import numpy as np
from loguru import logger
from returns.io import IOResultE, impure_safe

from constants import MERGED_TITLE
from container_models.descriptors import MergeInput, RawVolume
from container_models.numeric_kind import NumericKind, numeric_dispatch
from exceptions import ConversionIOError, IncompatibleInputError, UnmergeableDatasetsError
from utils.files import remove_file, unique_temp_path
from utils.logger import log_railway_function

from .pipeline import ConversionPipeline


class CombineMode(StrEnum):
    MAX = "max"
    ACCUMULATE = "accumulate"


def check_mergeable(volumes: Sequence[RawVolume]) -> None:
    """
    Make sure normalized volumes can be combined voxel by voxel.

    A differing aspect ratio is only worth a warning.

    :raises UnmergeableDatasetsError: on any structural mismatch.
    """
    reference = volumes[0]
    for index, volume in enumerate(volumes[1:], start=1):
        mismatches = [
            name
            for name, differs in (
                ("numeric kind", volume.kind != reference.kind),
                ("component count", volume.component_count != reference.component_count),
                ("byte order", volume.convert_endianness != reference.convert_endianness),
                ("domain size", tuple(volume.size) != tuple(reference.size)),
            )
            if differs
        ]
        if mismatches:
            raise UnmergeableDatasetsError(
                f"Input {index} differs from input 0 in {', '.join(mismatches)}"
            )
        if tuple(volume.aspect) != tuple(reference.aspect):
            logger.warning(
                f"Input {index} has aspect ratio {tuple(volume.aspect)}, "
                f"input 0 has {tuple(reference.aspect)}; using the latter"
            )


class DataMerger:
    """Streams voxel-aligned raw inputs into one combined raw file."""

    def __init__(
        self,
        inputs: Sequence[MergeInput],
        kind: NumericKind,
        element_count: int,
        mode: CombineMode,
        chunk_size: int,
        convert_endianness: bool = False,
    ):
        self.inputs = inputs
        self.kind = kind
        self.element_count = element_count
        self.mode = mode
        self.chunk_size = max(1, chunk_size)
        self.convert_endianness = convert_endianness

    def _transform(self, values: np.ndarray, item: MergeInput, dtype: np.dtype) -> np.ndarray:
        if item.is_identity:
            return values
        transformed = values.astype(np.float64) * item.scale + item.bias
        if self.kind.is_float:
            return transformed.astype(dtype)
        return np.clip(np.rint(transformed), self.kind.min_value, self.kind.max_value).astype(
            dtype
        )

    def _combine(self, dtype: np.dtype, target: Path) -> Path:
        stored = dtype.newbyteorder() if self.convert_endianness else dtype
        sources = [
            np.memmap(
                item.source_path,
                dtype=stored,
                mode="r",
                offset=item.header_skip,
                shape=(self.element_count,),
            )
            for item in self.inputs
        ]
        output = np.memmap(target, dtype=dtype, mode="w+", shape=(self.element_count,))
        for start in range(0, self.element_count, self.chunk_size):
            stop = min(start + self.chunk_size, self.element_count)
            merged = None
            for item, source in zip(self.inputs, sources):
                values = self._transform(np.asarray(source[start:stop], dtype=dtype), item, dtype)
                if merged is None:
                    merged = values.copy()
                elif self.mode is CombineMode.MAX:
                    np.maximum(merged, values, out=merged)
                else:
                    # integer sums wrap around
                    np.add(merged, values, out=merged, casting="unsafe")
            output[start:stop] = merged
        output.flush()
        del output, sources
        return target

    def merge(self, target: Path) -> Path:
        """
        Write the combined samples to ``target`` in native byte order.

        :raises UnsupportedNumericKindError: when no merge exists for the kind.
        """
        return numeric_dispatch(
            self.kind, lambda dtype: self._combine(dtype, target), operation="Merge"
        )


@log_railway_function("Failed to merge datasets", "Successfully merged datasets")
@impure_safe
def _merge_datasets(
    pipeline: ConversionPipeline,
    inputs: Sequence[MergeInput],
    target: Path,
    mode: CombineMode,
    temp_dir: Path,
    max_brick_size: int,
    brick_overlap: int,
    quantize_8bit: bool,
) -> Path:
    if not inputs:
        raise IncompatibleInputError("Nothing to merge")
    for index, item in enumerate(inputs):
        if item.header_skip or item.owns_temp_file:
            raise IncompatibleInputError(
                f"Merge input {index} ({item.source_path.name}) sets header_skip or "
                "owns_temp_file; those describe normalized streams only"
            )

    volumes: list[RawVolume] = []
    normalized: list[MergeInput] = []
    try:
        for item in inputs:
            logger.info(f"Normalizing merge input {item.source_path.name}")
            volume = pipeline.extract_to_raw(item.source_path, temp_dir)
            volumes.append(volume)
            normalized.append(
                MergeInput(
                    source_path=volume.raw_path,
                    header_skip=volume.header_skip,
                    scale=item.scale,
                    bias=item.bias,
                    owns_temp_file=volume.owns_temp,
                )
            )
        check_mergeable(volumes)

        reference = volumes[0]
        merger = DataMerger(
            normalized,
            reference.kind,
            reference.size.volume * reference.component_count,
            mode,
            pipeline.settings.incore_size,
            reference.convert_endianness,
        )
        merged_path = unique_temp_path(temp_dir, target.stem, ".merged.raw")
        try:
            merger.merge(merged_path)
        except OSError as error:
            remove_file(merged_path)
            raise ConversionIOError(f"Unable to write merged data: {error}") from error
        except Exception:
            remove_file(merged_path)
            raise
    finally:
        for item in normalized:
            item.release()

    merged = RawVolume(
        raw_path=merged_path,
        kind=reference.kind,
        component_count=reference.component_count,
        size=reference.size,
        aspect=reference.aspect,
        title=MERGED_TITLE,
        semantic=reference.semantic,
    )
    try:
        return pipeline.raw_to_target(
            merged, target, temp_dir, max_brick_size, brick_overlap, quantize_8bit
        )
    finally:
        remove_file(merged_path)


def merge_datasets(
    pipeline: ConversionPipeline,
    inputs: Sequence[MergeInput],
    target: Path,
    mode: CombineMode = CombineMode.MAX,
    temp_dir: Path | None = None,
    max_brick_size: int | None = None,
    brick_overlap: int | None = None,
    quantize_8bit: bool | None = None,
) -> IOResultE[Path]:
    """
    Merge several datasets, each with its own scale and bias, into ``target``.

    :param pipeline: Provides normalization and the final raw to target step.
    :param inputs: One entry per source file. The ``source_path`` may be any
        readable format or a BVF container. Only ``scale`` and ``bias`` may be set
        besides it; ``header_skip`` and ``owns_temp_file`` are reserved for the
        normalized streams and fail the merge with an
        :class:`~exceptions.IncompatibleInputError`.
    :param target: The file to create; its extension selects the format.
    :param mode: Combine by maximum or by sum.
    :returns: ``IOSuccess(target)`` or an ``IOFailure``. Mismatching inputs fail
        with an :class:`~exceptions.UnmergeableDatasetsError` before any
        output is created.
    :raises ValueError: if ``max_brick_size`` is below the minimum.
    """
    bricking = pipeline.resolve_bricking(max_brick_size, brick_overlap, quantize_8bit)
    return _merge_datasets(
        pipeline,
        list(inputs),
        Path(target),
        CombineMode(mode),
        temp_dir or pipeline.settings.temp_dir,
        *bricking,
    )
