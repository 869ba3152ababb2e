"""Evaluate an expression over co-registered BVF datasets into a new container."""

from collections.abc import Sequence
from contextlib import ExitStack
from pathlib import Path

import numpy as np
from loguru import logger
from returns.io import IOResultE, impure_safe

from bvf.dataset import BVFDataset
from bvf.raster import RasterDataBlock
from computations.acceleration import create_container_from_raster
from computations.widening import typed_read
from container_models.numeric_kind import (
    ALL_KINDS,
    FLOAT32,
    INT8,
    INT16,
    UINT8,
    UINT16,
    NumericKind,
    numeric_dispatch,
)
from exceptions import IncompatibleInputError, UnmergeableDatasetsError, UnsupportedNumericKindError
from settings import Settings, get_settings
from utils.files import remove_file, removed_on_failure, unique_temp_path
from utils.logger import log_railway_function

from .syntax import ExpressionCompiler
from .tree import Node, evaluate

# Output kinds the brick evaluation is implemented for; other bricks are skipped.
EXPRESSION_KINDS = (FLOAT32, INT8, UINT8, INT16, UINT16)
# The min/max pass over an expression result rejects 64 bit integers.
FINALIZE_KINDS = tuple(kind for kind in ALL_KINDS if kind.is_float or kind.bit_width < 64)


def check_mergeable(datasets: Sequence[BVFDataset]) -> None:
    """
    Make sure the bricks of all datasets line up one to one.

    :raises UnmergeableDatasetsError: naming the first mismatch found.
    """
    reference = datasets[0]
    for index, dataset in enumerate(datasets[1:], start=1):
        for name in ("component_count", "overlap", "max_brick_size", "timesteps", "lod_count"):
            if getattr(dataset, name) != getattr(reference, name):
                raise UnmergeableDatasetsError(
                    f"Volume {index} differs from volume 0 in {name.replace('_', ' ')}: "
                    f"{getattr(dataset, name)} != {getattr(reference, name)}"
                )
        for lod in range(reference.lod_count):
            if dataset.domain_size(lod) != reference.domain_size(lod):
                raise UnmergeableDatasetsError(
                    f"Volume {index} differs from volume 0 in domain size at LOD {lod}"
                )
            if dataset.brick_count(lod) != reference.brick_count(lod):
                raise UnmergeableDatasetsError(
                    f"Volume {index} differs from volume 0 in brick count at LOD {lod}"
                )


class ExpressionEvaluator:
    """Runs a compiled expression brick by brick over already opened datasets."""

    def __init__(self, tree: Node, datasets: Sequence[BVFDataset], output: RasterDataBlock):
        self.tree = tree
        self.datasets = datasets
        self.output = output
        self.value_ranges = [dataset.value_range() for dataset in datasets]
        self.bricks_evaluated = 0
        self.bricks_skipped = 0

    @property
    def destination(self) -> NumericKind:
        return self.output.meta.kind

    def _evaluate_brick(self, dtype: np.dtype, lod: int, brick: int) -> None:
        inputs = [
            typed_read(dataset.get_brick(lod, brick), dataset.kind, value_range, self.destination)
            for dataset, value_range in zip(self.datasets, self.value_ranges)
        ]
        result = np.empty(inputs[0].shape, dtype=dtype)
        self.output.set_data(lod, brick, evaluate(self.tree, inputs, result))

    def run(self) -> RasterDataBlock:
        """Evaluate every brick, in storage order, as driven by the first dataset."""
        for lod, brick in self.datasets[0].bricks():
            try:
                numeric_dispatch(
                    self.destination,
                    lambda dtype: self._evaluate_brick(dtype, lod, brick),
                    supported=EXPRESSION_KINDS,
                    operation="Expression evaluation",
                )
                self.bricks_evaluated += 1
            except UnsupportedNumericKindError as error:
                logger.error(f"Skipping brick {brick} of LOD {lod}: {error}")
                self.bricks_skipped += 1
        logger.debug(
            f"Evaluated {self.bricks_evaluated} bricks, skipped {self.bricks_skipped}"
        )
        return self.output


@log_railway_function("Failed to evaluate expression", "Successfully evaluated expression")
@impure_safe
def _evaluate_expression(
    expression: str, volumes: Sequence[Path], output: Path, temp_dir: Path, settings: Settings
) -> Path:
    tree = ExpressionCompiler().compile(expression)
    if not volumes:
        raise IncompatibleInputError("An expression needs at least one input volume")
    referenced = tree.volume_indices()
    if referenced and max(referenced) >= len(volumes):
        raise IncompatibleInputError(
            f"Expression uses volume {max(referenced)}, only {len(volumes)} given"
        )

    with ExitStack() as stack:
        datasets = [stack.enter_context(BVFDataset(Path(path))) for path in volumes]
        check_mergeable(datasets)
        destination = NumericKind.widest(dataset.kind for dataset in datasets)
        logger.info(f"Evaluating '{expression}' over {len(datasets)} volumes as {destination}")

        backing = unique_temp_path(temp_dir, output.stem, ".rdb")
        try:
            raster = RasterDataBlock.create_like(
                datasets[0].meta, destination, backing, title=expression, source=""
            )
            ExpressionEvaluator(tree, datasets, raster).run()
            with removed_on_failure(output):
                return create_container_from_raster(
                    output,
                    raster,
                    settings.histogram_bins,
                    settings.gradient_bins,
                    max_min_kinds=FINALIZE_KINDS,
                )
        finally:
            remove_file(backing)


def evaluate_expression(
    expression: str,
    volumes: Sequence[Path],
    output: Path,
    temp_dir: Path | None = None,
    settings: Settings | None = None,
) -> IOResultE[Path]:
    """
    Evaluate ``expression`` over BVF datasets and store the result as a new BVF container.

    Placeholders bind to ``volumes`` in order (``A`` or ``v0`` is the first).
    Inputs narrower than the widest input kind are rescaled into its range
    before evaluation.

    :returns: ``IOSuccess(output)``, or an ``IOFailure`` carrying an
        :class:`~exceptions.ExpressionSyntaxError` (before any file is opened)
        or an :class:`~exceptions.UnmergeableDatasetsError`.
    """
    settings = settings or get_settings()
    return _evaluate_expression(
        expression, list(volumes), Path(output), temp_dir or settings.temp_dir, settings
    )
