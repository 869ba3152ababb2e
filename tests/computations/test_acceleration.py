import numpy as np
import pytest

from bvf.layout import BrickLayout
from computations.acceleration import (
    compute_histogram_1d,
    compute_histogram_2d,
    compute_max_min,
)
from constants import GRADIENT_MAX_SENTINEL, GRADIENT_MIN_SENTINEL
from container_models.base import Triple
from container_models.numeric_kind import FLOAT32, INT64, UINT64
from exceptions import UnsupportedNumericKindError


@pytest.fixture
def layout() -> BrickLayout:
    return BrickLayout(domain_size=Triple(40, 36, 30), max_brick_size=32, overlap=2)


class SpyReader:
    """Hands out bricks filled with their own visiting position and records the order."""

    def __init__(self, layout: BrickLayout, dtype=np.float32):
        self.layout = layout
        self.dtype = dtype
        self.visited: list[tuple[int, int]] = []

    def __call__(self, lod: int, brick: int) -> np.ndarray:
        self.visited.append((lod, brick))
        shape = (*self.layout.extent(lod, brick).stored_size.zyx, 1)
        return np.full(shape, 10 * lod + brick, dtype=self.dtype)


class TestComputeMaxMin:
    def test_bricks_are_visited_in_ascending_storage_order(self, layout: BrickLayout):
        reader = SpyReader(layout)

        compute_max_min(layout, reader, FLOAT32)

        assert reader.visited == [(0, brick) for brick in range(8)] + [(1, 0)]

    def test_one_row_per_brick_with_gradient_sentinels(self, layout: BrickLayout):
        block = compute_max_min(layout, SpyReader(layout), FLOAT32)

        assert block.bricks_per_lod == [8, 1]
        assert block.values.shape == (9, 4)
        assert block.brick_range(0, 5) == (5.0, 5.0)
        assert block.brick_range(1, 0) == (10.0, 10.0)
        assert (block.values[:, 2] == GRADIENT_MIN_SENTINEL).all()
        assert (block.values[:, 3] == GRADIENT_MAX_SENTINEL).all()

    def test_running_maximum(self, layout: BrickLayout):
        block = compute_max_min(layout, SpyReader(layout), FLOAT32)

        assert block.max_value == 10.0
        assert block.value_range == (0.0, 10.0)

    @pytest.mark.parametrize("kind", [INT64, UINT64], ids=str)
    def test_64_bit_integers(self, layout: BrickLayout, kind):
        block = compute_max_min(layout, SpyReader(layout, kind.dtype), kind)

        assert block.value_range == (0.0, 10.0)
        assert block.values.dtype == np.float64

    def test_kinds_outside_the_supported_set_are_rejected(self, layout: BrickLayout):
        with pytest.raises(UnsupportedNumericKindError, match="int64"):
            compute_max_min(layout, SpyReader(layout, np.int64), INT64, supported=(FLOAT32,))


class TestHistograms:
    def test_histogram_1d_counts_inner_regions_of_finest_lod(self, layout: BrickLayout):
        reader = SpyReader(layout, np.uint8)

        histogram = compute_histogram_1d(layout, reader, (0.0, 7.0), 8)

        assert int(histogram.counts.sum()) == 40 * 36 * 30
        # brick 0 holds 28^3 inner voxels of value 0
        assert int(histogram.counts[0]) == 28**3
        assert all(lod == 0 for lod, _ in reader.visited)

    def test_histogram_2d_of_constant_bricks_has_no_gradient(self, layout: BrickLayout):
        histogram = compute_histogram_2d(
            layout, SpyReader(layout, np.uint8), (0.0, 7.0), 7.0, 8, 4
        )

        assert histogram.counts.shape == (8, 4)
        assert int(histogram.counts[:, 0].sum()) == 40 * 36 * 30
        assert histogram.max_gradient == 0.0

    def test_histogram_2d_sees_gradients_of_a_ramp(self):
        # Arrange
        layout = BrickLayout(domain_size=Triple(8, 8, 8), max_brick_size=32, overlap=2)
        ramp = np.broadcast_to(np.arange(8, dtype=np.uint8), (8, 8, 8))[..., None]

        # Act
        histogram = compute_histogram_2d(
            layout, lambda lod, brick: ramp, (0.0, 7.0), 7.0, 8, 4
        )

        # Assert
        assert histogram.max_gradient == pytest.approx(1.0)
        assert int(histogram.counts.sum()) == 8**3
