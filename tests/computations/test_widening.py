import numpy as np
import pytest
from hypothesis import given
from hypothesis import strategies as st

from computations.widening import interpolate, is_narrowing, typed_read
from container_models.numeric_kind import FLOAT32, INT8, INT16, UINT8, UINT16, UINT32
from exceptions import IncompatibleInputError


class TestIsNarrowing:
    @pytest.mark.parametrize(
        ("source", "destination", "expected"),
        [
            pytest.param(UINT8, UINT16, False, id="wider"),
            pytest.param(UINT16, UINT8, True, id="fewer bits"),
            pytest.param(FLOAT32, UINT32, True, id="float to int"),
            pytest.param(INT8, UINT16, True, id="signed to unsigned"),
            pytest.param(UINT16, FLOAT32, False, id="int to float"),
        ],
    )
    def test_is_narrowing(self, source, destination, expected):
        assert is_narrowing(source, destination) is expected


class TestTypedRead:
    def test_same_kind_is_read_verbatim(self):
        data = np.array([3, 100, 65535], dtype=np.uint16)

        result = typed_read(data, UINT16, (0.0, 1.0), UINT16)

        np.testing.assert_array_equal(result, data)
        assert result.dtype == np.uint16

    def test_wider_destination_is_rescaled_to_full_range(self):
        data = np.array([10, 20, 30], dtype=np.uint8)

        result = typed_read(data, UINT8, (10.0, 30.0), UINT16)

        np.testing.assert_array_equal(result, [0, 32768, 65535])
        assert result.dtype == np.uint16

    def test_narrowing_is_an_error(self):
        with pytest.raises(IncompatibleInputError):
            typed_read(np.zeros(3, np.int16), INT16, (0.0, 1.0), UINT16)

    def test_degenerate_range_maps_to_zero(self):
        result = interpolate(np.full(4, 7, np.uint8), (7.0, 7.0), UINT16)

        np.testing.assert_array_equal(result, 0)

    @given(
        st.lists(st.integers(0, 255), min_size=2, max_size=50),
    )
    def test_rescaling_is_monotonic(self, values: list[int]):
        # Arrange
        data = np.array(sorted(values), dtype=np.uint8)
        value_range = (float(data.min()), float(data.max()))

        # Act
        result = typed_read(data, UINT8, value_range, UINT16)

        # Assert
        assert (np.diff(result.astype(np.int64)) >= 0).all()
        if value_range[1] > value_range[0]:
            assert result[0] == 0
            assert result[-1] == UINT16.max_value

    @given(st.floats(-1e6, 1e6), st.floats(1.0, 1e6))
    def test_float_destination_stays_in_range(self, low: float, width: float):
        data = np.array([low, low + width / 2, low + width], dtype=np.float64)

        result = interpolate(data, (low, low + width), FLOAT32)

        assert result.dtype == np.float32
        assert np.isfinite(result).all()
        assert result[0] == 0.0
