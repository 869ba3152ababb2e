import numpy as np
import pytest

from expressions import compile_expression, evaluate


def run(text: str, *volumes, dtype=np.float32) -> np.ndarray:
    arrays = [np.asarray(volume) for volume in volumes]
    output = np.empty(arrays[0].shape if arrays else (3,), dtype=dtype)
    return evaluate(compile_expression(text), arrays, output)


class TestEvaluate:
    def test_arithmetic_over_volumes(self):
        result = run("A * 2 + B", np.array([1, 2, 3]), np.array([10, 20, 30]))

        np.testing.assert_array_equal(result, [12, 24, 36])

    def test_constant_expression_fills_the_output(self):
        np.testing.assert_array_equal(run("1 + 2"), [3, 3, 3])

    def test_comparisons_yield_one_or_zero(self):
        result = run("A >= 2", np.array([1, 2, 3]))

        np.testing.assert_array_equal(result, [0, 1, 1])

    def test_conditional_selects_per_sample(self):
        result = run("A > B ? A : -B", np.array([5, 1, 7]), np.array([3, 4, 7]))

        np.testing.assert_array_equal(result, [5, -4, -7])

    def test_functions(self):
        result = run("max(abs(A), B)", np.array([-5, 1, -2]), np.array([3, 3, 3]))

        np.testing.assert_array_equal(result, [5, 3, 3])

    @pytest.mark.parametrize(
        ("dtype", "expected"),
        [
            pytest.param(np.float32, [2.5, -2.5, 0.0], id="float division"),
            pytest.param(np.int16, [2, -2, 0], id="integer division truncates"),
        ],
    )
    def test_division(self, dtype, expected):
        result = run("A / B", np.array([5, -5, 9]), np.array([2, 2, 0]), dtype=dtype)

        np.testing.assert_array_equal(result, expected)

    def test_integer_output_is_rounded_and_clamped(self):
        result = run("A * 1.5", np.array([1, 3, 100, -4]), dtype=np.uint8)

        np.testing.assert_array_equal(result, [2, 4, 150, 0])
        assert result.dtype == np.uint8

    def test_overflow_saturates(self):
        result = run("A * A", np.array([300, -300]), dtype=np.int16)

        np.testing.assert_array_equal(result, [32767, 32767])

    def test_evaluation_writes_in_place(self):
        output = np.zeros((2, 2), np.float32)

        returned = evaluate(compile_expression("A + 1"), [np.ones((2, 2))], output)

        assert returned is output
        np.testing.assert_array_equal(output, 2)

    def test_float_overflow_saturates_to_finite_values(self):
        largest = np.finfo(np.float32).max

        result = run("A * A - B", np.array([1e30, 1e30], np.float32), np.array([0, -1e38], np.float32))

        np.testing.assert_array_equal(result, [largest, largest])
        assert np.isfinite(result).all()

    def test_not_a_number_is_stored_as_zero(self):
        result = run("A * 0", np.array([np.inf, 1.0]))

        np.testing.assert_array_equal(result, [0, 0])
