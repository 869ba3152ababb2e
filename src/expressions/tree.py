"""
Expression trees evaluated element-wise over brick buffers.

Every node evaluates to a float64 array broadcastable to the brick shape.
Comparisons yield 1.0 for true and 0.0 for false; a conditional picks its
branch wherever the condition is non-zero.
"""

from collections.abc import Callable, Sequence
from dataclasses import dataclass

import numpy as np

_COMPARISONS: dict[str, Callable[[np.ndarray, np.ndarray], np.ndarray]] = {
    "<": np.less,
    "<=": np.less_equal,
    ">": np.greater,
    ">=": np.greater_equal,
    "==": np.equal,
    "!=": np.not_equal,
}

FUNCTIONS: dict[str, tuple[int, Callable[..., np.ndarray]]] = {
    "min": (2, np.minimum),
    "max": (2, np.maximum),
    "abs": (1, np.abs),
}


@dataclass(frozen=True)
class Node:
    def evaluate(self, volumes: Sequence[np.ndarray], integral: bool) -> np.ndarray:
        """
        :param volumes: One brick buffer per placeholder, all of the same shape.
        :param integral: Whether the output samples are integers, which makes
            division truncate toward zero.
        """
        raise NotImplementedError

    def volume_indices(self) -> set[int]:
        return set()


@dataclass(frozen=True)
class Constant(Node):
    value: float

    def evaluate(self, volumes, integral):
        return np.float64(self.value)


@dataclass(frozen=True)
class Volume(Node):
    index: int

    def evaluate(self, volumes, integral):
        return np.asarray(volumes[self.index], dtype=np.float64)

    def volume_indices(self) -> set[int]:
        return {self.index}


@dataclass(frozen=True)
class Negate(Node):
    operand: Node

    def evaluate(self, volumes, integral):
        return -self.operand.evaluate(volumes, integral)

    def volume_indices(self) -> set[int]:
        return self.operand.volume_indices()


@dataclass(frozen=True)
class Binary(Node):
    operator: str
    left: Node
    right: Node

    def evaluate(self, volumes, integral):
        left = self.left.evaluate(volumes, integral)
        right = self.right.evaluate(volumes, integral)
        match self.operator:
            case "+":
                return left + right
            case "-":
                return left - right
            case "*":
                return left * right
            case "/":
                return _divide(left, right, integral)
            case operator if operator in _COMPARISONS:
                return _COMPARISONS[operator](left, right).astype(np.float64)
        raise ValueError(f"Unknown operator '{self.operator}'")

    def volume_indices(self) -> set[int]:
        return self.left.volume_indices() | self.right.volume_indices()


@dataclass(frozen=True)
class Conditional(Node):
    condition: Node
    if_true: Node
    if_false: Node

    def evaluate(self, volumes, integral):
        return np.where(
            self.condition.evaluate(volumes, integral) != 0,
            self.if_true.evaluate(volumes, integral),
            self.if_false.evaluate(volumes, integral),
        )

    def volume_indices(self) -> set[int]:
        return (
            self.condition.volume_indices()
            | self.if_true.volume_indices()
            | self.if_false.volume_indices()
        )


@dataclass(frozen=True)
class Call(Node):
    function: str
    arguments: tuple[Node, ...]

    def evaluate(self, volumes, integral):
        _, function = FUNCTIONS[self.function]
        return function(*(argument.evaluate(volumes, integral) for argument in self.arguments))

    def volume_indices(self) -> set[int]:
        return set().union(*(argument.volume_indices() for argument in self.arguments))


def _divide(left: np.ndarray, right: np.ndarray, integral: bool) -> np.ndarray:
    # x / 0 is defined as 0
    left, right = np.broadcast_arrays(np.asarray(left, np.float64), np.asarray(right, np.float64))
    quotient = np.zeros(left.shape, dtype=np.float64)
    np.divide(left, right, out=quotient, where=right != 0)
    return np.trunc(quotient) if integral else quotient


def evaluate(tree: Node, volumes: Sequence[np.ndarray], output: np.ndarray) -> np.ndarray:
    """
    Evaluate ``tree`` over the input bricks into ``output``, in place.

    Results are clamped to the finite range of the output dtype, with NaN
    stored as 0. Integer outputs are rounded to the nearest integer first.

    :returns: ``output``, for convenience.
    """
    integral = not np.issubdtype(output.dtype, np.floating)
    with np.errstate(over="ignore", invalid="ignore"):
        values = np.nan_to_num(np.broadcast_to(tree.evaluate(volumes, integral), output.shape))
        if integral:
            info = np.iinfo(output.dtype)
            values = np.rint(values)
        else:
            info = np.finfo(output.dtype)
        values = np.clip(values, info.min, info.max)
        output[...] = values.astype(output.dtype)
    return output
