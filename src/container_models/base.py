from __future__ import annotations
from collections.abc import Callable, Sequence
from functools import partial
from math import prod
from operator import add, floordiv, mul, sub
from typing import Annotated, Iterable, NamedTuple

from numpy import array, float32, floating, number, uint32
from numpy.typing import DTypeLike, NDArray
from pydantic import AfterValidator, BaseModel, BeforeValidator, ConfigDict, PlainSerializer


class Triple[T](NamedTuple):
    """An (x, y, z) triple, used for domain sizes, brick indices and aspect ratios."""

    x: T
    y: T
    z: T

    def map(self, func: Callable, *, other: Iterable[T] | None = None) -> Triple[T]:
        if other is not None:
            return Triple(*tuple(map(func, self, other)))
        return Triple(*tuple(map(func, self)))

    def _apply(self, op: Callable, other: Triple[T] | T) -> Triple[T]:
        if isinstance(other, tuple):
            return Triple(*map(op, self, other))
        return Triple(op(self.x, other), op(self.y, other), op(self.z, other))

    def __add__(self, other: Triple[T] | T) -> Triple[T]:  # type: ignore[override]
        return self._apply(add, other)

    def __sub__(self, other: Triple[T] | T) -> Triple[T]:
        return self._apply(sub, other)

    def __mul__(self, other: Triple[T] | T) -> Triple[T]:  # type: ignore[override]
        return self._apply(mul, other)

    def __floordiv__(self, other: Triple[T] | T) -> Triple[T]:
        return self._apply(floordiv, other)

    @property
    def volume(self) -> T:
        """Product of the three entries, e.g. the voxel count of a domain size."""
        return prod(self)

    @property
    def zyx(self) -> tuple[T, T, T]:
        """The entries in numpy (C-order) axis order."""
        return self.z, self.y, self.x


type DomainSize = Triple[int]
type BrickIndex = Triple[int]
type Aspect = Triple[float]


class ConfigBaseModel(BaseModel):
    model_config = ConfigDict(
        arbitrary_types_allowed=True,
        validate_assignment=True,
        extra="forbid",
        regex_engine="rust-regex",
    )


def serialize_ndarray[T: number](array_: NDArray[T]) -> list[T]:
    """Serialize numpy array to a Python list for JSON serialization."""
    return array_.tolist()


def coerce_to_array[T: number](
    dtype: DTypeLike, value: Sequence[T] | NDArray[T] | None
) -> NDArray[T] | None:
    """
    Coerce input to dtype numpy array.

    Handles JSON deserialization where Python creates int64 integers by default.
    """
    if isinstance(value, Sequence):
        try:
            return array(value, dtype=dtype)
        except OverflowError as ofe:
            raise ValueError("Array's value(s) out of range") from ofe
    if value is not None and value.dtype != dtype:
        return value.astype(dtype)
    return value


def validate_shape(n_dims: int, value: NDArray) -> NDArray:
    if (array_dims := len(value.shape)) != n_dims:
        raise ValueError(
            f"Array shape mismatch, expected {n_dims} dimension(s), but got {array_dims}"
        )
    return value


def validate_columns(n_columns: int, value: NDArray) -> NDArray:
    if value.size and value.shape[1] != n_columns:
        raise ValueError(
            f"Array column mismatch, expected {n_columns} column(s), but got {value.shape[1]}"
        )
    return value


type FloatArray = Annotated[
    NDArray[floating],
    BeforeValidator(partial(coerce_to_array, float32)),
    PlainSerializer(serialize_ndarray),
]
type IndexArray = Annotated[
    NDArray[uint32],
    BeforeValidator(partial(coerce_to_array, uint32)),
    PlainSerializer(serialize_ndarray),
]

# Shape: (N, 3)
type VertexArray = Annotated[
    FloatArray,
    AfterValidator(partial(validate_shape, 2)),
    AfterValidator(partial(validate_columns, 3)),
]
# Shape: (N, 4), RGBA in [0, 1]
type ColorArray = Annotated[
    FloatArray,
    AfterValidator(partial(validate_shape, 2)),
    AfterValidator(partial(validate_columns, 4)),
]
# Shape: (M, 3), triangle corner indices
type TriangleArray = Annotated[
    IndexArray,
    AfterValidator(partial(validate_shape, 2)),
    AfterValidator(partial(validate_columns, 3)),
]
