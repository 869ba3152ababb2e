"""
Numeric kinds and the generic dispatch helper.

A :class:`NumericKind` describes how one sample is stored: its bit width,
whether it is signed and whether it is a floating point number. Every
algorithm that has to behave differently per storage type asks
:func:`numeric_dispatch` for a handler instead of branching on the kind
itself.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from typing import Literal, Self

import numpy as np
from numpy.typing import DTypeLike
from pydantic import BaseModel, ConfigDict, model_validator

from exceptions import UnsupportedNumericKindError

type BitWidth = Literal[8, 16, 32, 64]


class NumericKind(BaseModel):
    bit_width: BitWidth
    signed: bool
    is_float: bool = False

    model_config = ConfigDict(frozen=True, extra="forbid")

    @model_validator(mode="after")
    def _check_combination(self) -> Self:
        if self.is_float and not self.signed:
            raise ValueError("unsigned floating point data is not supported")
        if self.is_float and self.bit_width not in (32, 64):
            raise ValueError(f"no {self.bit_width} bit floating point type")
        return self

    def __str__(self) -> str:
        if self.is_float:
            return f"float{self.bit_width}"
        return f"{'int' if self.signed else 'uint'}{self.bit_width}"

    @property
    def byte_width(self) -> int:
        return self.bit_width // 8

    @property
    def dtype(self) -> np.dtype:
        """The native-endian numpy dtype for this kind."""
        return np.dtype(str(self))

    @property
    def max_value(self) -> float:
        """Largest representable value, the ceiling for range rescaling."""
        if self.is_float:
            return float(np.finfo(self.dtype).max)
        return int(np.iinfo(self.dtype).max)

    @property
    def min_value(self) -> float:
        if self.is_float:
            return float(np.finfo(self.dtype).min)
        return int(np.iinfo(self.dtype).min)

    @classmethod
    def from_dtype(cls, dtype: DTypeLike) -> NumericKind:
        """
        Describe a numpy dtype as a numeric kind.

        :raises UnsupportedNumericKindError: for dtypes that are neither integer
            nor float32/float64 (e.g. bool, complex, float16).
        """
        dtype = np.dtype(dtype)
        if dtype.kind in "iu":
            return cls(bit_width=dtype.itemsize * 8, signed=dtype.kind == "i")
        if dtype.kind == "f" and dtype.itemsize in (4, 8):
            return cls(bit_width=dtype.itemsize * 8, signed=True, is_float=True)
        raise UnsupportedNumericKindError(f"No numeric kind for dtype {dtype}")

    @classmethod
    def widest(cls, kinds: Iterable[NumericKind]) -> NumericKind:
        """
        Pointwise widest kind: max bit width, OR of float-ness, OR of signed-ness.

        Float-ness forces at least 32 bits, since there is no narrower float.
        """
        kinds = list(kinds)
        if not kinds:
            raise ValueError("cannot widen an empty list of numeric kinds")
        is_float = any(kind.is_float for kind in kinds)
        bit_width = max(kind.bit_width for kind in kinds)
        if is_float:
            bit_width = max(bit_width, 32)
        return cls(
            bit_width=bit_width,
            signed=is_float or any(kind.signed for kind in kinds),
            is_float=is_float,
        )


UINT8 = NumericKind(bit_width=8, signed=False)
INT8 = NumericKind(bit_width=8, signed=True)
UINT16 = NumericKind(bit_width=16, signed=False)
INT16 = NumericKind(bit_width=16, signed=True)
UINT32 = NumericKind(bit_width=32, signed=False)
INT32 = NumericKind(bit_width=32, signed=True)
UINT64 = NumericKind(bit_width=64, signed=False)
INT64 = NumericKind(bit_width=64, signed=True)
FLOAT32 = NumericKind(bit_width=32, signed=True, is_float=True)
FLOAT64 = NumericKind(bit_width=64, signed=True, is_float=True)

ALL_KINDS: tuple[NumericKind, ...] = (
    UINT8,
    INT8,
    UINT16,
    INT16,
    UINT32,
    INT32,
    UINT64,
    INT64,
    FLOAT32,
    FLOAT64,
)


def numeric_dispatch[R](
    kind: NumericKind,
    handler: Callable[[np.dtype], R],
    *,
    supported: Iterable[NumericKind] = ALL_KINDS,
    operation: str = "operation",
) -> R:
    """
    Run ``handler`` instantiated for the numpy dtype of ``kind``.

    :param kind: The numeric kind of the data to process.
    :param handler: Called with the native-endian numpy dtype of ``kind``.
    :param supported: The kinds the operation is implemented for.
    :param operation: Name of the operation, used in the error message.
    :returns: Whatever the handler returns.
    :raises UnsupportedNumericKindError: if ``kind`` is not in ``supported``.
    """
    if kind not in tuple(supported):
        raise UnsupportedNumericKindError(
            f"{operation} is not implemented for {kind} data"
        )
    return handler(kind.dtype)
