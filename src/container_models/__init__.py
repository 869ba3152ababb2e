"""
Data container models passed between the conversion stages.

Descriptors are pydantic models, validated on construction. Numeric storage is
described by :class:`NumericKind`, never by loose ``(bits, signed, float)``
tuples.
"""

from .base import Triple
from .descriptors import MergeInput, RangeInfo, RawVolume, StackDescriptor, StackElement
from .mesh import Mesh
from .numeric_kind import NumericKind, numeric_dispatch


__all__ = [
    "MergeInput",
    "Mesh",
    "NumericKind",
    "RangeInfo",
    "RawVolume",
    "StackDescriptor",
    "StackElement",
    "Triple",
    "numeric_dispatch",
]
