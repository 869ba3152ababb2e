"""
Error taxonomy of the conversion engine.

Every failure that leaves a pipeline entry point is one of the exceptions
below, carried inside an ``IOFailure``. Callers that need to tell causes
apart inspect ``error.kind`` instead of the message text.
"""

from enum import StrEnum
from typing import ClassVar


class ErrorKind(StrEnum):
    INCOMPATIBLE_INPUT = "incompatible input"
    PARSE = "parse"
    IO = "io"
    NEGOTIATION = "negotiation"
    UNSUPPORTED_KIND = "unsupported numeric kind"

    @property
    def is_recoverable(self) -> bool:
        """Whether the caller may move on to the next candidate converter."""
        return self is ErrorKind.NEGOTIATION


class VolumeIOError(Exception):
    """Base class for all errors raised by the conversion engine."""

    kind: ClassVar[ErrorKind] = ErrorKind.IO

    def __init__(self, message: str):
        super().__init__(message)


class IncompatibleInputError(VolumeIOError):
    """Raised when inputs cannot be combined or converted as requested."""

    kind = ErrorKind.INCOMPATIBLE_INPUT


class UnmergeableDatasetsError(IncompatibleInputError):
    """Raised when datasets differ in structure and cannot be processed together."""


class UnknownFormatError(IncompatibleInputError):
    """Raised when no converter is registered for an extension."""


class UnsupportedNumericKindError(VolumeIOError):
    """Raised when an operation has no implementation for a numeric kind."""

    kind = ErrorKind.UNSUPPORTED_KIND


class ExpressionSyntaxError(VolumeIOError):
    """Raised when an expression cannot be parsed."""

    kind = ErrorKind.PARSE

    def __init__(self, message: str, position: int | None = None):
        self.position = position
        if position is not None:
            message = f"{message} (at offset {position})"
        super().__init__(message)


class ConversionIOError(VolumeIOError):
    """Raised when reading or writing an intermediate or target file fails."""

    kind = ErrorKind.IO


class ConverterNegotiationError(VolumeIOError):
    """Raised when a converter claims a file but cannot convert it."""

    kind = ErrorKind.NEGOTIATION


class DatasetOpenError(VolumeIOError):
    """Raised when a dataset or mesh file cannot be opened."""

    kind = ErrorKind.IO
