"""Typed reads that widen brick data into a destination numeric kind."""

import numpy as np

from container_models.numeric_kind import NumericKind
from exceptions import IncompatibleInputError


def is_narrowing(source: NumericKind, destination: NumericKind) -> bool:
    """Whether ``destination`` cannot hold every value class of ``source``."""
    return (
        destination.bit_width < source.bit_width
        or (source.is_float and not destination.is_float)
        or (source.signed and not destination.signed)
    )


def interpolate(
    data: np.ndarray, value_range: tuple[float, float], destination: NumericKind
) -> np.ndarray:
    """
    Linearly rescale ``data`` from its value range into the full range of ``destination``.

    ``out = (in - range_min) * (destination_max / (range_max - range_min))``,
    rounded to the nearest integer for integer destinations. A degenerate range
    maps everything to zero.
    """
    low, high = value_range
    if high <= low:
        return np.zeros(data.shape, dtype=destination.dtype)
    with np.errstate(over="ignore", invalid="ignore"):
        scaled = (data.astype(np.float64) - low) * (destination.max_value / (high - low))
        if not destination.is_float:
            scaled = np.rint(scaled)
        return np.clip(scaled, destination.min_value, destination.max_value).astype(
            destination.dtype
        )


def typed_read(
    data: np.ndarray,
    source: NumericKind,
    value_range: tuple[float, float],
    destination: NumericKind,
) -> np.ndarray:
    """
    Read brick data as ``destination`` samples.

    Data already of the destination kind is passed through verbatim, wider
    destinations get the data rescaled by :func:`interpolate`.

    :raises IncompatibleInputError: when the destination would narrow the source.
    """
    if source == destination:
        return np.asarray(data, dtype=destination.dtype)
    if is_narrowing(source, destination):
        raise IncompatibleInputError(
            f"Cannot read {source} data as narrower {destination} data"
        )
    return interpolate(data, value_range, destination)
