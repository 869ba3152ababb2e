from pathlib import Path

import numpy as np

from container_models.base import DomainSize, Triple
from exceptions import ConversionIOError


def _halve(data: np.ndarray, axis: int) -> np.ndarray:
    """Sum neighbouring pairs along ``axis``; an odd last sample pairs with itself."""
    if data.shape[axis] % 2:
        last = np.take(data, [-1], axis=axis)
        data = np.concatenate([data, last], axis=axis)
    even = np.take(data, np.arange(0, data.shape[axis], 2), axis=axis)
    odd = np.take(data, np.arange(1, data.shape[axis], 2), axis=axis)
    return even + odd


def downsample_to_file(source: np.ndarray, target: Path) -> DomainSize:
    """
    Halve a ``(z, y, x, components)`` volume along every axis by 2x2x2 averaging.

    The volume is streamed two z-slices at a time into a raw file of the same
    dtype. Odd axes round up, repeating the last sample.

    :returns: The domain size of the downsampled volume.
    """
    depth, height, width, components = source.shape
    size = Triple(-(-width // 2), -(-height // 2), -(-depth // 2))
    try:
        output = np.memmap(
            target, dtype=source.dtype, mode="w+", shape=(*size.zyx, components)
        )
    except OSError as error:
        raise ConversionIOError(f"Unable to create {target}: {error}") from error
    is_float = np.issubdtype(source.dtype, np.floating)
    for z in range(size.z):
        slab = np.asarray(source[2 * z : 2 * z + 2], dtype=np.float64)
        summed = _halve(_halve(_halve(slab, 0), 1), 2)
        mean = summed / 8.0
        if not is_float:
            mean = np.rint(mean)
        output[z] = mean[0].astype(source.dtype)
    output.flush()
    del output
    return size
