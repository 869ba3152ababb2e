from enum import StrEnum
from sys import float_info
from typing import Final

NATIVE_EXTENSION: Final[str] = "bvf"
NATIVE_DESCRIPTION: Final[str] = "Bricked Volume Format"

BVF_MAGIC: Final[bytes] = b"BVF\x00DATA"
BVF_VERSION: Final[int] = 1

FIRST_BLOCK_SIZE: Final[int] = 512
"""Number of leading bytes handed to converters when sniffing a file."""

MIN_BRICK_SIZE: Final[int] = 32
DEFAULT_BRICK_SIZE: Final[int] = 256
DEFAULT_BRICK_OVERLAP: Final[int] = 2

DEFAULT_HISTOGRAM_BINS: Final[int] = 256
DEFAULT_GRADIENT_BINS: Final[int] = 256

# min/max of gradients are not computed
GRADIENT_MIN_SENTINEL: Final[float] = -float_info.max
GRADIENT_MAX_SENTINEL: Final[float] = float_info.max

MERGED_TITLE: Final[str] = "Merged data from multiple files"


class StackFormat(StrEnum):
    DICOM = "DICOM"
    IMAGE = "IMAGE"


class ElementSemantic(StrEnum):
    UNDEFINED = "undefined"
    RED = "red"
    RGBA = "rgba"
