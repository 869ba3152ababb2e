"""
Transient descriptors handed between the pipeline stages.

All of these live for a single pipeline call. Descriptors that own a file on
disk (:class:`RawVolume`, :class:`MergeInput`) release it through
:meth:`release`, which only warns when the file cannot be removed.
"""

from __future__ import annotations

from io import BytesIO
from pathlib import Path

import numpy as np
from PIL import Image
from pydantic import Field

from constants import ElementSemantic, StackFormat
from utils.files import remove_file

from .base import Aspect, ConfigBaseModel, DomainSize, Triple
from .numeric_kind import NumericKind


class RangeInfo(ConfigBaseModel):
    """Dataset statistics that do not require materializing the data."""

    value_range: tuple[float, float]
    numeric_kind: NumericKind
    domain_size: DomainSize
    aspect: Aspect = Triple(1.0, 1.0, 1.0)


class RawVolume(ConfigBaseModel):
    """
    A volume as an anonymous raw sample stream, the hub format of every conversion.

    ``convert_endianness`` is True when the samples in ``raw_path`` are stored
    in the opposite byte order of the running machine.
    """

    raw_path: Path
    header_skip: int = Field(default=0, ge=0)
    kind: NumericKind
    component_count: int = Field(default=1, gt=0)
    convert_endianness: bool = False
    size: DomainSize
    aspect: Aspect = Triple(1.0, 1.0, 1.0)
    title: str = ""
    semantic: ElementSemantic = ElementSemantic.UNDEFINED
    owns_temp: bool = False

    @property
    def stored_dtype(self) -> np.dtype:
        """The dtype of the samples as they are laid out in ``raw_path``."""
        dtype = self.kind.dtype
        return dtype.newbyteorder() if self.convert_endianness else dtype

    def memmap(self) -> np.memmap:
        """Map the samples as ``(z, y, x, components)`` without copying."""
        return np.memmap(
            self.raw_path,
            dtype=self.stored_dtype,
            mode="r",
            offset=self.header_skip,
            shape=(*self.size.zyx, self.component_count),
        )

    def release(self) -> None:
        if self.owns_temp:
            remove_file(self.raw_path)


class MergeInput(ConfigBaseModel):
    """One participant of a merge; ``owns_temp_file`` marks intermediates to delete."""

    source_path: Path
    header_skip: int = Field(default=0, ge=0)
    scale: float = 1.0
    bias: float = 0.0
    owns_temp_file: bool = False

    @property
    def is_identity(self) -> bool:
        return self.scale == 1.0 and self.bias == 0.0

    def release(self) -> None:
        if self.owns_temp_file:
            remove_file(self.source_path)


class StackElement(ConfigBaseModel):
    """One 2D slice of a stack, located by its payload inside ``path``."""

    path: Path
    data_offset: int = Field(default=0, ge=0)
    data_size: int | None = Field(default=None, ge=0)

    def read_payload(self) -> bytes:
        with open(self.path, "rb") as file:
            file.seek(self.data_offset)
            return file.read(-1 if self.data_size is None else self.data_size)

    def decode_image(self, payload: bytes | None = None) -> np.ndarray:
        """
        Decode the element with Pillow.

        Used for plain image stacks and for JPEG-encoded DICOM payloads.

        :returns: A ``(height, width[, components])`` array in the image's own dtype.
        """
        source = BytesIO(payload) if payload is not None else self.path
        with Image.open(source) as image:
            if image.mode == "P":
                image = image.convert("RGBA")
            return np.asarray(image)


class StackDescriptor(ConfigBaseModel):
    """An ordered sequence of 2D elements forming one logical 3D stack."""

    file_type: StackFormat
    description: str = ""
    elements: list[StackElement] = Field(min_length=1)
    size: DomainSize
    aspect: Aspect = Triple(1.0, 1.0, 1.0)
    bit_depth: int = Field(default=8)
    is_big_endian: bool = False
    component_count: int = Field(default=1, gt=0)
    is_jpeg_encoded: bool = False
