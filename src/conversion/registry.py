"""
Ordered registry of converter capabilities.

Registration order is trial order: when several converters claim a file, the
pipeline tries them first to last and keeps the first success.
"""

from pathlib import Path
from typing import NamedTuple

from loguru import logger

from constants import NATIVE_DESCRIPTION, NATIVE_EXTENSION
from converters import (
    ImageConverter,
    NRRDConverter,
    OBJGeoConverter,
    PLYGeoConverter,
    TIFFConverter,
)
from converters.base import AbstractConverter, AbstractGeoConverter
from utils.files import read_first_block


class FormatEntry(NamedTuple):
    extension: str
    description: str
    can_export: bool


class FormatRegistry:
    def __init__(self):
        self._converters: list[AbstractConverter] = []
        self._geo_converters: list[AbstractGeoConverter] = []
        self._fallback: AbstractConverter | None = None

    @property
    def converters(self) -> tuple[AbstractConverter, ...]:
        return tuple(self._converters)

    @property
    def geo_converters(self) -> tuple[AbstractGeoConverter, ...]:
        return tuple(self._geo_converters)

    @property
    def fallback(self) -> AbstractConverter | None:
        return self._fallback

    def register_converter(self, converter: AbstractConverter) -> None:
        self._converters.append(converter)

    def register_geo_converter(self, converter: AbstractGeoConverter) -> None:
        self._geo_converters.append(converter)

    def register_fallback_converter(self, converter: AbstractConverter) -> None:
        """Set the converter tried when no registered converter can read a file."""
        if self._fallback is not None:
            logger.debug(f"Replacing fallback converter {self._fallback!r}")
        self._fallback = converter

    def identify_converters(self, path: Path) -> list[AbstractConverter]:
        """
        Find every converter that claims it can read ``path``.

        The first bytes of the file are read once and shared by all candidates.

        :returns: The claiming converters in registration order, possibly none.
        """
        first_block = read_first_block(path)
        claiming = []
        for converter in self._converters:
            if converter.can_read(path, first_block):
                logger.debug(f"Converter {converter!r} can read {path.name}")
                claiming.append(converter)
        return claiming

    def converter_for_ext(
        self, extension: str, must_support_export: bool = False
    ) -> AbstractConverter | None:
        return next(iter(self.converters_for_ext(extension, must_support_export)), None)

    def converters_for_ext(
        self, extension: str, must_support_export: bool = False
    ) -> list[AbstractConverter]:
        """All converters declaring ``extension``, in registration order."""
        return [
            converter
            for converter in self._converters
            if converter.supports_extension(extension)
            and (converter.can_export_data or not must_support_export)
        ]

    def geo_converter_for_ext(
        self, extension: str, must_support_export: bool = False
    ) -> AbstractGeoConverter | None:
        for converter in self._geo_converters:
            if converter.supports_extension(extension) and (
                converter.can_export_data or not must_support_export
            ):
                return converter
        return None

    def _entries(self, converters, export_only: bool) -> list[FormatEntry]:
        return [
            FormatEntry(extension, converter.description, converter.can_export_data)
            for converter in converters
            if converter.can_export_data or not export_only
            for extension in converter.supported_extensions
        ]

    def format_list(self) -> list[FormatEntry]:
        """Every volume format, the native container first."""
        native = FormatEntry(NATIVE_EXTENSION, NATIVE_DESCRIPTION, True)
        return [native, *self._entries(self._converters, export_only=False)]

    def import_format_list(self) -> list[FormatEntry]:
        """Formats that can be read, including those only the fallback converter reads."""
        fallback = [self._fallback] if self._fallback is not None else []
        return [*self.format_list(), *self._entries(fallback, export_only=False)]

    def export_format_list(self) -> list[FormatEntry]:
        native = FormatEntry(NATIVE_EXTENSION, NATIVE_DESCRIPTION, True)
        return [native, *self._entries(self._converters, export_only=True)]

    def geo_format_list(self) -> list[FormatEntry]:
        return self._entries(self._geo_converters, export_only=False)

    def geo_export_format_list(self) -> list[FormatEntry]:
        return self._entries(self._geo_converters, export_only=True)


def default_registry() -> FormatRegistry:
    """A registry with every shipped converter, as set up at process start."""
    registry = FormatRegistry()
    registry.register_converter(NRRDConverter())
    registry.register_converter(TIFFConverter())
    registry.register_fallback_converter(ImageConverter())
    registry.register_geo_converter(PLYGeoConverter())
    registry.register_geo_converter(OBJGeoConverter())
    return registry
