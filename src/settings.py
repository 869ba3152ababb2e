"""Engine settings and configuration."""

from __future__ import annotations

import tempfile
from functools import lru_cache
from pathlib import Path
from typing import Annotated, Self

from loguru import logger
from pydantic import DirectoryPath, Field, computed_field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from constants import (
    DEFAULT_BRICK_OVERLAP,
    DEFAULT_BRICK_SIZE,
    DEFAULT_GRADIENT_BINS,
    DEFAULT_HISTOGRAM_BINS,
)


def _create_default_temp_dir() -> Path:
    """
    Create and return the default directory for intermediate files.

    :return: The created temporary directory path.
    :raises:
        OSError: If directory creation fails.
        PermissionError: If the process lacks permissions to create the directory.
    """
    temp_dir = Path(tempfile.gettempdir()) / "brickio"
    try:
        temp_dir.mkdir(parents=True, exist_ok=True)
        logger.info(f"Default temp directory created: {temp_dir}")
        return temp_dir
    except (OSError, PermissionError) as e:
        logger.error(f"Failed to create default temp directory {temp_dir}: {e}")
        raise


class Settings(BaseSettings):
    """
    Engine configuration settings.

    Settings can be configured via:

    1. Environment variables (e.g., BRICKIO_MAX_BRICK_SIZE=128)
    2. .env file in the project root
    3. Default values defined below

    Explicit arguments passed to a pipeline call always win over these values.

    .. rubric:: Examples

    Use smaller bricks with a wider overlap::

        export BRICKIO_MAX_BRICK_SIZE=128
        export BRICKIO_BRICK_OVERLAP=4
    """

    temp_dir: Annotated[
        DirectoryPath,
        Field(
            default_factory=_create_default_temp_dir,
            alias="TEMP_DIR",
            description="Directory for intermediate files",
        ),
    ]

    max_brick_size: Annotated[
        int,
        Field(
            default=DEFAULT_BRICK_SIZE,
            alias="MAX_BRICK_SIZE",
            description="Edge length of a brick including its overlap, in voxels",
            gt=0,
        ),
    ]

    brick_overlap: Annotated[
        int,
        Field(
            default=DEFAULT_BRICK_OVERLAP,
            alias="BRICK_OVERLAP",
            description="Voxels shared with each neighbouring brick",
            ge=0,
        ),
    ]

    histogram_bins: Annotated[
        int,
        Field(default=DEFAULT_HISTOGRAM_BINS, alias="HISTOGRAM_BINS", gt=1),
    ]
    gradient_bins: Annotated[
        int,
        Field(default=DEFAULT_GRADIENT_BINS, alias="GRADIENT_BINS", gt=1),
    ]

    quantize_to_8bit: Annotated[
        bool,
        Field(
            default=False,
            alias="QUANTIZE_TO_8BIT",
            description="Quantize wider data to 8 bit when building containers",
        ),
    ]

    model_config = SettingsConfigDict(
        env_prefix="BRICKIO_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        frozen=True,
        validate_assignment=True,
        extra="forbid",
        populate_by_name=True,
    )

    @model_validator(mode="after")
    def _brick_larger_than_overlap(self) -> Self:
        if self.max_brick_size <= 2 * self.brick_overlap:
            raise ValueError(
                f"max brick size {self.max_brick_size} leaves no interior "
                f"with an overlap of {self.brick_overlap}"
            )
        return self

    @computed_field  # type: ignore[prop-decorator]
    @property
    def incore_size(self) -> int:
        """Number of elements processed per streaming chunk."""
        return self.max_brick_size**3

    def log_startup_config(self) -> None:
        """Log the effective configuration."""
        logger.info("=" * 60)
        logger.info("Conversion engine - Configuration:")
        logger.info(f"  Temp directory: {self.temp_dir}")
        logger.info(f"  Max brick size: {self.max_brick_size}")
        logger.info(f"  Brick overlap: {self.brick_overlap}")
        logger.info(f"  Histogram bins: {self.histogram_bins} x {self.gradient_bins}")
        logger.info(f"  Quantize to 8 bit: {self.quantize_to_8bit}")
        logger.info("=" * 60)


@lru_cache
def get_settings() -> Settings:
    """
    Get cached settings instance.

    :return: The engine settings instance.
    """
    return Settings()  # type: ignore
