import logging
from collections.abc import Callable
from pathlib import Path

import numpy as np
import pytest
from loguru import logger

from container_models.base import Triple
from container_models.descriptors import RawVolume
from container_models.numeric_kind import NumericKind
from conversion import ConversionPipeline, FormatRegistry, default_registry
from converters.raw import convert_raw_dataset
from settings import Settings

type ContainerFactory = Callable[..., Path]
type RawFactory = Callable[..., RawVolume]


class PropagateHandler(logging.Handler):
    """Handler that propagates loguru records to standard logging."""

    def emit(self, record: logging.LogRecord) -> None:
        logging.getLogger(record.name).handle(record)


@pytest.fixture
def caplog(caplog):
    """Fixture to enable caplog to capture loguru logs."""
    handler_id = logger.add(PropagateHandler(), format="{message}")
    yield caplog
    logger.remove(handler_id)


@pytest.fixture
def temp_dir(tmp_path: Path) -> Path:
    """Directory for intermediate files, separate from the test outputs."""
    directory = tmp_path / "intermediates"
    directory.mkdir()
    return directory


@pytest.fixture
def settings(temp_dir: Path) -> Settings:
    """Small bricks so that even tiny test volumes get several bricks and LODs."""
    return Settings(
        temp_dir=temp_dir,
        max_brick_size=32,
        brick_overlap=2,
        histogram_bins=16,
        gradient_bins=8,
    )  # type: ignore


@pytest.fixture
def registry() -> FormatRegistry:
    return default_registry()


@pytest.fixture
def pipeline(registry: FormatRegistry, settings: Settings) -> ConversionPipeline:
    return ConversionPipeline(registry, settings)


@pytest.fixture
def make_raw(tmp_path: Path) -> RawFactory:
    """Write a ``(z, y, x[, components])`` array as a headerless raw volume."""

    def factory(
        data: np.ndarray,
        aspect: tuple[float, float, float] = (1.0, 1.0, 1.0),
        name: str = "volume",
    ) -> RawVolume:
        if data.ndim == 3:
            data = data[..., np.newaxis]
        path = tmp_path / f"{name}.raw"
        np.ascontiguousarray(data).tofile(path)
        depth, height, width, components = data.shape
        return RawVolume(
            raw_path=path,
            kind=NumericKind.from_dtype(data.dtype),
            component_count=components,
            size=Triple(width, height, depth),
            aspect=Triple(*aspect),
            title=name,
        )

    return factory


@pytest.fixture
def make_container(
    tmp_path: Path, temp_dir: Path, settings: Settings, make_raw: RawFactory
) -> ContainerFactory:
    """Build a BVF container from an in-memory array."""

    def factory(
        data: np.ndarray,
        name: str = "volume",
        aspect: tuple[float, float, float] = (1.0, 1.0, 1.0),
        max_brick_size: int | None = None,
        brick_overlap: int | None = None,
    ) -> Path:
        raw = make_raw(data, aspect, name)
        return convert_raw_dataset(
            raw,
            tmp_path / f"{name}.bvf",
            temp_dir,
            max_brick_size or settings.max_brick_size,
            settings.brick_overlap if brick_overlap is None else brick_overlap,
            histogram_bins=settings.histogram_bins,
            gradient_bins=settings.gradient_bins,
            incore_size=settings.incore_size,
        )

    return factory


@pytest.fixture
def ramp_volume() -> np.ndarray:
    """A 40x36x30 (x, y, z) uint16 volume whose samples encode their position."""
    z, y, x = np.indices((30, 36, 40))
    return (x + 40 * y + 40 * 36 * z).astype(np.uint16) % 4096
