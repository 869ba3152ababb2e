"""Accelerator and geometry blocks and their serialization to BVF payloads."""

from __future__ import annotations

from typing import Any, ClassVar

import numpy as np
from pydantic import Field

from container_models.base import ConfigBaseModel
from container_models.mesh import Mesh

from .format import BlockSemantic


class MaxMinBlock(ConfigBaseModel):
    """
    Hierarchical min/max index.

    One row ``(min, max, min_gradient, max_gradient)`` per brick, rows in
    ascending storage order, plus the number of bricks per LOD.
    """

    values: np.ndarray = Field(default_factory=lambda: np.empty((0, 4), np.float64))
    bricks_per_lod: list[int] = Field(default_factory=list)
    max_value: float = float("-inf")

    semantic: ClassVar[BlockSemantic] = BlockSemantic.MAXMIN

    @property
    def value_range(self) -> tuple[float, float]:
        return float(self.values[:, 0].min()), float(self.values[:, 1].max())

    def brick_range(self, lod: int, brick: int) -> tuple[float, float]:
        row = sum(self.bricks_per_lod[:lod]) + brick
        return float(self.values[row, 0]), float(self.values[row, 1])

    def to_payload(self) -> tuple[dict[str, Any], np.ndarray]:
        meta = {"bricks_per_lod": self.bricks_per_lod, "max_value": self.max_value}
        return meta, self.values.astype("<f8")

    @classmethod
    def from_payload(cls, meta: dict[str, Any], payload: bytes) -> MaxMinBlock:
        return cls(
            values=np.frombuffer(payload, "<f8").reshape(-1, 4).astype(np.float64),
            bricks_per_lod=meta["bricks_per_lod"],
            max_value=meta["max_value"],
        )


class Histogram1DBlock(ConfigBaseModel):
    counts: np.ndarray
    value_range: tuple[float, float]

    semantic: ClassVar[BlockSemantic] = BlockSemantic.HISTOGRAM_1D

    def to_payload(self) -> tuple[dict[str, Any], np.ndarray]:
        meta = {"bins": len(self.counts), "value_range": list(self.value_range)}
        return meta, self.counts.astype("<u8")

    @classmethod
    def from_payload(cls, meta: dict[str, Any], payload: bytes) -> Histogram1DBlock:
        return cls(
            counts=np.frombuffer(payload, "<u8").astype(np.uint64),
            value_range=tuple(meta["value_range"]),
        )


class Histogram2DBlock(ConfigBaseModel):
    """Value against gradient magnitude, shape ``(value bins, gradient bins)``."""

    counts: np.ndarray
    value_ceiling: float
    max_gradient: float

    semantic: ClassVar[BlockSemantic] = BlockSemantic.HISTOGRAM_2D

    def to_payload(self) -> tuple[dict[str, Any], np.ndarray]:
        meta = {
            "shape": list(self.counts.shape),
            "value_ceiling": self.value_ceiling,
            "max_gradient": self.max_gradient,
        }
        return meta, self.counts.astype("<u8")

    @classmethod
    def from_payload(cls, meta: dict[str, Any], payload: bytes) -> Histogram2DBlock:
        return cls(
            counts=np.frombuffer(payload, "<u8").reshape(meta["shape"]).astype(np.uint64),
            value_ceiling=meta["value_ceiling"],
            max_gradient=meta["max_gradient"],
        )


_MESH_PARTS = (
    ("vertices", "<f4", 3),
    ("normals", "<f4", 3),
    ("colors", "<f4", 4),
    ("indices", "<u4", 3),
)


def mesh_to_payload(mesh: Mesh) -> tuple[dict[str, Any], bytes]:
    meta: dict[str, Any] = {"name": mesh.name}
    payload = bytearray()
    for part, dtype, _ in _MESH_PARTS:
        data = np.asarray(getattr(mesh, part), dtype=dtype)
        meta[part] = len(data)
        payload += data.tobytes()
    return meta, bytes(payload)


def mesh_from_payload(meta: dict[str, Any], payload: bytes) -> Mesh:
    parts: dict[str, Any] = {"name": meta.get("name", "")}
    offset = 0
    for part, dtype, columns in _MESH_PARTS:
        count = meta[part] * columns
        data = np.frombuffer(payload, dtype, count=count, offset=offset)
        parts[part] = data.reshape(-1, columns)
        offset += data.nbytes
    return Mesh(**parts)
