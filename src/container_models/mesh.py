from __future__ import annotations

from collections.abc import Sequence

import numpy as np
from pydantic import Field

from .base import ColorArray, ConfigBaseModel, TriangleArray, VertexArray


class Mesh(ConfigBaseModel):
    """
    A triangle mesh in global (aspect-scaled) coordinates.

    ``normals`` and ``colors`` are either empty or hold one row per vertex.
    """

    vertices: VertexArray = Field(default_factory=lambda: np.empty((0, 3), np.float32))
    normals: VertexArray = Field(default_factory=lambda: np.empty((0, 3), np.float32))
    colors: ColorArray = Field(default_factory=lambda: np.empty((0, 4), np.float32))
    indices: TriangleArray = Field(default_factory=lambda: np.empty((0, 3), np.uint32))
    name: str = ""

    @property
    def vertex_count(self) -> int:
        return len(self.vertices)

    @property
    def triangle_count(self) -> int:
        return len(self.indices)

    @property
    def has_normals(self) -> bool:
        return len(self.normals) == self.vertex_count and self.vertex_count > 0

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Mesh):
            return NotImplemented
        return (
            np.array_equal(self.vertices, other.vertices)
            and np.array_equal(self.indices, other.indices)
            and np.array_equal(self.normals, other.normals)
            and np.array_equal(self.colors, other.colors)
        )

    @classmethod
    def combine(
        cls, parts: Sequence[tuple[np.ndarray, np.ndarray, Sequence[float]]], name: str = ""
    ) -> Mesh:
        """
        Build one mesh from several vertex/index sets in a single concatenation.

        :param parts: ``(vertices, indices, color)`` per set; ``indices`` refer
            to the set's own ``vertices`` and each vertex is tinted with the RGBA ``color``.
        :param name: Name of the new mesh.
        """
        if not parts:
            return cls(name=name)
        counts = [len(vertices) for vertices, _, _ in parts]
        offsets = np.cumsum([0, *counts[:-1]])
        return cls(
            vertices=np.concatenate([vertices.astype(np.float32) for vertices, _, _ in parts]),
            indices=np.concatenate(
                [
                    indices.astype(np.uint32) + np.uint32(offset)
                    for (_, indices, _), offset in zip(parts, offsets)
                ]
            ),
            colors=np.concatenate(
                [
                    np.tile(np.asarray(color, np.float32), (count, 1))
                    for (_, _, color), count in zip(parts, counts)
                ]
            ),
            name=name,
        )

    def recompute_normals(self) -> Mesh:
        """Return a copy with area-weighted per-vertex normals."""
        normals = np.zeros_like(self.vertices, dtype=np.float64)
        if self.triangle_count:
            corners = self.vertices[self.indices.astype(np.int64)]
            face_normals = np.cross(
                corners[:, 1] - corners[:, 0], corners[:, 2] - corners[:, 0]
            )
            for column in range(3):
                np.add.at(normals, self.indices[:, column], face_normals)
        lengths = np.linalg.norm(normals, axis=1, keepdims=True)
        normals = np.divide(normals, lengths, out=np.zeros_like(normals), where=lengths > 0)
        return self.model_copy(update={"normals": normals.astype(np.float32)})
