"""
Brick and level-of-detail addressing.

Every level of detail (LOD) is cut into bricks of at most ``max_brick_size``
voxels per axis. A brick owns an *inner* region of ``max_brick_size - 2 *
overlap`` voxels per axis and additionally stores ``overlap`` voxels of each
neighbour, clamped at the domain border. Bricks are addressed either by their
3D index or by the flattened index ``x + y * count.x + z * count.x * count.y``.
"""

from __future__ import annotations

from functools import cached_property
from math import ceil
from typing import Self

from pydantic import Field, model_validator

from container_models.base import BrickIndex, ConfigBaseModel, DomainSize, Triple


def _ceil_div(numerator: int, denominator: int) -> int:
    return -(-numerator // denominator)


class BrickExtent(ConfigBaseModel):
    """Where a brick lives inside its LOD, in voxels, as half-open ``[start, stop)``."""

    inner_start: Triple[int]
    inner_stop: Triple[int]
    stored_start: Triple[int]
    stored_stop: Triple[int]

    @property
    def stored_size(self) -> Triple[int]:
        return self.stored_stop - self.stored_start

    @property
    def inner_offset(self) -> Triple[int]:
        """Offset of the inner region inside the stored brick."""
        return self.inner_start - self.stored_start

    @property
    def inner_size(self) -> Triple[int]:
        return self.inner_stop - self.inner_start


class BrickLayout(ConfigBaseModel):
    domain_size: DomainSize
    max_brick_size: int = Field(gt=0)
    overlap: int = Field(ge=0)

    @model_validator(mode="after")
    def _check_interior(self) -> Self:
        if self.inner_brick_size <= 0:
            raise ValueError(
                f"brick size {self.max_brick_size} must exceed twice the overlap {self.overlap}"
            )
        if min(self.domain_size) <= 0:
            raise ValueError(f"empty domain {self.domain_size}")
        return self

    @property
    def inner_brick_size(self) -> int:
        return self.max_brick_size - 2 * self.overlap

    @cached_property
    def lod_sizes(self) -> list[DomainSize]:
        """Domain size per LOD; each level halves every axis until one brick suffices."""
        sizes = [Triple(*self.domain_size)]
        while max(sizes[-1]) > self.inner_brick_size:
            sizes.append(sizes[-1].map(lambda size: max(1, ceil(size / 2))))
        return sizes

    @property
    def lod_count(self) -> int:
        return len(self.lod_sizes)

    def valid_lod(self, lod: int) -> bool:
        return 0 <= lod < self.lod_count

    def domain_size_at(self, lod: int) -> DomainSize:
        if not self.valid_lod(lod):
            raise IndexError(f"LOD {lod} out of range [0, {self.lod_count})")
        return self.lod_sizes[lod]

    def brick_counts(self, lod: int) -> Triple[int]:
        return self.domain_size_at(lod).map(
            lambda size: _ceil_div(size, self.inner_brick_size)
        )

    def brick_count(self, lod: int) -> int:
        return self.brick_counts(lod).volume

    def valid_brick_index(self, lod: int, brick: int) -> bool:
        return self.valid_lod(lod) and 0 <= brick < self.brick_count(lod)

    def nd_brick_index(self, lod: int, brick: int) -> BrickIndex:
        """Turn a flattened (z-major) brick index into its 3D index."""
        counts = self.brick_counts(lod)
        plane = counts.x * counts.y
        z, rest = divmod(brick, plane)
        y, x = divmod(rest, counts.x)
        return Triple(x, y, z)

    def flat_brick_index(self, lod: int, index: BrickIndex) -> int:
        counts = self.brick_counts(lod)
        return index.x + index.y * counts.x + index.z * counts.x * counts.y

    def extent(self, lod: int, brick: int) -> BrickExtent:
        size = self.domain_size_at(lod)
        index = self.nd_brick_index(lod, brick)
        inner_start = index * self.inner_brick_size
        inner_stop = (index + 1).map(lambda i: i * self.inner_brick_size).map(
            min, other=size
        )
        return BrickExtent(
            inner_start=inner_start,
            inner_stop=inner_stop,
            stored_start=inner_start.map(lambda start: max(0, start - self.overlap)),
            stored_stop=(inner_stop + self.overlap).map(min, other=size),
        )

    def bricks(self):
        """Yield every ``(lod, flat brick index)`` in ascending storage order."""
        for lod in range(self.lod_count):
            for brick in range(self.brick_count(lod)):
                yield lod, brick
