import numpy as np
from loguru import logger
from skimage.measure import marching_cubes

from container_models.base import Aspect, Triple
from container_models.mesh import Mesh
from container_models.numeric_kind import (
    FLOAT32,
    FLOAT64,
    INT8,
    INT16,
    INT32,
    UINT8,
    UINT16,
    UINT32,
)

ISOSURFACE_KINDS = (UINT8, INT8, UINT16, INT16, UINT32, INT32, FLOAT32, FLOAT64)


def clip_isovalue(isovalue: float, dtype: np.dtype) -> float:
    """Clamp the isovalue into the representable range of ``dtype`` and cast it."""
    if np.issubdtype(dtype, np.floating):
        info = np.finfo(dtype)
    else:
        info = np.iinfo(dtype)
    return float(dtype.type(np.clip(isovalue, info.min, info.max)))


class MarchingCubesDriver:
    """
    Accumulates the isosurface of a dataset, one brick at a time.

    Instances are used as the brick callback of
    :meth:`bvf.dataset.BVFDataset.export`. Brick surfaces are collected as they
    come and joined into one :attr:`mesh` when it is asked for.
    """

    def __init__(
        self,
        isovalue: float,
        dtype: np.dtype,
        aspect: Aspect = Triple(1.0, 1.0, 1.0),
        color: tuple[float, float, float, float] = (1.0, 1.0, 1.0, 1.0),
        name: str = "",
    ):
        self.isovalue = clip_isovalue(isovalue, np.dtype(dtype))
        self.dtype = np.dtype(dtype)
        self.aspect = np.asarray(aspect, dtype=np.float64)
        self.color = color
        self.name = name
        self.bricks_processed = 0
        self._parts: list[tuple[np.ndarray, np.ndarray, tuple[float, ...]]] = []
        self._mesh: Mesh | None = None

    @property
    def mesh(self) -> Mesh:
        if self._mesh is None:
            self._mesh = Mesh.combine(self._parts, self.name)
        return self._mesh

    def __call__(
        self, data: np.ndarray, brick_size: Triple[int], brick_offset: Triple[int]
    ) -> None:
        self.bricks_processed += 1
        volume = np.asarray(data[..., 0], dtype=self.dtype)
        if min(volume.shape) < 2:
            return
        low, high = volume.min(), volume.max()
        if low == high or not low <= self.isovalue <= high:
            return
        # skimage reports vertices in array (z, y, x) order
        vertices, faces, _, _ = marching_cubes(
            volume.astype(np.float64), level=self.isovalue
        )
        positions = (vertices[:, ::-1] + np.asarray(brick_offset)) * self.aspect
        self._parts.append((positions, faces, self.color))
        self._mesh = None
        logger.trace(
            f"Brick at {tuple(brick_offset)} added {len(faces)} triangles"
        )
