"""
BVF, the bricked multi-resolution volume container.

- :mod:`bvf.format` reads and writes the block structure and checksum.
- :mod:`bvf.layout` addresses bricks inside each level of detail.
- :mod:`bvf.raster` builds raster blocks brick by brick.
- :class:`~bvf.dataset.BVFDataset` reads finished containers.
"""

from .dataset import BVFDataset
from .format import BlockSemantic, BVFWriter, is_bvf_file, verify_checksum
from .layout import BrickLayout
from .raster import RasterDataBlock, RasterMeta


__all__ = [
    "BVFDataset",
    "BVFWriter",
    "BlockSemantic",
    "BrickLayout",
    "RasterDataBlock",
    "RasterMeta",
    "is_bvf_file",
    "verify_checksum",
]
