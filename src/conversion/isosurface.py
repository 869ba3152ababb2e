"""Isosurface extraction and mesh import/export around BVF containers."""

import shutil
from pathlib import Path

from loguru import logger
from returns.io import IOResultE, impure_safe

from bvf.blocks import mesh_to_payload
from bvf.dataset import BVFDataset
from bvf.format import BlockSemantic, BVFWriter, read_global_header
from computations.marching_cubes import ISOSURFACE_KINDS, MarchingCubesDriver
from container_models.mesh import Mesh
from container_models.numeric_kind import numeric_dispatch
from converters.base import AbstractGeoConverter
from exceptions import IncompatibleInputError, UnknownFormatError
from utils.files import get_extension, remove_file, removed_on_failure, unique_temp_path
from utils.logger import log_railway_function

from .registry import FormatRegistry

DEFAULT_MESH_COLOR = (1.0, 1.0, 1.0, 1.0)


def _mesh_writer(registry: FormatRegistry, target: Path) -> AbstractGeoConverter:
    converter = registry.geo_converter_for_ext(get_extension(target), must_support_export=True)
    if converter is None:
        raise UnknownFormatError(f"No mesh format can write '{target.suffix}' files")
    return converter


def _mesh_reader(registry: FormatRegistry, source: Path) -> AbstractGeoConverter:
    for converter in registry.geo_converters:
        if converter.can_read(source):
            return converter
    raise UnknownFormatError(f"No mesh format can read '{source.suffix}' files")


@log_railway_function("Failed to extract isosurface", "Successfully extracted isosurface")
@impure_safe
def extract_isosurface(
    source: Path,
    lod: int,
    isovalue: float,
    target: Path,
    registry: FormatRegistry,
    temp_dir: Path,
    color: tuple[float, float, float, float] = DEFAULT_MESH_COLOR,
) -> Path:
    """
    Extract the surface ``value == isovalue`` of a scalar BVF dataset as a mesh file.

    The chosen LOD is streamed brick by brick through marching cubes; the mesh
    coordinates are scaled by the dataset's aspect ratio.

    :param source: The BVF container.
    :param lod: Level of detail to extract from, 0 being the finest.
    :param isovalue: Clamped to the value range of the dataset's numeric kind.
    :param target: The mesh file; its extension selects the mesh format.
    :param registry: Provides the mesh converters.
    :param temp_dir: Receives the staging file of the export.
    :param color: RGBA color of every generated vertex.
    :returns: The written mesh file.
    """
    source, target = Path(source), Path(target)
    writer = _mesh_writer(registry, target)
    with BVFDataset(source) as dataset:
        if dataset.component_count != 1:
            raise IncompatibleInputError(
                f"Isosurfaces need scalar data, {source.name} has "
                f"{dataset.component_count} components"
            )
        if not dataset.valid_lod(lod):
            raise IncompatibleInputError(f"{source.name} has no LOD {lod}")
        driver = numeric_dispatch(
            dataset.kind,
            lambda dtype: MarchingCubesDriver(isovalue, dtype, dataset.aspect, color, target.stem),
            supported=ISOSURFACE_KINDS,
            operation="Isosurface extraction",
        )
        staging = unique_temp_path(temp_dir, source.stem, ".iso.raw")
        try:
            dataset.export(lod, staging, brick_callback=driver)
        finally:
            remove_file(staging)

    logger.info(
        f"Isosurface {driver.isovalue} of {source.name}: {driver.mesh.triangle_count} "
        f"triangles from {driver.bricks_processed} bricks"
    )
    with removed_on_failure(target):
        return writer.convert_to_native(driver.mesh.recompute_normals(), target)


@log_railway_function("Failed to load mesh")
@impure_safe
def load_mesh(source: Path, registry: FormatRegistry) -> Mesh:
    source = Path(source)
    return _mesh_reader(registry, source).convert_to_mesh(source)


@log_railway_function("Failed to export mesh", "Successfully exported mesh")
@impure_safe
def export_mesh(mesh: Mesh, target: Path, registry: FormatRegistry) -> Path:
    target = Path(target)
    writer = _mesh_writer(registry, target)
    with removed_on_failure(target):
        return writer.convert_to_native(mesh, target)


@log_railway_function("Failed to add mesh to dataset", "Successfully added mesh to dataset")
@impure_safe
def add_mesh(
    source: Path, mesh_file: Path, target: Path, registry: FormatRegistry, temp_dir: Path
) -> Path:
    """
    Copy a BVF container and append the geometry of a mesh file to it.

    Every block of ``source`` is copied verbatim; ``target`` may be ``source``
    itself, in which case the container is replaced once complete.
    """
    source, mesh_file, target = Path(source), Path(mesh_file), Path(target)
    mesh = _mesh_reader(registry, mesh_file).convert_to_mesh(mesh_file)
    if not mesh.has_normals:
        mesh = mesh.recompute_normals()

    header = read_global_header(source)
    in_place = target.resolve() == source.resolve()
    output = unique_temp_path(temp_dir, target.stem, ".bvf") if in_place else target
    with BVFWriter(output, checksum=header.checksum_semantics != "none") as writer:
        for block in header.blocks:
            writer.add_block_from_file(
                block.semantic, block.meta, source, block.offset, block.size
            )
        writer.add_block(BlockSemantic.GEOMETRY, *mesh_to_payload(mesh))
    if in_place:
        shutil.move(output, target)
    logger.debug(f"Added mesh '{mesh.name}' ({mesh.triangle_count} triangles) to {target}")
    return target
