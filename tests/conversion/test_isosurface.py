from pathlib import Path

import numpy as np
import pytest

from bvf.dataset import BVFDataset
from bvf.format import verify_checksum
from container_models.mesh import Mesh
from conversion import FormatRegistry, add_mesh, export_mesh, extract_isosurface, load_mesh
from exceptions import IncompatibleInputError, UnknownFormatError
from helper_function import unwrap_failure, unwrap_result


def distance_field(size: int = 40) -> np.ndarray:
    z, y, x = np.indices((size, size, size)) - (size - 1) / 2
    return np.sqrt(x**2 + y**2 + z**2).astype(np.float32)


@pytest.fixture
def sphere_container(make_container) -> Path:
    return make_container(distance_field(), name="sphere")


@pytest.fixture
def triangle() -> Mesh:
    return Mesh(
        vertices=np.array([[0, 0, 0], [1, 0, 0], [0, 1, 0]], np.float32),
        indices=np.array([[0, 1, 2]], np.uint32),
        name="triangle",
    )


class TestExtractIsosurface:
    @pytest.mark.parametrize("extension", ["ply", "obj"])
    def test_sphere_surface_crosses_all_bricks(
        self,
        sphere_container: Path,
        registry: FormatRegistry,
        tmp_path: Path,
        temp_dir: Path,
        extension: str,
    ):
        # Arrange
        target = tmp_path / f"sphere.{extension}"

        # Act
        unwrap_result(
            extract_isosurface(sphere_container, 0, 10.0, target, registry, temp_dir)
        )

        # Assert
        mesh = unwrap_result(load_mesh(target, registry))
        radii = np.linalg.norm(mesh.vertices - 19.5, axis=1)
        assert mesh.triangle_count > 100
        assert mesh.has_normals
        np.testing.assert_allclose(radii, 10.0, atol=0.5)
        assert list(temp_dir.iterdir()) == []

    def test_color_is_applied_to_every_vertex(
        self, sphere_container: Path, registry: FormatRegistry, tmp_path, temp_dir
    ):
        target = tmp_path / "red.ply"

        unwrap_result(
            extract_isosurface(
                sphere_container, 1, 8.0, target, registry, temp_dir, color=(1.0, 0.0, 0.0, 1.0)
            )
        )

        mesh = unwrap_result(load_mesh(target, registry))
        np.testing.assert_allclose(mesh.colors, np.tile([1.0, 0.0, 0.0, 1.0], (mesh.vertex_count, 1)))

    def test_isovalue_outside_the_data_gives_an_empty_mesh(
        self, sphere_container: Path, registry: FormatRegistry, tmp_path, temp_dir
    ):
        target = tmp_path / "empty.ply"

        unwrap_result(extract_isosurface(sphere_container, 0, 1000.0, target, registry, temp_dir))

        assert unwrap_result(load_mesh(target, registry)).triangle_count == 0

    def test_vector_data_is_rejected(
        self, make_container, registry: FormatRegistry, tmp_path, temp_dir
    ):
        container = make_container(np.zeros((4, 4, 4, 2), np.uint8), name="vector")

        error = unwrap_failure(
            extract_isosurface(container, 0, 1.0, tmp_path / "vector.ply", registry, temp_dir)
        )

        assert isinstance(error, IncompatibleInputError)
        assert not (tmp_path / "vector.ply").exists()

    def test_missing_lod_is_rejected(
        self, sphere_container: Path, registry: FormatRegistry, tmp_path, temp_dir
    ):
        error = unwrap_failure(
            extract_isosurface(sphere_container, 9, 1.0, tmp_path / "lod9.ply", registry, temp_dir)
        )

        assert isinstance(error, IncompatibleInputError)

    def test_unknown_mesh_format_fails_before_reading(
        self, registry: FormatRegistry, tmp_path, temp_dir
    ):
        error = unwrap_failure(
            extract_isosurface(tmp_path / "missing.bvf", 0, 1.0, tmp_path / "x.stl", registry, temp_dir)
        )

        assert isinstance(error, UnknownFormatError)


class TestMeshFiles:
    def test_export_and_load(self, triangle: Mesh, registry: FormatRegistry, tmp_path: Path):
        target = unwrap_result(export_mesh(triangle, tmp_path / "triangle.obj", registry))

        loaded = unwrap_result(load_mesh(target, registry))

        np.testing.assert_allclose(loaded.vertices, triangle.vertices)
        np.testing.assert_array_equal(loaded.indices, triangle.indices)

    def test_load_unknown_format(self, registry: FormatRegistry, tmp_path: Path):
        path = tmp_path / "mesh.stl"
        path.write_text("solid\n")

        assert isinstance(unwrap_failure(load_mesh(path, registry)), UnknownFormatError)

    def test_export_unknown_format(self, triangle: Mesh, registry: FormatRegistry, tmp_path):
        error = unwrap_failure(export_mesh(triangle, tmp_path / "mesh.stl", registry))

        assert isinstance(error, UnknownFormatError)
        assert not (tmp_path / "mesh.stl").exists()


class TestAddMesh:
    @pytest.fixture
    def mesh_file(self, triangle: Mesh, registry: FormatRegistry, tmp_path: Path) -> Path:
        return unwrap_result(export_mesh(triangle, tmp_path / "triangle.ply", registry))

    def test_mesh_is_appended_to_a_copy(
        self, make_container, mesh_file: Path, registry: FormatRegistry, tmp_path, temp_dir
    ):
        # Arrange
        data = np.arange(64, dtype=np.uint8).reshape(4, 4, 4)
        source = make_container(data, name="plain")
        target = tmp_path / "with_mesh.bvf"

        # Act
        unwrap_result(add_mesh(source, mesh_file, target, registry, temp_dir))

        # Assert
        with BVFDataset(target) as dataset:
            assert [mesh.name for mesh in dataset.meshes] == ["triangle"]
            assert dataset.meshes[0].has_normals
            np.testing.assert_array_equal(dataset.get_brick(0, 0)[..., 0], data)
        with BVFDataset(source) as original:
            assert original.meshes == []
        assert verify_checksum(target)

    def test_in_place_update_keeps_earlier_meshes(
        self, make_container, mesh_file: Path, registry: FormatRegistry, temp_dir
    ):
        container = make_container(np.zeros((4, 4, 4), np.uint8), name="twice")

        unwrap_result(add_mesh(container, mesh_file, container, registry, temp_dir))
        unwrap_result(add_mesh(container, mesh_file, container, registry, temp_dir))

        with BVFDataset(container) as dataset:
            assert len(dataset.meshes) == 2
        assert verify_checksum(container)
        assert list(temp_dir.iterdir()) == []

    def test_unreadable_mesh_leaves_no_target(
        self, make_container, registry: FormatRegistry, tmp_path, temp_dir
    ):
        container = make_container(np.zeros((4, 4, 4), np.uint8), name="plain")
        broken = tmp_path / "broken.obj"
        broken.write_text("v 0 0 zero\n")

        result = add_mesh(container, broken, tmp_path / "never.bvf", registry, temp_dir)

        assert unwrap_failure(result)
        assert not (tmp_path / "never.bvf").exists()
