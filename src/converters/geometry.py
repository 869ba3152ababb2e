"""ASCII mesh formats: Wavefront OBJ and Stanford PLY."""

from pathlib import Path

import numpy as np
from loguru import logger

from container_models.mesh import Mesh
from exceptions import ConversionIOError, DatasetOpenError

from .base import AbstractGeoConverter


def _triangulate(polygon: list[int]) -> list[tuple[int, int, int]]:
    return [(polygon[0], polygon[i], polygon[i + 1]) for i in range(1, len(polygon) - 1)]


class OBJGeoConverter(AbstractGeoConverter):
    description = "Wavefront Object File"
    supported_extensions = ("obj",)
    can_export_data = True

    def convert_to_mesh(self, path: Path) -> Mesh:
        vertices, normals, colors, triangles = [], [], [], []
        try:
            with open(path, encoding="utf-8") as file:
                for line in file:
                    fields = line.split()
                    if not fields or fields[0].startswith("#"):
                        continue
                    match fields[0]:
                        case "v":
                            vertices.append([float(value) for value in fields[1:4]])
                            if len(fields) >= 7:
                                colors.append([float(value) for value in fields[4:7]] + [1.0])
                        case "vn":
                            normals.append([float(value) for value in fields[1:4]])
                        case "f":
                            # "v", "v/vt" and "v/vt/vn" corners, 1-based
                            polygon = [int(corner.split("/")[0]) - 1 for corner in fields[1:]]
                            triangles.extend(_triangulate(polygon))
        except (OSError, UnicodeDecodeError, ValueError) as error:
            raise DatasetOpenError(f"Unable to read {path} as OBJ: {error}") from error
        logger.debug(f"OBJ {path.name}: {len(vertices)} vertices, {len(triangles)} triangles")
        if len(normals) != len(vertices):
            normals = []
        if len(colors) != len(vertices):
            colors = []
        return Mesh(
            vertices=np.asarray(vertices, np.float32).reshape(-1, 3),
            normals=np.asarray(normals, np.float32).reshape(-1, 3),
            colors=np.asarray(colors, np.float32).reshape(-1, 4),
            indices=np.asarray(triangles, np.uint32).reshape(-1, 3),
            name=path.stem,
        )

    def convert_to_native(self, mesh: Mesh, path: Path) -> Path:
        has_colors = len(mesh.colors) == mesh.vertex_count
        try:
            with open(path, "w", encoding="utf-8") as file:
                file.write(f"# {mesh.name or path.stem}\n")
                for index, vertex in enumerate(mesh.vertices):
                    line = "v " + " ".join(f"{value:.6g}" for value in vertex)
                    if has_colors:
                        line += " " + " ".join(f"{value:.6g}" for value in mesh.colors[index][:3])
                    file.write(line + "\n")
                for normal in mesh.normals:
                    file.write("vn " + " ".join(f"{value:.6g}" for value in normal) + "\n")
                corner = "{0}//{0}" if mesh.has_normals else "{0}"
                for triangle in mesh.indices:
                    file.write(
                        "f " + " ".join(corner.format(int(i) + 1) for i in triangle) + "\n"
                    )
        except OSError as error:
            raise ConversionIOError(f"Unable to write {path}: {error}") from error
        return Path(path)


class PLYGeoConverter(AbstractGeoConverter):
    description = "Stanford Polygon File Format (ASCII)"
    supported_extensions = ("ply",)
    can_export_data = True

    def convert_to_mesh(self, path: Path) -> Mesh:
        try:
            with open(path, encoding="utf-8") as file:
                if file.readline().strip() != "ply":
                    raise DatasetOpenError(f"{path} is not a PLY file")
                vertex_count = face_count = 0
                properties: list[str] = []
                element = None
                for line in file:
                    fields = line.split()
                    if not fields:
                        continue
                    if fields[0] == "format" and fields[1] != "ascii":
                        raise DatasetOpenError(f"{path}: only ASCII PLY files are supported")
                    if fields[0] == "element":
                        element = fields[1]
                        if element == "vertex":
                            vertex_count = int(fields[2])
                        elif element == "face":
                            face_count = int(fields[2])
                    elif fields[0] == "property" and element == "vertex":
                        properties.append(fields[-1])
                    elif fields[0] == "end_header":
                        break
                rows = [next(file).split() for _ in range(vertex_count)]
                faces = [next(file).split() for _ in range(face_count)]
        except (OSError, UnicodeDecodeError, ValueError, StopIteration) as error:
            raise DatasetOpenError(f"Unable to read {path} as PLY: {error}") from error

        table = np.asarray(rows, dtype=np.float64).reshape(vertex_count, len(properties))
        column = {name: index for index, name in enumerate(properties)}

        def columns(*names: str) -> np.ndarray | None:
            if all(name in column for name in names):
                return table[:, [column[name] for name in names]]
            return None

        vertices = columns("x", "y", "z")
        if vertices is None:
            raise DatasetOpenError(f"{path} has no vertex positions")
        normals = columns("nx", "ny", "nz")
        colors = columns("red", "green", "blue")
        if colors is not None:
            alpha = columns("alpha")
            alpha = alpha if alpha is not None else np.full((vertex_count, 1), 255.0)
            colors = np.hstack([colors, alpha]) / 255.0
        triangles = [
            triangle
            for face in faces
            for triangle in _triangulate([int(value) for value in face[1 : 1 + int(face[0])]])
        ]
        return Mesh(
            vertices=vertices.astype(np.float32),
            normals=(normals if normals is not None else np.empty((0, 3))).astype(np.float32),
            colors=(colors if colors is not None else np.empty((0, 4))).astype(np.float32),
            indices=np.asarray(triangles, np.uint32).reshape(-1, 3),
            name=path.stem,
        )

    def convert_to_native(self, mesh: Mesh, path: Path) -> Path:
        has_normals = mesh.has_normals
        has_colors = len(mesh.colors) == mesh.vertex_count and mesh.vertex_count > 0
        header = [
            "ply",
            "format ascii 1.0",
            f"comment {mesh.name or path.stem}",
            f"element vertex {mesh.vertex_count}",
            "property float x",
            "property float y",
            "property float z",
        ]
        if has_normals:
            header += ["property float nx", "property float ny", "property float nz"]
        if has_colors:
            header += [f"property uchar {name}" for name in ("red", "green", "blue", "alpha")]
        header += [
            f"element face {mesh.triangle_count}",
            "property list uchar int vertex_indices",
            "end_header",
        ]
        try:
            with open(path, "w", encoding="utf-8") as file:
                file.write("\n".join(header) + "\n")
                for index, vertex in enumerate(mesh.vertices):
                    fields = [f"{value:.6g}" for value in vertex]
                    if has_normals:
                        fields += [f"{value:.6g}" for value in mesh.normals[index]]
                    if has_colors:
                        rgba = np.clip(np.rint(mesh.colors[index] * 255), 0, 255)
                        fields += [str(int(value)) for value in rgba]
                    file.write(" ".join(fields) + "\n")
                for triangle in mesh.indices:
                    file.write("3 " + " ".join(str(int(i)) for i in triangle) + "\n")
        except OSError as error:
            raise ConversionIOError(f"Unable to write {path}: {error}") from error
        return Path(path)
