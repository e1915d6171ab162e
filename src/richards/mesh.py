"""Structured Cartesian meshes with cell and face connectivity."""

import logging
import typing

import attrs
import numpy as np

from richards._precision import get_dtype
from richards.errors import ValidationError
from richards.types import IndexArray, Vector

logger = logging.getLogger(__name__)

__all__ = ["Mesh", "build_structured_mesh"]

_AXES = ("x", "y", "z")


@attrs.frozen(eq=False)
class Mesh:
    """
    Cell/face connectivity and geometry of a mesh.

    Face normals are unit vectors along the positive axis direction. The owner of a
    face is the cell on its negative side (or the only cell for boundary faces), the
    neighbour is the cell on its positive side or -1 on the boundary.
    """

    shape: typing.Tuple[int, ...]
    """Number of cells along each axis."""
    cell_volumes: Vector
    """Cell volumes [m³], shape (num_cells,)."""
    cell_centroids: np.typing.NDArray[np.floating]
    """Cell centroids [m], shape (num_cells, dimension)."""
    face_areas: Vector
    """Face areas [m²], shape (num_faces,)."""
    face_centroids: np.typing.NDArray[np.floating]
    """Face centroids [m], shape (num_faces, dimension)."""
    face_normals: np.typing.NDArray[np.floating]
    """Unit face normals, shape (num_faces, dimension)."""
    face_cells: IndexArray
    """Owner and neighbour cell of each face, shape (num_faces, 2). -1 marks no neighbour."""
    cell_faces: IndexArray
    """Faces of each cell, shape (num_cells, faces_per_cell)."""
    cell_face_dirs: IndexArray
    """+1 where the face normal points out of the cell, -1 otherwise. Same shape as `cell_faces`."""
    sides: typing.Dict[str, IndexArray] = attrs.field(factory=dict)
    """Boundary faces keyed by side name, e.g. 'x-', 'z+'."""

    @property
    def dimension(self) -> int:
        return len(self.shape)

    @property
    def num_cells(self) -> int:
        return self.cell_volumes.shape[0]

    @property
    def num_faces(self) -> int:
        return self.face_areas.shape[0]

    @property
    def faces_per_cell(self) -> int:
        return self.cell_faces.shape[1]

    def boundary_faces(self, side: typing.Optional[str] = None) -> IndexArray:
        """
        Get boundary faces.

        :param side: Side name ('x-', 'x+', 'y-', ...). All boundary faces if None.
        :return: Sorted array of face indices.
        """
        if side is None:
            return np.flatnonzero(self.face_cells[:, 1] < 0)
        if side not in self.sides:
            raise ValidationError(
                f"Unknown boundary side {side!r}. Available sides: {list(self.sides)}"
            )
        return self.sides[side]

    def size(self, location: str) -> int:
        if location == "cell":
            return self.num_cells
        if location == "face":
            return self.num_faces
        raise ValidationError(f"Unknown mesh location {location!r}.")


def build_structured_mesh(
    shape: typing.Sequence[int],
    spacing: typing.Union[float, typing.Sequence[float]] = 1.0,
    origin: typing.Optional[typing.Sequence[float]] = None,
) -> Mesh:
    """
    Build a structured Cartesian mesh in 1, 2 or 3 dimensions.

    Cells are numbered in C order over `shape`. Faces are numbered axis by axis,
    each block in C order over the face lattice of that axis.

    :param shape: Number of cells along each axis.
    :param spacing: Cell size along each axis [m], or one size for all axes.
    :param origin: Coordinates of the lower corner [m]. Defaults to zero.
    :return: The mesh.
    """
    shape = tuple(int(n) for n in shape)
    dimension = len(shape)
    if dimension not in (1, 2, 3):
        raise ValidationError(f"Mesh dimension must be 1, 2 or 3, got {dimension}.")
    if any(n < 1 for n in shape):
        raise ValidationError(f"Cell counts must be positive, got {shape}.")

    dtype = get_dtype()
    dx = np.broadcast_to(np.asarray(spacing, dtype=dtype), (dimension,)).copy()
    if np.any(dx <= 0.0):
        raise ValidationError(f"Cell spacing must be positive, got {dx}.")
    x0 = (
        np.zeros(dimension, dtype=dtype)
        if origin is None
        else np.asarray(origin, dtype=dtype)
    )

    num_cells = int(np.prod(shape))
    cell_index = np.indices(shape).reshape(dimension, -1).T
    cell_centroids = x0 + (cell_index + 0.5) * dx
    cell_volumes = np.full(num_cells, np.prod(dx), dtype=dtype)

    face_areas = []
    face_centroids = []
    face_normals = []
    face_cells = []
    cell_faces = np.empty((num_cells, 2 * dimension), dtype=np.int64)
    cell_face_dirs = np.empty((num_cells, 2 * dimension), dtype=np.int64)
    sides = {}

    offset = 0
    for axis in range(dimension):
        face_shape = list(shape)
        face_shape[axis] += 1
        face_index = np.indices(face_shape).reshape(dimension, -1).T
        count = face_index.shape[0]

        centroids = x0 + (face_index + 0.5) * dx
        centroids[:, axis] = x0[axis] + face_index[:, axis] * dx[axis]
        normals = np.zeros((count, dimension), dtype=dtype)
        normals[:, axis] = 1.0

        lower = face_index.copy()
        lower[:, axis] -= 1
        has_lower = face_index[:, axis] > 0
        has_upper = face_index[:, axis] < shape[axis]
        lower_cell = np.where(
            has_lower,
            np.ravel_multi_index(tuple(np.clip(lower, 0, None).T), shape, mode="clip"),
            -1,
        )
        upper_cell = np.where(
            has_upper,
            np.ravel_multi_index(tuple(face_index.T), shape, mode="clip"),
            -1,
        )
        owner = np.where(has_lower, lower_cell, upper_cell)
        neighbour = np.where(has_lower & has_upper, upper_cell, -1)

        face_areas.append(np.full(count, np.prod(dx) / dx[axis], dtype=dtype))
        face_centroids.append(centroids)
        face_normals.append(normals)
        face_cells.append(np.stack([owner, neighbour], axis=1))

        upper_face = cell_index.copy()
        upper_face[:, axis] += 1
        cell_faces[:, 2 * axis] = offset + np.ravel_multi_index(
            tuple(cell_index.T), face_shape
        )
        cell_faces[:, 2 * axis + 1] = offset + np.ravel_multi_index(
            tuple(upper_face.T), face_shape
        )
        cell_face_dirs[:, 2 * axis] = -1
        cell_face_dirs[:, 2 * axis + 1] = 1

        name = _AXES[axis]
        sides[f"{name}-"] = offset + np.flatnonzero(face_index[:, axis] == 0)
        sides[f"{name}+"] = offset + np.flatnonzero(face_index[:, axis] == shape[axis])
        offset += count

    mesh = Mesh(
        shape=shape,
        cell_volumes=cell_volumes,
        cell_centroids=cell_centroids,
        face_areas=np.concatenate(face_areas),
        face_centroids=np.concatenate(face_centroids),
        face_normals=np.concatenate(face_normals),
        face_cells=np.concatenate(face_cells).astype(np.int64),
        cell_faces=cell_faces,
        cell_face_dirs=cell_face_dirs,
        sides=sides,
    )
    logger.debug(
        f"Built {dimension}D structured mesh {shape} with {mesh.num_cells} cells "
        f"and {mesh.num_faces} faces"
    )
    return mesh
