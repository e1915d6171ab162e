import numpy as np
import pytest

from richards.errors import ValidationError
from richards.mesh import build_structured_mesh


def test_structured_mesh_counts():
    mesh = build_structured_mesh((2, 3), spacing=(1.0, 2.0))
    assert mesh.dimension == 2
    assert mesh.num_cells == 6
    # (2 + 1) * 3 x-faces and 2 * (3 + 1) y-faces
    assert mesh.num_faces == 17
    assert mesh.faces_per_cell == 4
    np.testing.assert_allclose(mesh.cell_volumes, 2.0)
    np.testing.assert_allclose(mesh.face_areas[:9], 2.0)
    np.testing.assert_allclose(mesh.face_areas[9:], 1.0)


def test_face_connectivity_is_consistent():
    mesh = build_structured_mesh((3, 2, 2))
    for cell in range(mesh.num_cells):
        for face, direction in zip(mesh.cell_faces[cell], mesh.cell_face_dirs[cell]):
            owner, neighbour = mesh.face_cells[face]
            if direction > 0:
                assert owner == cell
            else:
                assert neighbour == cell or (neighbour < 0 and owner == cell)

    interior = mesh.face_cells[:, 1] >= 0
    # Each interior face connects cells one spacing apart along its normal.
    delta = (
        mesh.cell_centroids[mesh.face_cells[interior, 1]]
        - mesh.cell_centroids[mesh.face_cells[interior, 0]]
    )
    np.testing.assert_allclose(delta, mesh.face_normals[interior])


def test_boundary_faces():
    mesh = build_structured_mesh((4,), spacing=0.5, origin=(1.0,))
    np.testing.assert_array_equal(mesh.boundary_faces(), [0, 4])
    np.testing.assert_array_equal(mesh.boundary_faces("x-"), [0])
    np.testing.assert_array_equal(mesh.boundary_faces("x+"), [4])
    np.testing.assert_allclose(mesh.face_centroids[:, 0], [1.0, 1.5, 2.0, 2.5, 3.0])
    np.testing.assert_allclose(mesh.cell_centroids[:, 0], [1.25, 1.75, 2.25, 2.75])
    with pytest.raises(ValidationError):
        mesh.boundary_faces("z+")


def test_side_sizes():
    mesh = build_structured_mesh((3, 4, 5))
    assert mesh.boundary_faces("x-").size == 20
    assert mesh.boundary_faces("y+").size == 15
    assert mesh.boundary_faces("z-").size == 12
    assert mesh.boundary_faces().size == 2 * (20 + 15 + 12)


@pytest.mark.parametrize(
    "shape, spacing",
    [((), 1.0), ((1, 1, 1, 1), 1.0), ((0, 2), 1.0), ((2,), -1.0)],
)
def test_invalid_mesh(shape, spacing):
    with pytest.raises(ValidationError):
        build_structured_mesh(shape, spacing=spacing)


def test_size_by_location():
    mesh = build_structured_mesh((2, 2))
    assert mesh.size("cell") == 4
    assert mesh.size("face") == 12
    with pytest.raises(ValidationError):
        mesh.size("node")
