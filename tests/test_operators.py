import numpy as np
import pytest
from scipy.sparse import csr_matrix, diags

from richards.errors import PreconditionerError, SolverError, ValidationError
from richards.mesh import build_structured_mesh
from richards.operators import (
    DirectFactorization,
    MatrixMFD,
    solve_linear_system,
    upwind_schemes,
)
from richards.types import BoundaryMarker
from richards.vectors import CompositeVector


def _laplacian(n):
    return csr_matrix(diags([-1.0, 2.0, -1.0], [-1, 0, 1], shape=(n, n)))


def _operator(mesh, linear_solver="direct", preconditioner="ilu", accumulation=1.0):
    markers = np.zeros(mesh.num_faces, dtype=np.int64)
    values = np.zeros(mesh.num_faces)
    markers[mesh.boundary_faces("x-")] = BoundaryMarker.DIRICHLET
    values[mesh.boundary_faces("x-")] = 3.0

    matrix = MatrixMFD(mesh, linear_solver=linear_solver, preconditioner=preconditioner)
    matrix.create_mass_matrices(np.ones(mesh.num_cells))
    matrix.create_stiffness_matrices(np.ones(mesh.num_faces))
    matrix.create_rhs_vectors()
    matrix.accumulate_diagonal(slice(None), accumulation)
    matrix.apply_boundary_conditions(markers, values)
    matrix.assemble_global_matrices()
    matrix.compute_schur_complement(markers, values)
    matrix.update_preconditioner()
    return matrix


@pytest.mark.parametrize(
    "linear_solver, preconditioner",
    [("direct", None), ("cg", "ilu"), ("gmres", "diagonal"), ("cg", "amg")],
)
def test_apply_inverse_inverts_the_operator(linear_solver, preconditioner):
    mesh = build_structured_mesh((4, 3))
    matrix = _operator(mesh, linear_solver, preconditioner)
    assert matrix.is_assembled

    rng = np.random.default_rng(42)
    b = CompositeVector.from_mesh(mesh, ("cell", "face"))
    b["cell"] = rng.uniform(-1.0, 1.0, mesh.num_cells)
    b["face"] = rng.uniform(-1.0, 1.0, mesh.num_faces)

    x = matrix.apply_inverse(b)
    Ax = matrix.apply(x)
    np.testing.assert_allclose(Ax["cell"], b["cell"], atol=1e-7)
    np.testing.assert_allclose(Ax["face"], b["face"], atol=1e-7)


def test_apply_inverse_requires_assembly():
    mesh = build_structured_mesh((3,))
    matrix = MatrixMFD(mesh)
    matrix.create_mass_matrices(np.ones(3))
    matrix.create_stiffness_matrices(np.ones(mesh.num_faces))
    with pytest.raises(PreconditionerError):
        matrix.apply_inverse(CompositeVector.from_mesh(mesh, ("cell", "face")))
    with pytest.raises(PreconditionerError):
        matrix.update_preconditioner()


def test_stiffness_requires_mass_matrices():
    mesh = build_structured_mesh((3,))
    with pytest.raises(ValidationError):
        MatrixMFD(mesh).create_stiffness_matrices(np.ones(mesh.num_faces))
    with pytest.raises(ValidationError):
        MatrixMFD(mesh).create_mass_matrices(np.ones(4))
    with pytest.raises(ValidationError):
        MatrixMFD(mesh).create_mass_matrices(-np.ones(3))
    with pytest.raises(ValidationError):
        MatrixMFD(mesh, linear_solver="no such solver")


def test_flux_of_linear_pressure_is_uniform():
    mesh = build_structured_mesh((3, 2))
    matrix = MatrixMFD(mesh)
    matrix.create_mass_matrices(np.ones(mesh.num_cells))
    matrix.create_stiffness_matrices(np.ones(mesh.num_faces))

    x = CompositeVector.from_mesh(mesh, ("cell", "face"))
    x["cell"] = -mesh.cell_centroids[:, 0]
    x["face"] = -mesh.face_centroids[:, 0]
    flux = matrix.derive_flux(x)

    x_faces = mesh.face_normals[:, 0] == 1.0
    np.testing.assert_allclose(flux[x_faces], 1.0)
    np.testing.assert_allclose(flux[~x_faces], 0.0, atol=1e-14)


def test_steady_flow_with_pressure_and_flux_boundaries():
    mesh = build_structured_mesh((5,), spacing=2.0)
    markers = np.zeros(mesh.num_faces, dtype=np.int64)
    values = np.zeros(mesh.num_faces)
    markers[0] = BoundaryMarker.DIRICHLET
    values[0] = 10.0
    markers[-1] = BoundaryMarker.NEUMANN
    values[-1] = 0.5

    matrix = MatrixMFD(mesh)
    matrix.create_mass_matrices(np.full(mesh.num_cells, 2.0))
    matrix.create_stiffness_matrices(np.ones(mesh.num_faces))
    matrix.create_rhs_vectors()
    matrix.apply_boundary_conditions(markers, values)
    matrix.assemble_global_matrices()
    matrix.compute_schur_complement(markers, values)
    matrix.update_preconditioner()

    zero = CompositeVector.from_mesh(mesh, ("cell", "face"))
    solution = matrix.apply_inverse(matrix.compute_negative_residual(zero)).scale(-1.0)

    # Darcy: q = -K dp/dx = 0.5, so p drops by 0.25 per metre from 10 at x = 0.
    np.testing.assert_allclose(solution["cell"], 10.0 - 0.25 * mesh.cell_centroids[:, 0])
    np.testing.assert_allclose(solution["face"], 10.0 - 0.25 * mesh.face_centroids[:, 0])
    np.testing.assert_allclose(matrix.derive_flux(solution), 0.5)

    residual = matrix.compute_negative_residual(solution)
    assert residual.norm_inf() < 1e-12


def test_gravity_fluxes_balance_hydrostatic_pressure():
    mesh = build_structured_mesh((4,), spacing=0.5)
    gravity = np.array([-10.0])
    rho = np.full(mesh.num_cells, 1000.0)
    matrix = MatrixMFD(mesh)
    matrix.create_mass_matrices(np.ones(mesh.num_cells))
    matrix.create_stiffness_matrices(np.ones(mesh.num_faces))
    matrix.create_rhs_vectors()
    matrix.add_gravity_fluxes(gravity, rho)
    matrix.assemble_global_matrices()

    x = CompositeVector.from_mesh(mesh, ("cell", "face"))
    x["cell"] = 5.0e4 - 1.0e4 * mesh.cell_centroids[:, 0]
    x["face"] = 5.0e4 - 1.0e4 * mesh.face_centroids[:, 0]
    residual = matrix.compute_negative_residual(x)
    assert residual.norm_inf() < 1e-9
    np.testing.assert_allclose(matrix.derive_flux(x), 0.0, atol=1e-9)

    with pytest.raises(ValidationError):
        matrix.add_gravity_fluxes(np.array([0.0, -10.0]), rho)


def test_anisotropic_permeability():
    mesh = build_structured_mesh((2, 2))
    matrix = MatrixMFD(mesh)
    k = np.tile([1.0, 4.0], (mesh.num_cells, 1))
    matrix.create_mass_matrices(k)
    matrix.create_stiffness_matrices(np.ones(mesh.num_faces))
    # Faces along x then y for each cell, half a cell from the centroid.
    np.testing.assert_allclose(matrix.Aff_cells[:, :2], 2.0)
    np.testing.assert_allclose(matrix.Aff_cells[:, 2:], 8.0)
    np.testing.assert_allclose(matrix.Acc_cells, 20.0)


def test_upwind_gravity_picks_upper_cell():
    mesh = build_structured_mesh((4,), spacing=0.1)
    cell_values = np.array([1.0, 2.0, 3.0, 4.0])
    face_values = np.zeros(mesh.num_faces)
    upwind_schemes.get("gravity")(mesh, cell_values, face_values, gravity=np.array([-9.8]))
    np.testing.assert_array_equal(face_values, [1.0, 2.0, 3.0, 4.0, 4.0])


def test_upwind_gravity_without_gravity_is_arithmetic_mean():
    mesh = build_structured_mesh((3,))
    face_values = np.zeros(mesh.num_faces)
    upwind_schemes.get("gravity")(mesh, np.array([1.0, 3.0, 5.0]), face_values, gravity=np.zeros(1))
    np.testing.assert_array_equal(face_values, [1.0, 2.0, 4.0, 5.0])


def test_upwind_total_flux_follows_flux_sign():
    mesh = build_structured_mesh((3,))
    cell_values = np.array([1.0, 3.0, 5.0])
    face_values = np.zeros(mesh.num_faces)
    flux = np.array([0.0, 1.0, -1.0, 0.0])
    upwind_schemes.get("total flux")(mesh, cell_values, face_values, flux=flux)
    np.testing.assert_array_equal(face_values, [1.0, 1.0, 5.0, 5.0])

    flux[1] = 0.0
    upwind_schemes.get("total flux")(mesh, cell_values, face_values, flux=flux)
    assert face_values[1] == 2.0


def test_solve_linear_system():
    A = _laplacian(30) + csr_matrix(diags(np.full(30, 0.1)))
    b = np.linspace(0.0, 1.0, 30)
    for preconditioner in ("ilu", "amg", "diagonal", None):
        x, _ = solve_linear_system(A, b, max_iterations=500, preconditioner=preconditioner)
        np.testing.assert_allclose(A @ x, b, atol=1e-8)

    x, M = solve_linear_system(A, np.zeros(30), max_iterations=10)
    np.testing.assert_array_equal(x, 0.0)


def test_solve_linear_system_failures():
    A = _laplacian(200)
    b = np.ones(200)
    with pytest.raises(SolverError):
        solve_linear_system(A, b, max_iterations=2, preconditioner=None)
    with pytest.raises(ValidationError):
        solve_linear_system(A, b, max_iterations=2, solver="no such solver")
    with pytest.raises(ValidationError):
        solve_linear_system(A, b, max_iterations=2, preconditioner="no such preconditioner")


def test_direct_factorization():
    A = _laplacian(10)
    b = np.arange(10.0)
    np.testing.assert_allclose(A @ DirectFactorization(A).solve(b), b, atol=1e-10)
    with pytest.raises(PreconditionerError):
        DirectFactorization(csr_matrix(np.ones((2, 2))))
