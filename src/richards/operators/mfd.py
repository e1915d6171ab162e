"""
Hybridized two-point discrete diffusion operator with cell and face unknowns.

Per cell `c` and face `f` of `c`, the outward flux is

    q_cf = T_cf (p_c - lambda_f) + T_cf rho_c g . (x_f - x_c)

with `T_cf = k_n(c) kr_f A_f / |x_f - x_c|`. Cell rows hold the flux balance,
face rows flux continuity, so the global operator reads

    | A_cc  A_cf | | p      |   | F_c |
    | A_fc  A_ff | | lambda | = | F_f |

with `A_ff` diagonal. Faces are eliminated through the cell Schur complement
`S = A_cc - A_cf A_ff^-1 A_fc`, which is factorized (or preconditioned) once per
assembly and reused by every `apply_inverse` until the next assembly.
"""

import logging
import typing

import attrs
import numba  # type: ignore[import-untyped]
import numpy as np
from scipy.sparse import csr_matrix, diags  # type: ignore[import-untyped]
from scipy.sparse.linalg import LinearOperator  # type: ignore[import-untyped]

from richards.errors import PreconditionerError, ValidationError
from richards.mesh import Mesh
from richards.operators.solvers import (
    DirectFactorization,
    preconditioner_factories,
    solve_linear_system,
    solver_funcs,
)
from richards.types import BoundaryMarker
from richards.vectors import CompositeVector

logger = logging.getLogger(__name__)

__all__ = ["MatrixMFD"]


@numba.njit(cache=True)
def _compute_geometric_factors(
    cell_faces, cell_centroids, face_centroids, face_normals, face_areas, permeability
):
    num_cells, faces_per_cell = cell_faces.shape
    dim = cell_centroids.shape[1]
    out = np.zeros((num_cells, faces_per_cell))
    for c in range(num_cells):
        for n in range(faces_per_cell):
            f = cell_faces[c, n]
            distance = 0.0
            k_n = 0.0
            for d in range(dim):
                dx = face_centroids[f, d] - cell_centroids[c, d]
                distance += dx * dx
                k_n += permeability[c, d] * face_normals[f, d] * face_normals[f, d]
            out[c, n] = k_n * face_areas[f] / np.sqrt(distance)
    return out


@numba.njit(cache=True)
def _compute_gravity_fluxes(
    cell_faces, cell_centroids, face_centroids, transmissibility, mass_density, gravity
):
    num_cells, faces_per_cell = cell_faces.shape
    dim = cell_centroids.shape[1]
    out = np.zeros((num_cells, faces_per_cell))
    for c in range(num_cells):
        for n in range(faces_per_cell):
            f = cell_faces[c, n]
            g_dot_dx = 0.0
            for d in range(dim):
                g_dot_dx += gravity[d] * (face_centroids[f, d] - cell_centroids[c, d])
            out[c, n] = transmissibility[c, n] * mass_density[c] * g_dot_dx
    return out


@numba.njit(cache=True)
def _apply_boundary_conditions(
    cell_faces, face_areas, markers, values, Acf_cells, Aff_cells, Fc_cells, Ff_cells,
    dirichlet, neumann,
):
    num_cells, faces_per_cell = cell_faces.shape
    for c in range(num_cells):
        for n in range(faces_per_cell):
            f = cell_faces[c, n]
            if markers[f] == dirichlet:
                Fc_cells[c] -= Acf_cells[c, n] * values[f]
                Acf_cells[c, n] = 0.0
                Aff_cells[c, n] = 1.0
                Ff_cells[c, n] = values[f]
            elif markers[f] == neumann:
                Ff_cells[c, n] -= values[f] * face_areas[f]


@attrs.frozen(eq=False)
class _GlobalSystem:
    Acc: np.typing.NDArray
    Acf: csr_matrix
    Afc: csr_matrix
    Aff: np.typing.NDArray
    Fc: np.typing.NDArray
    Ff: np.typing.NDArray

    @property
    def safe_Aff(self) -> np.typing.NDArray:
        # Faces without any transmissibility are decoupled from the cells.
        return np.where(self.Aff == 0.0, 1.0, self.Aff)


class MatrixMFD:
    """
    Discrete diffusion + accumulation operator over a mesh.

    Coefficients live in per-cell local arrays (`Acc_cells`, `Fc_cells`, ...)
    until `assemble_global_matrices` gathers them into sparse global blocks.
    """

    def __init__(
        self,
        mesh: Mesh,
        linear_solver: str = "direct",
        preconditioner: typing.Optional[str] = "ilu",
        max_iterations: int = 200,
        rtol: float = 1e-10,
        name: str = "matrix",
    ) -> None:
        if linear_solver != "direct":
            solver_funcs.get(linear_solver)
            if preconditioner is not None:
                preconditioner_factories.get(preconditioner)
        self.mesh = mesh
        self.linear_solver = linear_solver
        self.preconditioner = preconditioner
        self.max_iterations = max_iterations
        self.rtol = rtol
        self.name = name

        num_cells, faces_per_cell = mesh.cell_faces.shape
        self._geometric_factors: typing.Optional[np.typing.NDArray] = None
        self._T = np.zeros((num_cells, faces_per_cell))
        self._gravity_fluxes = np.zeros((num_cells, faces_per_cell))
        self.Acc_cells = np.zeros(num_cells)
        self.Acf_cells = np.zeros((num_cells, faces_per_cell))
        self.Aff_cells = np.zeros((num_cells, faces_per_cell))
        self.Fc_cells = np.zeros(num_cells)
        self.Ff_cells = np.zeros((num_cells, faces_per_cell))

        self._system: typing.Optional[_GlobalSystem] = None
        self._schur: typing.Optional[csr_matrix] = None
        self._factorization: typing.Optional[DirectFactorization] = None
        self._schur_preconditioner: typing.Optional[LinearOperator] = None
        self._inverse_system: typing.Optional[_GlobalSystem] = None

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(name={self.name!r}, cells={self.mesh.num_cells}, "
            f"faces={self.mesh.num_faces}, solver={self.linear_solver!r})"
        )

    def create_mass_matrices(self, permeability: np.typing.NDArray) -> None:
        """
        Compute the geometric part of the transmissibilities, `k_n A_f / d_cf`.

        :param permeability: Intrinsic permeability [m²] per cell, shape (num_cells,)
            for isotropic media or (num_cells, dimension) for axis-aligned anisotropy.
        """
        k = np.asarray(permeability, dtype=np.float64)
        if k.ndim == 1:
            k = np.repeat(k[:, None], self.mesh.dimension, axis=1)
        if k.shape != (self.mesh.num_cells, self.mesh.dimension):
            raise ValidationError(
                f"Permeability must have shape ({self.mesh.num_cells},) or "
                f"({self.mesh.num_cells}, {self.mesh.dimension}), got {k.shape}."
            )
        if np.any(k < 0.0):
            raise ValidationError("Permeability must be non-negative.")
        self._geometric_factors = _compute_geometric_factors(
            self.mesh.cell_faces,
            self.mesh.cell_centroids,
            self.mesh.face_centroids,
            self.mesh.face_normals,
            self.mesh.face_areas,
            np.ascontiguousarray(k),
        )

    def create_stiffness_matrices(self, rel_perm: np.typing.NDArray) -> None:
        """
        Build local diffusion coefficients from face mobilities.

        :param rel_perm: Upwinded mobility per face, shape (num_faces,).
        """
        if self._geometric_factors is None:
            raise ValidationError("`create_mass_matrices` must be called first.")
        self._T = self._geometric_factors * np.asarray(rel_perm)[self.mesh.cell_faces]
        self._gravity_fluxes = np.zeros_like(self._T)
        self.Aff_cells = self._T.copy()
        self.Acf_cells = -self._T
        self.Acc_cells = self._T.sum(axis=1)

    def create_rhs_vectors(self) -> None:
        self.Fc_cells = np.zeros(self.mesh.num_cells)
        self.Ff_cells = np.zeros_like(self._T)

    def add_gravity_fluxes(
        self, gravity: np.typing.NDArray, mass_density: np.typing.NDArray
    ) -> None:
        """
        Add the gravitational part of the fluxes to the right-hand side.

        :param gravity: Gravity vector [m/s²] with one entry per mesh dimension.
        :param mass_density: Cell mass densities [kg/m³].
        """
        g = np.asarray(gravity, dtype=np.float64)
        if g.shape != (self.mesh.dimension,):
            raise ValidationError(
                f"Gravity must have {self.mesh.dimension} components, got {g.shape}."
            )
        fluxes = _compute_gravity_fluxes(
            self.mesh.cell_faces,
            self.mesh.cell_centroids,
            self.mesh.face_centroids,
            self._T,
            np.ascontiguousarray(mass_density, dtype=np.float64),
            g,
        )
        self._gravity_fluxes += fluxes
        self.Fc_cells -= fluxes.sum(axis=1)
        self.Ff_cells += fluxes

    def accumulate_diagonal(
        self, cells: typing.Union[int, np.typing.NDArray, slice], values: typing.Any
    ) -> None:
        """Add `values` to the cell-cell block diagonal."""
        if isinstance(cells, slice):
            self.Acc_cells[cells] += values
        else:
            np.add.at(self.Acc_cells, cells, values)

    def accumulate_rhs(
        self, cells: typing.Union[int, np.typing.NDArray, slice], values: typing.Any
    ) -> None:
        """Add `values` to the cell right-hand side."""
        if isinstance(cells, slice):
            self.Fc_cells[cells] += values
        else:
            np.add.at(self.Fc_cells, cells, values)

    def apply_boundary_conditions(
        self, markers: np.typing.NDArray, values: np.typing.NDArray
    ) -> None:
        """
        Impose boundary conditions on the local matrices.

        Dirichlet faces become identity rows decoupled from their cell, Neumann
        values are outward flux densities added to the face right-hand side.
        """
        _apply_boundary_conditions(
            self.mesh.cell_faces,
            self.mesh.face_areas,
            np.asarray(markers, dtype=np.int64),
            np.asarray(values, dtype=np.float64),
            self.Acf_cells,
            self.Aff_cells,
            self.Fc_cells,
            self.Ff_cells,
            int(BoundaryMarker.DIRICHLET),
            int(BoundaryMarker.NEUMANN),
        )

    def assemble_global_matrices(self) -> None:
        """Gather local contributions into global sparse blocks."""
        mesh = self.mesh
        rows = np.repeat(np.arange(mesh.num_cells), mesh.faces_per_cell)
        cols = mesh.cell_faces.ravel()
        Acf = csr_matrix(
            (self.Acf_cells.ravel(), (rows, cols)), shape=(mesh.num_cells, mesh.num_faces)
        )
        self._system = _GlobalSystem(
            Acc=self.Acc_cells.copy(),
            Acf=Acf,
            Afc=Acf.T.tocsr(),
            Aff=np.bincount(cols, weights=self.Aff_cells.ravel(), minlength=mesh.num_faces),
            Fc=self.Fc_cells.copy(),
            Ff=np.bincount(cols, weights=self.Ff_cells.ravel(), minlength=mesh.num_faces),
        )

    def _require_system(self) -> _GlobalSystem:
        if self._system is None:
            raise PreconditionerError(
                f"{self.name}: global matrices have not been assembled."
            )
        return self._system

    def compute_schur_complement(
        self, markers: np.typing.NDArray, values: np.typing.NDArray
    ) -> None:
        """
        Eliminate face unknowns, `S = A_cc - A_cf A_ff^-1 A_fc`.

        Dirichlet faces are already decoupled by `apply_boundary_conditions`; their
        diagonal is forced to one.
        """
        system = self._require_system()
        dirichlet = np.asarray(markers) == BoundaryMarker.DIRICHLET
        if np.any(dirichlet & (system.Aff != 1.0)):
            system.Aff[dirichlet] = 1.0
        inv_Aff = diags(1.0 / system.safe_Aff)
        S = diags(system.Acc) - system.Acf @ inv_Aff @ system.Afc
        self._schur = csr_matrix(S)
        logger.debug(f"{self.name}: Schur complement with {self._schur.nnz} non-zeros")

    def update_preconditioner(self) -> None:
        """Factorize, or build a preconditioner for, the Schur complement."""
        if self._schur is None:
            raise PreconditionerError(
                f"{self.name}: Schur complement has not been computed."
            )
        if self.linear_solver == "direct":
            self._factorization = DirectFactorization(self._schur)
            self._schur_preconditioner = None
        else:
            self._factorization = None
            if self.preconditioner is None:
                self._schur_preconditioner = None
            else:
                factory = preconditioner_factories.get(self.preconditioner)
                try:
                    self._schur_preconditioner = factory(self._schur)
                except Exception as exc:
                    raise PreconditionerError(
                        f"{self.name}: error building {self.preconditioner!r} preconditioner: {exc}"
                    ) from exc
        self._inverse_system = self._system
        logger.debug(f"{self.name}: preconditioner updated ({self.linear_solver})")

    @property
    def schur(self) -> typing.Optional[csr_matrix]:
        return self._schur

    @property
    def is_assembled(self) -> bool:
        return self._inverse_system is not None

    def apply_inverse(
        self, x: CompositeVector, out: typing.Optional[CompositeVector] = None
    ) -> CompositeVector:
        """
        Apply the inverse of the last assembled operator.

        :param x: Vector with "cell" and "face" components.
        :param out: Optional output vector.
        :return: `out`, or a new vector.
        :raises PreconditionerError: If the operator was never assembled.
        """
        system = self._inverse_system
        if system is None or self._schur is None:
            raise PreconditionerError(
                f"{self.name}: apply_inverse called before the preconditioner was assembled."
            )
        out = out if out is not None else x.zeros_like()
        Aff = system.safe_Aff
        rc = np.asarray(x["cell"])
        rf = np.asarray(x["face"])
        rhs = rc - system.Acf @ (rf / Aff)
        if self._factorization is not None:
            yc = self._factorization.solve(rhs)
        else:
            yc, _ = solve_linear_system(
                self._schur,
                rhs,
                max_iterations=self.max_iterations,
                solver=self.linear_solver,
                preconditioner=self._schur_preconditioner,
                rtol=self.rtol,
            )
        out["cell"] = yc
        out["face"] = (rf - system.Afc @ yc) / Aff
        return out

    def apply(
        self, x: CompositeVector, out: typing.Optional[CompositeVector] = None
    ) -> CompositeVector:
        """Compute `A x` with the assembled global operator."""
        system = self._require_system()
        out = out if out is not None else x.zeros_like()
        xc = np.asarray(x["cell"])
        xf = np.asarray(x["face"])
        out["cell"] = system.Acc * xc + system.Acf @ xf
        out["face"] = system.Afc @ xc + system.Aff * xf
        return out

    def compute_negative_residual(
        self, x: CompositeVector, out: typing.Optional[CompositeVector] = None
    ) -> CompositeVector:
        """Compute `A x - F`."""
        system = self._require_system()
        out = self.apply(x, out)
        out["cell"] -= system.Fc
        out["face"] -= system.Ff
        return out

    def derive_flux(self, x: CompositeVector) -> np.typing.NDArray:
        """
        Face fluxes [mol/s] along the face normals from a solution `x`.

        Uses the owner cell's side of each face, with the transmissibilities and
        gravity terms of the last `create_stiffness_matrices`/`add_gravity_fluxes`.
        """
        mesh = self.mesh
        p = np.asarray(x["cell"])
        lam = np.asarray(x["face"])
        q_cf = self._T * (p[:, None] - lam[mesh.cell_faces]) + self._gravity_fluxes
        is_owner = mesh.face_cells[mesh.cell_faces, 0] == np.arange(mesh.num_cells)[:, None]
        flux = np.zeros(mesh.num_faces)
        flux[mesh.cell_faces[is_owner]] = (mesh.cell_face_dirs * q_cf)[is_owner]
        return flux
