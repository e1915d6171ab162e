"""
Richards equation process kernel.

Solves for pressure `p` (cells and faces) the mass balance

    d(wc)/dt - div( k kr n_l / mu (grad p - rho g) ) = 0

discretized in time with backward Euler. The kernel exposes the four operations
an implicit time integrator drives every nonlinear iteration:

```python
pk.fun(t_old, t_new, u_old, u_new, res)   # residual
pk.update_precon(t_new, u_new, h)         # Newton matrix, optionally reassembled
pk.precon(res, du)                        # du = P^-1 res
error = pk.enorm(u_new, du)               # <= 1 means converged
```
"""

import logging
import typing

import numba  # type: ignore[import-untyped]
import numpy as np

from richards.boundary_conditions import BoundaryFunction, compute_boundary_markers
from richards.config import Config
from richards.constants import c
from richards.constitutive.eos import EOS, ConstantEOS
from richards.constitutive.viscosity import ConstantViscosity, ViscosityModel
from richards.constitutive.wrm import VanGenuchtenModel
from richards.errors import (
    ContractViolationError,
    PreconditionerError,
    SolverError,
    ValidationError,
)
from richards.evaluators import (
    EOSDensityEvaluator,
    RelativePermeabilityEvaluator,
    SaturationEvaluator,
    ViscosityEvaluator,
    WaterContentEvaluator,
)
from richards.mesh import Mesh
from richards.operators.mfd import MatrixMFD
from richards.operators.upwinding import upwind_schemes
from richards.parallel import Communicator, SerialCommunicator
from richards.state import (
    FieldEvaluator,
    PrimaryVariableFieldEvaluator,
    State,
    derivative_key,
)
from richards.types import BoundaryMarker
from richards.vectors import CompositeVector, TreeVector

logger = logging.getLogger(__name__)

__all__ = ["Richards"]

PressureLike = typing.Union[
    float, np.typing.NDArray, typing.Callable[[np.typing.NDArray], np.typing.NDArray]
]


@numba.njit(cache=True)
def _max_scaled_error(du, wc, h, atol, rtol):
    worst = 0.0
    for i in range(du.shape[0]):
        error = abs(h * du[i]) / (atol + rtol * abs(wc[i]))
        if not np.isfinite(error):
            return np.nan
        if error > worst:
            worst = error
    return worst


class Richards:
    """
    Process kernel for the Richards equation.

    :param config: Numerical configuration.
    :param mesh: Computational mesh.
    :param bc_pressure: Dirichlet (pressure [Pa]) boundary functions.
    :param bc_flux: Neumann (outward flux [mol m^-2 s^-1]) boundary functions.
    :param name: Owner name of the fields the kernel writes.
    :param communicator: Default communicator for `enorm` reductions.
    """

    def __init__(
        self,
        config: Config,
        mesh: Mesh,
        bc_pressure: typing.Sequence[BoundaryFunction] = (),
        bc_flux: typing.Sequence[BoundaryFunction] = (),
        name: str = "flow",
        communicator: typing.Optional[Communicator] = None,
    ) -> None:
        upwind_schemes.get(config.upwind_scheme)
        if len(config.gravity) < mesh.dimension:
            raise ValidationError(
                f"Gravity has {len(config.gravity)} components, the mesh needs {mesh.dimension}."
            )
        self.config = config
        self.mesh = mesh
        self.name = name
        self.key = config.primary_variable_key
        self.bc_pressure = list(bc_pressure)
        self.bc_flux = list(bc_flux)
        self.communicator: Communicator = communicator or SerialCommunicator()

        self.matrix = self._build_operator(f"{name} matrix")
        self.preconditioner = self._build_operator(f"{name} preconditioner")
        self.bc_markers = np.full(mesh.num_faces, int(BoundaryMarker.NONE), dtype=np.int64)
        self.bc_values = np.zeros(mesh.num_faces)

        self.niter = 0
        self.S_inter: typing.Optional[State] = None
        self.S_next: typing.Optional[State] = None
        self._permeability_version: typing.Optional[int] = None
        self._precon_failed = False

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r}, key={self.key!r}, cells={self.mesh.num_cells})"

    def _build_operator(self, name: str) -> MatrixMFD:
        return MatrixMFD(
            self.mesh,
            linear_solver=self.config.linear_solver,
            preconditioner=self.config.preconditioner,
            max_iterations=self.config.linear_solver_max_iterations,
            rtol=self.config.linear_solver_rtol,
            name=name,
        )

    ############
    # Lifecycle
    ############

    def setup(
        self,
        S: State,
        wrm: VanGenuchtenModel,
        eos: typing.Optional[EOS] = None,
        viscosity_model: typing.Optional[ViscosityModel] = None,
        water_content: typing.Optional[FieldEvaluator] = None,
        temperature: typing.Optional[float] = None,
    ) -> None:
        """
        Declare the kernel's fields and evaluators on `S`.

        Declares the primary variable (cells and faces), the time-independent
        "permeability" [m²], "porosity" and "temperature" [K] fields (writable by
        this kernel), "numerical_rel_perm", "darcy_flux" and the evaluators for
        densities, viscosity, saturation, mobility and water content.

        :param S: State to set up.
        :param wrm: Water retention model.
        :param eos: Liquid EOS. Defaults to a constant density EOS.
        :param viscosity_model: Liquid viscosity. Defaults to a constant viscosity.
        :param water_content: Water content evaluator. Defaults to `phi n_l s_l V`.
        :param temperature: Uniform temperature [K].
        """
        eos = eos or ConstantEOS()
        viscosity_model = viscosity_model or ConstantViscosity()
        if not S.has_constant_scalar("atmospheric_pressure"):
            S.set_constant_scalar("atmospheric_pressure", c.ATMOSPHERIC_PRESSURE)
        S.set_constant_vector("gravity", self.config.gravity[-self.mesh.dimension :])

        S.require_field(self.key, owner=self.name, locations=("cell", "face"))
        S.set_field_evaluator(PrimaryVariableFieldEvaluator(self.key, locations=("cell", "face")))
        S.require_field("permeability", owner=self.name, time_independent=True)
        S.require_field("porosity", owner=self.name, time_independent=True)
        S.require_field(
            "temperature",
            owner=self.name,
            time_independent=True,
            fill=temperature if temperature is not None else c.REFERENCE_TEMPERATURE,
        )
        S.require_field("numerical_rel_perm", owner=self.name, locations=("cell", "face"))
        S.require_field("darcy_flux", owner=self.name, locations=("face",))

        S.set_field_evaluator(
            EOSDensityEvaluator("molar_density_liquid", eos, "molar", pressure_key=self.key)
        )
        S.set_field_evaluator(
            EOSDensityEvaluator("mass_density_liquid", eos, "mass", pressure_key=self.key)
        )
        S.set_field_evaluator(ViscosityEvaluator("viscosity_liquid", viscosity_model))
        S.set_field_evaluator(
            SaturationEvaluator("saturation_liquid", wrm, "liquid", pressure_key=self.key)
        )
        S.set_field_evaluator(
            RelativePermeabilityEvaluator("relative_permeability", wrm, pressure_key=self.key)
        )
        S.set_field_evaluator(water_content or WaterContentEvaluator())
        logger.debug(f"{self.name}: set up {S!r}")

    def initialize(self, S: State, pressure: PressureLike) -> None:
        """
        Set the initial pressure.

        :param pressure: A scalar, an array of cell values, or a callable of
            centroid coordinates evaluated on cells and faces. Face values of
            scalar or array input are the average of the adjacent cells.
        """
        p = S.get_field_data_writable(self.key, owner=self.name)
        if callable(pressure):
            p["cell"] = pressure(self.mesh.cell_centroids)
            p["face"] = pressure(self.mesh.face_centroids)
        else:
            p["cell"] = pressure
            c0 = self.mesh.face_cells[:, 0]
            c1 = self.mesh.face_cells[:, 1]
            cells = p["cell"]
            p["face"] = np.where(c1 >= 0, 0.5 * (cells[c0] + cells[np.maximum(c1, 0)]), cells[c0])

        self.update_boundary_conditions(S.time)
        dirichlet = self.bc_markers == BoundaryMarker.DIRICHLET
        p["face"][dirichlet] = self.bc_values[dirichlet]
        S.get_field_data_writable("darcy_flux", owner=self.name).put_scalar(0.0)
        self.niter = 0
        logger.info(
            f"{self.name}: initialized at t={S.time} with pressure in "
            f"[{p['cell'].min():.6g}, {p['cell'].max():.6g}] Pa"
        )

    def set_states(self, S_inter: State, S_next: State) -> None:
        """Set the "previous" and "next" snapshots of the current step."""
        if S_next.time <= S_inter.time:
            raise ContractViolationError(
                f"Next state time {S_next.time} must follow previous state time {S_inter.time}."
            )
        self.S_inter = S_inter
        self.S_next = S_next

    def _states(self) -> typing.Tuple[State, State]:
        if self.S_inter is None or self.S_next is None:
            raise ContractViolationError(f"{self.name}: `set_states` has not been called.")
        return self.S_inter, self.S_next

    def solution_to_state(self, u: TreeVector, S: State) -> None:
        """Copy a solution vector into the primary variable of `S`."""
        if u.data is None:
            raise ValidationError("Solution vector has no data.")
        S.get_field_data_writable(self.key, owner=self.name).assign(u.data)

    def state_to_solution(self, S: State) -> TreeVector:
        """Solution vector holding a copy of the primary variable of `S`."""
        return TreeVector(data=S.get_field_data(self.key).data.copy(), name=self.key)

    def commit_state(self, h: float, S: State) -> None:
        """Accept a step: derive the Darcy flux of the committed pressure."""
        self.update_boundary_conditions(S.time)
        self._build_diffusion(S, self.matrix)
        self.matrix.apply_boundary_conditions(self.bc_markers, self.bc_values)
        pressure = S.get_field_data(self.key, time=S.time)
        flux = S.get_field_data_writable("darcy_flux", owner=self.name)
        flux["face"] = self.matrix.derive_flux(pressure.data)
        logger.debug(f"{self.name}: committed step h={h} at t={S.time} after {self.niter} iterations")

    ######################
    # Boundary conditions
    ######################

    def update_boundary_conditions(self, time: float) -> None:
        for bc in self.bc_pressure:
            bc.compute(time)
        for bc in self.bc_flux:
            bc.compute(time)
        self.bc_markers, self.bc_values = compute_boundary_markers(
            self.mesh.num_faces, self.bc_pressure, self.bc_flux
        )

    ##############
    # Discretization
    ##############

    def _update_mass_matrices(self, S: State) -> None:
        version = S.field_version("permeability")
        if version == self._permeability_version:
            return
        permeability = S.get_field_data("permeability")["cell"]
        self.matrix.create_mass_matrices(permeability)
        self.preconditioner.create_mass_matrices(permeability)
        self._permeability_version = version

    def update_permeability_data(self, S: State) -> None:
        """Refresh cell mobilities and upwind them to faces into "numerical_rel_perm"."""
        S.get_field_evaluator("relative_permeability").has_field_changed(S, self.name)
        mobility = S.get_field_data("relative_permeability")["cell"]
        rel_perm = S.get_field_data_writable("numerical_rel_perm", owner=self.name)
        rel_perm["cell"] = mobility
        upwind = upwind_schemes.get(self.config.upwind_scheme)
        upwind(
            self.mesh,
            mobility,
            rel_perm["face"],
            gravity=S.get_constant_vector_data("gravity"),
            flux=S.get_field_data("darcy_flux")["face"],
        )

    def add_gravity_fluxes(self, S: State, matrix: MatrixMFD) -> None:
        S.get_field_evaluator("mass_density_liquid").has_field_changed(S, self.name)
        rho = S.get_field_data("mass_density_liquid")["cell"]
        matrix.add_gravity_fluxes(S.get_constant_vector_data("gravity"), rho)

    def _build_diffusion(self, S: State, matrix: MatrixMFD) -> None:
        self._update_mass_matrices(S)
        self.update_permeability_data(S)
        matrix.create_stiffness_matrices(S.get_field_data("numerical_rel_perm")["face"])
        matrix.create_rhs_vectors()
        self.add_gravity_fluxes(S, matrix)

    def apply_diffusion(self, S: State, g: CompositeVector) -> None:
        """Add the diffusion residual `A p - F` of `S` to `g`, cells and faces."""
        self._build_diffusion(S, self.matrix)
        self.matrix.apply_boundary_conditions(self.bc_markers, self.bc_values)
        self.matrix.assemble_global_matrices()
        pressure = S.get_field_data(self.key, time=S.time)
        residual = self.matrix.compute_negative_residual(pressure.data)
        g.update(1.0, residual)

    def add_accumulation(self, g: CompositeVector) -> None:
        """Add `(wc_next - wc_old) / h` to the cell residual."""
        S_inter, S_next = self._states()
        h = S_next.time - S_inter.time
        for S in (S_inter, S_next):
            S.get_field_evaluator("water_content").has_field_changed(S, self.name)
        wc_old = S_inter.get_field_data("water_content", time=S_inter.time)["cell"]
        wc_new = S_next.get_field_data("water_content", time=S_next.time)["cell"]
        g["cell"] += (wc_new - wc_old) / h

    ########################
    # Integrator interface
    ########################

    def fun(
        self,
        t_old: float,
        t_new: float,
        u_old: TreeVector,
        u_new: TreeVector,
        g: TreeVector,
    ) -> None:
        """
        Compute the nonlinear residual of a backward Euler step into `g`.

        :raises ContractViolationError: If the states' times are not `t_old`/`t_new`.
        """
        S_inter, S_next = self._states()
        if S_inter.time != t_old or S_next.time != t_new:
            raise ContractViolationError(
                f"{self.name}: residual requested on ({t_old}, {t_new}) but states "
                f"are at ({S_inter.time}, {S_next.time})."
            )
        self.niter += 1
        self.solution_to_state(u_new, S_next)
        self.update_boundary_conditions(t_new)

        res = g.data
        if res is None:
            raise ValidationError("Residual vector has no data.")
        res.put_scalar(0.0)
        self.apply_diffusion(S_next, res)
        self.add_accumulation(res)

        if logger.isEnabledFor(logging.DEBUG):
            p = u_new.data["cell"]  # type: ignore[index]
            for cell in {0, self.mesh.num_cells - 1}:
                logger.debug(
                    f"{self.name}: cell {cell}: p={p[cell]:.10g}, res={res['cell'][cell]:.6g}"
                )
        if not np.all(np.isfinite(res["cell"])):
            logger.error(f"{self.name}: non-finite residual at t={t_new}")

    def update_precon(
        self,
        t: float,
        up: TreeVector,
        h: float,
        assemble: typing.Optional[bool] = None,
    ) -> None:
        """
        Rebuild the Newton matrix at the trial solution `up`.

        :param t: Time of the trial solution, must match the next state's time.
        :param up: Trial solution.
        :param h: Step size.
        :param assemble: Assemble and refactorize now. When False the previous
            factorization stays in use. Defaults to `config.assemble_preconditioner`.
        :raises ContractViolationError: If the next state is not at `t`.
        """
        _, S_next = self._states()
        if S_next.time != t:
            raise ContractViolationError(
                f"{self.name}: preconditioner requested at t={t}, state is at t={S_next.time}."
            )
        if assemble is None:
            assemble = self.config.assemble_preconditioner
        logger.debug(f"{self.name}: updating preconditioner at t={t}, h={h}, assemble={assemble}")

        self.solution_to_state(up, S_next)
        self.update_boundary_conditions(t)
        self._build_diffusion(S_next, self.preconditioner)

        S_next.get_field_evaluator("water_content").has_field_derivative_changed(
            S_next, self.name, self.key
        )
        dwc_dp = S_next.get_field_data(derivative_key("water_content", self.key))["cell"]
        pressure = S_next.get_field_data(self.key)["cell"]
        self.preconditioner.accumulate_diagonal(slice(None), dwc_dp / h)
        self.preconditioner.accumulate_rhs(slice(None), dwc_dp / h * pressure)
        self.preconditioner.apply_boundary_conditions(self.bc_markers, self.bc_values)

        if assemble:
            self.preconditioner.assemble_global_matrices()
            self.preconditioner.compute_schur_complement(self.bc_markers, self.bc_values)
            try:
                self.preconditioner.update_preconditioner()
            except PreconditionerError as exc:
                logger.warning(f"{self.name}: Newton matrix factorization failed at t={t}: {exc}")
                self._precon_failed = True
            else:
                self._precon_failed = False

    def precon(self, u: TreeVector, Pu: TreeVector) -> None:
        """
        Apply the inverse of the last assembled Newton matrix, `Pu = P^-1 u`.

        If the last assembly could not be factorized, or the linear solve does not
        converge, `Pu` is filled with NaN so that `enorm` rejects the iterate.
        """
        if self._precon_failed:
            Pu.put_scalar(np.nan)
            return
        try:
            self.preconditioner.apply_inverse(u.data, Pu.data)  # type: ignore[arg-type]
        except SolverError as exc:
            logger.warning(f"{self.name}: linear solve failed: {exc}")
            Pu.put_scalar(np.nan)

    def enorm(
        self,
        u: TreeVector,
        du: TreeVector,
        communicator: typing.Optional[Communicator] = None,
    ) -> float:
        """
        Scaled error of a correction `du`, relative to the water content.

            max_c |h du_c| / (atol + rtol |wc_c|)

        reduced with a global maximum across workers. Values at or below one mean
        converged. Non-finite corrections give NaN.

        :param communicator: Overrides the kernel's communicator.
        """
        S_inter, S_next = self._states()
        S_next.get_field_evaluator("water_content").has_field_changed(S_next, self.name)
        wc = S_next.get_field_data("water_content")["cell"]
        h = S_next.time - S_inter.time

        atol = self.config.atol
        rtol = self.config.rtol
        if self.config.continuation_to_steady_state:
            t = S_next.time
            atol = atol + 1.0e5 * atol / (1.0 + t)
            rtol = rtol + 1.0e5 * rtol / (1.0 + t)

        dvec = du.data
        if dvec is None:
            raise ValidationError("Correction vector has no data.")
        enorm_cell = _max_scaled_error(
            np.ascontiguousarray(dvec["cell"]), np.ascontiguousarray(wc), h, atol, rtol
        )
        # Face corrections are not part of the error estimate.
        enorm_face = 0.0
        if self.config.verbose_norms:
            logger.info(
                f"{self.name}: ||du_cell||_inf={dvec.norm_inf('cell'):.6g} "
                f"||du_face||_inf={dvec.norm_inf('face'):.6g} enorm_cell={enorm_cell:.6g}"
            )
        comm = communicator or self.communicator
        return comm.max_all(max(enorm_cell, enorm_face))
