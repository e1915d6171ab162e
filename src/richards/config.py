import typing

import attrs

from richards.constants import c

__all__ = ["Config"]


def _default_gravity() -> typing.Tuple[float, float, float]:
    return (0.0, 0.0, -c.ACCELERATION_DUE_TO_GRAVITY)


@attrs.frozen
class Config:
    """Richards process kernel configuration and numerical parameters."""

    primary_variable_key: str = "pressure"
    """Name of the primary unknown field solved for by the kernel."""
    atol: float = attrs.field(default=1.0, validator=attrs.validators.ge(0.0))
    """
    Absolute error tolerance used by `enorm` [mol].

    Compared against the water content of a cell, so it is an amount of water,
    not a pressure.
    """
    rtol: float = attrs.field(default=1e-5, validator=attrs.validators.ge(0.0))
    """Relative error tolerance used by `enorm` (fraction of the cell water content)."""
    continuation_to_steady_state: bool = False
    """
    Relax tolerances early in the simulation.

    When enabled the tolerances become `tol0 + 1e5 * tol0 / (1 + t)`, so that early
    steps starting from a poor initial condition tolerate larger transient error and
    tighten back towards the nominal values as time advances.
    """
    assemble_preconditioner: bool = True
    """
    Default assembly policy of `update_precon`.

    When False, the Newton matrix coefficients are rebuilt but the global assembly,
    Schur complement and factorization are reused from the last assembled call.
    """
    upwind_scheme: str = "gravity"
    """Scheme used to move cell mobilities to faces ('arithmetic mean', 'gravity', 'total flux')."""
    linear_solver: str = "direct"
    """Solver for the cell Schur complement system ('direct', 'cg', 'bicgstab', 'gmres', 'lgmres')."""
    preconditioner: typing.Optional[str] = "ilu"
    """Preconditioner for iterative Schur solves ('ilu', 'amg', 'diagonal'). Ignored by 'direct'."""
    linear_solver_max_iterations: int = attrs.field(
        default=200,
        validator=attrs.validators.and_(
            attrs.validators.ge(1), attrs.validators.le(10000)
        ),
    )
    """Maximum number of iterations of an iterative Schur solve."""
    linear_solver_rtol: float = attrs.field(
        default=1e-10, validator=attrs.validators.gt(0.0)
    )
    """Relative tolerance of an iterative Schur solve."""
    gravity: typing.Tuple[float, ...] = attrs.field(factory=_default_gravity)
    """
    Gravity vector [m/s²].

    Only the trailing components matching the mesh dimension are used, so the last
    mesh axis is the vertical one.
    """
    verbose_norms: bool = False
    """Log infinity norms of the cell and face components of the correction in `enorm`."""
