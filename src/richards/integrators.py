"""
Backward Euler time integration of a process kernel.

Every nonlinear iteration drives the kernel through

    fun -> update_precon -> precon -> enorm

with a lagged (modified) Newton policy: the Newton matrix is assembled and
factorized on the first iteration of each step, then reused for up to
`max_preconditioner_lag` iterations unless the error contracts too slowly.
"""

import logging
import typing

import attrs
import numpy as np

from richards.errors import ValidationError
from richards.state import State
from richards.timing import Timer

if typing.TYPE_CHECKING:
    from richards.pk import Richards

logger = logging.getLogger(__name__)

__all__ = ["StepResult", "BDF1TimeIntegrator"]


@attrs.frozen(slots=True)
class StepResult:
    """Outcome of one attempted step."""

    time: float
    """Time at the end of the step."""
    step_size: float
    converged: bool
    iterations: int
    """Number of nonlinear iterations taken."""
    error: float
    """Last value of the kernel's error norm."""
    assemblies: int = 0
    """Number of Newton matrix assemblies."""
    message: str = ""


@attrs.define
class BDF1TimeIntegrator:
    """
    Implicit (backward Euler) integrator with lagged Newton matrix assembly.

    :param pk: Process kernel implementing `fun`, `update_precon`, `precon` and `enorm`.
    :param timer: Step-size controller used by `run`.
    """

    pk: "Richards"
    timer: typing.Optional[Timer] = None
    max_iterations: int = attrs.field(default=20, validator=attrs.validators.ge(1))
    """Maximum number of nonlinear iterations per step."""
    max_preconditioner_lag: int = attrs.field(default=0, validator=attrs.validators.ge(0))
    """Number of iterations a Newton matrix may be reused for. Zero assembles every iteration."""
    contraction_threshold: float = attrs.field(
        default=0.85,
        validator=attrs.validators.and_(attrs.validators.gt(0.0), attrs.validators.le(1.0)),
    )
    """Reassemble when the error shrinks by less than this factor per iteration."""
    divergence_factor: float = attrs.field(default=1.0e3, validator=attrs.validators.gt(1.0))
    """Give up a step when the error grows by more than this factor in one iteration."""

    def advance(self, S_inter: State, S_next: State, h: float) -> StepResult:
        """
        Attempt one step of size `h` from `S_inter` into `S_next`.

        `S_next` is reset from `S_inter` and moved to `S_inter.time + h`. On
        convergence it holds the new solution, otherwise its content is undefined.
        """
        if not h > 0.0:
            raise ValidationError(f"Step size must be positive, got {h}.")
        t_old = S_inter.time
        t_new = t_old + h
        S_next.assign(S_inter)
        S_next.set_time(t_new)
        self.pk.set_states(S_inter, S_next)

        u_old = self.pk.state_to_solution(S_inter)
        u = u_old.copy()
        res = u.copy()
        du = u.copy()

        lag = 0
        assemblies = 0
        must_assemble = True
        previous_error: typing.Optional[float] = None
        error = float("nan")
        for iteration in range(1, self.max_iterations + 1):
            self.pk.fun(t_old, t_new, u_old, u, res)

            assemble = must_assemble or lag >= self.max_preconditioner_lag
            self.pk.update_precon(t_new, u, h, assemble=assemble)
            if assemble:
                assemblies += 1
                lag = 0
            else:
                lag += 1
            self.pk.precon(res, du)

            error = self.pk.enorm(u, du)
            if not np.isfinite(error):
                logger.warning(f"Non-finite error norm at iteration {iteration}, t={t_new}")
                return StepResult(
                    t_new, h, False, iteration, error, assemblies, "non-finite error norm"
                )

            u.update(-1.0, du)
            logger.debug(f"Iteration {iteration}: error={error:.6e} assembled={assemble}")
            if error <= 1.0:
                self.pk.solution_to_state(u, S_next)
                logger.info(
                    f"Step to t={t_new} (h={h:.6g}) converged in {iteration} iterations, error={error:.4e}"
                )
                return StepResult(t_new, h, True, iteration, error, assemblies)

            if previous_error is not None:
                if error > self.divergence_factor * previous_error:
                    logger.warning(
                        f"Nonlinear iteration diverging at iteration {iteration}: "
                        f"{previous_error:.4e} -> {error:.4e}"
                    )
                    return StepResult(t_new, h, False, iteration, error, assemblies, "diverged")
                must_assemble = error > self.contraction_threshold * previous_error
            else:
                must_assemble = False
            previous_error = error

        logger.warning(
            f"Step to t={t_new} (h={h:.6g}) did not converge in {self.max_iterations} iterations"
        )
        return StepResult(
            t_new, h, False, self.max_iterations, error, assemblies, "maximum iterations reached"
        )

    def commit(self, S_inter: State, S_next: State, h: float) -> None:
        """Accept the step in `S_next` and make it the new previous state."""
        self.pk.commit_state(h, S_next)
        S_next.advance_cycle()
        S_inter.assign(S_next)

    def run(self, S_inter: State, S_next: State) -> typing.List[StepResult]:
        """
        Integrate until the timer is done, adapting the step size.

        :return: Results of all step attempts, accepted or not.
        :raises TimingError: When the timer gives up after repeated rejections.
        """
        if self.timer is None:
            raise ValidationError("A timer is required to run the integrator.")
        if S_inter.time != self.timer.time:
            raise ValidationError(
                f"State time {S_inter.time} differs from the timer's time {self.timer.time}."
            )
        results = []
        while not self.timer.done():
            h = self.timer.propose_step_size()
            result = self.advance(S_inter, S_next, h)
            results.append(result)
            if result.converged:
                self.commit(S_inter, S_next, h)
                self.timer.accept_step(h, nonlinear_iterations=result.iterations)
            else:
                self.timer.reject_step(h)
        return results
