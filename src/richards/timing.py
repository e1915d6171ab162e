"""Adaptive step-size control for implicit time integration."""

from collections import deque
from datetime import timedelta
import logging
import typing

import attrs

from richards.errors import TimingError, ValidationError

__all__ = ["Time", "StepRecord", "Timer"]

logger = logging.getLogger(__name__)


def Time(
    seconds: float = 0,
    minutes: float = 0,
    hours: float = 0,
    days: float = 0,
    years: float = 0,
) -> float:
    """
    Expresses time components as total seconds. A year is 365 days.

    :return: Total time in seconds.
    """
    delta = timedelta(days=days + 365.0 * years, hours=hours, minutes=minutes, seconds=seconds)
    return delta.total_seconds()


@attrs.frozen(slots=True)
class StepRecord:
    """Outcome of one step attempt."""

    time: float
    step_size: float
    nonlinear_iterations: typing.Optional[int] = None
    accepted: bool = True


def _positive(instance: typing.Any, attribute: attrs.Attribute, value: float) -> None:
    if value <= 0.0:
        raise ValidationError(f"`{attribute.name}` must be positive, got {value}.")


@attrs.define
class Timer:
    """
    Step-size controller driven by the nonlinear iteration count.

    Steps grow by `ramp_up_factor` when an accepted step converged in at most
    `fast_iterations` iterations, shrink by `backoff_factor` when it needed at
    least `slow_iterations`, and shrink by `backoff_factor` on every rejection.
    Proposed steps never overshoot `end_time`.
    """

    initial_step_size: float = attrs.field(validator=_positive)
    """Initial step size [s]."""
    end_time: float
    """Simulation end time [s]."""
    start_time: float = 0.0
    """Simulation start time [s]."""
    min_step_size: float = attrs.field(default=1e-6, validator=_positive)
    """Smallest step allowed [s]. Rejecting a step of this size is fatal."""
    max_step_size: float = attrs.field(default=float("inf"), validator=_positive)
    """Largest step allowed [s]."""
    ramp_up_factor: float = attrs.field(default=1.25, validator=attrs.validators.ge(1.0))
    backoff_factor: float = attrs.field(
        default=0.5,
        validator=attrs.validators.and_(attrs.validators.gt(0.0), attrs.validators.lt(1.0)),
    )
    fast_iterations: int = 4
    slow_iterations: int = 10
    max_rejects: int = attrs.field(default=10, validator=attrs.validators.ge(1))
    """Maximum number of consecutive rejections."""
    max_steps: typing.Optional[int] = None
    history_size: int = 20

    time: float = attrs.field(init=False, default=0.0)
    """Time reached by the accepted steps [s]."""
    step: int = attrs.field(init=False, default=0)
    """Number of accepted steps."""
    next_step_size: float = attrs.field(init=False, default=0.0)
    rejection_count: int = attrs.field(init=False, default=0)
    """Consecutive rejections."""
    history: deque = attrs.field(init=False)

    def __attrs_post_init__(self) -> None:
        if self.end_time < self.start_time:
            raise ValidationError("`end_time` must not precede `start_time`.")
        if self.min_step_size > self.max_step_size:
            raise ValidationError("`min_step_size` must not exceed `max_step_size`.")
        self.time = self.start_time
        self.next_step_size = min(
            max(self.initial_step_size, self.min_step_size), self.max_step_size
        )
        self.history = deque(maxlen=self.history_size)

    @property
    def time_remaining(self) -> float:
        return max(self.end_time - self.time, 0.0)

    def done(self) -> bool:
        if self.time_remaining <= 0.0:
            return True
        return self.max_steps is not None and self.step >= self.max_steps

    def propose_step_size(self) -> float:
        """Next step size, cut to land exactly on `end_time`."""
        dt = min(self.next_step_size, self.time_remaining)
        logger.debug(f"Proposing step {self.step + 1} of size {dt} at t={self.time}")
        return dt

    def accept_step(
        self, step_size: float, nonlinear_iterations: typing.Optional[int] = None
    ) -> float:
        """
        Register an accepted step.

        :return: The next proposed step size.
        :raises TimingError: If the step overshoots `end_time`.
        """
        if step_size > self.time_remaining * (1.0 + 1e-12):
            raise TimingError(
                f"Step size {step_size} exceeds remaining time {self.time_remaining}."
            )
        # Snap to the end time to avoid round-off leftovers
        if step_size >= self.time_remaining:
            self.time = self.end_time
        else:
            self.time += step_size
        self.step += 1
        self.rejection_count = 0
        self.history.append(
            StepRecord(self.time, step_size, nonlinear_iterations, accepted=True)
        )

        dt = max(self.next_step_size, step_size)
        if nonlinear_iterations is not None:
            if nonlinear_iterations <= self.fast_iterations:
                dt *= self.ramp_up_factor
            elif nonlinear_iterations >= self.slow_iterations:
                dt *= self.backoff_factor
        self.next_step_size = min(max(dt, self.min_step_size), self.max_step_size)
        logger.debug(
            f"Accepted step {self.step} of size {step_size} at t={self.time} "
            f"({nonlinear_iterations} iterations). Next size: {self.next_step_size:.6g}"
        )
        return self.next_step_size

    def reject_step(self, step_size: float) -> float:
        """
        Register a rejected step.

        :return: The reduced step size to retry with.
        :raises TimingError: After `max_rejects` consecutive rejections, or when a
            step of the minimum size is rejected.
        """
        self.history.append(StepRecord(self.time, step_size, accepted=False))
        self.rejection_count += 1
        if self.rejection_count > self.max_rejects:
            raise TimingError(
                f"Maximum number of consecutive step rejections ({self.max_rejects}) exceeded at t={self.time}."
            )
        if step_size <= self.min_step_size:
            raise TimingError(
                f"Step of minimum size {self.min_step_size} rejected at t={self.time}."
            )
        self.next_step_size = max(step_size * self.backoff_factor, self.min_step_size)
        logger.warning(
            f"Rejected step of size {step_size} at t={self.time}. Retrying with {self.next_step_size:.6g}"
        )
        return self.next_step_size
