class RichardsError(Exception):
    """Base class for all richards-related errors."""

    pass


class ValidationError(RichardsError, ValueError):
    """Raised when input data or configuration fails validation checks."""

    pass


class ContractViolationError(RichardsError):
    """
    Raised when the caller and a process kernel are desynchronized.

    Typically a state snapshot's time stamp does not match the time at which
    an evaluation was requested. This is fatal for the current step.
    """

    pass


class PreconditionerError(RichardsError):
    """Raised when there is an error related to preconditioners."""

    pass


class SolverError(RichardsError):
    """Raised when a linear solver fails to converge within the specified iterations."""

    pass


class ComputationError(RichardsError):
    """Raised when there is an error during numerical computations."""

    pass


class TimingError(RichardsError):
    """Raised when there is an error related to time stepping."""

    pass
