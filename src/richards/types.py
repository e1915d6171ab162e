import enum
import typing

import numpy as np
from scipy.sparse import csr_array, csr_matrix
from scipy.sparse.linalg import LinearOperator
from typing_extensions import TypeAlias


__all__ = [
    "FloatOrArray",
    "Vector",
    "Location",
    "BoundaryMarker",
    "EWCStatus",
    "Preconditioner",
    "PreconditionerFactory",
    "IterativeSolverFunc",
    "Solver",
    "SolverFunc",
    "UpwindSchemeFunc",
]

T = typing.TypeVar("T")

Numeric = typing.Union[int, float, np.floating, np.integer]
FloatOrArray = typing.Union[float, np.typing.NDArray[np.floating]]
Vector: TypeAlias = np.typing.NDArray[np.floating]
"""One dimensional array of floats, one entry per mesh entity."""
IndexArray: TypeAlias = np.typing.NDArray[np.integer]

Location = typing.Literal["cell", "face"]
"""Mesh location kinds a field can be sampled on."""

Options = typing.Mapping[str, typing.Any]
"""Flat key->value option set used to construct registered models."""


class BoundaryMarker(enum.IntEnum):
    """Per-face boundary condition kind."""

    NONE = 0
    DIRICHLET = 1
    NEUMANN = 2


class EWCStatus(enum.IntEnum):
    """Status codes reported by energy-water-content models. Zero means success."""

    SUCCESS = 0
    NOT_CONVERGED = 1
    NON_FINITE = 2
    OUT_OF_DOMAIN = 3


PreconditionerFactory = typing.Callable[
    [typing.Union[csr_array, csr_matrix]], LinearOperator
]
Preconditioner = typing.Union[LinearOperator, PreconditionerFactory, str]


class IterativeSolverFunc(typing.Protocol):
    """
    Protocol for an iterative solver function.
    """

    def __call__(
        self,
        A: typing.Any,
        b: typing.Any,
        x0: typing.Optional[typing.Any],
        *,
        rtol: float,
        atol: float,
        maxiter: typing.Optional[int],
        M: typing.Optional[typing.Any],
        callback: typing.Optional[typing.Callable[[np.typing.NDArray], None]],
    ) -> typing.Tuple[np.typing.NDArray, int]: ...


SolverFunc = IterativeSolverFunc
Solver = typing.Union[IterativeSolverFunc, str]

UpwindSchemeFunc = typing.Callable[..., None]
"""Fills face mobilities in-place from cell mobilities."""
