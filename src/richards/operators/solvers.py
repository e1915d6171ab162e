"""Linear solvers and preconditioner factories, selectable by name."""

import logging
import typing

import numpy as np
import pyamg  # type: ignore[import-untyped]
from scipy.sparse import csr_array, csr_matrix, diags  # type: ignore[import-untyped]
from scipy.sparse.linalg import (  # type: ignore[import-untyped]
    LinearOperator,
    bicgstab,
    cg,
    gmres,
    lgmres,
    spilu,
    splu,
)

from richards._precision import get_floating_point_info
from richards.errors import PreconditionerError, SolverError, ValidationError
from richards.registry import Registry
from richards.types import Preconditioner, PreconditionerFactory, SolverFunc

logger = logging.getLogger(__name__)

__all__ = [
    "build_amg_preconditioner",
    "build_diagonal_preconditioner",
    "build_ilu_preconditioner",
    "preconditioner_factories",
    "solver_funcs",
    "DirectFactorization",
    "solve_linear_system",
]

preconditioner_factories: Registry[PreconditionerFactory] = Registry(
    "preconditioner factory"
)
"""Registered preconditioner factory functions."""
solver_funcs: Registry[SolverFunc] = Registry("solver function")
"""Registered (iterative) solver functions."""


@preconditioner_factories.register("amg")
def build_amg_preconditioner(
    A_csr: typing.Union[csr_array, csr_matrix], cycle: str = "V", **kwargs: typing.Any
) -> LinearOperator:
    """
    Creates an Algebraic Multigrid (AMG) preconditioner using PyAMG.

    The cell Schur complement of the Richards operator is symmetric positive
    definite, which is where smoothed aggregation works best.

    :param A_csr: The coefficient matrix in CSR format.
    :param cycle: Multigrid cycle type ('V', 'W', 'F').
    :param kwargs: Additional arguments for `pyamg.smoothed_aggregation_solver`.
    :return: A SciPy `LinearOperator` that represents the AMG preconditioner.
    """
    ml_solver = pyamg.smoothed_aggregation_solver(csr_matrix(A_csr), **kwargs)
    return ml_solver.aspreconditioner(cycle=cycle)


@preconditioner_factories.register("diagonal")
def build_diagonal_preconditioner(
    A_csr: typing.Union[csr_array, csr_matrix],
) -> LinearOperator:
    """
    Creates a diagonal (Jacobi) preconditioner from the coefficient matrix.

    :param A_csr: The coefficient matrix in CSR format.
    :return: A SciPy `LinearOperator` that represents the diagonal preconditioner.
    """
    diag_elements = A_csr.diagonal()
    threshold = max(1e-30, 100 * get_floating_point_info().tiny)
    diag_elements = np.where(np.abs(diag_elements) < threshold, 1.0, diag_elements)
    M_diag = diags(1.0 / diag_elements, format="csr")
    return LinearOperator(shape=A_csr.shape, matvec=M_diag.dot)  # type: ignore[arg-type]


@preconditioner_factories.register("ilu")
def build_ilu_preconditioner(
    A_csr: typing.Union[csr_array, csr_matrix], **kwargs: typing.Any
) -> LinearOperator:
    """
    Creates an Incomplete LU (ILU) preconditioner using `spilu`.

    :param A_csr: The coefficient matrix in CSR format. Converted to CSC for `spilu`.
    :return: A SciPy `LinearOperator` that solves the preconditioned system.
    """
    A_csc = A_csr.tocsc()
    kwargs.setdefault("drop_tol", 1e-4)
    kwargs.setdefault("fill_factor", 10)
    ilu_factor = spilu(A_csc, **kwargs)
    return LinearOperator(shape=A_csc.shape, matvec=ilu_factor.solve)  # type: ignore[arg-type]


class DirectFactorization:
    """Sparse LU factorization reused across solves until rebuilt."""

    def __init__(self, A_csr: typing.Union[csr_array, csr_matrix]) -> None:
        try:
            self._lu = splu(A_csr.tocsc())
        except RuntimeError as exc:
            raise PreconditionerError(f"Sparse LU factorization failed: {exc}") from exc
        self.shape = A_csr.shape

    def solve(self, b: np.typing.NDArray) -> np.typing.NDArray:
        return self._lu.solve(np.asarray(b, dtype=np.float64))


solver_funcs.register("bicgstab")(bicgstab)
solver_funcs.register("gmres")(gmres)
solver_funcs.register("lgmres")(lgmres)
solver_funcs.register("cg")(cg)


def _get_preconditioner(
    A_csr: typing.Union[csr_array, csr_matrix],
    preconditioner: typing.Optional[Preconditioner],
) -> typing.Optional[LinearOperator]:
    if preconditioner is None or isinstance(preconditioner, LinearOperator):
        return preconditioner
    if isinstance(preconditioner, str):
        return preconditioner_factories.get(preconditioner)(A_csr)
    if callable(preconditioner):
        return preconditioner(A_csr)
    raise ValidationError(f"Invalid preconditioner {preconditioner!r}.")


def solve_linear_system(
    A_csr: typing.Union[csr_array, csr_matrix],
    b: np.typing.NDArray,
    max_iterations: int,
    solver: typing.Union[str, SolverFunc] = "cg",
    preconditioner: typing.Optional[Preconditioner] = "ilu",
    rtol: float = 1e-10,
    atol: typing.Optional[float] = None,
    x0: typing.Optional[np.typing.NDArray] = None,
) -> typing.Tuple[np.typing.NDArray, typing.Optional[LinearOperator]]:
    """
    Solves the linear system A·x = b with an iterative solver.

    :param A_csr: Coefficient matrix in CSR format.
    :param b: Right-hand side vector.
    :param max_iterations: Maximum number of iterations.
    :param solver: Registered solver name or a SciPy-compatible solver callable.
    :param preconditioner: Registered preconditioner name, factory, `LinearOperator` or None.
        A built `LinearOperator` is reused as is.
    :param rtol: Relative tolerance.
    :param atol: Absolute tolerance. Defaults to a small multiple of ||b||.
    :param x0: Initial guess.
    :return: A tuple (x, M) where M is the preconditioner used, for reuse.
    :raises PreconditionerError: If the preconditioner cannot be built.
    :raises SolverError: If the solver does not converge.
    """
    solver_func = solver_funcs.get(solver) if isinstance(solver, str) else solver
    try:
        M = _get_preconditioner(A_csr, preconditioner)
    except ValidationError:
        raise
    except Exception as exc:
        raise PreconditionerError(f"Error building preconditioner: {exc}") from exc

    b_norm = float(np.linalg.norm(b))
    if b_norm == 0.0:
        return np.zeros_like(b), M
    atol = atol if atol is not None else 1e-14 * b_norm

    x, info = solver_func(
        A_csr, b, x0=x0, M=M, rtol=rtol, atol=atol, maxiter=max_iterations, callback=None
    )
    if info != 0:
        logger.warning(
            f"Solver {getattr(solver_func, '__name__', solver_func)!r} failed to converge "
            f"within {max_iterations} iterations. Info: {info}"
        )
        raise SolverError(
            f"Linear solver failed to converge within {max_iterations} iterations (info={info})."
        )
    return np.ascontiguousarray(x), M
