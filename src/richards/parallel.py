"""Collective reductions across workers."""

import typing

from richards.errors import ValidationError

__all__ = ["Communicator", "SerialCommunicator", "MPICommunicator"]


class Communicator(typing.Protocol):
    """Group of workers taking part in collective reductions."""

    @property
    def rank(self) -> int: ...

    @property
    def size(self) -> int: ...

    def max_all(self, value: float) -> float:
        """Global maximum of `value` over all workers. Blocks until every worker contributes."""
        ...


class SerialCommunicator:
    """Single-worker communicator. Reductions are the identity."""

    rank = 0
    size = 1

    def max_all(self, value: float) -> float:
        return float(value)


class MPICommunicator:
    """
    Communicator over an `mpi4py` communicator.

    :param comm: An `mpi4py.MPI.Comm`. Defaults to `MPI.COMM_WORLD`.
    :raises ValidationError: If `mpi4py` is not installed.
    """

    def __init__(self, comm: typing.Any = None) -> None:
        try:
            from mpi4py import MPI  # type: ignore[import-not-found]
        except ImportError as exc:
            raise ValidationError(
                "MPICommunicator requires `mpi4py`. Install it with `pip install richards[mpi]`."
            ) from exc
        self._MPI = MPI
        self.comm = comm if comm is not None else MPI.COMM_WORLD

    def __repr__(self) -> str:
        return f"{type(self).__name__}(rank={self.rank}, size={self.size})"

    @property
    def rank(self) -> int:
        return self.comm.Get_rank()

    @property
    def size(self) -> int:
        return self.comm.Get_size()

    def max_all(self, value: float) -> float:
        return float(self.comm.allreduce(float(value), op=self._MPI.MAX))
