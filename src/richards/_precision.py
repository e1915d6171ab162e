"""Floating point type of mesh geometry and field storage."""

from contextlib import contextmanager
from contextvars import ContextVar

import numpy as np


__all__ = ["get_dtype", "with_precision", "get_floating_point_info"]

_field_dtype: ContextVar[np.typing.DTypeLike] = ContextVar("_field_dtype", default=np.float64)


def get_dtype() -> np.typing.DTypeLike:
    """Float type used for newly allocated fields and mesh arrays."""
    return _field_dtype.get()


@contextmanager
def with_precision(dtype: np.typing.DTypeLike):
    """
    Allocate fields and meshes with `dtype` within the context.

    Energy-water-content inversions and the Schur solves are tuned for float64,
    so lower precision is only suitable for storage-bound experiments.
    """
    token = _field_dtype.set(dtype)
    try:
        yield
    finally:
        _field_dtype.reset(token)


def get_floating_point_info() -> np.finfo:
    """Machine limits of the current float type."""
    return np.finfo(get_dtype())  # type: ignore[arg-type]
