"""
Schemes moving cell mobilities to faces.

Each scheme fills `face_values` in place from `cell_values`, given the mesh and
scheme-specific data (gravity, mass density, face fluxes).
"""

import logging
import typing

import numba  # type: ignore[import-untyped]
import numpy as np

from richards.mesh import Mesh
from richards.registry import Registry
from richards.types import UpwindSchemeFunc

logger = logging.getLogger(__name__)

__all__ = [
    "upwind_schemes",
    "upwind_arithmetic_mean",
    "upwind_gravity",
    "upwind_total_flux",
]

upwind_schemes: Registry[UpwindSchemeFunc] = Registry("upwind scheme")


@numba.njit(cache=True)
def _arithmetic_mean_kernel(face_cells, cell_values, face_values):
    for f in range(face_cells.shape[0]):
        c0 = face_cells[f, 0]
        c1 = face_cells[f, 1]
        if c1 < 0:
            face_values[f] = cell_values[c0]
        else:
            face_values[f] = 0.5 * (cell_values[c0] + cell_values[c1])


@numba.njit(cache=True)
def _upwind_by_sign_kernel(face_cells, driving_force, cell_values, face_values, tolerance):
    for f in range(face_cells.shape[0]):
        c0 = face_cells[f, 0]
        c1 = face_cells[f, 1]
        if c1 < 0:
            face_values[f] = cell_values[c0]
        elif driving_force[f] > tolerance:
            face_values[f] = cell_values[c0]
        elif driving_force[f] < -tolerance:
            face_values[f] = cell_values[c1]
        else:
            face_values[f] = 0.5 * (cell_values[c0] + cell_values[c1])


@upwind_schemes.register("arithmetic mean")
def upwind_arithmetic_mean(
    mesh: Mesh,
    cell_values: np.typing.NDArray,
    face_values: np.typing.NDArray,
    **kwargs: typing.Any,
) -> None:
    """Average of the cells adjacent to each face. Boundary faces take their cell's value."""
    _arithmetic_mean_kernel(mesh.face_cells, cell_values, face_values)


@upwind_schemes.register("gravity")
def upwind_gravity(
    mesh: Mesh,
    cell_values: np.typing.NDArray,
    face_values: np.typing.NDArray,
    gravity: typing.Optional[np.typing.NDArray] = None,
    **kwargs: typing.Any,
) -> None:
    """
    Upwind by the gravitational driving force between the adjacent cells.

    Flow from the owner to the neighbour is favoured when `g . (x_1 - x_0) > 0`.
    Faces normal to gravity take the arithmetic mean.
    """
    if gravity is None or not np.any(gravity):
        _arithmetic_mean_kernel(mesh.face_cells, cell_values, face_values)
        return
    c0 = mesh.face_cells[:, 0]
    c1 = mesh.face_cells[:, 1]
    dx = np.where(
        (c1 >= 0)[:, None],
        mesh.cell_centroids[np.maximum(c1, 0)] - mesh.cell_centroids[c0],
        0.0,
    )
    driving_force = dx @ np.asarray(gravity, dtype=np.float64)
    tolerance = 1e-12 * float(np.linalg.norm(gravity)) * float(np.max(np.abs(dx), initial=1.0))
    _upwind_by_sign_kernel(mesh.face_cells, driving_force, cell_values, face_values, tolerance)


@upwind_schemes.register("total flux")
def upwind_total_flux(
    mesh: Mesh,
    cell_values: np.typing.NDArray,
    face_values: np.typing.NDArray,
    flux: typing.Optional[np.typing.NDArray] = None,
    flux_tolerance: float = 1e-12,
    **kwargs: typing.Any,
) -> None:
    """
    Upwind by the sign of a face flux oriented along the face normal.

    Positive flux flows from owner to neighbour. Without a flux this reduces to the
    arithmetic mean.
    """
    if flux is None:
        _arithmetic_mean_kernel(mesh.face_cells, cell_values, face_values)
        return
    _upwind_by_sign_kernel(mesh.face_cells, flux, cell_values, face_values, flux_tolerance)
