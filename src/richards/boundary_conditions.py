"""Boundary-condition providers producing per-face values at a given time."""

import abc
import typing

import attrs
import numpy as np

from richards.errors import ValidationError
from richards.registry import Registry
from richards.types import BoundaryMarker

__all__ = [
    "boundary_functions",
    "boundary_function",
    "BoundaryFunction",
    "ConstantBoundaryFunction",
    "TimeDependentBoundaryFunction",
    "TabularBoundaryFunction",
    "compute_boundary_markers",
]

boundary_functions: Registry[typing.Callable[..., float]] = Registry("boundary function")
"""Named functions of time usable by `TimeDependentBoundaryFunction`."""


def boundary_function(
    func: typing.Optional[typing.Callable[..., float]] = None,
    name: typing.Optional[str] = None,
    override: bool = False,
) -> typing.Any:
    """
    Register a function of time as a boundary function.

    Usage:
    ```python
    @boundary_function
    def snowmelt(t, peak=1e-5, period=3.15e7):
        return peak * max(np.sin(2 * np.pi * t / period), 0.0)

    bc = TimeDependentBoundaryFunction(faces, "snowmelt", params={"peak": 2e-5})
    ```
    """
    if func is not None:
        return boundary_functions.register(name, override=override)(func)
    return boundary_functions.register(name, override=override)


@boundary_function
def sinusoidal(t: float, amplitude: float = 1.0, period: float = 86400.0, offset: float = 0.0) -> float:
    """Sinusoidal variation (daily cycle by default)."""
    return offset + amplitude * np.sin(2 * np.pi * t / period)


@boundary_function
def exponential_decay(t: float, initial: float = 1.0, time_constant: float = 3600.0) -> float:
    """Exponential decay from `initial`."""
    return initial * np.exp(-t / time_constant)


def _as_faces(faces: typing.Any) -> np.typing.NDArray:
    array = np.atleast_1d(np.asarray(faces, dtype=np.int64))
    if array.ndim != 1:
        raise ValidationError("Boundary faces must be a flat sequence of face indices.")
    if np.any(array < 0):
        raise ValidationError("Boundary face indices must be non-negative.")
    return array


@attrs.define
class BoundaryFunction(abc.ABC):
    """
    Values on a set of boundary faces, refreshed by `compute(time)`.

    For pressure conditions values are in Pa, for flux conditions in
    mol m^-2 s^-1, positive out of the domain.
    """

    faces: np.typing.NDArray = attrs.field(converter=_as_faces)
    """Indices of the faces the condition applies to."""
    _values: np.typing.NDArray = attrs.field(init=False)
    _time: typing.Optional[float] = attrs.field(init=False, default=None)

    def __attrs_post_init__(self) -> None:
        self._values = np.zeros(self.faces.shape[0])

    @property
    def values(self) -> np.typing.NDArray:
        """Values computed by the last `compute` call."""
        return self._values

    @property
    def time(self) -> typing.Optional[float]:
        return self._time

    def compute(self, time: float) -> None:
        self._values[...] = self._evaluate(float(time))
        self._time = float(time)

    @abc.abstractmethod
    def _evaluate(self, time: float) -> typing.Union[float, np.typing.NDArray]:
        raise NotImplementedError


@attrs.define
class ConstantBoundaryFunction(BoundaryFunction):
    value: float = 0.0

    def _evaluate(self, time: float) -> float:
        return self.value


@attrs.define
class TimeDependentBoundaryFunction(BoundaryFunction):
    """Value given by a callable of time, or by the name of a registered boundary function."""

    func: typing.Union[str, typing.Callable[..., float]] = attrs.field(default=None)
    params: typing.Dict[str, typing.Any] = attrs.field(factory=dict)
    """Extra keyword arguments passed to the function."""

    def __attrs_post_init__(self) -> None:
        super().__attrs_post_init__()
        if self.func is None:
            raise ValidationError("A time-dependent boundary condition needs a function.")
        if isinstance(self.func, str):
            self.func = boundary_functions.get(self.func)
        elif not callable(self.func):
            raise ValidationError(f"Boundary function {self.func!r} is not callable.")

    def _evaluate(self, time: float) -> float:
        return self.func(time, **self.params)  # type: ignore[operator]


@attrs.define
class TabularBoundaryFunction(BoundaryFunction):
    """
    Value interpolated from a table of `(time, value)` pairs.

    With `form="linear"` values are linearly interpolated; with `form="constant"`
    each value holds until the next tabulated time. Outside the table the end
    values are held.
    """

    times: typing.Sequence[float] = attrs.field(default=())
    table: typing.Sequence[float] = attrs.field(default=())
    form: typing.Literal["linear", "constant"] = attrs.field(
        default="linear", validator=attrs.validators.in_(("linear", "constant"))
    )

    def __attrs_post_init__(self) -> None:
        super().__attrs_post_init__()
        self.times = np.asarray(self.times, dtype=np.float64)
        self.table = np.asarray(self.table, dtype=np.float64)
        if self.times.ndim != 1 or self.times.shape != self.table.shape or self.times.size == 0:
            raise ValidationError(
                "Tabular boundary data needs matching, non-empty `times` and `table`."
            )
        if np.any(np.diff(self.times) <= 0.0):
            raise ValidationError("Tabular boundary times must be strictly increasing.")

    def _evaluate(self, time: float) -> float:
        if self.form == "linear":
            return float(np.interp(time, self.times, self.table))
        index = int(np.searchsorted(self.times, time, side="right")) - 1
        return float(self.table[max(index, 0)])


def compute_boundary_markers(
    num_faces: int,
    dirichlet: typing.Iterable[BoundaryFunction] = (),
    neumann: typing.Iterable[BoundaryFunction] = (),
) -> typing.Tuple[np.typing.NDArray, np.typing.NDArray]:
    """
    Gather boundary functions into per-face marker and value arrays.

    :param num_faces: Total number of faces of the mesh.
    :param dirichlet: Pressure conditions, already computed at the wanted time.
    :param neumann: Flux conditions, already computed at the wanted time.
    :return: `(markers, values)` over all faces. Faces without a condition are
        marked `BoundaryMarker.NONE` with value 0.
    :raises ValidationError: If a face index is out of range or a face has both kinds.
    """
    markers = np.full(num_faces, int(BoundaryMarker.NONE), dtype=np.int64)
    values = np.zeros(num_faces)
    for marker, functions in (
        (BoundaryMarker.DIRICHLET, dirichlet),
        (BoundaryMarker.NEUMANN, neumann),
    ):
        for bc in functions:
            if bc.faces.size and bc.faces.max() >= num_faces:
                raise ValidationError(
                    f"Boundary face index {int(bc.faces.max())} out of range for {num_faces} faces."
                )
            clash = markers[bc.faces]
            if np.any((clash != BoundaryMarker.NONE) & (clash != marker)):
                raise ValidationError(
                    "A face cannot carry both Dirichlet and Neumann conditions."
                )
            markers[bc.faces] = int(marker)
            values[bc.faces] = bc.values
    return markers, values
