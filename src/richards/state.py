"""
Field storage for one time snapshot.

A `State` owns its fields. Process kernels only borrow read-only, time-tagged
`FieldView`s, or write to fields they own through `get_field_data_writable`.
"""

import abc
import copy
import logging
import typing

import attrs
import numpy as np
from typing_extensions import Self

from richards.errors import ContractViolationError, ValidationError
from richards.mesh import Mesh
from richards.vectors import CompositeVector

logger = logging.getLogger(__name__)

__all__ = [
    "Field",
    "FieldView",
    "State",
    "FieldEvaluator",
    "PrimaryVariableFieldEvaluator",
    "SecondaryVariableFieldEvaluator",
    "derivative_key",
]


def derivative_key(key: str, wrt_key: str) -> str:
    """Name of the field holding the derivative of `key` with respect to `wrt_key`."""
    return f"d{key}_d{wrt_key}"


@attrs.define(eq=False)
class Field:
    """A named, owned field together with its bookkeeping."""

    name: str
    data: CompositeVector
    owner: str
    time: float
    """Time of the last write."""
    version: int = 0
    """Incremented on every write. Used by evaluators to detect changes."""
    time_independent: bool = False
    """Time-independent fields (e.g. permeability) skip time-tag checks."""


@attrs.frozen(eq=False)
class FieldView:
    """Read-only, time-tagged view of a field owned by a `State`."""

    name: str
    time: float
    data: CompositeVector
    time_independent: bool = False

    def __getitem__(self, location: str) -> np.typing.NDArray:
        return self.data[location]

    def require_time(self, time: float) -> Self:
        """
        Check that the view was written at `time`.

        :raises ContractViolationError: If the view's time tag differs from `time`.
        """
        if not self.time_independent and self.time != time:
            raise ContractViolationError(
                f"Field {self.name!r} is tagged at t={self.time!r}, "
                f"but was requested at t={time!r}."
            )
        return self


class State:
    """
    Fields, evaluators, constants and the time stamp of one snapshot.

    A simulation keeps two of these, the "previous" and "next" snapshots, with
    `previous.time < next.time`.
    """

    def __init__(self, mesh: Mesh, time: float = 0.0, cycle: int = 0) -> None:
        self.mesh = mesh
        self._time = float(time)
        self.cycle = cycle
        self._fields: typing.Dict[str, Field] = {}
        self._evaluators: typing.Dict[str, "FieldEvaluator"] = {}
        self._scalars: typing.Dict[str, float] = {}
        self._vectors: typing.Dict[str, np.typing.NDArray] = {}

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(time={self._time}, cycle={self.cycle}, "
            f"fields={list(self._fields)})"
        )

    @property
    def time(self) -> float:
        return self._time

    def set_time(self, time: float) -> None:
        self._time = float(time)

    def advance_cycle(self) -> None:
        self.cycle += 1

    #########
    # Fields
    #########

    def require_field(
        self,
        name: str,
        owner: str,
        locations: typing.Sequence[str] = ("cell",),
        num_dofs: int = 1,
        time_independent: bool = False,
        fill: float = 0.0,
    ) -> CompositeVector:
        """
        Declare a field, creating its storage if needed.

        :param name: Field name.
        :param owner: Name of the only party allowed to write the field.
        :param locations: Mesh location kinds to store.
        :param num_dofs: Values per mesh entity.
        :param time_independent: Whether the field is constant in time.
        :param fill: Initial value of new storage.
        :return: The field's storage.
        :raises ContractViolationError: If the field exists with a different owner.
        """
        field = self._fields.get(name)
        if field is not None:
            if field.owner != owner:
                raise ContractViolationError(
                    f"Field {name!r} is owned by {field.owner!r}, not {owner!r}."
                )
            return field.data

        data = CompositeVector.from_mesh(self.mesh, locations, num_dofs, fill)
        self._fields[name] = Field(
            name=name,
            data=data,
            owner=owner,
            time=self._time,
            time_independent=time_independent,
        )
        return data

    def has_field(self, name: str) -> bool:
        return name in self._fields

    def _get_field(self, name: str) -> Field:
        try:
            return self._fields[name]
        except KeyError:
            raise ValidationError(
                f"Unknown field {name!r}. Available fields: {list(self._fields)}"
            ) from None

    def get_field_data(self, name: str, time: typing.Optional[float] = None) -> FieldView:
        """
        Borrow a read-only view of a field.

        :param name: Field name.
        :param time: Expected time tag. Not checked if None.
        :return: Read-only, time-tagged view.
        :raises ContractViolationError: If `time` is given and does not match the field's tag.
        """
        field = self._get_field(name)
        view = FieldView(
            name=name,
            time=field.time,
            data=field.data.read_only(),
            time_independent=field.time_independent,
        )
        if time is not None:
            view.require_time(time)
        return view

    def get_field_data_writable(self, name: str, owner: str) -> CompositeVector:
        """
        Get a field's storage for writing.

        The field is marked as changed at the current time.

        :raises ContractViolationError: If `owner` does not own the field.
        """
        field = self._get_field(name)
        if field.owner != owner:
            raise ContractViolationError(
                f"{owner!r} cannot write field {name!r} owned by {field.owner!r}."
            )
        field.version += 1
        field.time = self._time
        return field.data

    def field_version(self, name: str) -> int:
        return self._get_field(name).version

    def field_time(self, name: str) -> float:
        return self._get_field(name).time

    #############
    # Evaluators
    #############

    def set_field_evaluator(self, evaluator: "FieldEvaluator") -> None:
        self._evaluators[evaluator.key] = evaluator
        evaluator.ensure_compatibility(self)

    def has_field_evaluator(self, name: str) -> bool:
        return name in self._evaluators

    def get_field_evaluator(self, name: str) -> "FieldEvaluator":
        try:
            return self._evaluators[name]
        except KeyError:
            raise ValidationError(
                f"No evaluator registered for field {name!r}. "
                f"Available evaluators: {list(self._evaluators)}"
            ) from None

    ############
    # Constants
    ############

    def set_constant_scalar(self, name: str, value: float) -> None:
        self._scalars[name] = float(value)

    def has_constant_scalar(self, name: str) -> bool:
        return name in self._scalars

    def get_constant_scalar(self, name: str) -> float:
        try:
            return self._scalars[name]
        except KeyError:
            raise ValidationError(f"Unknown scalar constant {name!r}.") from None

    def set_constant_vector(self, name: str, values: typing.Sequence[float]) -> None:
        array = np.array(values, dtype=np.float64)
        array.flags.writeable = False
        self._vectors[name] = array

    def get_constant_vector_data(self, name: str) -> np.typing.NDArray:
        try:
            return self._vectors[name]
        except KeyError:
            raise ValidationError(f"Unknown constant vector {name!r}.") from None

    ############
    # Snapshots
    ############

    def copy(self) -> "State":
        """Deep copy of fields and constants, with fresh evaluator caches."""
        other = State(self.mesh, time=self._time, cycle=self.cycle)
        for name, field in self._fields.items():
            other._fields[name] = attrs.evolve(field, data=field.data.copy())
        other._scalars = dict(self._scalars)
        other._vectors = dict(self._vectors)
        for name, evaluator in self._evaluators.items():
            other._evaluators[name] = evaluator.clone()
        return other

    def assign(self, other: "State") -> None:
        """
        Copy field values, time tags, time and cycle of `other` into this state.

        Fields only `other` has are copied over. Fields only this state has are
        left untouched.
        """
        for name, source in other._fields.items():
            field = self._fields.get(name)
            if field is None:
                self._fields[name] = attrs.evolve(source, data=source.data.copy())
                continue
            field.data.assign(source.data)
            field.time = source.time
            field.version += 1
        self._time = other._time
        self.cycle = other.cycle


class FieldEvaluator(abc.ABC):
    """
    Lazily (re)computes a field from its dependencies.

    Requesters identify themselves by name so each one is told about a change
    exactly once.
    """

    def __init__(
        self,
        key: str,
        dependencies: typing.Sequence[str] = (),
        locations: typing.Sequence[str] = ("cell",),
    ) -> None:
        self.key = key
        self.dependencies = tuple(dependencies)
        self.locations = tuple(locations)
        self._seen: typing.Dict[typing.Tuple[str, str], int] = {}

    def __repr__(self) -> str:
        return f"{type(self).__name__}(key={self.key!r}, dependencies={self.dependencies})"

    def ensure_compatibility(self, state: State) -> None:
        state.require_field(self.key, owner=self.key, locations=self.locations)

    def derivative_key(self, wrt_key: str) -> str:
        return derivative_key(self.key, wrt_key)

    def clone(self) -> "FieldEvaluator":
        other = copy.copy(self)
        other._reset()
        return other

    def _reset(self) -> None:
        self._seen = {}

    def _notify(self, request: str, name: str, version: int) -> bool:
        key = (request, name)
        changed = self._seen.get(key) != version
        self._seen[key] = version
        return changed

    @abc.abstractmethod
    def has_field_changed(self, state: State, request: str) -> bool:
        """
        Bring the field up to date.

        :return: True if the field changed since `request` last asked.
        """
        raise NotImplementedError

    @abc.abstractmethod
    def has_field_derivative_changed(
        self, state: State, request: str, wrt_key: str
    ) -> bool:
        """
        Bring the derivative field `d<key>_d<wrt_key>` up to date.

        :return: True if the derivative changed since `request` last asked.
        """
        raise NotImplementedError

    def is_dependency(self, state: State, key: str) -> bool:
        """Whether this field depends, directly or not, on `key`."""
        for dep in self.dependencies:
            if dep == key:
                return True
            if state.has_field_evaluator(dep) and state.get_field_evaluator(
                dep
            ).is_dependency(state, key):
                return True
        return False


class PrimaryVariableFieldEvaluator(FieldEvaluator):
    """Evaluator of a field written directly by its owning process kernel."""

    def __init__(
        self, key: str, locations: typing.Sequence[str] = ("cell", "face")
    ) -> None:
        super().__init__(key, dependencies=(), locations=locations)

    def ensure_compatibility(self, state: State) -> None:
        if not state.has_field(self.key):
            raise ValidationError(
                f"Primary variable {self.key!r} must be declared by its owner first."
            )

    def has_field_changed(self, state: State, request: str) -> bool:
        return self._notify(request, self.key, state.field_version(self.key))

    def has_field_derivative_changed(
        self, state: State, request: str, wrt_key: str
    ) -> bool:
        if wrt_key != self.key:
            return False
        name = self.derivative_key(wrt_key)
        if not state.has_field(name):
            state.require_field(name, owner=self.key, locations=("cell",), fill=1.0)
        return self._notify(request, name, state.field_version(name))


class SecondaryVariableFieldEvaluator(FieldEvaluator):
    """
    Evaluator of a field computed from other fields.

    Subclasses implement `evaluate_field` and `evaluate_field_partial_derivative`.
    Total derivatives are assembled with the chain rule through the evaluators of
    the dependencies.
    """

    def __init__(
        self,
        key: str,
        dependencies: typing.Sequence[str],
        locations: typing.Sequence[str] = ("cell",),
    ) -> None:
        super().__init__(key, dependencies, locations)
        self._computed_versions: typing.Optional[typing.Tuple[int, ...]] = None
        self._derivative_versions: typing.Dict[str, typing.Tuple[int, ...]] = {}

    def _reset(self) -> None:
        super()._reset()
        self._computed_versions = None
        self._derivative_versions = {}

    @abc.abstractmethod
    def evaluate_field(self, state: State, result: CompositeVector) -> None:
        """Compute the field into `result`."""
        raise NotImplementedError

    @abc.abstractmethod
    def evaluate_field_partial_derivative(
        self, state: State, wrt_key: str, result: CompositeVector
    ) -> None:
        """Compute the partial derivative with respect to a direct dependency into `result`."""
        raise NotImplementedError

    def _update(self, state: State) -> typing.Tuple[int, ...]:
        for dep in self.dependencies:
            if state.has_field_evaluator(dep):
                state.get_field_evaluator(dep).has_field_changed(state, self.key)
        versions = tuple(state.field_version(dep) for dep in self.dependencies)
        if versions != self._computed_versions:
            result = state.get_field_data_writable(self.key, owner=self.key)
            self.evaluate_field(state, result)
            self._computed_versions = versions
        return versions

    def has_field_changed(self, state: State, request: str) -> bool:
        self._update(state)
        return self._notify(request, self.key, state.field_version(self.key))

    def has_field_derivative_changed(
        self, state: State, request: str, wrt_key: str
    ) -> bool:
        versions = self._update(state)
        name = self.derivative_key(wrt_key)
        if not state.has_field(name):
            state.require_field(name, owner=self.key, locations=("cell",))
        if self._derivative_versions.get(wrt_key) != versions:
            self._update_field_derivative(state, wrt_key, name)
            self._derivative_versions[wrt_key] = versions
        return self._notify(request, name, state.field_version(name))

    def _update_field_derivative(self, state: State, wrt_key: str, name: str) -> None:
        total = state.get_field_data_writable(name, owner=self.key)
        total.put_scalar(0.0)
        partial = CompositeVector.from_mesh(state.mesh, ("cell",))
        for dep in self.dependencies:
            if dep == wrt_key:
                self.evaluate_field_partial_derivative(state, dep, partial)
                total["cell"] += partial["cell"]
                continue

            if not state.has_field_evaluator(dep):
                continue
            evaluator = state.get_field_evaluator(dep)
            if not evaluator.is_dependency(state, wrt_key):
                continue
            evaluator.has_field_derivative_changed(state, self.key, wrt_key)
            chain = state.get_field_data(evaluator.derivative_key(wrt_key))
            self.evaluate_field_partial_derivative(state, dep, partial)
            total["cell"] += partial["cell"] * chain["cell"]
