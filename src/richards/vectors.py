"""Composite (per location kind) and hierarchical solution vectors."""

import typing

import attrs
import numpy as np
from typing_extensions import Self

from richards._precision import get_dtype
from richards.errors import ValidationError
from richards.mesh import Mesh

__all__ = ["CompositeVector", "TreeVector"]


@attrs.define(eq=False)
class CompositeVector:
    """
    A bundle of flat arrays, one per mesh location kind ("cell", "face").

    All components of a vector built from a mesh are sized consistently with it.
    """

    components: typing.Dict[str, np.typing.NDArray] = attrs.field(factory=dict)
    """Arrays keyed by location kind. Arrays may be 2D for multi-valued fields."""

    @classmethod
    def from_mesh(
        cls,
        mesh: Mesh,
        locations: typing.Sequence[str] = ("cell",),
        num_dofs: int = 1,
        fill: float = 0.0,
    ) -> Self:
        """
        Create a vector sized for `mesh`.

        :param mesh: The mesh.
        :param locations: Location kinds to create components for.
        :param num_dofs: Values per entity. Components are 2D when greater than one.
        :param fill: Initial value.
        """
        dtype = get_dtype()
        components = {}
        for location in locations:
            size = mesh.size(location)
            shape = (size,) if num_dofs == 1 else (size, num_dofs)
            components[location] = np.full(shape, fill, dtype=dtype)
        return cls(components)

    def __getitem__(self, location: str) -> np.typing.NDArray:
        try:
            return self.components[location]
        except KeyError:
            raise ValidationError(
                f"Vector has no component {location!r}. Available: {list(self.components)}"
            ) from None

    def __setitem__(self, location: str, values: typing.Any) -> None:
        self[location][...] = values

    def __contains__(self, location: str) -> bool:
        return location in self.components

    @property
    def locations(self) -> typing.List[str]:
        return list(self.components)

    def size(self, location: str) -> int:
        return self[location].shape[0]

    def put_scalar(self, value: float) -> Self:
        for array in self.components.values():
            array.fill(value)
        return self

    def copy(self) -> "CompositeVector":
        return CompositeVector({k: v.copy() for k, v in self.components.items()})

    def zeros_like(self) -> "CompositeVector":
        return CompositeVector({k: np.zeros_like(v) for k, v in self.components.items()})

    def assign(self, other: "CompositeVector") -> Self:
        """Copy the values of `other` into this vector's storage."""
        self._check_compatible(other)
        for location, array in self.components.items():
            array[...] = other.components[location]
        return self

    def update(self, alpha: float, other: "CompositeVector", beta: float = 1.0) -> Self:
        """Set ``self = alpha * other + beta * self``."""
        self._check_compatible(other)
        for location, array in self.components.items():
            array *= beta
            array += alpha * other.components[location]
        return self

    def scale(self, alpha: float) -> Self:
        for array in self.components.values():
            array *= alpha
        return self

    def dot(self, other: "CompositeVector") -> float:
        self._check_compatible(other)
        return float(
            sum(
                np.vdot(array, other.components[location])
                for location, array in self.components.items()
            )
        )

    def norm_inf(self, location: typing.Optional[str] = None) -> float:
        arrays = (
            [self[location]] if location is not None else self.components.values()
        )
        return float(max((np.max(np.abs(a)) if a.size else 0.0 for a in arrays), default=0.0))

    def norm2(self) -> float:
        return float(np.sqrt(self.dot(self)))

    def to_array(self) -> np.typing.NDArray:
        """Concatenate all components, in insertion order, into one flat array."""
        return np.concatenate([a.ravel() for a in self.components.values()])

    def from_array(self, values: np.typing.NDArray) -> Self:
        """Scatter a flat array produced by `to_array` back into the components."""
        start = 0
        for array in self.components.values():
            stop = start + array.size
            array.reshape(-1)[...] = values[start:stop]
            start = stop
        if start != values.size:
            raise ValidationError(
                f"Flat array has {values.size} entries, vector holds {start}."
            )
        return self

    def read_only(self) -> "CompositeVector":
        """Return a view of this vector whose arrays cannot be written to."""
        views = {}
        for location, array in self.components.items():
            view = array.view()
            view.flags.writeable = False
            views[location] = view
        return CompositeVector(views)

    def _check_compatible(self, other: "CompositeVector") -> None:
        if self.components.keys() != other.components.keys():
            raise ValidationError(
                f"Incompatible vectors: {list(self.components)} vs {list(other.components)}"
            )


@attrs.define(eq=False)
class TreeVector:
    """
    Hierarchical solution vector.

    A node holds either a `CompositeVector` (leaf) or sub-vectors, mirroring the
    equation set being solved. The shape is fixed once created.
    """

    data: typing.Optional[CompositeVector] = None
    subvectors: typing.List["TreeVector"] = attrs.field(factory=list)
    name: str = ""

    def leaves(self) -> typing.Iterator[CompositeVector]:
        if self.data is not None:
            yield self.data
        for sub in self.subvectors:
            yield from sub.leaves()

    def sub_vector(self, index: int) -> "TreeVector":
        return self.subvectors[index]

    def copy(self) -> "TreeVector":
        return TreeVector(
            data=None if self.data is None else self.data.copy(),
            subvectors=[sub.copy() for sub in self.subvectors],
            name=self.name,
        )

    def put_scalar(self, value: float) -> Self:
        for leaf in self.leaves():
            leaf.put_scalar(value)
        return self

    def assign(self, other: "TreeVector") -> Self:
        for mine, theirs in self._paired(other):
            mine.assign(theirs)
        return self

    def update(self, alpha: float, other: "TreeVector", beta: float = 1.0) -> Self:
        for mine, theirs in self._paired(other):
            mine.update(alpha, theirs, beta)
        return self

    def scale(self, alpha: float) -> Self:
        for leaf in self.leaves():
            leaf.scale(alpha)
        return self

    def dot(self, other: "TreeVector") -> float:
        return sum(mine.dot(theirs) for mine, theirs in self._paired(other))

    def norm_inf(self) -> float:
        return max((leaf.norm_inf() for leaf in self.leaves()), default=0.0)

    def norm2(self) -> float:
        return float(np.sqrt(self.dot(self)))

    def _paired(
        self, other: "TreeVector"
    ) -> typing.List[typing.Tuple[CompositeVector, CompositeVector]]:
        mine = list(self.leaves())
        theirs = list(other.leaves())
        if len(mine) != len(theirs):
            raise ValidationError("Tree vectors have different shapes.")
        return list(zip(mine, theirs))
