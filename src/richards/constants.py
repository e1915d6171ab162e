"""Physical constants in SI units"""

from contextvars import ContextVar
import typing

import attrs


__all__ = ["Constant", "Constants", "c", "ConstantsContext", "get_constant"]


@attrs.frozen(slots=True)
class Constant:
    """A constant value with an optional description and unit."""

    value: typing.Any
    """The actual value of the constant."""

    description: typing.Optional[str] = None
    """Optional description of what this constant represents."""

    unit: typing.Optional[str] = None
    """Optional unit of measurement for this constant."""

    def __str__(self) -> str:
        return f"{self.value}{self.unit or ''}"


DEFAULT_CONSTANTS: typing.Dict[str, typing.Union[typing.Any, Constant]] = {
    # Reference conditions
    "ATMOSPHERIC_PRESSURE": Constant(
        value=101325.0, description="Standard atmospheric pressure", unit="Pa"
    ),
    "FREEZING_POINT": Constant(
        value=273.15, description="Freezing point of water at 1 atm", unit="K"
    ),
    "REFERENCE_TEMPERATURE": Constant(
        value=273.15,
        description="Reference temperature for internal energies",
        unit="K",
    ),
    "ACCELERATION_DUE_TO_GRAVITY": Constant(
        value=9.80665, description="Standard gravitational acceleration", unit="m/s²"
    ),
    "UNIVERSAL_GAS_CONSTANT": Constant(
        value=8.31446261815324, description="Universal gas constant", unit="J/(mol·K)"
    ),
    # Water
    "MOLAR_MASS_WATER": Constant(
        value=18.0153e-3, description="Molar mass of water", unit="kg/mol"
    ),
    "MOLAR_MASS_AIR": Constant(
        value=28.956e-3, description="Molar mass of dry air", unit="kg/mol"
    ),
    "LIQUID_WATER_DENSITY": Constant(
        value=1000.0, description="Reference density of liquid water", unit="kg/m³"
    ),
    "ICE_DENSITY": Constant(
        value=917.0, description="Reference density of ice", unit="kg/m³"
    ),
    "LIQUID_WATER_COMPRESSIBILITY": Constant(
        value=5.0e-10, description="Isothermal compressibility of water", unit="1/Pa"
    ),
    "LIQUID_WATER_VISCOSITY": Constant(
        value=8.9e-4, description="Dynamic viscosity of water at 25°C", unit="Pa·s"
    ),
    # Thermal properties (molar basis)
    "HEAT_OF_FUSION": Constant(
        value=6010.0, description="Latent heat of fusion of water", unit="J/mol"
    ),
    "HEAT_OF_VAPORIZATION": Constant(
        value=44010.0, description="Latent heat of vaporization of water", unit="J/mol"
    ),
    "LIQUID_HEAT_CAPACITY": Constant(
        value=76.0, description="Molar heat capacity of liquid water", unit="J/(mol·K)"
    ),
    "ICE_HEAT_CAPACITY": Constant(
        value=37.7, description="Molar heat capacity of ice", unit="J/(mol·K)"
    ),
    "VAPOR_HEAT_CAPACITY": Constant(
        value=33.6, description="Molar heat capacity of water vapor", unit="J/(mol·K)"
    ),
    # Rock
    "ROCK_DENSITY": Constant(
        value=2650.0, description="Density of mineral grains", unit="kg/m³"
    ),
    "ROCK_HEAT_CAPACITY": Constant(
        value=620.0, description="Specific heat capacity of mineral grains", unit="J/(kg·K)"
    ),
}


class Constants:
    """
    Store of physical constants.

    Values are accessed with dot notation, `Constant` objects (with metadata)
    with bracket notation. Raw values assigned at runtime are wrapped in `Constant`.
    """

    __slots__ = ("_store",)

    def __new__(cls) -> "Constants":
        instance = super().__new__(cls)
        instance._store = {}
        return instance

    def __init__(self) -> None:
        for name, value in DEFAULT_CONSTANTS.items():
            self._store[name] = (
                value if isinstance(value, Constant) else Constant(value=value)
            )

    def __getattr__(self, name: str) -> typing.Any:
        """
        Get a constant's value using dot notation.

        :param name: Name of the constant
        :return: Value of the constant
        :raises AttributeError: If the constant does not exist
        """
        if name.startswith("_"):
            return object.__getattribute__(self, name)
        try:
            return self._store[name].value
        except KeyError:
            raise AttributeError(
                f"'{type(self).__name__}' object has no attribute '{name}'"
            ) from None

    def __getitem__(self, name: str) -> Constant:
        return self._store[name]

    def __setattr__(self, name: str, value: typing.Union[typing.Any, Constant]) -> None:
        if name.startswith("_"):
            object.__setattr__(self, name, value)
            return
        self[name] = value

    def __setitem__(self, name: str, value: typing.Union[typing.Any, Constant]) -> None:
        self._store[name] = (
            value if isinstance(value, Constant) else Constant(value=value)
        )

    def __contains__(self, name: str) -> bool:
        return name in self._store

    def __len__(self) -> int:
        return len(self._store)

    def __repr__(self) -> str:
        return f"{type(self).__name__}(constants={len(self._store)})"

    def keys(self) -> typing.KeysView[str]:
        return self._store.keys()

    def get(self, name: str, default: typing.Any = None) -> typing.Any:
        """
        Get a constant's value with a default fallback.

        :param name: Name of the constant
        :param default: Default value if the constant doesn't exist
        :return: Value of the constant or default
        """
        constant = self._store.get(name)
        if constant is None:
            return default
        return constant.value

    def get_constant(
        self, name: str, default: typing.Optional[Constant] = None
    ) -> typing.Optional[Constant]:
        return self._store.get(name, default)

    def __call__(self) -> "ConstantsContext":
        """
        Create a context manager that temporarily makes this instance the one
        resolved by the global proxy `richards.c`.
        """
        return ConstantsContext(self)


_constants_context: ContextVar[Constants] = ContextVar(
    "constants_context", default=Constants()
)


class ConstantsContext:
    """Context manager for temporary global `Constants` overrides."""

    def __init__(self, constants: Constants) -> None:
        self._new_constants = constants
        self._token = None

    def __enter__(self) -> Constants:
        self._token = _constants_context.set(self._new_constants)
        return self._new_constants

    def __exit__(self, exc_type, exc_value, traceback) -> None:
        if self._token is not None:
            _constants_context.reset(self._token)


class _ConstantsProxy:
    """Proxy resolving attribute access against the current context's `Constants`."""

    @property
    def _constants(self) -> Constants:
        return _constants_context.get()

    def __getattr__(self, name: str) -> typing.Any:
        return getattr(self._constants, name)

    def __getitem__(self, name: str) -> Constant:
        return self._constants[name]


c = _ConstantsProxy()
"""Global proxy to access physical constants."""


def get_constant(name: str) -> typing.Optional[Constant]:
    """
    Get a `Constant` object by name from the current context's constants.

    :param name: Name of the constant
    :return: `Constant` object or None if not found
    """
    return c._constants.get_constant(name)
