"""
Equations of state.

An EOS maps (temperature [K], pressure [Pa]) to a density and its partial
derivatives. Models are looked up by name and built from a flat option mapping:

```python
eos = create_eos("constant", {"Density [kg/m^3]": 998.2})
n_liq = eos.density(273.15, 101325.0)  # [mol/m^3], the constant model is molar
```
"""

import abc
import logging
import typing

from CoolProp.CoolProp import PropsSI  # type: ignore[import]
import numpy as np

from richards.constants import c
from richards.errors import ValidationError
from richards.registry import Registry
from richards.types import FloatOrArray, Options

logger = logging.getLogger(__name__)

__all__ = [
    "EOS",
    "ConstantEOS",
    "LiquidWaterEOS",
    "IdealGasEOS",
    "CoolPropEOS",
    "eos_models",
    "create_eos",
    "list_eos_models",
]

eos_models: Registry[typing.Callable[..., "EOS"]] = Registry("EOS model")
"""Registry of EOS model constructors."""


def create_eos(name: str, options: typing.Optional[Options] = None) -> "EOS":
    """
    Build a registered EOS model.

    :param name: Registered name, e.g. "constant", "liquid water", "ideal gas", "coolprop".
    :param options: Flat key->value options passed to the model constructor.
    :return: The EOS model.
    :raises ValidationError: If the name is unknown or an option is invalid.
    """
    return eos_models.get(name)(options or {})


def list_eos_models() -> typing.List[str]:
    return eos_models.names()


def _positive_option(options: Options, key: str, default: typing.Optional[float] = None) -> float:
    value = options.get(key, default)
    if value is None:
        raise ValidationError(f"Missing required EOS parameter {key!r}.")
    value = float(value)
    if not np.isfinite(value) or value <= 0.0:
        raise ValidationError(f"EOS parameter {key!r} must be positive, got {value}.")
    return value


def _molar_mass_option(options: Options, default_g_per_mol: float) -> float:
    """Molar mass in kg/mol, preferring the kg/mol key over the g/mol one."""
    if "Molar mass [kg/mol]" in options:
        return _positive_option(options, "Molar mass [kg/mol]")
    return _positive_option(options, "Molar mass [g/mol]", default_g_per_mol) * 1e-3


def _full_like(value: float, temperature: FloatOrArray, pressure: FloatOrArray) -> FloatOrArray:
    if np.ndim(temperature) == 0 and np.ndim(pressure) == 0:
        return value
    shape = np.broadcast_shapes(np.shape(temperature), np.shape(pressure))
    return np.full(shape, value)


class EOS(abc.ABC):
    """Density closure. Derivatives must be the analytic derivatives of `density`."""

    @abc.abstractmethod
    def density(self, temperature: FloatOrArray, pressure: FloatOrArray) -> FloatOrArray:
        """Density, per mole if `is_molar_basis()` else per unit mass."""
        raise NotImplementedError

    @abc.abstractmethod
    def d_density_dT(self, temperature: FloatOrArray, pressure: FloatOrArray) -> FloatOrArray:
        raise NotImplementedError

    @abc.abstractmethod
    def d_density_dp(self, temperature: FloatOrArray, pressure: FloatOrArray) -> FloatOrArray:
        raise NotImplementedError

    @abc.abstractmethod
    def is_molar_basis(self) -> bool:
        raise NotImplementedError

    @abc.abstractmethod
    def molar_mass(self) -> float:
        """Molar mass [kg/mol]."""
        raise NotImplementedError

    def molar_density(self, temperature: FloatOrArray, pressure: FloatOrArray) -> FloatOrArray:
        """Molar density [mol/m^3]."""
        rho = self.density(temperature, pressure)
        return rho if self.is_molar_basis() else rho / self.molar_mass()

    def d_molar_density_dT(self, temperature: FloatOrArray, pressure: FloatOrArray) -> FloatOrArray:
        d = self.d_density_dT(temperature, pressure)
        return d if self.is_molar_basis() else d / self.molar_mass()

    def d_molar_density_dp(self, temperature: FloatOrArray, pressure: FloatOrArray) -> FloatOrArray:
        d = self.d_density_dp(temperature, pressure)
        return d if self.is_molar_basis() else d / self.molar_mass()

    def mass_density(self, temperature: FloatOrArray, pressure: FloatOrArray) -> FloatOrArray:
        """Mass density [kg/m^3]."""
        rho = self.density(temperature, pressure)
        return rho * self.molar_mass() if self.is_molar_basis() else rho

    def d_mass_density_dT(self, temperature: FloatOrArray, pressure: FloatOrArray) -> FloatOrArray:
        d = self.d_density_dT(temperature, pressure)
        return d * self.molar_mass() if self.is_molar_basis() else d

    def d_mass_density_dp(self, temperature: FloatOrArray, pressure: FloatOrArray) -> FloatOrArray:
        d = self.d_density_dp(temperature, pressure)
        return d * self.molar_mass() if self.is_molar_basis() else d


@eos_models.register("constant")
class ConstantEOS(EOS):
    """
    Constant density, independent of temperature and pressure.

    Options:

    - "Molar mass [kg/mol]", else "Molar mass [g/mol]" (default 18.0153)
    - "Density [mol/m^3]", else "Density [kg/m^3]" (default 1000.0)

    Densities are reported on a molar basis, `density == rho / M`.
    """

    def __init__(self, options: typing.Optional[Options] = None) -> None:
        options = options or {}
        self._molar_mass = _molar_mass_option(options, 18.0153)
        if "Density [mol/m^3]" in options:
            self._rho = _positive_option(options, "Density [mol/m^3]") * self._molar_mass
        else:
            self._rho = _positive_option(options, "Density [kg/m^3]", 1000.0)

    def __repr__(self) -> str:
        return f"{type(self).__name__}(rho={self._rho}, M={self._molar_mass})"

    def density(self, temperature: FloatOrArray, pressure: FloatOrArray) -> FloatOrArray:
        return _full_like(self._rho / self._molar_mass, temperature, pressure)

    def d_density_dT(self, temperature: FloatOrArray, pressure: FloatOrArray) -> FloatOrArray:
        return _full_like(0.0, temperature, pressure)

    def d_density_dp(self, temperature: FloatOrArray, pressure: FloatOrArray) -> FloatOrArray:
        return _full_like(0.0, temperature, pressure)

    def is_molar_basis(self) -> bool:
        return True

    def molar_mass(self) -> float:
        return self._molar_mass


@eos_models.register("liquid water")
class LiquidWaterEOS(EOS):
    """
    Liquid water: cubic fit of density in temperature, linear in pressure.

        rho = (a + b dT + c dT² + d dT³) (1 + beta (p - p0)),  dT = T - 273.15

    Options: "Molar mass [kg/mol]" / "Molar mass [g/mol]" (default 18.0153),
    "Compressibility [1/Pa]" (default 5e-10), "Reference pressure [Pa]" (default 1e5).
    """

    _COEFFICIENTS = (999.915, 0.0416516, -0.0100836, 0.000206355)

    def __init__(self, options: typing.Optional[Options] = None) -> None:
        options = options or {}
        self._molar_mass = _molar_mass_option(options, 18.0153)
        self._beta = float(options.get("Compressibility [1/Pa]", c.LIQUID_WATER_COMPRESSIBILITY))
        if self._beta < 0.0:
            raise ValidationError(f"Compressibility must be non-negative, got {self._beta}.")
        self._p0 = float(options.get("Reference pressure [Pa]", 1.0e5))

    def _thermal(self, temperature: FloatOrArray) -> typing.Tuple[FloatOrArray, FloatOrArray]:
        a, b, cc, d = self._COEFFICIENTS
        dT = np.asarray(temperature) - 273.15
        rho_T = a + dT * (b + dT * (cc + dT * d))
        drho_T = b + dT * (2.0 * cc + dT * 3.0 * d)
        return rho_T, drho_T

    def density(self, temperature: FloatOrArray, pressure: FloatOrArray) -> FloatOrArray:
        rho_T, _ = self._thermal(temperature)
        return rho_T * (1.0 + self._beta * (np.asarray(pressure) - self._p0))

    def d_density_dT(self, temperature: FloatOrArray, pressure: FloatOrArray) -> FloatOrArray:
        _, drho_T = self._thermal(temperature)
        return drho_T * (1.0 + self._beta * (np.asarray(pressure) - self._p0))

    def d_density_dp(self, temperature: FloatOrArray, pressure: FloatOrArray) -> FloatOrArray:
        rho_T, _ = self._thermal(temperature)
        return rho_T * self._beta * np.ones_like(np.asarray(pressure, dtype=float))

    def is_molar_basis(self) -> bool:
        return False

    def molar_mass(self) -> float:
        return self._molar_mass


@eos_models.register("ideal gas")
class IdealGasEOS(EOS):
    """Ideal gas, n = p / (R T). Option: molar mass (default dry air)."""

    def __init__(self, options: typing.Optional[Options] = None) -> None:
        options = options or {}
        self._molar_mass = _molar_mass_option(options, c.MOLAR_MASS_AIR * 1e3)
        self._R = c.UNIVERSAL_GAS_CONSTANT

    def density(self, temperature: FloatOrArray, pressure: FloatOrArray) -> FloatOrArray:
        return pressure / (self._R * temperature)

    def d_density_dT(self, temperature: FloatOrArray, pressure: FloatOrArray) -> FloatOrArray:
        return -pressure / (self._R * temperature * temperature)

    def d_density_dp(self, temperature: FloatOrArray, pressure: FloatOrArray) -> FloatOrArray:
        return _full_like(1.0, temperature, pressure) / (self._R * temperature)

    def is_molar_basis(self) -> bool:
        return True

    def molar_mass(self) -> float:
        return self._molar_mass


def clip_pressure(pressure: FloatOrArray, fluid: str) -> FloatOrArray:
    """
    Clips pressure to be within CoolProp's valid pressure range for the given fluid.

    :param pressure: Pressure in Pascals
    :param fluid: CoolProp fluid name
    :return: Clipped pressure in Pascals
    """
    p_min = PropsSI("P_MIN", fluid)
    p_max = PropsSI("P_MAX", fluid)
    return np.minimum(np.maximum(pressure, p_min + 1.0), p_max - 1.0)  # type: ignore[return-value]


def clip_temperature(temperature: FloatOrArray, fluid: str) -> FloatOrArray:
    """
    Clips temperature to be within CoolProp's valid temperature range for the given fluid.

    :param temperature: Temperature in Kelvin
    :param fluid: CoolProp fluid name
    :return: Clipped temperature in Kelvin
    """
    t_min = PropsSI("T_MIN", fluid)
    t_max = PropsSI("T_MAX", fluid)
    return np.minimum(np.maximum(temperature, t_min + 0.1), t_max - 0.1)  # type: ignore[return-value]


@eos_models.register("coolprop")
class CoolPropEOS(EOS):
    """
    Real-fluid EOS backed by CoolProp, mass basis.

    Options: "Fluid" (CoolProp name, default "Water").
    """

    def __init__(self, options: typing.Optional[Options] = None) -> None:
        options = options or {}
        self.fluid = str(options.get("Fluid", "Water"))
        try:
            self._molar_mass = float(PropsSI("M", self.fluid))
        except ValueError as exc:
            raise ValidationError(f"Fluid {self.fluid!r} is not supported by CoolProp.") from exc

    def __repr__(self) -> str:
        return f"{type(self).__name__}(fluid={self.fluid!r})"

    def _props(self, output: str, temperature: FloatOrArray, pressure: FloatOrArray) -> FloatOrArray:
        T = clip_temperature(temperature, self.fluid)
        p = clip_pressure(pressure, self.fluid)
        if np.ndim(T) == 0 and np.ndim(p) == 0:
            return float(PropsSI(output, "T", float(T), "P", float(p), self.fluid))
        T, p = np.broadcast_arrays(T, p)
        values = np.empty(T.shape)
        for index in np.ndindex(T.shape):
            values[index] = PropsSI(output, "T", T[index], "P", p[index], self.fluid)
        return values

    def density(self, temperature: FloatOrArray, pressure: FloatOrArray) -> FloatOrArray:
        return self._props("Dmass", temperature, pressure)

    def d_density_dT(self, temperature: FloatOrArray, pressure: FloatOrArray) -> FloatOrArray:
        return self._props("d(Dmass)/d(T)|P", temperature, pressure)

    def d_density_dp(self, temperature: FloatOrArray, pressure: FloatOrArray) -> FloatOrArray:
        return self._props("d(Dmass)/d(P)|T", temperature, pressure)

    def is_molar_basis(self) -> bool:
        return False

    def molar_mass(self) -> float:
        return self._molar_mass
