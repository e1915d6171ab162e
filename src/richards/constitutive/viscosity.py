"""Dynamic viscosity closures, functions of temperature only."""

import abc
import typing

import numpy as np

from richards.constants import c
from richards.errors import ValidationError
from richards.registry import Registry
from richards.types import FloatOrArray, Options

__all__ = [
    "ViscosityModel",
    "ConstantViscosity",
    "LiquidWaterViscosity",
    "viscosity_models",
    "create_viscosity_model",
]

viscosity_models: Registry[typing.Callable[..., "ViscosityModel"]] = Registry(
    "viscosity model"
)


def create_viscosity_model(
    name: str, options: typing.Optional[Options] = None
) -> "ViscosityModel":
    """
    Build a registered viscosity model.

    :param name: Registered name, "constant" or "liquid water".
    :param options: Flat key->value options.
    """
    return viscosity_models.get(name)(options or {})


class ViscosityModel(abc.ABC):
    @abc.abstractmethod
    def viscosity(self, temperature: FloatOrArray) -> FloatOrArray:
        """Dynamic viscosity [Pa s]."""
        raise NotImplementedError

    @abc.abstractmethod
    def d_viscosity_dT(self, temperature: FloatOrArray) -> FloatOrArray:
        raise NotImplementedError


@viscosity_models.register("constant")
class ConstantViscosity(ViscosityModel):
    """Option: "Viscosity [Pa s]" (default 8.9e-4)."""

    def __init__(self, options: typing.Optional[Options] = None) -> None:
        options = options or {}
        self._mu = float(options.get("Viscosity [Pa s]", c.LIQUID_WATER_VISCOSITY))
        if self._mu <= 0.0:
            raise ValidationError(f"Viscosity must be positive, got {self._mu}.")

    def viscosity(self, temperature: FloatOrArray) -> FloatOrArray:
        if np.ndim(temperature) == 0:
            return self._mu
        return np.full(np.shape(temperature), self._mu)

    def d_viscosity_dT(self, temperature: FloatOrArray) -> FloatOrArray:
        if np.ndim(temperature) == 0:
            return 0.0
        return np.zeros(np.shape(temperature))


@viscosity_models.register("liquid water")
class LiquidWaterViscosity(ViscosityModel):
    """
    Vogel-type fit for liquid water,

        mu = A 10^(B / (T - C)),  A = 2.414e-5 Pa s, B = 247.8 K, C = 140 K

    valid from the freezing point to about 370 K.
    """

    A = 2.414e-5
    B = 247.8
    C = 140.0

    def __init__(self, options: typing.Optional[Options] = None) -> None:
        pass

    def viscosity(self, temperature: FloatOrArray) -> FloatOrArray:
        return self.A * np.power(10.0, self.B / (np.asarray(temperature) - self.C))

    def d_viscosity_dT(self, temperature: FloatOrArray) -> FloatOrArray:
        dT = np.asarray(temperature) - self.C
        return -self.viscosity(temperature) * np.log(10.0) * self.B / (dT * dT)
