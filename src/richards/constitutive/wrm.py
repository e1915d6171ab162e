"""
Water retention and relative permeability models.

Capillary pressure is `pc = p_atm - p` [Pa], positive in unsaturated conditions.
"""

import typing

import attrs
import numba  # type: ignore[import-untyped]
import numpy as np

from richards.constants import c
from richards.errors import ValidationError
from richards.registry import Registry
from richards.types import FloatOrArray, Options

__all__ = [
    "VanGenuchtenModel",
    "FreezingPointDepressionModel",
    "wrm_models",
    "create_wrm",
]

wrm_models: Registry[typing.Callable[..., "VanGenuchtenModel"]] = Registry(
    "water retention model"
)


@numba.njit(cache=True)
def _effective_saturation(pc, alpha, n, m):
    out = np.empty_like(pc)
    for i in range(pc.size):
        if pc[i] <= 0.0:
            out[i] = 1.0
        else:
            out[i] = (1.0 + (alpha * pc[i]) ** n) ** (-m)
    return out


@numba.njit(cache=True)
def _d_effective_saturation(pc, alpha, n, m):
    out = np.empty_like(pc)
    for i in range(pc.size):
        if pc[i] <= 0.0:
            out[i] = 0.0
        else:
            apc = alpha * pc[i]
            out[i] = -m * n * alpha * apc ** (n - 1.0) * (1.0 + apc**n) ** (-m - 1.0)
    return out


@numba.njit(cache=True)
def _mualem_k_relative(se, m, ell):
    out = np.empty_like(se)
    for i in range(se.size):
        if se[i] >= 1.0:
            out[i] = 1.0
        elif se[i] <= 0.0:
            out[i] = 0.0
        else:
            y = 1.0 - (1.0 - se[i] ** (1.0 / m)) ** m
            out[i] = se[i] ** ell * y * y
    return out


@numba.njit(cache=True)
def _d_mualem_k_relative_dse(se, m, ell):
    out = np.empty_like(se)
    for i in range(se.size):
        if se[i] >= 1.0 or se[i] <= 0.0:
            out[i] = 0.0
            continue
        x = se[i] ** (1.0 / m)
        if 1.0 - x <= 0.0:
            out[i] = 0.0
            continue
        y = 1.0 - (1.0 - x) ** m
        dy = (1.0 - x) ** (m - 1.0) * se[i] ** (1.0 / m - 1.0)
        out[i] = ell * se[i] ** (ell - 1.0) * y * y + se[i] ** ell * 2.0 * y * dy
    return out


def _as_array(value: FloatOrArray) -> np.typing.NDArray:
    return np.atleast_1d(np.asarray(value, dtype=np.float64)).ravel()


def _like(result: np.typing.NDArray, value: FloatOrArray) -> FloatOrArray:
    if np.ndim(value) == 0:
        return float(result[0])
    return result.reshape(np.shape(value))


@attrs.frozen
class VanGenuchtenModel:
    """
    van Genuchten (1980) retention curve with Mualem relative permeability.

        S = sr + (1 - sr) [1 + (alpha pc)^n]^(-m),  m = 1 - 1/n
        kr = Se^l [1 - (1 - Se^(1/m))^m]^2
    """

    alpha: float = attrs.field(validator=attrs.validators.gt(0.0))
    """Inverse air-entry pressure [1/Pa]."""
    n: float = attrs.field(validator=attrs.validators.gt(1.0))
    """Pore-size distribution index (> 1)."""
    residual_saturation: float = attrs.field(
        default=0.0,
        validator=attrs.validators.and_(attrs.validators.ge(0.0), attrs.validators.lt(1.0)),
    )
    """Residual liquid saturation."""
    pore_connectivity: float = 0.5
    """Mualem pore connectivity exponent l."""

    @property
    def m(self) -> float:
        return 1.0 - 1.0 / self.n

    @classmethod
    def from_options(cls, options: Options) -> "VanGenuchtenModel":
        """
        Options: "van Genuchten alpha [Pa^-1]", "van Genuchten n [-]",
        "residual saturation [-]" (default 0), "Mualem exponent l [-]" (default 0.5).
        """
        try:
            alpha = float(options["van Genuchten alpha [Pa^-1]"])
            n = float(options["van Genuchten n [-]"])
        except KeyError as exc:
            raise ValidationError(
                f"Missing required water retention parameter {exc.args[0]!r}."
            ) from None
        return cls(
            alpha=alpha,
            n=n,
            residual_saturation=float(options.get("residual saturation [-]", 0.0)),
            pore_connectivity=float(options.get("Mualem exponent l [-]", 0.5)),
        )

    def effective_saturation(self, pc: FloatOrArray) -> FloatOrArray:
        return _like(_effective_saturation(_as_array(pc), self.alpha, self.n, self.m), pc)

    def saturation(self, pc: FloatOrArray) -> FloatOrArray:
        se = _effective_saturation(_as_array(pc), self.alpha, self.n, self.m)
        sr = self.residual_saturation
        return _like(sr + (1.0 - sr) * se, pc)

    def d_saturation(self, pc: FloatOrArray) -> FloatOrArray:
        """dS/dpc [1/Pa], non-positive."""
        dse = _d_effective_saturation(_as_array(pc), self.alpha, self.n, self.m)
        return _like((1.0 - self.residual_saturation) * dse, pc)

    def capillary_pressure(self, saturation: FloatOrArray) -> FloatOrArray:
        """Inverse of `saturation`. Saturations at or above 1 map to pc = 0."""
        s = _as_array(saturation)
        sr = self.residual_saturation
        se = np.clip((s - sr) / (1.0 - sr), 1e-300, 1.0)
        pc = np.power(np.power(se, -1.0 / self.m) - 1.0, 1.0 / self.n) / self.alpha
        return _like(np.where(s >= 1.0, 0.0, pc), saturation)

    def k_relative(self, pc: FloatOrArray) -> FloatOrArray:
        se = _effective_saturation(_as_array(pc), self.alpha, self.n, self.m)
        return _like(_mualem_k_relative(se, self.m, self.pore_connectivity), pc)

    def d_k_relative(self, pc: FloatOrArray) -> FloatOrArray:
        """dkr/dpc [1/Pa]."""
        array = _as_array(pc)
        se = _effective_saturation(array, self.alpha, self.n, self.m)
        dse = _d_effective_saturation(array, self.alpha, self.n, self.m)
        dkr = _d_mualem_k_relative_dse(se, self.m, self.pore_connectivity)
        return _like(dkr * dse, pc)


wrm_models.register("van Genuchten")(VanGenuchtenModel.from_options)


def create_wrm(name: str, options: Options) -> VanGenuchtenModel:
    """Build a registered water retention model from flat options."""
    return wrm_models.get(name)(options)


@attrs.frozen
class FreezingPointDepressionModel:
    """
    Partition of the pore space into gas, liquid and ice.

    Below the freezing point, ice adds a capillary-like pressure
    `pc_ice = n_l L_f (T_f - T) / T_f` and

        s_g = 1 - S(pc_liq)
        s_l = S(pc_liq + pc_ice)
        s_i = S(pc_liq) - s_l

    so that the three saturations sum to one.
    """

    wrm: VanGenuchtenModel
    freezing_point: float = attrs.field(factory=lambda: c.FREEZING_POINT)
    """Freezing point [K]."""
    heat_of_fusion: float = attrs.field(factory=lambda: c.HEAT_OF_FUSION)
    """Latent heat of fusion [J/mol]."""

    def ice_pressure(
        self, temperature: FloatOrArray, molar_density_liquid: FloatOrArray
    ) -> FloatOrArray:
        """Ice capillary pressure [Pa]."""
        undercooling = np.maximum(self.freezing_point - np.asarray(temperature), 0.0)
        pc_ice = molar_density_liquid * self.heat_of_fusion * undercooling / self.freezing_point
        return float(pc_ice) if np.ndim(pc_ice) == 0 else pc_ice

    def saturations(
        self, pc_liquid: FloatOrArray, pc_ice: FloatOrArray
    ) -> typing.Tuple[FloatOrArray, FloatOrArray, FloatOrArray]:
        """
        :return: (s_gas, s_liquid, s_ice)
        """
        s_total = self.wrm.saturation(pc_liquid)
        s_liquid = self.wrm.saturation(np.asarray(pc_liquid) + np.asarray(pc_ice))
        s_gas = 1.0 - s_total
        s_ice = s_total - s_liquid
        return s_gas, s_liquid, s_ice
