"""
Energy-water-content (EWC) models.

Convert between the primary unknowns of a coupled flow/energy problem
(temperature [K], pressure [Pa]) and the conserved quantities (energy [J/m^3],
water content [mol/m^3], both per unit bulk volume).

Failures are reported through `EWCStatus` codes rather than exceptions, so a
coupler can reject a step consistently across workers:

```python
model = create_ewc_model("permafrost", {"van Genuchten alpha [Pa^-1]": 2e-4, "van Genuchten n [-]": 2.0})
model.initialize_model(state)
status, energy, wc = model.evaluate(275.0, 95000.0, 0.3)
status, T, p = model.inverse_evaluate(energy, wc, 0.3)
```
"""

import abc
import logging
import typing

import numpy as np
from scipy.optimize import brentq

from richards.constants import c
from richards.constitutive.eos import EOS, create_eos
from richards.constitutive.wrm import (
    FreezingPointDepressionModel,
    VanGenuchtenModel,
    create_wrm,
)
from richards.errors import ValidationError
from richards.registry import Registry
from richards.types import EWCStatus, Options

if typing.TYPE_CHECKING:
    from richards.state import State

logger = logging.getLogger(__name__)

__all__ = [
    "EWCModel",
    "PermafrostEWCModel",
    "LiquidGasEWCModel",
    "ewc_models",
    "create_ewc_model",
    "saturated_vapor_pressure",
]

ewc_models: Registry[typing.Callable[..., "EWCModel"]] = Registry("EWC model")


def create_ewc_model(name: str, options: Options) -> "EWCModel":
    """
    Build a registered EWC model.

    :param name: "permafrost" or "liquid gas".
    :param options: Flat key->value options, see `PermafrostEWCModel.from_options`.
    """
    return ewc_models.get(name)(options)


def saturated_vapor_pressure(temperature: float) -> float:
    """Tetens' formula for the saturated vapor pressure of water [Pa]."""
    dT = temperature - 273.15
    return 610.78 * np.exp(17.27 * dT / (temperature - 35.86))


class _InversionFailure(Exception):
    def __init__(self, status: EWCStatus) -> None:
        super().__init__(status)
        self.status = status


class EWCModel(abc.ABC):
    """
    Forward and inverse maps between (T, p) and (energy, water content).

    `initialize_model` is called once per run, `update_model` once per nonlinear
    iteration before any evaluation in that iteration.
    """

    @abc.abstractmethod
    def initialize_model(self, state: "State") -> None:
        raise NotImplementedError

    @abc.abstractmethod
    def update_model(self, state: "State") -> None:
        raise NotImplementedError

    @abc.abstractmethod
    def evaluate(
        self, temperature: float, pressure: float, base_porosity: float
    ) -> typing.Tuple[int, float, float]:
        """
        :return: (status, energy [J/m^3], water content [mol/m^3])
        """
        raise NotImplementedError

    @abc.abstractmethod
    def inverse_evaluate(
        self, energy: float, water_content: float, base_porosity: float
    ) -> typing.Tuple[int, float, float]:
        """
        :return: (status, temperature [K], pressure [Pa])
        """
        raise NotImplementedError

    @abc.abstractmethod
    def inverse_evaluate_energy(
        self, energy: float, pressure: float, base_porosity: float
    ) -> typing.Tuple[int, float]:
        """
        :return: (status, temperature [K])
        """
        raise NotImplementedError

    @abc.abstractmethod
    def evaluate_saturations(
        self, temperature: float, pressure: float, base_porosity: float
    ) -> typing.Tuple[int, float, float, float]:
        """
        :return: (status, s_gas, s_liquid, s_ice), summing to one.
        """
        raise NotImplementedError


class PermafrostEWCModel(EWCModel):
    """
    Liquid, ice and gas (with water vapor) in a compressible porous medium.

        phi  = phi0 + alpha_phi max(p - p_atm, 0)
        wc   = phi (n_l s_l + n_i s_i + n_g omega s_g)
        e    = phi (n_l s_l u_l + n_i s_i u_i + n_g omega s_g u_g) + (1 - phi0) rho_r c_r (T - T_ref)

    with `omega = p_sat(T) / p_atm` the vapor mole fraction, and internal energies
    `u_l = C_l (T - T_ref)`, `u_i = C_i (T - T_ref) - L_f`, `u_g = C_g (T - T_ref) + L_v`.

    Inversions are bracketed: the energy inversion is a scalar root find in T
    (energy is increasing in T at fixed p), the full inversion nests it inside a
    root find in p. Results are verified by re-evaluation.
    """

    def __init__(
        self,
        wrm: VanGenuchtenModel,
        liquid_eos: typing.Optional[EOS] = None,
        ice_eos: typing.Optional[EOS] = None,
        gas_eos: typing.Optional[EOS] = None,
        porosity_compressibility: float = 1e-9,
        include_vapor: bool = True,
        rock_density: typing.Optional[float] = None,
        rock_heat_capacity: typing.Optional[float] = None,
        temperature_bracket: typing.Tuple[float, float] = (200.0, 400.0),
        pressure_bracket: typing.Optional[typing.Tuple[float, float]] = None,
        tolerance: float = 1e-8,
    ) -> None:
        if porosity_compressibility < 0.0:
            raise ValidationError(
                f"Porosity compressibility must be non-negative, got {porosity_compressibility}."
            )
        if temperature_bracket[0] <= 0.0 or temperature_bracket[0] >= temperature_bracket[1]:
            raise ValidationError(f"Invalid temperature bracket {temperature_bracket}.")
        if pressure_bracket is not None and pressure_bracket[0] >= pressure_bracket[1]:
            raise ValidationError(f"Invalid pressure bracket {pressure_bracket}.")

        self.wrm = wrm
        self.liquid_eos = liquid_eos or create_eos("constant")
        self.ice_eos = ice_eos or create_eos("constant", {"Density [kg/m^3]": c.ICE_DENSITY})
        self.gas_eos = gas_eos or create_eos("ideal gas")
        self.freezing = FreezingPointDepressionModel(wrm)
        self.porosity_compressibility = porosity_compressibility
        self.include_vapor = include_vapor
        self.rock_density = c.ROCK_DENSITY if rock_density is None else rock_density
        self.rock_heat_capacity = (
            c.ROCK_HEAT_CAPACITY if rock_heat_capacity is None else rock_heat_capacity
        )
        self.temperature_bracket = temperature_bracket
        self._pressure_bracket = pressure_bracket
        self.tolerance = tolerance

        self.reference_temperature = c.REFERENCE_TEMPERATURE
        self.atmospheric_pressure = c.ATMOSPHERIC_PRESSURE
        self.C_liquid = c.LIQUID_HEAT_CAPACITY
        self.C_ice = c.ICE_HEAT_CAPACITY
        self.C_vapor = c.VAPOR_HEAT_CAPACITY
        self.heat_of_fusion = c.HEAT_OF_FUSION
        self.heat_of_vaporization = c.HEAT_OF_VAPORIZATION

    @classmethod
    def from_options(cls, options: Options) -> "PermafrostEWCModel":
        """
        Options: water retention options (see `VanGenuchtenModel.from_options`),
        "liquid EOS" / "ice EOS" / "gas EOS" (registered names),
        "porosity compressibility [Pa^-1]", "include vapor",
        "rock density [kg/m^3]", "rock heat capacity [J/kg/K]".
        """
        wrm = create_wrm(options.get("water retention model", "van Genuchten"), options)
        ice_eos = (
            create_eos(options["ice EOS"], options.get("ice EOS options"))
            if "ice EOS" in options
            else None
        )
        return cls(
            wrm=wrm,
            liquid_eos=create_eos(options.get("liquid EOS", "constant"), options.get("liquid EOS options")),
            ice_eos=ice_eos,
            gas_eos=create_eos(options.get("gas EOS", "ideal gas"), options.get("gas EOS options")),
            porosity_compressibility=float(options.get("porosity compressibility [Pa^-1]", 1e-9)),
            include_vapor=bool(options.get("include vapor", True)),
            rock_density=options.get("rock density [kg/m^3]"),
            rock_heat_capacity=options.get("rock heat capacity [J/kg/K]"),
        )

    @property
    def pressure_bracket(self) -> typing.Tuple[float, float]:
        if self._pressure_bracket is not None:
            return self._pressure_bracket
        return (self.atmospheric_pressure - 1e7, self.atmospheric_pressure + 1e7)

    def initialize_model(self, state: "State") -> None:
        self.update_model(state)
        logger.debug(
            f"Initialized {type(self).__name__} with p_atm={self.atmospheric_pressure} Pa"
        )

    def update_model(self, state: "State") -> None:
        try:
            self.atmospheric_pressure = state.get_constant_scalar("atmospheric_pressure")
        except ValidationError:
            self.atmospheric_pressure = c.ATMOSPHERIC_PRESSURE

    def porosity(self, pressure: float, base_porosity: float) -> float:
        return base_porosity + self.porosity_compressibility * max(
            pressure - self.atmospheric_pressure, 0.0
        )

    def _saturations(
        self, temperature: float, pressure: float, n_liquid: float
    ) -> typing.Tuple[float, float, float]:
        pc_liquid = self.atmospheric_pressure - pressure
        pc_ice = self.freezing.ice_pressure(temperature, n_liquid)
        return self.freezing.saturations(pc_liquid, pc_ice)

    def _evaluate(
        self, temperature: float, pressure: float, base_porosity: float
    ) -> typing.Tuple[float, float]:
        T, p = temperature, pressure
        phi = self.porosity(p, base_porosity)
        n_l = float(self.liquid_eos.molar_density(T, p))
        n_i = float(self.ice_eos.molar_density(T, p))
        n_g = float(self.gas_eos.molar_density(T, self.atmospheric_pressure))
        s_g, s_l, s_i = self._saturations(T, p, n_l)
        omega = (
            saturated_vapor_pressure(T) / self.atmospheric_pressure
            if self.include_vapor
            else 0.0
        )

        dT = T - self.reference_temperature
        u_l = self.C_liquid * dT
        u_i = self.C_ice * dT - self.heat_of_fusion
        u_g = self.C_vapor * dT + self.heat_of_vaporization

        water_content = phi * (n_l * s_l + n_i * s_i + n_g * omega * s_g)
        energy = phi * (
            n_l * s_l * u_l + n_i * s_i * u_i + n_g * omega * s_g * u_g
        ) + (1.0 - base_porosity) * self.rock_density * self.rock_heat_capacity * dT
        return float(energy), float(water_content)

    def _check_inputs(self, *values: float) -> typing.Optional[EWCStatus]:
        if not all(np.isfinite(v) for v in values):
            return EWCStatus.NON_FINITE
        return None

    def evaluate(
        self, temperature: float, pressure: float, base_porosity: float
    ) -> typing.Tuple[int, float, float]:
        status = self._check_inputs(temperature, pressure, base_porosity)
        if status is not None:
            return status, np.nan, np.nan
        if temperature <= 0.0 or not 0.0 < base_porosity <= 1.0:
            return EWCStatus.OUT_OF_DOMAIN, np.nan, np.nan

        energy, water_content = self._evaluate(temperature, pressure, base_porosity)
        if not (np.isfinite(energy) and np.isfinite(water_content)):
            return EWCStatus.NON_FINITE, energy, water_content
        return EWCStatus.SUCCESS, energy, water_content

    def evaluate_saturations(
        self, temperature: float, pressure: float, base_porosity: float
    ) -> typing.Tuple[int, float, float, float]:
        status = self._check_inputs(temperature, pressure, base_porosity)
        if status is not None:
            return status, np.nan, np.nan, np.nan
        if temperature <= 0.0:
            return EWCStatus.OUT_OF_DOMAIN, np.nan, np.nan, np.nan

        n_l = float(self.liquid_eos.molar_density(temperature, pressure))
        s_g, s_l, s_i = self._saturations(temperature, pressure, n_l)
        return EWCStatus.SUCCESS, float(s_g), float(s_l), float(s_i)

    def _solve_temperature(self, energy: float, pressure: float, base_porosity: float) -> float:
        def residual(T: float) -> float:
            return self._evaluate(T, pressure, base_porosity)[0] - energy

        T_lo, T_hi = self.temperature_bracket
        r_lo, r_hi = residual(T_lo), residual(T_hi)
        if not (np.isfinite(r_lo) and np.isfinite(r_hi)):
            raise _InversionFailure(EWCStatus.NON_FINITE)
        if r_lo * r_hi > 0.0:
            raise _InversionFailure(EWCStatus.OUT_OF_DOMAIN)

        T, result = brentq(
            residual, T_lo, T_hi, xtol=1e-12, rtol=1e-14, maxiter=200,
            full_output=True, disp=False,
        )
        if not result.converged:
            raise _InversionFailure(EWCStatus.NOT_CONVERGED)
        return float(T)

    def _relative_error(self, value: float, target: float) -> float:
        return abs(value - target) / max(abs(target), 1.0)

    def inverse_evaluate_energy(
        self, energy: float, pressure: float, base_porosity: float
    ) -> typing.Tuple[int, float]:
        status = self._check_inputs(energy, pressure, base_porosity)
        if status is not None:
            return status, np.nan
        try:
            T = self._solve_temperature(energy, pressure, base_porosity)
        except _InversionFailure as exc:
            logger.debug(
                f"Energy inversion failed (e={energy}, p={pressure}): {exc.status.name}"
            )
            return exc.status, np.nan

        e_check, _ = self._evaluate(T, pressure, base_porosity)
        if self._relative_error(e_check, energy) > self.tolerance:
            return EWCStatus.NOT_CONVERGED, T
        return EWCStatus.SUCCESS, T

    def _trial_pressures(self) -> np.typing.NDArray:
        p_lo, p_hi = self.pressure_bracket
        offsets = np.logspace(0.0, 7.0, 15)
        trial = np.concatenate(
            [
                self.atmospheric_pressure - offsets,
                [self.atmospheric_pressure],
                self.atmospheric_pressure + offsets,
                np.linspace(p_lo, p_hi, 9),
            ]
        )
        return np.unique(np.clip(trial, p_lo, p_hi))

    def _matchable_edge(
        self,
        residual: typing.Callable[[float], float],
        good: float,
        r_good: float,
        bad: float,
        iterations: int = 60,
    ) -> typing.Tuple[float, float]:
        """
        Bisect between a pressure where the energy can be matched (`good`) and one
        where it cannot (`bad`). Returns the matchable pressure closest to `bad`.
        """
        for _ in range(iterations):
            mid = 0.5 * (good + bad)
            try:
                r_mid = residual(mid)
            except _InversionFailure as exc:
                if exc.status != EWCStatus.OUT_OF_DOMAIN:
                    raise
                bad = mid
            else:
                good, r_good = mid, r_mid
        return good, r_good

    def _bracket_pressure(
        self, residual: typing.Callable[[float], float]
    ) -> typing.Tuple[float, float]:
        """
        Find a pressure interval over which the water content residual changes sign.

        The residual is sampled on pressures clustered around atmospheric. At very
        dry or very wet pressures the target energy may lie outside the temperature
        bracket; such samples are skipped and the edge of the matchable range next
        to them is located by bisection.
        """
        samples: typing.List[typing.Tuple[float, typing.Optional[float]]] = []
        for p in self._trial_pressures():
            try:
                samples.append((float(p), residual(float(p))))
            except _InversionFailure as exc:
                if exc.status != EWCStatus.OUT_OF_DOMAIN:
                    raise
                samples.append((float(p), None))

        for (p0, r0), (p1, r1) in zip(samples[:-1], samples[1:]):
            if r0 is None and r1 is None:
                continue
            if r0 is None:
                p0, r0 = self._matchable_edge(residual, p1, r1, p0)  # type: ignore[arg-type]
            elif r1 is None:
                p1, r1 = self._matchable_edge(residual, p0, r0, p1)
            if r0 * r1 <= 0.0:  # type: ignore[operator]
                return p0, p1
        raise _InversionFailure(EWCStatus.OUT_OF_DOMAIN)

    def inverse_evaluate(
        self, energy: float, water_content: float, base_porosity: float
    ) -> typing.Tuple[int, float, float]:
        status = self._check_inputs(energy, water_content, base_porosity)
        if status is not None:
            return status, np.nan, np.nan

        def residual(p: float) -> float:
            T = self._solve_temperature(energy, p, base_porosity)
            return self._evaluate(T, p, base_porosity)[1] - water_content

        try:
            p_lo, p_hi = self._bracket_pressure(residual)
            p, result = brentq(
                residual, p_lo, p_hi, xtol=1e-8, rtol=1e-14, maxiter=200,
                full_output=True, disp=False,
            )
            if not result.converged:
                return EWCStatus.NOT_CONVERGED, np.nan, np.nan
            T = self._solve_temperature(energy, p, base_porosity)
        except _InversionFailure as exc:
            logger.debug(
                f"Inversion failed (e={energy}, wc={water_content}): {exc.status.name}"
            )
            return exc.status, np.nan, np.nan

        e_check, wc_check = self._evaluate(T, p, base_porosity)
        if (
            self._relative_error(e_check, energy) > self.tolerance
            or self._relative_error(wc_check, water_content) > self.tolerance
        ):
            return EWCStatus.NOT_CONVERGED, float(T), float(p)
        return EWCStatus.SUCCESS, float(T), float(p)


class LiquidGasEWCModel(PermafrostEWCModel):
    """Same as `PermafrostEWCModel` without an ice phase."""

    def _saturations(
        self, temperature: float, pressure: float, n_liquid: float
    ) -> typing.Tuple[float, float, float]:
        s_liquid = self.wrm.saturation(self.atmospheric_pressure - pressure)
        return 1.0 - s_liquid, s_liquid, 0.0


ewc_models.register("permafrost")(PermafrostEWCModel.from_options)
ewc_models.register("liquid gas")(LiquidGasEWCModel.from_options)
