"""Secondary-variable field evaluators used by the Richards process kernel."""

import typing

import numpy as np

from richards.constitutive.eos import EOS
from richards.constitutive.viscosity import ViscosityModel
from richards.constitutive.wrm import VanGenuchtenModel
from richards.errors import ValidationError
from richards.state import SecondaryVariableFieldEvaluator, State
from richards.vectors import CompositeVector

__all__ = [
    "EOSDensityEvaluator",
    "ViscosityEvaluator",
    "SaturationEvaluator",
    "RelativePermeabilityEvaluator",
    "WaterContentEvaluator",
    "LinearStorageWaterContentEvaluator",
]


def _cells(state: State, key: str) -> np.typing.NDArray:
    return state.get_field_data(key)["cell"]


class EOSDensityEvaluator(SecondaryVariableFieldEvaluator):
    """Density of a phase from an EOS, on a molar or mass basis."""

    def __init__(
        self,
        key: str,
        eos: EOS,
        basis: typing.Literal["molar", "mass"] = "molar",
        temperature_key: str = "temperature",
        pressure_key: str = "pressure",
    ) -> None:
        if basis not in ("molar", "mass"):
            raise ValidationError(f"Density basis must be 'molar' or 'mass', got {basis!r}.")
        super().__init__(key, dependencies=(temperature_key, pressure_key))
        self.eos = eos
        self.basis = basis
        self.temperature_key = temperature_key
        self.pressure_key = pressure_key

    def evaluate_field(self, state: State, result: CompositeVector) -> None:
        T = _cells(state, self.temperature_key)
        p = _cells(state, self.pressure_key)
        if self.basis == "molar":
            result["cell"] = self.eos.molar_density(T, p)
        else:
            result["cell"] = self.eos.mass_density(T, p)

    def evaluate_field_partial_derivative(
        self, state: State, wrt_key: str, result: CompositeVector
    ) -> None:
        T = _cells(state, self.temperature_key)
        p = _cells(state, self.pressure_key)
        molar = self.basis == "molar"
        if wrt_key == self.pressure_key:
            result["cell"] = (
                self.eos.d_molar_density_dp(T, p) if molar else self.eos.d_mass_density_dp(T, p)
            )
        elif wrt_key == self.temperature_key:
            result["cell"] = (
                self.eos.d_molar_density_dT(T, p) if molar else self.eos.d_mass_density_dT(T, p)
            )
        else:
            result.put_scalar(0.0)


class ViscosityEvaluator(SecondaryVariableFieldEvaluator):
    def __init__(
        self, key: str, model: ViscosityModel, temperature_key: str = "temperature"
    ) -> None:
        super().__init__(key, dependencies=(temperature_key,))
        self.model = model
        self.temperature_key = temperature_key

    def evaluate_field(self, state: State, result: CompositeVector) -> None:
        result["cell"] = self.model.viscosity(_cells(state, self.temperature_key))

    def evaluate_field_partial_derivative(
        self, state: State, wrt_key: str, result: CompositeVector
    ) -> None:
        if wrt_key == self.temperature_key:
            result["cell"] = self.model.d_viscosity_dT(_cells(state, self.temperature_key))
        else:
            result.put_scalar(0.0)


class SaturationEvaluator(SecondaryVariableFieldEvaluator):
    """Liquid or gas saturation from capillary pressure `p_atm - p`."""

    def __init__(
        self,
        key: str,
        wrm: VanGenuchtenModel,
        phase: typing.Literal["liquid", "gas"] = "liquid",
        pressure_key: str = "pressure",
    ) -> None:
        super().__init__(key, dependencies=(pressure_key,))
        self.wrm = wrm
        self.phase = phase
        self.pressure_key = pressure_key

    def _capillary_pressure(self, state: State) -> np.typing.NDArray:
        p_atm = state.get_constant_scalar("atmospheric_pressure")
        return p_atm - _cells(state, self.pressure_key)

    def evaluate_field(self, state: State, result: CompositeVector) -> None:
        s_liquid = self.wrm.saturation(self._capillary_pressure(state))
        result["cell"] = s_liquid if self.phase == "liquid" else 1.0 - s_liquid

    def evaluate_field_partial_derivative(
        self, state: State, wrt_key: str, result: CompositeVector
    ) -> None:
        if wrt_key != self.pressure_key:
            result.put_scalar(0.0)
            return
        # dpc/dp = -1
        ds_dpc = self.wrm.d_saturation(self._capillary_pressure(state))
        result["cell"] = -ds_dpc if self.phase == "liquid" else ds_dpc


class RelativePermeabilityEvaluator(SecondaryVariableFieldEvaluator):
    """
    Cell mobility `k_r(pc) * n_l / mu` [mol/(m^3 Pa s)].

    Multiplied by the intrinsic permeability and upwinded to faces by the process
    kernel to form transmissibilities.
    """

    def __init__(
        self,
        key: str,
        wrm: VanGenuchtenModel,
        pressure_key: str = "pressure",
        molar_density_key: str = "molar_density_liquid",
        viscosity_key: str = "viscosity_liquid",
    ) -> None:
        super().__init__(key, dependencies=(pressure_key, molar_density_key, viscosity_key))
        self.wrm = wrm
        self.pressure_key = pressure_key
        self.molar_density_key = molar_density_key
        self.viscosity_key = viscosity_key

    def _inputs(self, state: State):
        pc = state.get_constant_scalar("atmospheric_pressure") - _cells(state, self.pressure_key)
        return pc, _cells(state, self.molar_density_key), _cells(state, self.viscosity_key)

    def evaluate_field(self, state: State, result: CompositeVector) -> None:
        pc, n, mu = self._inputs(state)
        result["cell"] = self.wrm.k_relative(pc) * n / mu

    def evaluate_field_partial_derivative(
        self, state: State, wrt_key: str, result: CompositeVector
    ) -> None:
        pc, n, mu = self._inputs(state)
        if wrt_key == self.pressure_key:
            result["cell"] = -self.wrm.d_k_relative(pc) * n / mu
        elif wrt_key == self.molar_density_key:
            result["cell"] = self.wrm.k_relative(pc) / mu
        elif wrt_key == self.viscosity_key:
            result["cell"] = -self.wrm.k_relative(pc) * n / (mu * mu)
        else:
            result.put_scalar(0.0)


class WaterContentEvaluator(SecondaryVariableFieldEvaluator):
    """Moles of water in each cell, `phi * n_l * s_l * V`."""

    def __init__(
        self,
        key: str = "water_content",
        porosity_key: str = "porosity",
        molar_density_key: str = "molar_density_liquid",
        saturation_key: str = "saturation_liquid",
    ) -> None:
        super().__init__(key, dependencies=(porosity_key, molar_density_key, saturation_key))
        self.porosity_key = porosity_key
        self.molar_density_key = molar_density_key
        self.saturation_key = saturation_key

    def evaluate_field(self, state: State, result: CompositeVector) -> None:
        phi = _cells(state, self.porosity_key)
        n = _cells(state, self.molar_density_key)
        s = _cells(state, self.saturation_key)
        result["cell"] = phi * n * s * state.mesh.cell_volumes

    def evaluate_field_partial_derivative(
        self, state: State, wrt_key: str, result: CompositeVector
    ) -> None:
        phi = _cells(state, self.porosity_key)
        n = _cells(state, self.molar_density_key)
        s = _cells(state, self.saturation_key)
        V = state.mesh.cell_volumes
        if wrt_key == self.porosity_key:
            result["cell"] = n * s * V
        elif wrt_key == self.molar_density_key:
            result["cell"] = phi * s * V
        elif wrt_key == self.saturation_key:
            result["cell"] = phi * n * V
        else:
            result.put_scalar(0.0)


class LinearStorageWaterContentEvaluator(SecondaryVariableFieldEvaluator):
    """
    Water content linear in pressure,

        wc = V (wc_ref + S_s (p - p_ref))

    with `S_s` a storage coefficient [mol/(m^3 Pa)].
    """

    def __init__(
        self,
        storativity: float,
        reference_pressure: float,
        reference_water_content: float = 0.0,
        key: str = "water_content",
        pressure_key: str = "pressure",
    ) -> None:
        super().__init__(key, dependencies=(pressure_key,))
        self.storativity = storativity
        self.reference_pressure = reference_pressure
        self.reference_water_content = reference_water_content
        self.pressure_key = pressure_key

    def evaluate_field(self, state: State, result: CompositeVector) -> None:
        p = _cells(state, self.pressure_key)
        result["cell"] = state.mesh.cell_volumes * (
            self.reference_water_content + self.storativity * (p - self.reference_pressure)
        )

    def evaluate_field_partial_derivative(
        self, state: State, wrt_key: str, result: CompositeVector
    ) -> None:
        if wrt_key == self.pressure_key:
            result["cell"] = state.mesh.cell_volumes * self.storativity
        else:
            result.put_scalar(0.0)
