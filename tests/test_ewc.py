import numpy as np
import pytest

from richards.constants import c
from richards.constitutive.ewc import (
    LiquidGasEWCModel,
    PermafrostEWCModel,
    create_ewc_model,
)
from richards.errors import ValidationError
from richards.mesh import build_structured_mesh
from richards.state import State
from richards.types import EWCStatus

OPTIONS = {
    "van Genuchten alpha [Pa^-1]": 2.0e-4,
    "van Genuchten n [-]": 2.0,
    "residual saturation [-]": 0.05,
}


@pytest.fixture
def permafrost():
    model = create_ewc_model("permafrost", OPTIONS)
    S = State(build_structured_mesh((1,)))
    S.set_constant_scalar("atmospheric_pressure", c.ATMOSPHERIC_PRESSURE)
    model.initialize_model(S)
    model.update_model(S)
    return model


@pytest.mark.parametrize(
    "T, p",
    [
        (278.15, 90000.0),
        (285.0, 95000.0),
        (275.0, 99000.0),
        (290.0, 80000.0),
        (265.0, 95000.0),
        (268.15, 101325.0),
        (250.0, 101325.0),
        (270.0, 2.0e5),
        (280.0, 3.0e5),
    ],
)
def test_round_trip(permafrost, T, p):
    phi = 0.3
    status, energy, wc = permafrost.evaluate(T, p, phi)
    assert status == EWCStatus.SUCCESS

    status, T_inv, p_inv = permafrost.inverse_evaluate(energy, wc, phi)
    assert status == EWCStatus.SUCCESS
    assert T_inv == pytest.approx(T, abs=1e-6)
    assert p_inv == pytest.approx(p, rel=1e-6)


@pytest.mark.parametrize("T", [268.15, 271.0, 273.0, 278.15])
def test_energy_inversion_at_fixed_pressure(permafrost, T):
    phi = 0.35
    p = 101325.0
    status, energy, _ = permafrost.evaluate(T, p, phi)
    assert status == EWCStatus.SUCCESS
    status, T_inv = permafrost.inverse_evaluate_energy(energy, p, phi)
    assert status == EWCStatus.SUCCESS
    assert T_inv == pytest.approx(T, abs=1e-6)


@pytest.mark.parametrize("T", [240.0, 265.0, 273.15, 300.0])
@pytest.mark.parametrize("p", [-5.0e5, 5.0e4, 101325.0, 3.0e5])
def test_saturations_sum_to_one(permafrost, T, p):
    status, s_g, s_l, s_i = permafrost.evaluate_saturations(T, p, 0.3)
    assert status == EWCStatus.SUCCESS
    assert abs(s_g + s_l + s_i - 1.0) <= 1e-10


def test_frozen_state_has_ice(permafrost):
    _, s_g, s_l, s_i = permafrost.evaluate_saturations(263.15, 101325.0, 0.3)
    assert s_i > s_l
    assert s_g == pytest.approx(0.0, abs=1e-15)


def test_energy_increases_with_temperature(permafrost):
    energies = [permafrost.evaluate(T, 101325.0, 0.3)[1] for T in np.linspace(260.0, 290.0, 31)]
    assert np.all(np.diff(energies) > 0.0)


def test_liquid_gas_model_has_no_ice():
    model = create_ewc_model("liquid gas", OPTIONS)
    assert isinstance(model, LiquidGasEWCModel)
    status, s_g, s_l, s_i = model.evaluate_saturations(250.0, 101325.0, 0.3)
    assert status == EWCStatus.SUCCESS
    assert s_i == 0.0
    assert s_l == pytest.approx(1.0)


@pytest.mark.parametrize("T, p", [(268.15, 90000.0), (285.0, 95000.0), (280.0, 2.0e5)])
def test_liquid_gas_round_trip(T, p):
    model = create_ewc_model("liquid gas", OPTIONS)
    status, energy, wc = model.evaluate(T, p, 0.3)
    assert status == EWCStatus.SUCCESS

    status, T_inv, p_inv = model.inverse_evaluate(energy, wc, 0.3)
    assert status == EWCStatus.SUCCESS
    assert T_inv == pytest.approx(T, abs=1e-6)
    assert p_inv == pytest.approx(p, rel=1e-6)


def test_non_finite_inputs_report_status(permafrost):
    status, energy, wc = permafrost.evaluate(np.nan, 1e5, 0.3)
    assert status == EWCStatus.NON_FINITE
    assert np.isnan(energy) and np.isnan(wc)
    status, _, _ = permafrost.inverse_evaluate(np.inf, 1000.0, 0.3)
    assert status == EWCStatus.NON_FINITE


def test_unreachable_state_reports_out_of_domain(permafrost):
    phi = 0.3
    _, energy, wc = permafrost.evaluate(280.0, 90000.0, phi)
    status, T, p = permafrost.inverse_evaluate(energy, 10.0 * wc, phi)
    assert status == EWCStatus.OUT_OF_DOMAIN
    assert np.isnan(T) and np.isnan(p)

    status, T = permafrost.inverse_evaluate_energy(1e12, 101325.0, phi)
    assert status == EWCStatus.OUT_OF_DOMAIN


def test_porosity_compressibility_above_atmospheric(permafrost):
    assert permafrost.porosity(5e4, 0.3) == 0.3
    assert permafrost.porosity(101325.0 + 1e6, 0.3) == pytest.approx(0.3 + 1e-9 * 1e6)


def test_update_model_reads_atmospheric_pressure():
    model = create_ewc_model("permafrost", OPTIONS)
    S = State(build_structured_mesh((1,)))
    S.set_constant_scalar("atmospheric_pressure", 9.0e4)
    model.update_model(S)
    assert model.atmospheric_pressure == 9.0e4


def test_invalid_construction_raises():
    with pytest.raises(ValidationError):
        create_ewc_model("unknown", OPTIONS)
    with pytest.raises(ValidationError):
        create_ewc_model("permafrost", {"van Genuchten n [-]": 2.0})
    with pytest.raises(ValidationError):
        PermafrostEWCModel(
            create_ewc_model("permafrost", OPTIONS).wrm, temperature_bracket=(300.0, 200.0)
        )
