import numpy as np
import pytest

from richards.constitutive.eos import (
    ConstantEOS,
    CoolPropEOS,
    IdealGasEOS,
    LiquidWaterEOS,
    create_eos,
    list_eos_models,
)
from richards.constitutive.viscosity import create_viscosity_model
from richards.errors import ValidationError


@pytest.mark.parametrize("rho", [1000.0, 917.0, 1.2, 13534.0])
@pytest.mark.parametrize("molar_mass", [18.0153, 28.956, 200.59])
def test_constant_eos_density_is_rho_over_molar_mass(rho, molar_mass):
    eos = create_eos("constant", {"Density [kg/m^3]": rho, "Molar mass [g/mol]": molar_mass})
    expected = rho / (molar_mass * 1e-3)
    for T, p in [(273.15, 101325.0), (250.0, 5.0e6), (400.0, 10.0)]:
        assert eos.density(T, p) == expected
        assert eos.d_density_dT(T, p) == 0.0
        assert eos.d_density_dp(T, p) == 0.0


def test_constant_eos_defaults():
    eos = ConstantEOS()
    assert eos.molar_mass() == pytest.approx(18.0153e-3, rel=1e-15)
    assert eos.density(300.0, 1e5) == 1000.0 / eos.molar_mass()
    assert eos.is_molar_basis()


def test_constant_eos_molar_options_take_precedence():
    eos = create_eos(
        "constant",
        {
            "Molar mass [kg/mol]": 0.02,
            "Molar mass [g/mol]": 99.0,
            "Density [mol/m^3]": 50000.0,
            "Density [kg/m^3]": 1.0,
        },
    )
    assert eos.molar_mass() == 0.02
    assert eos.density(280.0, 1e5) == pytest.approx(50000.0, rel=1e-14)


def test_constant_eos_arrays_keep_shape():
    eos = ConstantEOS()
    T = np.full(4, 280.0)
    p = np.linspace(9e4, 1.1e5, 4)
    np.testing.assert_array_equal(eos.d_density_dp(T, p), np.zeros(4))
    assert eos.density(T, p).shape == (4,)


def test_invalid_options_raise():
    with pytest.raises(ValidationError):
        create_eos("constant", {"Density [kg/m^3]": -1.0})
    with pytest.raises(ValidationError):
        create_eos("does not exist")


def test_registry_lists_models():
    names = list_eos_models()
    for name in ("constant", "liquid water", "ideal gas", "coolprop"):
        assert name in names


@pytest.mark.parametrize("T, p", [(275.0, 1.0e5), (300.0, 5.0e5), (320.0, 2.0e6)])
def test_liquid_water_derivatives_match_finite_differences(T, p):
    eos = LiquidWaterEOS()
    dT, dp = 1e-4, 1.0
    fd_T = (eos.density(T + dT, p) - eos.density(T - dT, p)) / (2 * dT)
    fd_p = (eos.density(T, p + dp) - eos.density(T, p - dp)) / (2 * dp)
    assert eos.d_density_dT(T, p) == pytest.approx(fd_T, rel=1e-6)
    assert eos.d_density_dp(T, p) == pytest.approx(fd_p, rel=1e-6)
    assert eos.density(277.13, 1e5) == pytest.approx(1000.0, abs=0.1)


def test_ideal_gas_molar_and_mass_densities():
    eos = IdealGasEOS()
    n = eos.molar_density(300.0, 101325.0)
    assert n == pytest.approx(101325.0 / (8.31446261815324 * 300.0))
    assert eos.mass_density(300.0, 101325.0) == pytest.approx(n * 28.956e-3)
    assert eos.d_molar_density_dT(300.0, 101325.0) == pytest.approx(-n / 300.0)


def test_coolprop_water_density():
    eos = CoolPropEOS({"Fluid": "Water"})
    assert not eos.is_molar_basis()
    assert eos.mass_density(300.0, 1.0e5) == pytest.approx(996.5, rel=1e-3)
    assert eos.molar_mass() == pytest.approx(18.015e-3, rel=1e-3)
    assert eos.d_density_dp(300.0, 1.0e5) > 0.0
    with pytest.raises(ValidationError):
        CoolPropEOS({"Fluid": "NotAFluid"})


def test_viscosity_models():
    constant = create_viscosity_model("constant", {"Viscosity [Pa s]": 1e-3})
    assert constant.viscosity(280.0) == 1e-3
    assert constant.d_viscosity_dT(280.0) == 0.0

    water = create_viscosity_model("liquid water")
    T = 293.15
    fd = (water.viscosity(T + 1e-3) - water.viscosity(T - 1e-3)) / 2e-3
    assert water.viscosity(T) == pytest.approx(1.0e-3, rel=0.05)
    assert water.d_viscosity_dT(T) == pytest.approx(fd, rel=1e-5)
