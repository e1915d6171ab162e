import numpy as np
import pytest

from richards.constitutive.wrm import (
    FreezingPointDepressionModel,
    VanGenuchtenModel,
    create_wrm,
)
from richards.errors import ValidationError


def test_saturated_region_is_fully_saturated(wrm):
    pc = np.array([-1e5, -1.0, 0.0])
    np.testing.assert_allclose(wrm.saturation(pc), 1.0, rtol=1e-15)
    np.testing.assert_array_equal(wrm.k_relative(pc), 1.0)
    np.testing.assert_array_equal(wrm.d_saturation(pc), 0.0)


def test_saturation_is_bounded_and_decreasing(wrm):
    pc = np.logspace(0, 8, 50)
    s = wrm.saturation(pc)
    assert np.all(np.diff(s) < 0.0)
    assert np.all(s > wrm.residual_saturation)
    assert np.all(s <= 1.0)


def test_capillary_pressure_inverts_saturation(wrm):
    pc = np.array([10.0, 1.0e3, 5.0e4, 1.0e6])
    np.testing.assert_allclose(wrm.capillary_pressure(wrm.saturation(pc)), pc, rtol=1e-8)
    assert wrm.capillary_pressure(1.0) == 0.0


@pytest.mark.parametrize("pc", [50.0, 2.0e3, 1.0e4, 3.0e5])
def test_derivatives_match_finite_differences(wrm, pc):
    dpc = pc * 1e-6
    fd_s = (wrm.saturation(pc + dpc) - wrm.saturation(pc - dpc)) / (2 * dpc)
    fd_kr = (wrm.k_relative(pc + dpc) - wrm.k_relative(pc - dpc)) / (2 * dpc)
    assert wrm.d_saturation(pc) == pytest.approx(fd_s, rel=1e-5)
    assert wrm.d_k_relative(pc) == pytest.approx(fd_kr, rel=1e-5)


def test_scalar_in_scalar_out(wrm):
    assert isinstance(wrm.saturation(1.0e3), float)
    assert wrm.saturation(np.array([1.0e3])).shape == (1,)


def test_from_options():
    model = create_wrm(
        "van Genuchten",
        {"van Genuchten alpha [Pa^-1]": 1e-4, "van Genuchten n [-]": 1.5},
    )
    assert model.m == pytest.approx(1.0 / 3.0)
    assert model.residual_saturation == 0.0
    assert model.pore_connectivity == 0.5
    with pytest.raises(ValidationError):
        create_wrm("van Genuchten", {"van Genuchten n [-]": 1.5})


def test_invalid_parameters_raise():
    with pytest.raises(ValueError):
        VanGenuchtenModel(alpha=1e-4, n=0.9)
    with pytest.raises(ValueError):
        VanGenuchtenModel(alpha=-1.0, n=2.0)


def test_freezing_partition_sums_to_one(wrm):
    model = FreezingPointDepressionModel(wrm)
    n_l = 55500.0
    for T in (250.0, 270.0, 273.0, 273.15, 280.0):
        for pc_liquid in (-1e4, 0.0, 1e3, 1e5):
            pc_ice = model.ice_pressure(T, n_l)
            s_g, s_l, s_i = model.saturations(pc_liquid, pc_ice)
            assert s_g + s_l + s_i == pytest.approx(1.0, abs=1e-12)
            assert min(s_g, s_l, s_i) >= -1e-15
            if T >= model.freezing_point:
                assert s_i == 0.0


def test_ice_pressure_grows_with_undercooling(wrm):
    model = FreezingPointDepressionModel(wrm)
    assert model.ice_pressure(280.0, 55500.0) == 0.0
    assert model.ice_pressure(268.15, 55500.0) > model.ice_pressure(272.15, 55500.0) > 0.0
