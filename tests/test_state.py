import numpy as np
import pytest

from richards._precision import get_dtype, with_precision
from richards.constitutive.eos import LiquidWaterEOS
from richards.errors import ContractViolationError, ValidationError
from richards.evaluators import (
    EOSDensityEvaluator,
    SaturationEvaluator,
    WaterContentEvaluator,
)
from richards.mesh import build_structured_mesh
from richards.state import PrimaryVariableFieldEvaluator, State, derivative_key
from richards.vectors import CompositeVector, TreeVector


@pytest.fixture
def mesh():
    return build_structured_mesh((3, 2), spacing=(1.0, 0.5))


@pytest.fixture
def state(mesh, wrm):
    S = State(mesh, time=0.0)
    S.set_constant_scalar("atmospheric_pressure", 101325.0)
    p = S.require_field("pressure", owner="flow", locations=("cell", "face"))
    p["cell"] = np.linspace(8.0e4, 1.1e5, mesh.num_cells)
    S.require_field("temperature", owner="flow", time_independent=True, fill=285.0)
    S.require_field("porosity", owner="flow", time_independent=True, fill=0.4)
    S.set_field_evaluator(PrimaryVariableFieldEvaluator("pressure"))
    S.set_field_evaluator(EOSDensityEvaluator("molar_density_liquid", LiquidWaterEOS()))
    S.set_field_evaluator(SaturationEvaluator("saturation_liquid", wrm))
    S.set_field_evaluator(WaterContentEvaluator())
    return S


def test_composite_vector_algebra(mesh):
    x = CompositeVector.from_mesh(mesh, ("cell", "face"), fill=2.0)
    y = x.copy().put_scalar(3.0)
    assert x.size("cell") == mesh.num_cells
    assert x.size("face") == mesh.num_faces
    assert x.dot(y) == pytest.approx(6.0 * (mesh.num_cells + mesh.num_faces))

    x.update(2.0, y, 0.5)
    np.testing.assert_array_equal(x["cell"], 7.0)
    assert x.norm_inf() == 7.0
    assert x.norm_inf("face") == 7.0

    flat = x.to_array()
    z = x.zeros_like().from_array(flat)
    np.testing.assert_array_equal(z["face"], x["face"])
    with pytest.raises(ValidationError):
        z.from_array(np.zeros(3))


def test_read_only_view_cannot_be_written(mesh):
    x = CompositeVector.from_mesh(mesh)
    view = x.read_only()
    with pytest.raises(ValueError):
        view["cell"][0] = 1.0
    x["cell"][0] = 5.0
    assert view["cell"][0] == 5.0


def test_tree_vector_operations(mesh):
    leaf = CompositeVector.from_mesh(mesh, ("cell", "face"), fill=1.0)
    tree = TreeVector(subvectors=[TreeVector(data=leaf), TreeVector(data=leaf.copy())])
    other = tree.copy().scale(-2.0)
    assert tree.dot(other) == pytest.approx(-4.0 * (mesh.num_cells + mesh.num_faces))
    tree.update(1.0, other)
    assert tree.norm_inf() == 1.0
    with pytest.raises(ValidationError):
        tree.assign(TreeVector(data=leaf))


def test_writes_are_restricted_to_the_owner(state):
    with pytest.raises(ContractViolationError):
        state.get_field_data_writable("pressure", owner="energy")
    with pytest.raises(ContractViolationError):
        state.require_field("pressure", owner="energy")
    with pytest.raises(ValidationError):
        state.get_field_data("no such field")


def test_views_are_time_tagged(state):
    state.set_time(10.0)
    with pytest.raises(ContractViolationError):
        state.get_field_data("pressure", time=10.0)
    state.get_field_data_writable("pressure", owner="flow")
    view = state.get_field_data("pressure", time=10.0)
    assert view.time == 10.0
    # Time-independent fields are never stale.
    state.get_field_data("porosity", time=10.0)


def test_evaluators_recompute_only_when_dependencies_change(state):
    evaluator = state.get_field_evaluator("water_content")
    assert evaluator.has_field_changed(state, "test")
    assert not evaluator.has_field_changed(state, "test")
    version = state.field_version("water_content")

    state.get_field_data_writable("temperature", owner="flow")["cell"] = 290.0
    assert evaluator.has_field_changed(state, "test")
    assert state.field_version("water_content") == version + 1


def test_water_content_value(state, mesh, wrm):
    state.get_field_evaluator("water_content").has_field_changed(state, "test")
    p = state.get_field_data("pressure")["cell"]
    n = LiquidWaterEOS().molar_density(285.0, p)
    s = wrm.saturation(101325.0 - p)
    expected = 0.4 * n * s * mesh.cell_volumes
    np.testing.assert_allclose(state.get_field_data("water_content")["cell"], expected, rtol=1e-12)


def test_chain_rule_derivative_matches_finite_differences(state):
    evaluator = state.get_field_evaluator("water_content")
    evaluator.has_field_derivative_changed(state, "test", "pressure")
    dwc_dp = state.get_field_data(derivative_key("water_content", "pressure"))["cell"].copy()

    dp = 1.0
    wc = []
    for sign in (1.0, -1.0):
        S = state.copy()
        S.get_field_data_writable("pressure", owner="flow")["cell"] += sign * dp
        S.get_field_evaluator("water_content").has_field_changed(S, "test")
        wc.append(S.get_field_data("water_content")["cell"].copy())
    np.testing.assert_allclose(dwc_dp, (wc[0] - wc[1]) / (2 * dp), rtol=1e-5)


def test_dependency_graph(state):
    evaluator = state.get_field_evaluator("water_content")
    assert evaluator.is_dependency(state, "pressure")
    assert evaluator.is_dependency(state, "temperature")
    assert not evaluator.is_dependency(state, "darcy_flux")


def test_assign_copies_values_and_time(state):
    other = state.copy()
    other.set_time(5.0)
    other.advance_cycle()
    other.get_field_data_writable("pressure", owner="flow")["cell"] = 1.0e5

    state.assign(other)
    assert state.time == 5.0
    assert state.cycle == 1
    np.testing.assert_array_equal(state.get_field_data("pressure", time=5.0)["cell"], 1.0e5)


def test_primary_variable_must_exist(mesh):
    S = State(mesh)
    with pytest.raises(ValidationError):
        S.set_field_evaluator(PrimaryVariableFieldEvaluator("pressure"))


def test_constants(state):
    state.set_constant_vector("gravity", [0.0, -9.80665])
    gravity = state.get_constant_vector_data("gravity")
    assert gravity[1] == -9.80665
    with pytest.raises(ValueError):
        gravity[0] = 1.0
    with pytest.raises(ValidationError):
        state.get_constant_scalar("missing")


def test_vectors_follow_context_precision(mesh):
    with with_precision(np.float32):
        assert get_dtype() is np.float32
        v = CompositeVector.from_mesh(mesh, ("cell", "face"))
        assert v["cell"].dtype == np.float32
        assert v["face"].dtype == np.float32
    assert CompositeVector.from_mesh(mesh)["cell"].dtype == np.float64
