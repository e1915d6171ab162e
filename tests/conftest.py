"""
Shared fixtures for richards tests.
"""

import numpy as np
import pytest

from richards.config import Config
from richards.constitutive.wrm import VanGenuchtenModel
from richards.evaluators import LinearStorageWaterContentEvaluator
from richards.mesh import build_structured_mesh
from richards.pk import Richards
from richards.state import State


@pytest.fixture
def wrm():
    return VanGenuchtenModel(alpha=2.0e-4, n=2.0, residual_saturation=0.05)


@pytest.fixture
def single_cell_mesh():
    return build_structured_mesh((1,), spacing=1.0)


@pytest.fixture
def column_mesh():
    """Vertical column of ten 0.1 m cells, the x axis pointing up."""
    return build_structured_mesh((10,), spacing=0.1)


@pytest.fixture
def no_gravity_config():
    return Config(gravity=(0.0, 0.0, 0.0))


def make_states(pk, S, h=1.0):
    """Previous and next snapshots one step `h` apart, registered with `pk`."""
    S_inter = S.copy()
    S_next = S.copy()
    S_next.set_time(S.time + h)
    pk.set_states(S_inter, S_next)
    return S_inter, S_next


@pytest.fixture
def storage_pk(single_cell_mesh, no_gravity_config, wrm):
    """
    One-cell kernel with no permeability and water content linear in pressure,
    `wc = 2 (p - 1e5)` mol.
    """
    pk = Richards(no_gravity_config, single_cell_mesh)
    S = State(single_cell_mesh, time=0.0)
    pk.setup(
        S,
        wrm,
        water_content=LinearStorageWaterContentEvaluator(
            storativity=2.0, reference_pressure=1.0e5
        ),
    )
    pk.initialize(S, 1.0e5)
    return pk, S


def fill_field(S, name, value, owner="flow"):
    S.get_field_data_writable(name, owner=owner)["cell"] = value


def assert_vectors_close(actual, expected, rtol=1e-10, atol=0.0):
    for location in expected.locations:
        np.testing.assert_allclose(actual[location], expected[location], rtol=rtol, atol=atol)
