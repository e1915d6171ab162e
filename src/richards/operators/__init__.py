"""Discrete operators, upwinding and linear solvers."""

from .solvers import *  # noqa
from .upwinding import *  # noqa
from .mfd import *  # noqa
