"""Closure models: equations of state, viscosity, water retention and energy-water-content."""

from .eos import *  # noqa
from .viscosity import *  # noqa
from .wrm import *  # noqa
from .ewc import *  # noqa
