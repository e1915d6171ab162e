"""
*richards*

Implicit time integration of the Richards equation for variably saturated,
optionally freezing, subsurface flow.
"""

from ._precision import *  # noqa
from .constants import *  # noqa
from .errors import *  # noqa
from .types import *  # noqa
from .config import *  # noqa
from .mesh import *  # noqa
from .vectors import *  # noqa
from .state import *  # noqa
from .constitutive import *  # noqa
from .evaluators import *  # noqa
from .boundary_conditions import *  # noqa
from .operators import *  # noqa
from .parallel import *  # noqa
from .pk import *  # noqa
from .timing import *  # noqa
from .integrators import *  # noqa

__version__ = "0.1.0"
