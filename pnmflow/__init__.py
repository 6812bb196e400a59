r"""
pnmflow
=======

Displacement simulations on pore networks: quasi-static two phase
displacement (drainage and imbibition cycles), unsteady state oil injection
and tracer flow, with absolute and relative permeability calculation.

Networks are built from element tables (Network.from_arrays) or from an
OpenPNM network (network_from_openpnm).
"""

import logging

from ._exceptions import *
from ._settings import *
from ._context import *
from ._random import *
from ._network import *
from ._cluster_funcs import *
from ._capillary_funcs import *
from ._conductance_funcs import *
from ._flow_funcs import *
from ._steady_state_class import *
from ._uss_class import *
from ._tracer_class import *
from ._simulation import *
from ._io_funcs import *

logging.getLogger(__name__).addHandler(logging.NullHandler())

__version__ = '0.1.0'
