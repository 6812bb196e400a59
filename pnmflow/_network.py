import logging
import threading
from enum import IntEnum
import numpy as np
import pandas as pd
import scipy.sparse as sprs
from ._exceptions import ConfigurationError

logger = logging.getLogger(__name__)


__all__ = [
    'Phase',
    'Wettability',
    'Network',
]


class Phase(IntEnum):
    OIL = 0
    WATER = 1
    GAS = 2


class Wettability(IntEnum):
    WATER_WET = 1
    OIL_WET = 2


#Element properties created with their default value
_ELEMENT_PROPS = {
    'inlet': False,
    'outlet': False,
    'closed': False,
    'water_trapped': False,
    'oil_trapped': False,
    'spanning': False,
    'phase': int(Phase.WATER),
    'oil_fraction': 0.0,
    'water_fraction': 1.0,
    'gas_fraction': 0.0,
    'water_film': False,
    'oil_film': False,
    'water_film_stable': False,
    'oil_film_stable': False,
    'oil_contacted': False,
    'contact_angle': 0.0,
    'wettability': int(Wettability.WATER_WET),
    'entry_pressure': 0.0,
    'concentration': 0.0,
}

_STATE_PROPS = ['water_trapped', 'oil_trapped', 'phase', 'oil_fraction', 'water_fraction',
                'gas_fraction', 'water_film', 'oil_film', 'oil_contacted', 'entry_pressure',
                'concentration']


class Network(dict):
    r"""
    Nodes (junctions), pores (conduits) and their state.

    Data is accessed like an OpenPNM object, with keys 'item.property'.
    Element properties live in 'element.*' arrays of length Ne = Np + Nn, pores
    first. 'pore.*' and 'node.*' keys of an element property are views on the
    corresponding slice, so they can be modified in place:

        network['pore.trapped'][mask] = True

    Pore topology is stored in 'pore.conns' (Np x 2). -1 stands for the domain
    boundary: column 0 for inlet pores (positive flow enters the network),
    column 1 for outlet pores (positive flow leaves the network).

    Use Network.from_arrays to build one.
    """

    def __init__(self, conns, Nn):
        super().__init__()
        conns = np.array(conns, dtype = np.int64)
        if conns.ndim != 2 or conns.shape[1] != 2:
            raise ConfigurationError('pore conns must be an array of shape (Np, 2)')
        self._Np = conns.shape[0]
        self._Nn = int(Nn)
        dict.__setitem__(self, 'pore.conns', conns)
        for prop, value in _ELEMENT_PROPS.items():
            self['element.' + prop] = value
        self['element.half_angles'] = np.full((self.Ne, 4), np.pi / 2)
        self['pore.flow'] = 0.0
        self['node.pressure'] = 0.0
        self.x_edge_length = 1.0
        self.y_edge_length = 1.0
        self.z_edge_length = 1.0
        self.clusters = {}
        self.is_oil_spanning = False
        self.is_water_spanning = False
        self.is_gas_spanning = False
        self.is_network_spanning = False
        self.solver_lock = threading.Lock()
        self._reset_outputs()
        self._build_topology()

    @classmethod
    def from_arrays(cls,
                    conns,
                    pore_radius,
                    pore_length,
                    node_radius,
                    pore_shape_factor,
                    node_shape_factor,
                    pore_volume = None,
                    node_volume = None,
                    edge_lengths = (1.0, 1.0, 1.0),
                    pore_half_angles = None,
                    node_half_angles = None):
        r"""
        Build a network from element tables (geometry/loader entry point).

        Parameters:
        ----------------
        conns: Np x 2 array with the node indices of each pore. -1 for the boundary
        pore_radius, pore_length, pore_shape_factor: Np arrays (or numbers)
        node_radius, node_shape_factor: Nn arrays (or numbers). Nodes have no length
        pore_volume, node_volume: If None, prism volumes are used. Pores: A*L,
        nodes: A*2r, with A = r^2 / (4G)
        edge_lengths: x, y, z lengths of the domain. Flow along x
        *_half_angles: Nx4 arrays of half corner angles. If None, they are
        derived from the shape factor (see assign_half_angles)

        Returns:
        ----------------
        Network. Contact angles are zero and all elements are filled with water
        """
        conns = np.array(conns, dtype = np.int64)
        Nn = len(np.atleast_1d(node_radius)) if np.ndim(node_radius) else int(conns.max()) + 1
        network = cls(conns, Nn)
        network['pore.radius'] = pore_radius
        network['pore.length'] = pore_length
        network['pore.shape_factor'] = pore_shape_factor
        network['node.radius'] = node_radius
        network['node.length'] = 0.0
        network['node.shape_factor'] = node_shape_factor
        area = network['element.radius'] ** 2 / (4 * network['element.shape_factor'])
        network['element.area'] = area
        if pore_volume is None:
            pore_volume = network['pore.area'] * network['pore.length']
        if node_volume is None:
            node_volume = network['node.area'] * 2 * network['node.radius']
        network['pore.volume'] = pore_volume
        network['node.volume'] = node_volume
        network.x_edge_length, network.y_edge_length, network.z_edge_length = edge_lengths
        #Importing here because _capillary_funcs depends on this module
        from ._capillary_funcs import assign_half_angles
        from ._conductance_funcs import assign_conductivities
        if pore_half_angles is not None:
            network['pore.half_angles'] = pore_half_angles
        if node_half_angles is not None:
            network['node.half_angles'] = node_half_angles
        if pore_half_angles is None or node_half_angles is None:
            beta = assign_half_angles(network['element.shape_factor'])
            mask = np.zeros(network.Ne, dtype = bool)
            if pore_half_angles is None:
                mask[:network.Np] = True
            if node_half_angles is None:
                mask[network.Np:] = True
            network['element.half_angles'][mask] = beta[mask]
        assign_conductivities(network)
        return network

    ############# Sizes and slices

    @property
    def Np(self):
        return self._Np

    @property
    def Nn(self):
        return self._Nn

    @property
    def Ne(self):
        return self._Np + self._Nn

    @property
    def pore_ids(self):
        return np.arange(self._Np)

    @property
    def node_ids(self):
        r"""
        Element ids of the nodes
        """
        return np.arange(self._Np, self.Ne)

    def _slice(self, item):
        if item == 'pore':
            return slice(0, self._Np)
        if item == 'node':
            return slice(self._Np, self.Ne)
        return slice(0, self.Ne)

    def _size(self, item):
        return {'pore': self._Np, 'node': self._Nn, 'element': self.Ne}[item]

    ############# Dict behaviour

    def _split(self, key):
        try:
            item, prop = key.split('.', 1)
        except (AttributeError, ValueError):
            raise KeyError(f'{key} is not a valid key. Use item.property') from None
        if item not in ['pore', 'node', 'element']:
            raise KeyError(f'{key}: item must be pore, node or element')
        return item, prop

    def __getitem__(self, key):
        if dict.__contains__(self, key):
            return dict.__getitem__(self, key)
        item, prop = self._split(key)
        ekey = 'element.' + prop
        if item != 'element' and dict.__contains__(self, ekey):
            return dict.__getitem__(self, ekey)[self._slice(item)]
        raise KeyError(key)

    def __setitem__(self, key, value):
        item, prop = self._split(key)
        ekey = 'element.' + prop
        if item != 'element' and dict.__contains__(self, ekey):
            dict.__getitem__(self, ekey)[self._slice(item)] = value
            return
        if item != 'element' and not dict.__contains__(self, key) and prop in _ELEMENT_PROPS:
            raise KeyError(f'{key} is an element property')
        N = self._size(item)
        value = np.array(value)
        if value.ndim == 0:
            value = np.full(N, value.item())
        if value.shape[0] != N:
            raise ValueError(f'{key} must have {N} rows, got {value.shape[0]}')
        if item in ['pore', 'node'] and not dict.__contains__(self, key) and prop not in ['conns', 'flow', 'pressure']:
            #New element property written through a slice
            full = np.zeros((self.Ne,) + value.shape[1:], dtype = value.dtype)
            dict.__setitem__(self, ekey, full)
            full[self._slice(item)] = value
            return
        dict.__setitem__(self, key, value)

    def __contains__(self, key):
        if dict.__contains__(self, key):
            return True
        try:
            item, prop = self._split(key)
        except KeyError:
            return False
        return item != 'element' and dict.__contains__(self, 'element.' + prop)

    def __repr__(self):
        return (f'<Network: {self.Np} pores, {self.Nn} nodes, '
                f'{int(np.sum(self["element.inlet"]))} inlet, {int(np.sum(self["element.outlet"]))} outlet>')

    ############# Topology

    def _build_topology(self):
        conns = self['pore.conns']
        Np = self._Np
        if np.any(conns >= self._Nn) or np.any(conns < -1):
            raise ConfigurationError('pore conns reference nodes that do not exist')
        self['element.inlet'][:Np] = conns[:, 0] == -1
        self['element.outlet'][:Np] = conns[:, 1] == -1
        rows = []
        cols = []
        for cn in [0, 1]:
            mask = conns[:, cn] >= 0
            rows.append(np.where(mask)[0])
            cols.append(Np + conns[mask, cn])
        rows = np.concatenate(rows)
        cols = np.concatenate(cols)
        self._edges = np.ascontiguousarray(np.vstack((rows, cols)).T, dtype = np.int64)
        data = np.ones(2 * len(rows), dtype = np.int8)
        am = sprs.coo_matrix((data, (np.concatenate((rows, cols)), np.concatenate((cols, rows)))),
                             shape = (self.Ne, self.Ne))
        self._adjacency = am.tocsr()
        self._adjacency.sum_duplicates()

    @property
    def element_edges(self):
        r"""
        E x 2 array of (pore, node) element ids. Used by the clustering kernel
        """
        return self._edges

    @property
    def adjacency(self):
        r"""
        Ne x Ne symmetric element adjacency matrix (csr)
        """
        return self._adjacency

    def element_neighbors(self, e):
        r"""
        Element ids connected to element e: the nodes of a pore or the pores of a node
        """
        am = self._adjacency
        return am.indices[am.indptr[e]:am.indptr[e + 1]]

    def pores_of_node(self, n):
        r"""
        Pore ids of node n (node index, not element id)
        """
        return self.element_neighbors(self._Np + n)

    ############# Checks and state

    def check_consistency(self):
        r"""
        Check topology, geometry and fluid fractions.
        Raises ConfigurationError, returns True if the network can be used
        """
        conns = self['pore.conns']
        errors = []
        if self._Np == 0:
            errors.append('network without pores')
        if np.any(np.all(conns == -1, axis = 1)):
            errors.append('pores connected to the boundary on both sides')
        if np.any((conns[:, 0] == conns[:, 1]) & (conns[:, 0] >= 0)):
            errors.append('pores connecting a node to itself')
        if not np.any(self['pore.inlet']) or not np.any(self['pore.outlet']):
            errors.append('inlet and outlet pores are required')
        if np.any(self['element.radius'] <= 0):
            errors.append('radii must be positive')
        if np.any(self['pore.length'] <= 0):
            errors.append('pore lengths must be positive')
        if np.any(self['element.volume'] <= 0):
            errors.append('volumes must be positive')
        G = self['element.shape_factor']
        if np.any(G <= 0) or np.any(G > 1 / (4 * np.pi) + 1e-12):
            errors.append('shape factors must be inside (0, 1/(4 pi)]')
        total = self['element.oil_fraction'] + self['element.water_fraction'] + self['element.gas_fraction']
        if np.any(np.abs(total - 1) > 1e-9):
            errors.append('fluid fractions do not sum to 1')
        if errors:
            raise ConfigurationError('; '.join(errors))
        return True

    def reset_state(self):
        r"""
        Fill all elements with water and clear trapping, films, clusters and outputs.
        Geometry and wettability are kept
        """
        for prop in _STATE_PROPS:
            self['element.' + prop] = _ELEMENT_PROPS[prop]
        self['pore.flow'] = 0.0
        self['node.pressure'] = 0.0
        self.clusters = {}
        self.is_oil_spanning = False
        self.is_water_spanning = False
        self.is_gas_spanning = False
        self._reset_outputs()

    def _reset_outputs(self):
        self.outputs = []
        self.pressure_drop = 0.0
        self.injected_volume = 0.0
        self.outlet_flow = 0.0
        self.absolute_permeability = 0.0
        self.porosity = 0.0
        self.oil_relative_permeability = 0.0
        self.water_relative_permeability = 0.0

    def set_phase(self, elements, phase):
        r"""
        Fill elements completely with one phase
        """
        self['element.phase'][elements] = int(phase)
        self['element.oil_fraction'][elements] = 1.0 if phase == Phase.OIL else 0.0
        self['element.gas_fraction'][elements] = 1.0 if phase == Phase.GAS else 0.0
        self['element.water_fraction'][elements] = 1.0 if phase == Phase.WATER else 0.0

    ############# Volumes and saturations

    @property
    def accessible(self):
        return ~self['element.closed']

    def total_volume(self):
        r"""
        Volume of the accessible elements
        """
        return np.sum(self['element.volume'][self.accessible])

    def get_water_saturation(self):
        r"""
        Water saturation of the accessible elements, without corner films
        """
        mask = self.accessible
        V = self['element.volume'][mask]
        return np.sum(V * self['element.water_fraction'][mask]) / np.sum(V)

    def get_water_saturation_with_films(self, pc, sigma):
        r"""
        Water saturation counting the corner water of oil-filled elements at
        capillary pressure pc
        """
        from ._capillary_funcs import water_saturation_with_films
        return water_saturation_with_films(self, pc, sigma)

    def get_oil_saturation(self):
        mask = self.accessible
        V = self['element.volume'][mask]
        return np.sum(V * self['element.oil_fraction'][mask]) / np.sum(V)

    def get_outlet_flow(self):
        r"""
        Total flow leaving the network through the outlet pores
        """
        return np.sum(self['pore.flow'][self['pore.outlet']])

    def trapped(self):
        return self['element.water_trapped'] | self['element.oil_trapped']

    ############# Outputs

    def record_output(self, **values):
        self.outputs.append(values)

    def output_frame(self):
        r"""
        Recorded outputs (saturation history, pressure drop, injected volume...)
        as a pandas DataFrame
        """
        return pd.DataFrame(self.outputs)
