import logging
from enum import Enum
from collections import namedtuple
import numpy as np
from numba import njit
from ._network import Phase

logger = logging.getLogger(__name__)


__all__ = [
    'ClusterKind',
    'Cluster',
    'cluster_elements',
    'cluster_water_wet_elements',
    'cluster_oil_wet_elements',
    'cluster_water_elements',
    'cluster_oil_elements',
    'cluster_gas_elements',
    'cluster_oil_flowing_elements',
    'cluster_water_flowing_elements',
    'cluster_active_elements',
    'cluster_water_film_elements',
    'cluster_oil_film_elements',
    'define_accessible_elements',
    'update_trapping',
]


class ClusterKind(Enum):
    WATER_WET = 'water_wet'
    OIL_WET = 'oil_wet'
    WATER = 'water'
    OIL = 'oil'
    GAS = 'gas'
    OIL_FLOWING = 'oil_flowing'
    WATER_FLOWING = 'water_flowing'
    ACTIVE = 'active'
    WATER_FILM = 'water_film'
    OIL_FILM = 'oil_film'


Cluster = namedtuple('Cluster', ['index', 'members', 'inlet', 'outlet', 'spanning', 'volume'])


@njit
def _find(parent, i):  # pragma: no cover
    root = i
    while parent[root] != root:
        root = parent[root]
    #Path compression
    while parent[i] != root:
        nxt = parent[i]
        parent[i] = root
        i = nxt
    return root


@njit
def _label_clusters(edges, mask):  # pragma: no cover
    r"""
    Union-find over the (pore, node) edges whose both ends satisfy mask.

    The larger root is always linked under the smaller one, so the root of a
    set is its smallest element id. Labels are given in ascending order of
    that root, which makes the labelling independent of the edge order.
    Elements outside mask get -1.
    """
    Ne = mask.shape[0]
    parent = np.arange(Ne)
    for k in range(edges.shape[0]):
        a = edges[k, 0]
        b = edges[k, 1]
        if mask[a] and mask[b]:
            ra = _find(parent, a)
            rb = _find(parent, b)
            if ra < rb:
                parent[rb] = ra
            elif rb < ra:
                parent[ra] = rb
    labels = np.full(Ne, -1, dtype = np.int64)
    root_label = np.full(Ne, -1, dtype = np.int64)
    n = 0
    for i in range(Ne):
        if mask[i]:
            r = _find(parent, i)
            if root_label[r] < 0:
                root_label[r] = n
                n += 1
            labels[i] = root_label[r]
    return labels, n


def cluster_elements(network, predicate, kind, spanning_test = None):
    r"""
    Partition the elements satisfying a predicate into connected clusters.

    Parameters:
    ----------------
    network: Network
    predicate: boolean array of size Ne, or a callable taking the network and
    returning one
    kind: ClusterKind. Clusters are stored in network.clusters[kind] and the
    index of the cluster of each element in 'element.cluster_<kind>' (-1 if
    the element is not in a cluster)
    spanning_test: optional callable (network, members) -> bool. Default: the
    cluster holds an inlet and an outlet element

    Returns:
    ----------------
    List of Cluster, ordered by their smallest element id

    Notes:
    ----------------
    Closed elements never cluster. Running twice on the same state gives the
    same labels.
    """
    kind = ClusterKind(kind)
    mask = predicate(network) if callable(predicate) else predicate
    mask = np.array(mask, dtype = bool)
    if mask.shape != (network.Ne,):
        raise ValueError(f'predicate must give {network.Ne} values')
    mask &= ~network['element.closed']
    labels, n = _label_clusters(network.element_edges, mask)
    ids = np.where(labels >= 0)[0]
    lab = labels[ids]
    if n > 0:
        sorted_ids = ids[np.argsort(lab, kind = 'stable')]
        counts = np.bincount(lab, minlength = n)
        groups = np.split(sorted_ids, np.cumsum(counts)[:-1])
    else:
        groups = []
    inlet = np.bincount(lab, weights = network['element.inlet'][ids], minlength = n) > 0
    outlet = np.bincount(lab, weights = network['element.outlet'][ids], minlength = n) > 0
    volume = np.bincount(lab, weights = network['element.volume'][ids], minlength = n)
    if spanning_test is None:
        spanning = inlet & outlet
    else:
        spanning = np.array([bool(spanning_test(network, m)) for m in groups], dtype = bool)
    clusters = [Cluster(i, groups[i], bool(inlet[i]), bool(outlet[i]), bool(spanning[i]), volume[i])
                for i in range(n)]
    network['element.cluster_' + kind.value] = labels
    network.clusters[kind] = clusters
    logger.debug('%s: %i clusters, %i spanning', kind.name, n, int(np.sum(spanning)))
    return clusters


def _any_spanning(clusters):
    return any(c.spanning for c in clusters)


def cluster_water_wet_elements(network):
    return cluster_elements(network, network['element.wettability'] == 1, ClusterKind.WATER_WET)


def cluster_oil_wet_elements(network):
    return cluster_elements(network, network['element.wettability'] == 2, ClusterKind.OIL_WET)


def cluster_water_elements(network, films = True):
    r"""
    Water clusters. With films, oil-filled elements holding water in their
    corners connect the water of their neighbours
    """
    mask = network['element.water_fraction'] > 0
    if films:
        mask = mask | network['element.water_film']
    clusters = cluster_elements(network, mask, ClusterKind.WATER)
    network.is_water_spanning = _any_spanning(clusters)
    return clusters


def cluster_oil_elements(network, films = True):
    mask = network['element.oil_fraction'] > 0
    if films:
        mask = mask | network['element.oil_film']
    clusters = cluster_elements(network, mask, ClusterKind.OIL)
    network.is_oil_spanning = _any_spanning(clusters)
    return clusters


def cluster_gas_elements(network):
    clusters = cluster_elements(network, network['element.gas_fraction'] > 0, ClusterKind.GAS)
    network.is_gas_spanning = _any_spanning(clusters)
    return clusters


def cluster_oil_flowing_elements(network):
    r"""
    Clusters of untrapped oil, films included. Used for the oil relative permeability
    """
    mask = (network['element.oil_fraction'] > 0) | network['element.oil_film']
    mask &= ~network['element.oil_trapped']
    return cluster_elements(network, mask, ClusterKind.OIL_FLOWING)


def cluster_water_flowing_elements(network):
    mask = (network['element.water_fraction'] > 0) | network['element.water_film']
    mask &= ~network['element.water_trapped']
    return cluster_elements(network, mask, ClusterKind.WATER_FLOWING)


def cluster_active_elements(network):
    r"""
    Clusters of all the open elements. Marks 'element.spanning' and
    network.is_network_spanning
    """
    clusters = cluster_elements(network, np.ones(network.Ne, dtype = bool), ClusterKind.ACTIVE)
    spanning = np.zeros(network.Ne, dtype = bool)
    for c in clusters:
        if c.spanning:
            spanning[c.members] = True
    network['element.spanning'] = spanning
    network.is_network_spanning = _any_spanning(clusters)
    return clusters


def cluster_water_film_elements(network):
    return cluster_elements(network, network['element.water_film'], ClusterKind.WATER_FILM)


def cluster_oil_film_elements(network):
    return cluster_elements(network, network['element.oil_film'], ClusterKind.OIL_FILM)


def define_accessible_elements(network):
    r"""
    Close the elements that are not connected to both the inlet and the outlet
    (isolated groups and dead-end regions without exit).

    Returns:
    ----------------
    Number of elements closed. Zero, with a warning, if nothing spans
    """
    cluster_active_elements(network)
    if not network.is_network_spanning:
        logger.warning('No path connects the inlet and the outlet')
        return 0
    isolated = ~network['element.spanning'] & ~network['element.closed']
    network['element.closed'] = network['element.closed'] | isolated
    n = int(np.sum(isolated))
    if n:
        logger.info('%i isolated elements closed', n)
    return n


def update_trapping(network, phase, advanced = True, tol = 1e-12):
    r"""
    Flag the elements where the defending phase can not reach the outlet.

    Parameters:
    ----------------
    network: Network
    phase: Phase.WATER or Phase.OIL, the defending phase
    advanced: If True, an element is trapped if its cluster (films included)
    lacks an outlet element. If False, if none of its neighbours holds the
    phase and it is not an outlet element
    tol: fraction below which an element is considered without the phase

    Returns:
    ----------------
    Boolean array of the elements newly trapped

    Notes:
    ----------------
    Trapping is kept once set. The invading phase can only remove the
    defending phase, so a trapped cluster never reconnects during a displacement.
    """
    phase = Phase(phase)
    name = 'water' if phase == Phase.WATER else 'oil'
    present = (network[f'element.{name}_fraction'] > tol) | network[f'element.{name}_film']
    present &= ~network['element.closed']
    if advanced:
        if phase == Phase.WATER:
            clusters = cluster_water_elements(network)
        else:
            clusters = cluster_oil_elements(network)
        trapped = np.zeros(network.Ne, dtype = bool)
        for c in clusters:
            if not c.outlet:
                trapped[c.members] = True
    else:
        trapped = present & ~network['element.outlet']
        for e in np.where(trapped)[0]:
            if np.any(present[network.element_neighbors(e)]):
                trapped[e] = False
    key = f'element.{name}_trapped'
    new = trapped & present & ~network[key]
    network[key] = network[key] | new
    if np.any(new):
        logger.debug('%i elements with trapped %s', int(np.sum(new)), name)
    return new
