import logging
import numpy as np
from ._exceptions import ConfigurationError
from ._network import Network
from ._capillary_funcs import TRIANGLE_MAX_G

logger = logging.getLogger(__name__)


__all__ = [
    'assign_radii',
    'assign_shape_factors',
    'network_from_openpnm',
]


def assign_radii(n, settings, rng, node = False):
    r"""
    Random radii with the distribution of NetworkSettings.radius_distribution.
    1: uniform, 2: rayleigh, 3: triangular, 4: truncated normal, 5: weibull.
    Nodes use min/max_node_radius if max_node_radius > 0
    """
    lo, hi = settings.min_radius, settings.max_radius
    if node and settings.max_node_radius > 0:
        lo, hi = settings.min_node_radius, settings.max_node_radius
    flag = settings.radius_distribution
    if flag == 1:
        return rng.uniform_real(lo, hi, n)
    if flag == 2:
        return rng.rayleigh(lo, hi, settings.rayleigh_parameter, n)
    if flag == 3:
        return rng.triangular(lo, hi, min(max(settings.triangular_parameter, lo), hi), n)
    if flag == 4:
        return rng.normal(lo, hi, settings.normal_mu_parameter, settings.normal_sigma_parameter, n)
    if flag == 5:
        return rng.weibull(lo, hi, settings.weibull_alpha_parameter, settings.weibull_beta_parameter, n)
    raise ConfigurationError(f'Unknown radius distribution {flag}')


def assign_shape_factors(n, settings, rng):
    r"""
    settings.shape_factor for all elements, or random triangles if it is zero
    """
    if settings.shape_factor > 0:
        return np.full(n, float(settings.shape_factor))
    return rng.uniform_real(1e-3, TRIANGLE_MAX_G, n)


def network_from_openpnm(pn, settings, rng, flow_axis = 0, spacing = None):
    r"""
    Build a Network from an OpenPNM network. OpenPNM pores become nodes and
    throats become pores. A boundary pore is added to every node on the
    inlet face (lowest coordinate along flow_axis) and on the outlet face.

    Parameters:
    ----------------
    pn: OpenPNM network with 'pore.coords' and 'throat.conns'. 'pore.diameter',
    'throat.diameter', 'throat.length' and '*.shape_factor' are used if present
    settings: NetworkSettings, for the missing geometry
    rng: RandomGenerator
    flow_axis: 0, 1 or 2
    spacing: lattice spacing. Default: median throat center to center distance

    Returns:
    ----------------
    Network. Flow is along x of the returned network, the edge lengths are
    reordered so x_edge_length is the length along flow_axis
    """
    coords = np.asarray(pn['pore.coords'], dtype = float)
    t_conns = np.asarray(pn['throat.conns'], dtype = np.int64)
    Nn = coords.shape[0]
    Nt = t_conns.shape[0]
    distance = np.linalg.norm(coords[t_conns[:, 0]] - coords[t_conns[:, 1]], axis = 1)
    if spacing is None:
        spacing = float(np.median(distance)) if Nt else 1.0

    x = coords[:, flow_axis]
    inlet_nodes = np.where(np.isclose(x, x.min()))[0]
    outlet_nodes = np.where(np.isclose(x, x.max()))[0]
    if np.array_equal(inlet_nodes, outlet_nodes):
        raise ConfigurationError('The network has no extent along the flow axis')
    Nb = len(inlet_nodes) + len(outlet_nodes)
    conns = np.vstack((t_conns,
                       np.column_stack((np.full(len(inlet_nodes), -1), inlet_nodes)),
                       np.column_stack((outlet_nodes, np.full(len(outlet_nodes), -1)))))

    if 'pore.diameter' in pn:
        node_radius = np.asarray(pn['pore.diameter'], dtype = float) / 2
    else:
        node_radius = assign_radii(Nn, settings, rng, node = True)
    if 'throat.diameter' in pn:
        t_radius = np.asarray(pn['throat.diameter'], dtype = float) / 2
        b_radius = np.full(Nb, np.median(t_radius))
    else:
        t_radius = assign_radii(Nt, settings, rng)
        b_radius = assign_radii(Nb, settings, rng)
    pore_radius = np.concatenate((t_radius, b_radius))
    #A node is at least as large as its pores
    node_max = np.zeros(Nn)
    for cn in [0, 1]:
        mask = conns[:, cn] >= 0
        np.maximum.at(node_max, conns[mask, cn], pore_radius[mask])
    node_radius = np.maximum(node_radius, node_max)

    if 'throat.length' in pn:
        t_length = np.asarray(pn['throat.length'], dtype = float)
    else:
        t_length = np.maximum(distance - node_radius[t_conns[:, 0]] - node_radius[t_conns[:, 1]],
                              1e-3 * distance)
    b_length = np.full(Nb, np.median(t_length) if Nt else spacing / 2)
    pore_length = np.concatenate((t_length, b_length))

    if 'throat.shape_factor' in pn:
        t_G = np.asarray(pn['throat.shape_factor'], dtype = float)
        pore_G = np.concatenate((t_G, np.full(Nb, np.median(t_G))))
    else:
        pore_G = assign_shape_factors(Nt + Nb, settings, rng)
    if 'pore.shape_factor' in pn:
        node_G = np.asarray(pn['pore.shape_factor'], dtype = float)
    else:
        node_G = assign_shape_factors(Nn, settings, rng)

    extent = coords.max(axis = 0) - coords.min(axis = 0) + spacing
    order = [flow_axis] + [i for i in range(3) if i != flow_axis]
    network = Network.from_arrays(conns,
                                  pore_radius = pore_radius,
                                  pore_length = pore_length,
                                  node_radius = node_radius,
                                  pore_shape_factor = pore_G,
                                  node_shape_factor = node_G,
                                  edge_lengths = tuple(extent[order]))
    logger.info('Network loaded from OpenPNM: %i nodes, %i pores (%i boundary)', Nn, Nt + Nb, Nb)
    return network
