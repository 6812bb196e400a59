import logging
import numpy as np
import scipy.sparse as sprs
import scipy.sparse.csgraph as csgraph
from scipy.sparse.linalg import spsolve, cg
from ._exceptions import SolverDivergence
from ._network import Phase
from ._conductance_funcs import null_g, single_phase_conductance, phase_conductance
from ._cluster_funcs import cluster_oil_flowing_elements, cluster_water_flowing_elements

logger = logging.getLogger(__name__)


__all__ = [
    'solve_pressures',
    'update_flows',
    'solve_flow',
    'calculate_permeability_and_porosity',
    'calculate_relative_permeabilities',
]


def _boundary_pressures(network, pressure_in, pressure_out):
    r"""
    Pressure at both ends of every pore. Boundary ends take the boundary pressure
    """
    conns = network['pore.conns']
    p = network['node.pressure']
    p0 = np.where(conns[:, 0] >= 0, p[np.maximum(conns[:, 0], 0)], pressure_in)
    p1 = np.where(conns[:, 1] >= 0, p[np.maximum(conns[:, 1], 0)], pressure_out)
    return p0, p1


def solve_pressures(network,
                    conductance,
                    pressure_in,
                    pressure_out,
                    capillary_source = None,
                    solver = 'direct',
                    tol = 1e-10,
                    require_path = True):
    r"""
    Node pressures for fixed inlet and outlet pressures.

    Flow in pore i is q = g_i (p_0 - p_1 - s_i), positive from the node in
    column 0 of 'pore.conns' to the node in column 1. The system is built only
    for the nodes connected to a boundary through pores with g > null_g; the
    other nodes get NaN.

    Parameters:
    ----------------
    network: Network
    conductance: Np array
    pressure_in, pressure_out: boundary pressures
    capillary_source: Np array s, pressure drop consumed by an interface in
    each pore (two phase solve). None for single phase
    solver: 'direct' (scipy spsolve) or 'cg' (conjugate gradient)
    tol: relative tolerance of cg
    require_path: If True, a network without an open path between the inlet
    and the outlet raises a fatal SolverDivergence

    Returns:
    ----------------
    Array Nn with the node pressures, also written in 'node.pressure'

    Raises:
    ----------------
    SolverDivergence: fatal without an open inlet-outlet path, not fatal if
    the solver does not converge or returns non finite values
    """
    Np, Nn = network.Np, network.Nn
    conns = network['pore.conns']
    g = np.asarray(conductance, dtype = float)
    s = np.zeros(Np) if capillary_source is None else np.asarray(capillary_source, dtype = float)
    is_open = g > null_g
    inner = is_open & (conns[:, 0] >= 0) & (conns[:, 1] >= 0)
    inlet = is_open & (conns[:, 0] < 0)
    outlet = is_open & (conns[:, 1] < 0)

    am = sprs.coo_matrix((np.ones(np.sum(inner)), (conns[inner, 0], conns[inner, 1])), shape = (Nn, Nn))
    n_comp, labels = csgraph.connected_components(am, directed = False)
    touch_in = np.zeros(n_comp, dtype = bool)
    touch_out = np.zeros(n_comp, dtype = bool)
    touch_in[labels[conns[inlet, 1]]] = True
    touch_out[labels[conns[outlet, 0]]] = True
    if require_path and not np.any(touch_in & touch_out):
        raise SolverDivergence('No open path between the inlet and the outlet', fatal = True)
    active = (touch_in | touch_out)[labels]
    pressure = np.full(Nn, np.nan)
    n_active = int(np.sum(active))
    if n_active == 0:
        network['node.pressure'] = pressure
        return pressure
    row = np.full(Nn, -1)
    row[active] = np.arange(n_active)
    #Open islands without boundary contact stay out of the system
    inner &= active[np.maximum(conns[:, 0], 0)]
    inlet &= active[np.maximum(conns[:, 1], 0)]
    outlet &= active[np.maximum(conns[:, 0], 0)]

    n0 = row[conns[inner, 0]]
    n1 = row[conns[inner, 1]]
    gi = g[inner]
    rows = np.concatenate((n0, n1, n0, n1))
    cols = np.concatenate((n0, n1, n1, n0))
    data = np.concatenate((gi, gi, -gi, -gi))
    b = np.zeros(n_active)
    np.add.at(b, n0, gi * s[inner])
    np.add.at(b, n1, -gi * s[inner])
    nin = row[conns[inlet, 1]]
    nout = row[conns[outlet, 0]]
    rows = np.concatenate((rows, nin, nout))
    cols = np.concatenate((cols, nin, nout))
    data = np.concatenate((data, g[inlet], g[outlet]))
    np.add.at(b, nin, g[inlet] * (pressure_in - s[inlet]))
    np.add.at(b, nout, g[outlet] * (pressure_out + s[outlet]))
    A = sprs.coo_matrix((data, (rows, cols)), shape = (n_active, n_active)).tocsr()

    with network.solver_lock:
        if solver == 'direct':
            x = spsolve(A, b)
        elif solver == 'cg':
            x, info = cg(A, b, rtol = tol, maxiter = 10 * n_active)
            if info != 0:
                raise SolverDivergence(f'cg did not converge (info = {info})')
        else:
            raise ValueError(f'Unknown solver {solver}')
    x = np.atleast_1d(x)
    if not np.all(np.isfinite(x)):
        raise SolverDivergence('Pressure solution is not finite')
    pressure[active] = x
    network['node.pressure'] = pressure
    return pressure


def update_flows(network, conductance, pressure_in, pressure_out, capillary_source = None):
    r"""
    Write 'pore.flow' from 'node.pressure' and return the outlet flow.
    Pores without pressure at one end carry zero flow
    """
    g = np.asarray(conductance, dtype = float)
    p0, p1 = _boundary_pressures(network, pressure_in, pressure_out)
    s = 0.0 if capillary_source is None else np.asarray(capillary_source, dtype = float)
    ok = (g > null_g) & np.isfinite(p0) & np.isfinite(p1)
    q = np.zeros(network.Np)
    q[ok] = (g * (p0 - p1 - s))[ok] if np.ndim(s) else g[ok] * (p0[ok] - p1[ok] - s)
    network['pore.flow'] = q
    network.outlet_flow = network.get_outlet_flow()
    return network.outlet_flow


def solve_flow(network, conductance, pressure_in, pressure_out, capillary_source = None,
               solver = 'direct', tol = 1e-10, require_path = True):
    r"""
    solve_pressures followed by update_flows. Returns the outlet flow
    """
    solve_pressures(network, conductance, pressure_in, pressure_out,
                    capillary_source = capillary_source, solver = solver, tol = tol,
                    require_path = require_path)
    return update_flows(network, conductance, pressure_in, pressure_out, capillary_source)


def calculate_permeability_and_porosity(network, settings):
    r"""
    Absolute permeability with water filling all the open elements,
    K = Q mu L / (A dP), flow along x. Porosity = pore volume / bulk volume.

    Parameters:
    ----------------
    network: Network
    settings: SimulationSettings

    Returns:
    ----------------
    K (m2), porosity. Also stored in the network
    """
    mu = settings.fluids.water_viscosity
    net = settings.network
    dp = net.pressure_in - net.pressure_out
    g = single_phase_conductance(network, mu)
    Q = solve_flow(network, g, net.pressure_in, net.pressure_out,
                   solver = net.solver_choice, tol = net.solver_tolerance)
    L = network.x_edge_length
    A = network.y_edge_length * network.z_edge_length
    K = Q * mu * L / (A * dp)
    porosity = np.sum(network['element.volume']) / (L * A)
    network.single_phase_flow = Q
    network.absolute_permeability = K
    network.porosity = porosity
    logger.info('Absolute permeability: %.4e m2, porosity: %.4f', K, porosity)
    return K, porosity


def _spanning_members(network, clusters):
    mask = np.zeros(network.Ne, dtype = bool)
    for c in clusters:
        if c.spanning:
            mask[c.members] = True
    return mask


def calculate_relative_permeabilities(network, settings, pc):
    r"""
    Relative permeabilities at capillary pressure pc. Each phase flows through
    its spanning flowing clusters, films included, under the single phase
    pressure drop. kr = Q_phase mu_phase / (Q_single mu_water).

    Returns:
    ----------------
    krw, kro. Also stored in the network
    """
    net = settings.network
    fl = settings.fluids
    if getattr(network, 'single_phase_flow', 0) <= 0:
        calculate_permeability_and_porosity(network, settings)
    Q_ref = network.single_phase_flow * fl.water_viscosity
    #Phase solves must not replace the flow field of the displacement
    saved = (network['pore.flow'].copy(), network['node.pressure'].copy(), network.outlet_flow)
    kr = {}
    for phase, clustering, mu in [(Phase.WATER, cluster_water_flowing_elements, fl.water_viscosity),
                                  (Phase.OIL, cluster_oil_flowing_elements, fl.oil_viscosity)]:
        spanning = _spanning_members(network, clustering(network))
        if not np.any(spanning):
            kr[phase] = 0.0
            continue
        g = phase_conductance(network, phase, mu, pc = pc, sigma = fl.ow_surface_tension,
                              film_factor = settings.two_phase.film_conductance_resistivity)
        g[~spanning[:network.Np]] = null_g
        try:
            Q = solve_flow(network, g, net.pressure_in, net.pressure_out,
                           solver = net.solver_choice, tol = net.solver_tolerance,
                           require_path = False)
        except SolverDivergence as e:
            logger.warning('Relative permeability of %s not calculated: %s', phase.name, e)
            Q = 0.0
        kr[phase] = max(Q * mu / Q_ref, 0.0)
    network['pore.flow'], network['node.pressure'], network.outlet_flow = saved
    network.water_relative_permeability = kr[Phase.WATER]
    network.oil_relative_permeability = kr[Phase.OIL]
    return kr[Phase.WATER], kr[Phase.OIL]
