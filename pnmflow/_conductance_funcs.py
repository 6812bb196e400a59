import logging
import math as _m
import numpy as np
from ._network import Phase
from ._capillary_funcs import TRIANGLE_MAX_G, SQUARE_MAX_G, corner_area

logger = logging.getLogger(__name__)


__all__ = [
    'null_g',
    'shape_constant',
    'assign_conductivities',
    'single_phase_conductance',
    'corner_conductance',
    'phase_conductance',
]


#Minimum value for pore conductance, to avoid zeros in the flow calculation
null_g = 1e-30


def shape_constant(G):
    r"""
    Constant k of g = k A^2 G / mu for the cross section.
    0.6 for triangles, 0.5623 for squares and 0.5 for circles.
    Reference: Valvatne and Blunt (2004)
    """
    G = np.asarray(G)
    return np.where(G <= TRIANGLE_MAX_G, 0.6, np.where(G < SQUARE_MAX_G, 0.5623, 0.5))


def assign_conductivities(network):
    r"""
    Single phase hydraulic factor of the pores, g * mu = k A^2 G / L, with
    A = r^2 / (4G). Nodes are resistance-free and keep zero
    """
    Np = network.Np
    G = network['pore.shape_factor']
    A = network['pore.radius'] ** 2 / (4 * G)
    value = np.zeros(network.Ne)
    value[:Np] = shape_constant(G) * A ** 2 * G / network['pore.length']
    network['element.conductivity'] = value
    return value


def _connected(network, present):
    r"""
    Pores whose own phase and the phase of both end nodes is present.
    Boundary ends count as present
    """
    Np = network.Np
    conns = network['pore.conns']
    ok = np.array(present[:Np], dtype = bool)
    for cn in [0, 1]:
        mask = conns[:, cn] >= 0
        ok[mask] &= present[Np + conns[mask, cn]]
    return ok


def single_phase_conductance(network, viscosity):
    r"""
    Pore conductances for a network filled with one fluid. Closed elements
    get null_g
    """
    g = network['pore.conductivity'] / viscosity
    ok = _connected(network, ~network['element.closed'])
    return np.maximum(np.where(ok, g, null_g), null_g)


def corner_conductance(beta, theta, R, viscosity):
    r"""
    Conductance times length of the wetting phase held in the corners.

    Parameters:
    -----------
    beta: half corner angles, Nx4
    theta: contact angle of the phase in the corners, N
    R: radius of curvature of the interface (sigma / pc). Float or array N
    viscosity: of the phase in the corners

    Returns:
    -----------
    Array N, sum over the corners that can hold the phase

    Reference: Valvatne & Blunt (2004)
    """
    N = beta.shape[0]
    theta_c = np.tile(theta, (beta.shape[1], 1)).T
    R_c = np.tile(np.abs(R) * np.ones(N), (beta.shape[1], 1)).T
    condition = beta < (_m.pi / 2 - theta_c)
    A_corner = corner_area(beta, theta, R)
    with np.errstate(divide = 'ignore', invalid = 'ignore'):
        bi = R_c * np.cos(theta_c + beta) / np.sin(beta)
        P_corner = 2 * bi * (1 - np.sin(beta) / np.cos(beta + theta_c) * (theta_c + beta - _m.pi / 2))
        G_corner = A_corner / P_corner ** 2
        G_mod = np.sin(beta) * np.cos(beta) / (2 + 2 * np.sin(beta)) ** 2
        C = 0.364 + 0.28 * G_mod / G_corner
        cond = C * A_corner ** 2 * G_corner / viscosity
    cond = np.where(condition & (A_corner > 0), cond, 0.0)
    return np.sum(cond, axis = 1)


def phase_conductance(network,
                      phase,
                      viscosity,
                      pc = 0.0,
                      sigma = 0.0,
                      film_factor = 1.0,
                      exclude_trapped = True):
    r"""
    Pore conductances for one phase of a two phase state.

    The phase at the center of a pore conducts as a prism with the fraction of
    the pore area it fills. If the phase only lives in the corners (films),
    the corner conductance is used, divided by film_factor. A pore conducts
    only if the phase is present in the pore and in both end nodes.

    Parameters:
    -----------
    network: Network
    phase: Phase.WATER or Phase.OIL
    viscosity: of the phase
    pc: capillary pressure fixing the film curvature. Float or array Np
    sigma: surface tension. Films are ignored if zero
    film_factor: film resistivity. 1 for the Valvatne-Blunt conductance
    exclude_trapped: trapped phase does not conduct

    Returns:
    -----------
    Array Np, minimum null_g
    """
    phase = Phase(phase)
    name = 'water' if phase == Phase.WATER else 'oil'
    Np = network.Np
    frac = network[f'element.{name}_fraction']
    film = network[f'element.{name}_film']
    G = network['pore.shape_factor']
    A = network['pore.area']
    L = network['pore.length']
    g = shape_constant(G) * (frac[:Np] * A) ** 2 * G / (viscosity * L)
    pore_film = film[:Np] & (frac[:Np] < 1)
    pc = np.abs(np.ones(Np) * pc)
    pore_film &= pc > 0
    if sigma > 0 and np.any(pore_film):
        theta = network['pore.contact_angle'][pore_film]
        if phase == Phase.OIL:
            theta = np.pi - theta
        g_corner = corner_conductance(network['pore.half_angles'][pore_film], theta,
                                      sigma / pc[pore_film], viscosity)
        g[pore_film] += g_corner / L[pore_film] / film_factor
    present = ((frac > 0) | film) & ~network['element.closed']
    if exclude_trapped:
        present &= ~network[f'element.{name}_trapped']
    ok = _connected(network, present)
    return np.maximum(np.where(ok, g, null_g), null_g)
