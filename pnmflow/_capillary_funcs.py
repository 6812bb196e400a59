import logging
import numpy as np
from ._network import Phase, Wettability

logger = logging.getLogger(__name__)


__all__ = [
    'TRIANGLE_MAX_G',
    'SQUARE_MAX_G',
    'assign_half_angles',
    'wp_in_corners',
    'corner_area',
    'MSP_entry_pressure',
    'pressure_PB1',
    'pressure_snapoff',
    'drainage_entry_pressures',
    'imbibition_entry_pressures',
    'update_film_stability',
    'update_films',
    'assign_contact_angles',
    'water_saturation_with_films',
]


TRIANGLE_MAX_G = 3 ** 0.5 / 36
#Limit between squares (G = 1/16) and circles (G = 1/(4 pi))
SQUARE_MAX_G = 0.07


def assign_half_angles(G, rng = None, prob = 0.5):
    r"""
    Half corner angles from the shape factor.
    Triangles (G <= sqrt(3)/36) are taken as isosceles, squares (G < 0.07) have
    four pi/4 corners and circles none. Unused corners are pi/2.

    Parameters:
    ----------------
    G: shape factor array
    rng: RandomGenerator. Chooses between the two isosceles triangles with the
    same G. If None, the one with the different angle < pi/3 is used
    prob: chance to use the isosceles triangle with different angle >= pi/3

    Returns:
    ----------------
    Array N x 4, sorted in ascending order per row
    """
    G = np.atleast_1d(np.asarray(G, dtype = float))
    N = len(G)
    beta = np.full((N, 4), np.pi / 2)
    triangle = G <= TRIANGLE_MAX_G
    square = ~triangle & (G < SQUARE_MAX_G)
    Gt = np.clip(G[triangle], 1e-16, TRIANGLE_MAX_G)
    if rng is None:
        t_bool = np.zeros(len(Gt), dtype = bool)
    else:
        t_bool = rng.random(len(Gt)) < prob
    c = np.arccos(np.clip(-12 * 3 ** 0.5 * Gt, -1, 1)) / 3 + t_bool * 4 * np.pi / 3
    beta2 = np.arctan(2 / 3 ** 0.5 * np.cos(c))
    beta[triangle, :3] = np.sort(np.vstack((beta2, beta2, np.pi / 2 - beta2 * 2)).T, axis = 1)
    beta[square] = np.pi / 4
    return beta


def wp_in_corners(beta, theta):
    r"""
    True for the corners that can hold the wetting phase when the other phase
    is at the center
    beta: Array Nx4
    theta: Array N
    """
    theta = np.tile(theta, (beta.shape[1], 1)).T
    return beta < (np.pi / 2 - theta)


def corner_area(beta, theta, R):
    r"""
    Area of each corner filled with the wetting phase, for an interface with
    curvature radius R (sigma / pc). Zero for corners without wetting phase.
    Returns an array with the shape of beta
    """
    theta = np.tile(theta, (beta.shape[1], 1)).T
    R = np.tile(np.abs(R) * np.ones(beta.shape[0]), (beta.shape[1], 1)).T
    condition = beta < (np.pi / 2 - theta)
    with np.errstate(divide = 'ignore', invalid = 'ignore'):
        S2 = np.cos(theta) * np.cos(theta + beta) / np.sin(beta) + theta + beta - np.pi / 2
    return np.where(condition, R ** 2 * S2, 0.0)


def MSP_entry_pressure(sigma, theta, r, G, beta):
    r"""
    Capillary entry pressure for piston-like displacement in polygonal
    cross sections, with the wetting phase remaining in the corners.

    Parameters:
    ----------------
    sigma: surface tension
    theta: contact angle, measured through the wetting (water) phase. Array N
    r: inscribed radius. Array N
    G: shape factor. Array N
    beta: half corner angles. Array Nx4

    Returns:
    ----------------
    Entry pressure p_oil - p_water. Negative for oil-wet elements

    Notes:
    ----------------
    -Reference of the method: Oren 1998 / Valvatne and Blunt 2004
    -If 1 + 4GD/cos^2(theta) < 0 (G <= 1e-3 and theta <= 1 degree) it is
    taken as zero, with an error below 0.1%
    """
    theta = np.asarray(theta, dtype = float)
    cos = np.cos(theta)
    cos = np.where(np.abs(cos) < 1e-9, 1e-9, cos)
    theta_r = np.tile(theta, (beta.shape[1], 1)).T
    condition = wp_in_corners(beta, theta)
    S1 = np.sum((np.cos(theta_r) * np.cos(theta_r + beta) / np.sin(beta) + theta_r + beta - np.pi / 2) * condition, axis = 1)
    S2 = np.sum((np.cos(theta_r + beta) / np.sin(beta)) * condition, axis = 1)
    S3 = 2 * np.sum((np.pi / 2 - theta_r - beta) * condition, axis = 1)
    D = S1 - 2 * S2 * cos + S3
    root = np.sqrt(np.maximum(1 + 4 * G * D / cos ** 2, 0))
    return sigma * cos * (1 + root) / r


def pressure_PB1(n_inv,
                 sigma,
                 theta,
                 r,
                 rng,
                 perm = 3.70e-12,
                 par_value = None):
    r"""
    Entry pressure of ONE node filled by imbibition (pore body filling).
    For the coefficients c_i the criteria of Blunt (1998) is used,
    c_i = 0.03 / sqrt(K), except that c_0 = 0

    Parameters:
    --------------------
    n_inv: number of connected pores with oil at the center
    sigma: surface tension
    theta: contact angle
    r: node inscribed radius
    rng: RandomGenerator for the x_i weights
    perm: network permeability, in m2. Default: 3.70e-12 (Berea sandstone)
    par_value (optional): c_i used instead of the permeability based one

    Reference:
    --------------------
    Blunt (2004) : Predictive pore-scale modeling of two-phase flow in mixed wet media
    Blunt (1998) : Physically-based network modeling of multiphase flow in intermediate-wet porous media
    """
    x_i = rng.random(n_inv)
    if n_inv <= 1:
        c_i = 0
    elif par_value is None:
        c_i = np.ones_like(x_i) * 0.03 / perm ** 0.5
        c_i[0] = 0
    else:
        c_i = np.ones_like(x_i) * par_value
        c_i[0] = 0
    return 2 * sigma * np.cos(theta) / r - sigma * np.sum(x_i * c_i)


def pressure_snapoff(beta, sigma, theta, r):
    r"""
    Snap-off entry pressure for elements with water in at least two corners,
    when the interfaces of the two sharpest corners meet.
    beta is sorted, so the sharpest corners are in the first columns.

    Reference:
    --------------------
    Blunt (2004) : Predictive pore-scale modeling of two-phase flow in mixed wet media
    """
    beta = np.sort(beta, axis = 1)
    with np.errstate(divide = 'ignore'):
        cot = 1 / np.tan(beta[:, 0]) + 1 / np.tan(beta[:, 1])
    return sigma / r * (np.cos(theta) - 2 * np.sin(theta) / cot)


def drainage_entry_pressures(network, sigma):
    r"""
    Entry pressure for oil displacing water, all elements
    """
    return MSP_entry_pressure(sigma,
                              network['element.contact_angle'],
                              network['element.radius'],
                              network['element.shape_factor'],
                              network['element.half_angles'])


def imbibition_entry_pressures(network, sigma, rng, perm = None, par_value = None):
    r"""
    Entry pressure for water displacing oil.

    Pores use the piston-like MSP expression. Water-wet nodes use pore body
    filling, depending on the number of neighbour pores filled with oil.
    Both are returned with the snap-off pressure, used where the element
    only holds water in its corners.

    Returns:
    ----------------
    piston, snapoff: arrays of size Ne. snapoff is -inf where it is not
    possible (no water film)
    """
    theta = network['element.contact_angle']
    r = network['element.radius']
    piston = MSP_entry_pressure(sigma, theta, r, network['element.shape_factor'], network['element.half_angles'])
    if perm is None or perm <= 0:
        perm = 3.70e-12
    oil = network['element.oil_fraction'] > 0
    Np = network.Np
    for e in network.node_ids:
        if theta[e] >= np.pi / 2 or not oil[e]:
            continue
        n_inv = int(np.sum(oil[network.element_neighbors(e)]))
        piston[e] = pressure_PB1(n_inv, sigma, theta[e], r[e], rng, perm = perm, par_value = par_value)
    snapoff = np.full(network.Ne, -np.inf)
    film = network['element.water_film'] & (theta < np.pi / 2)
    if np.any(film):
        snapoff[film] = pressure_snapoff(network['element.half_angles'][film], sigma, theta[film], r[film])
    logger.debug('Imbibition entry pressures computed for %i pores and %i nodes', Np, network.Nn)
    return piston, snapoff


def update_film_stability(network):
    r"""
    Water films are stable in the corners of oil-filled elements if
    theta < pi/2 - beta for some corner. Oil films are stable in the corners
    of water-filled elements if theta > pi/2 + beta
    """
    beta = network['element.half_angles']
    theta = network['element.contact_angle']
    network['element.water_film_stable'] = np.any(wp_in_corners(beta, theta), axis = 1)
    network['element.oil_film_stable'] = np.any(wp_in_corners(beta, np.pi - theta), axis = 1)


def update_films(network):
    r"""
    Film presence from the bulk occupancy. Water films in oil-filled elements,
    oil films in water-filled elements that were contacted by oil before
    """
    oil = network['element.oil_fraction'] > 0
    water_center = network['element.water_fraction'] >= 1
    network['element.water_film'] = oil & network['element.water_film_stable']
    network['element.oil_film'] = (water_center & network['element.oil_film_stable']
                                   & network['element.oil_contacted'])


def assign_contact_angles(network, settings, rng):
    r"""
    Contact angles and wettability class of all elements.

    Parameters:
    ----------------
    network: Network
    settings: WettabilitySettings. Angles in degrees
    rng: RandomGenerator

    Notes:
    ----------------
    wetting_type_flag: 1 water-wet, 2 oil-wet, 3 fractional-wet (random
    oil-wet elements), 4 mixed-wet with the largest elements oil-wet,
    5 mixed-wet with the smallest elements oil-wet.
    """
    Ne = network.Ne
    flag = settings.wetting_type_flag
    n_oil = int(round(settings.oil_wet_fraction * Ne))
    oil_wet = np.zeros(Ne, dtype = bool)
    if flag == 2:
        oil_wet[:] = True
    elif flag == 3:
        oil_wet[rng.shuffle(np.arange(Ne))[:n_oil]] = True
    elif flag in [4, 5]:
        order = np.argsort(network['element.radius'], kind = 'stable')
        if flag == 4:
            order = order[::-1]
        oil_wet[order[:n_oil]] = True
    theta_w = rng.uniform_real(settings.min_water_wet_theta, settings.max_water_wet_theta, Ne)
    theta_o = rng.uniform_real(settings.min_oil_wet_theta, settings.max_oil_wet_theta, Ne)
    network['element.contact_angle'] = np.radians(np.where(oil_wet, theta_o, theta_w))
    network['element.wettability'] = np.where(oil_wet, int(Wettability.OIL_WET), int(Wettability.WATER_WET))
    update_film_stability(network)
    logger.info('Contact angles assigned: %i oil-wet elements of %i', int(np.sum(oil_wet)), Ne)
    return oil_wet


def water_saturation_with_films(network, pc, sigma):
    r"""
    Water saturation counting the water held in the corners of oil-filled
    elements, for capillary pressure pc
    """
    mask = network.accessible
    V = network['element.volume']
    water = V * network['element.water_fraction']
    film = network['element.water_film'] & mask
    if pc > 0 and np.any(film):
        A_corner = np.sum(corner_area(network['element.half_angles'][film],
                                      network['element.contact_angle'][film],
                                      sigma / pc), axis = 1)
        ratio = np.minimum(A_corner / network['element.area'][film], 1)
        water[film] += V[film] * network['element.oil_fraction'][film] * ratio
    return np.sum(water[mask]) / np.sum(V[mask])
