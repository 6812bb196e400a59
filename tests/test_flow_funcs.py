import numpy as np
import pytest
from pnmflow import (Network, SolverDivergence, Phase, null_g, shape_constant, single_phase_conductance,
                     phase_conductance, solve_pressures, solve_flow,
                     calculate_permeability_and_porosity, calculate_relative_permeabilities)
from conftest import cubic_network, chain_network


def _analytic_permeability(nx, spacing = 1e-4, radius = 1e-5, length = 5e-5, G = 1 / 16):
    #Rows of nx + 1 pores in series, nodes without resistance
    A = radius ** 2 / (4 * G)
    conductivity = 0.5623 * A ** 2 * G / length
    return nx * conductivity / ((nx + 1) * spacing)


def test_shape_constant():
    assert shape_constant(0.04) == 0.6
    assert shape_constant(1 / 16) == 0.5623
    assert shape_constant(1 / (4 * np.pi)) == 0.5


def test_permeability_of_uniform_lattice(settings):
    net = cubic_network((4, 3, 3))
    K, porosity = calculate_permeability_and_porosity(net, settings)
    assert K == pytest.approx(_analytic_permeability(4), rel = 1e-8)
    assert porosity == pytest.approx(np.sum(net['element.volume']) / (4e-4 * 3e-4 * 3e-4))
    assert net.absolute_permeability == K


def test_cg_solver_agrees(settings):
    net = cubic_network((4, 3, 3))
    settings.network.solver_choice = 'cg'
    settings.network.solver_tolerance = 1e-12
    K, _ = calculate_permeability_and_porosity(net, settings)
    assert K == pytest.approx(_analytic_permeability(4), rel = 1e-6)


def test_flow_is_conserved():
    net = cubic_network((4, 3, 3))
    g = single_phase_conductance(net, 1e-3)
    Q = solve_flow(net, g, 1e5, 0.0)
    q = net['pore.flow']
    conns = net['pore.conns']
    balance = np.zeros(net.Nn)
    for cn, sign in [(1, 1), (0, -1)]:
        mask = conns[:, cn] >= 0
        np.add.at(balance, conns[mask, cn], sign * q[mask])
    assert np.max(np.abs(balance)) <= 1e-9 * np.max(np.abs(q))
    q_in = np.sum(q[net['pore.inlet']])
    assert q_in == pytest.approx(Q, rel = 1e-9)
    assert Q > 0


def test_disconnected_network_is_fatal():
    net = cubic_network((4, 3, 3))
    g = single_phase_conductance(net, 1e-3)
    conns = net['pore.conns']
    x = np.full(conns.shape, -1)
    x[conns >= 0] = conns[conns >= 0] // 9
    #Close the pores between the second and the third plane of nodes
    cut = (x[:, 0] == 1) & (x[:, 1] == 2)
    g[cut] = null_g
    with pytest.raises(SolverDivergence) as info:
        solve_pressures(net, g, 1e5, 0.0)
    assert info.value.fatal
    Q = solve_flow(net, g, 1e5, 0.0, require_path = False)
    assert Q == pytest.approx(0.0, abs = 1e-20)
    assert np.allclose(net['node.pressure'][:18], 1e5)
    assert np.allclose(net['node.pressure'][18:], 0.0)


def test_isolated_nodes_get_nan():
    net = chain_network(3)
    g = single_phase_conductance(net, 1e-3)
    g[[1, 2]] = null_g
    pressure = solve_pressures(net, g, 1.0, 0.0, require_path = False)
    assert np.isnan(pressure[1])
    assert pressure[0] == pytest.approx(1.0)
    assert pressure[2] == pytest.approx(0.0)


def test_capillary_source():
    #One node between an inlet and an outlet pore of equal conductance
    net = chain_network(1)
    g = np.full(2, 2e-12)
    s = np.array([300.0, 0.0])
    Q = solve_flow(net, g, 1000.0, 0.0, capillary_source = s)
    assert net['node.pressure'][0] == pytest.approx((1000.0 - 300.0) / 2)
    assert Q == pytest.approx(g[0] * (1000.0 - 300.0) / 2)


def test_closed_elements_do_not_conduct():
    net = chain_network(3)
    net['element.closed'][net.Np + 1] = True
    g = single_phase_conductance(net, 1e-3)
    assert g[1] == null_g and g[2] == null_g
    assert g[0] > null_g


def test_phase_conductance():
    net = chain_network(2, shape_factor = 1 / 16)
    g_w = phase_conductance(net, Phase.WATER, 1e-3)
    assert g_w == pytest.approx(net['pore.conductivity'] / 1e-3)
    assert np.all(phase_conductance(net, Phase.OIL, 1e-3) == null_g)
    #Oil in the middle pore, water only in its corners
    net.set_phase([1], Phase.OIL)
    net['element.water_film'][1] = True
    g_w = phase_conductance(net, Phase.WATER, 1e-3, pc = 5000.0, sigma = 0.03)
    assert null_g < g_w[1] < net['pore.conductivity'][1] / 1e-3
    g_half = phase_conductance(net, Phase.WATER, 1e-3, pc = 5000.0, sigma = 0.03, film_factor = 2.0)
    assert g_half[1] == pytest.approx(g_w[1] / 2)
    #Higher capillary pressure, thinner films
    g_high = phase_conductance(net, Phase.WATER, 1e-3, pc = 10000.0, sigma = 0.03)
    assert g_high[1] < g_w[1]
    #Trapped water does not conduct
    net['element.water_trapped'][0] = True
    assert phase_conductance(net, Phase.WATER, 1e-3)[0] == null_g


def test_relative_permeabilities_of_water_filled_network(settings):
    net = cubic_network((3, 3, 3))
    krw, kro = calculate_relative_permeabilities(net, settings, 0.0)
    assert krw == pytest.approx(1.0, rel = 1e-8)
    assert kro == 0.0
    assert net.water_relative_permeability == krw


def test_relative_permeabilities_of_oil_filled_network(settings):
    net = cubic_network((3, 3, 3))
    calculate_permeability_and_porosity(net, settings)
    net.set_phase(np.arange(net.Ne), Phase.OIL)
    krw, kro = calculate_relative_permeabilities(net, settings, 0.0)
    assert krw == 0.0
    assert kro == pytest.approx(1.0, rel = 1e-8)


def test_open_island_without_boundary():
    #Nodes 0-1 between inlet and outlet. Pore 4 joins nodes 2 and 3, cut from node 1 by pore 3
    conns = np.array([[-1, 0], [0, 1], [1, -1], [1, 2], [2, 3]])
    net = Network.from_arrays(conns, pore_radius = np.full(5, 1e-5), pore_length = np.full(5, 5e-5),
                              node_radius = np.full(4, 1e-5), pore_shape_factor = np.full(5, 1 / 16),
                              node_shape_factor = np.full(4, 1 / 16))
    g = single_phase_conductance(net, 1e-3)
    g[3] = null_g
    pressure = solve_pressures(net, g, 1.0, 0.0, require_path = False)
    assert pressure[:2] == pytest.approx([2 / 3, 1 / 3])
    assert np.all(np.isnan(pressure[2:]))
    Q = solve_flow(net, g, 1.0, 0.0)
    assert Q == pytest.approx(g[0] / 3)
    assert net['pore.flow'][4] == 0.0
    #Same island with a capillary source in it
    s = np.zeros(5)
    s[4] = 500.0
    assert solve_flow(net, g, 1.0, 0.0, capillary_source = s) == pytest.approx(Q)


def test_relative_permeabilities_keep_the_flow_field(settings):
    net = cubic_network((3, 3, 3))
    calculate_permeability_and_porosity(net, settings)
    Q = net.outlet_flow
    flow = net['pore.flow'].copy()
    pressure = net['node.pressure'].copy()
    net.set_phase(np.arange(0, net.Ne, 2), Phase.OIL)
    calculate_relative_permeabilities(net, settings, 5000.0)
    assert net.outlet_flow == Q
    assert np.array_equal(net['pore.flow'], flow)
    assert np.array_equal(net['node.pressure'], pressure)
