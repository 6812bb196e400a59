import numpy as np
import pytest
from pnmflow import (NetworkSettings, RandomGenerator, ConfigurationError, TRIANGLE_MAX_G,
                     assign_radii, assign_shape_factors, network_from_openpnm)


def _grid(shape, spacing = 1e-4):
    r"""
    Minimal OpenPNM-like network: a dict with 'pore.coords' and 'throat.conns'
    """
    nx, ny, nz = shape
    idx = np.arange(nx * ny * nz).reshape(shape)
    i, j, k = np.unravel_index(np.arange(nx * ny * nz), shape)
    coords = np.column_stack((i, j, k)) * spacing
    conns = np.vstack((np.column_stack((idx[:-1].ravel(), idx[1:].ravel())),
                       np.column_stack((idx[:, :-1].ravel(), idx[:, 1:].ravel())),
                       np.column_stack((idx[:, :, :-1].ravel(), idx[:, :, 1:].ravel()))))
    return {'pore.coords': coords, 'throat.conns': conns}


@pytest.mark.parametrize('flag', [1, 2, 3, 4, 5])
def test_assign_radii(flag):
    s = NetworkSettings(radius_distribution = flag)
    r = assign_radii(500, s, RandomGenerator(0))
    assert np.all((r >= s.min_radius) & (r <= s.max_radius))


def test_assign_node_radii():
    s = NetworkSettings(min_node_radius = 2e-5, max_node_radius = 3e-5)
    r = assign_radii(100, s, RandomGenerator(0), node = True)
    assert np.all(r >= 2e-5)
    with pytest.raises(ConfigurationError):
        assign_radii(10, NetworkSettings(radius_distribution = 7), RandomGenerator(0))


def test_assign_shape_factors():
    rng = RandomGenerator(0)
    assert np.all(assign_shape_factors(10, NetworkSettings(shape_factor = 0.05), rng) == 0.05)
    G = assign_shape_factors(100, NetworkSettings(), rng)
    assert np.all((G > 0) & (G <= TRIANGLE_MAX_G))


def test_network_from_grid():
    pn = _grid((3, 2, 2))
    net = network_from_openpnm(pn, NetworkSettings(), RandomGenerator(0))
    Nt = len(pn['throat.conns'])
    assert net.Nn == 12
    assert net.Np == Nt + 8
    assert np.sum(net['pore.inlet']) == 4
    assert np.sum(net['pore.outlet']) == 4
    assert net.x_edge_length == pytest.approx(3e-4)
    assert net.y_edge_length == pytest.approx(2e-4)
    assert net.check_consistency()
    #Nodes at least as large as their pores
    conns = net['pore.conns']
    for cn in [0, 1]:
        mask = conns[:, cn] >= 0
        assert np.all(net['node.radius'][conns[mask, cn]] >= net['pore.radius'][mask])


def test_flow_axis():
    pn = _grid((2, 4, 2))
    net = network_from_openpnm(pn, NetworkSettings(shape_factor = 1 / 16), RandomGenerator(0), flow_axis = 1)
    assert np.sum(net['pore.inlet']) == 4
    assert net.x_edge_length == pytest.approx(4e-4)
    assert net.y_edge_length == pytest.approx(2e-4)
    assert np.all(net['element.shape_factor'] == 1 / 16)


def test_geometry_is_used_when_present():
    pn = _grid((3, 2, 2))
    Nt = len(pn['throat.conns'])
    pn['pore.diameter'] = np.full(12, 4e-5)
    pn['throat.diameter'] = np.full(Nt, 2e-5)
    pn['throat.length'] = np.full(Nt, 5e-5)
    net = network_from_openpnm(pn, NetworkSettings(shape_factor = 0.04), RandomGenerator(0))
    assert np.all(net['node.radius'] == 2e-5)
    assert np.all(net['pore.radius'] == 1e-5)
    assert np.all(net['pore.length'] == 5e-5)


def test_flat_network_is_rejected():
    pn = _grid((1, 3, 3))
    with pytest.raises(ConfigurationError):
        network_from_openpnm(pn, NetworkSettings(), RandomGenerator(0))


def test_openpnm_cubic():
    op = pytest.importorskip('openpnm')
    pn = op.network.Cubic(shape = [4, 3, 3], spacing = 1e-4)
    net = network_from_openpnm(pn, NetworkSettings(), RandomGenerator(0))
    assert net.Nn == 36
    assert np.sum(net['pore.inlet']) == 9
    assert np.sum(net['pore.outlet']) == 9
    assert net.x_edge_length == pytest.approx(4e-4)
    assert net.check_consistency()
