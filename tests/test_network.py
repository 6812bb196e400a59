import numpy as np
import pytest
from pnmflow import Network, Phase, ConfigurationError
from conftest import cubic_network, chain_network


def test_sizes_and_ids():
    net = cubic_network((3, 3, 3))
    assert net.Np == 72
    assert net.Nn == 27
    assert net.Ne == 99
    assert np.array_equal(net.node_ids, np.arange(72, 99))
    assert np.sum(net['pore.inlet']) == 9
    assert np.sum(net['pore.outlet']) == 9
    assert not np.any(net['node.inlet'])


def test_pore_and_node_keys_are_views():
    net = chain_network(3)
    net['pore.radius'][0] = 2e-5
    assert net['element.radius'][0] == 2e-5
    net['node.phase'][1] = int(Phase.OIL)
    assert net['element.phase'][net.Np + 1] == int(Phase.OIL)
    net['node.water_fraction'] = 0.5
    assert np.all(net['element.water_fraction'][net.Np:] == 0.5)
    assert np.all(net['element.water_fraction'][:net.Np] == 1.0)


def test_new_pore_property_becomes_element_property():
    net = chain_network(3)
    net['pore.tag'] = np.arange(net.Np)
    assert 'element.tag' in net
    assert 'node.tag' in net
    assert len(net['element.tag']) == net.Ne
    assert np.all(net['node.tag'] == 0)


def test_bad_keys():
    net = chain_network(2)
    with pytest.raises(KeyError):
        net['throat.radius']
    with pytest.raises(KeyError):
        net['radius']
    with pytest.raises(ValueError):
        net['pore.radius_copy'] = np.ones(net.Np + 1)


def test_neighbors():
    net = chain_network(3)
    #Pores: 0 inlet, 1 and 2 inner, 3 outlet. Nodes are elements 4, 5, 6
    assert sorted(net.element_neighbors(1)) == [4, 5]
    assert sorted(net.element_neighbors(0)) == [4]
    assert sorted(net.pores_of_node(1)) == [1, 2]


def test_conns_out_of_range():
    with pytest.raises(ConfigurationError):
        Network(np.array([[-1, 0], [0, 5]]), 2)
    with pytest.raises(ConfigurationError):
        Network(np.array([-1, 0, 1]), 2)


def test_check_consistency():
    net = chain_network(3)
    assert net.check_consistency()
    net['pore.radius'][1] = 0.0
    with pytest.raises(ConfigurationError):
        net.check_consistency()


def test_boundary_on_both_sides_is_rejected():
    net = Network.from_arrays(np.array([[-1, 0], [0, -1], [-1, -1]]),
                              pore_radius = 1e-5, pore_length = 1e-4, node_radius = np.array([1e-5]),
                              pore_shape_factor = 0.04, node_shape_factor = np.array([0.04]))
    with pytest.raises(ConfigurationError, match = 'both sides'):
        net.check_consistency()


def test_fractions_must_sum_to_one():
    net = chain_network(2)
    net['element.oil_fraction'][0] = 0.5
    with pytest.raises(ConfigurationError, match = 'fractions'):
        net.check_consistency()


def test_volumes_and_saturation():
    net = chain_network(2, radius = 1e-5, shape_factor = 1 / 16)
    A = (1e-5) ** 2 * 4
    assert net['pore.volume'] == pytest.approx(np.full(net.Np, A * 5e-5))
    assert net['node.volume'] == pytest.approx(np.full(net.Nn, A * 2e-5))
    assert net.get_water_saturation() == 1.0
    net.set_phase([0], Phase.OIL)
    V = net['element.volume']
    assert net.get_oil_saturation() == pytest.approx(V[0] / V.sum())
    assert net.get_water_saturation() + net.get_oil_saturation() == pytest.approx(1.0)


def test_saturation_ignores_closed_elements():
    net = chain_network(2)
    net.set_phase([0], Phase.OIL)
    net['element.closed'][0] = True
    assert net.get_water_saturation() == 1.0


def test_reset_state():
    net = chain_network(3)
    net.set_phase(np.arange(net.Ne), Phase.OIL)
    net['element.water_trapped'][2] = True
    net.record_output(time = 1.0)
    net.absolute_permeability = 1e-12
    net.reset_state()
    assert np.all(net['element.phase'] == int(Phase.WATER))
    assert not np.any(net['element.water_trapped'])
    assert net.outputs == []
    assert net.absolute_permeability == 0.0
    assert net['pore.radius'][0] == 1e-5


def test_output_frame():
    net = chain_network(2)
    net.record_output(time = 0.0, water_saturation = 1.0)
    net.record_output(time = 1.0, water_saturation = 0.5)
    df = net.output_frame()
    assert list(df.columns) == ['time', 'water_saturation']
    assert df['water_saturation'].iloc[-1] == 0.5
