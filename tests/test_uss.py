import numpy as np
import pytest
from pandas.testing import assert_frame_equal
from pnmflow import (Phase, USSDrainage, RandomGenerator, SimulationSettings, initial_water_distribution)
from conftest import cubic_network, chain_network, heterogeneous_network


@pytest.fixture
def uss_settings(settings):
    settings.two_phase_ss = False
    settings.drainage_uss = True
    settings.uss.time_step = 1e-5
    settings.uss.extraction_timestep = 1e-5
    settings.uss.simulation_time = 5e-5
    return settings


def _oil_volume(net):
    return np.sum(net['element.volume'] * net['element.oil_fraction'])


def test_initial_water_distribution():
    net = cubic_network((3, 3, 3))
    net['element.radius'] = np.linspace(1e-6, 1e-5, net.Ne)
    filled = initial_water_distribution(net, 0.6, 2, RandomGenerator(0))
    V = net['element.volume']
    assert net.get_water_saturation() == pytest.approx(0.6)
    #Oil fills the largest elements first
    assert filled[0] == net.Ne - 1
    assert np.sum((net['element.oil_fraction'] > 0) & (net['element.oil_fraction'] < 1)) <= 1
    assert np.allclose(net['element.oil_fraction'] + net['element.water_fraction'], 1.0)
    filled = initial_water_distribution(net, 0.6, 3, RandomGenerator(0))
    assert filled[0] == 0
    filled = initial_water_distribution(net, 1.0, 1, RandomGenerator(0))
    assert len(filled) == 0
    assert np.all(net['element.phase'] == int(Phase.WATER))
    assert V.sum() == net.total_volume()


def test_random_distribution_is_reproducible():
    net = cubic_network((3, 3, 3))
    a = initial_water_distribution(net, 0.5, 1, RandomGenerator(5)).copy()
    b = initial_water_distribution(net, 0.5, 1, RandomGenerator(5))
    assert np.array_equal(a, b)


def test_fractions_stay_bounded_and_oil_is_conserved(uss_settings):
    net = cubic_network((3, 3, 3))
    uss = USSDrainage(net, uss_settings)
    uss.setup()
    for _ in range(40):
        if uss.step() is None:
            break
        fo = net['element.oil_fraction']
        fw = net['element.water_fraction']
        assert np.all((fo >= 0) & (fo <= 1))
        assert np.all((fw >= 0) & (fw <= 1))
        assert np.allclose(fo + fw + net['element.gas_fraction'], 1.0)
    assert net.injected_volume > 0
    assert _oil_volume(net) + uss.oil_produced == pytest.approx(net.injected_volume, rel = 1e-6)


def test_higher_pressure_drop_gives_smaller_time_step(uss_settings):
    uss_settings.uss.time_step = 1.0
    dts = []
    for dp in [1e5, 1e6]:
        uss_settings.uss.delta_p = dp
        uss = USSDrainage(cubic_network((3, 3, 3)), uss_settings)
        uss.setup()
        dts.append(uss.step())
    assert dts[1] < dts[0]


def test_first_step_fills_the_inlet_pores(uss_settings):
    uss_settings.uss.time_step = 1.0
    net = cubic_network((3, 3, 3))
    uss = USSDrainage(net, uss_settings)
    uss.setup()
    uss.step()
    inlet = net['pore.inlet']
    assert np.all(net['pore.oil_fraction'][inlet] == 1.0)
    assert np.all(net['pore.oil_fraction'][~inlet] == 0.0)
    assert np.all(net['node.oil_fraction'] == 0.0)
    assert np.all(net['pore.phase'][inlet] == int(Phase.OIL))


def test_run_records_outputs(uss_settings):
    net = cubic_network((3, 3, 3))
    df = USSDrainage(net, uss_settings).run()
    assert df['time'].iloc[0] == 0.0
    assert df['time'].iloc[-1] == pytest.approx(5e-5)
    assert np.all(np.diff(df['time']) > 0)
    assert np.all(np.diff(df['water_saturation']) <= 1e-12)
    assert df['water_saturation'].iloc[-1] < 1.0


def test_breakthrough(uss_settings):
    uss_settings.uss.simulation_time = 1.0
    uss_settings.uss.time_step = 1e-3
    uss_settings.uss.extraction_timestep = 1e-3
    uss_settings.uss.stop_at_breakthrough = True
    net = cubic_network((3, 3, 3))
    uss = USSDrainage(net, uss_settings)
    uss.run()
    assert uss.breakthrough_time is not None
    assert uss.time == pytest.approx(uss.breakthrough_time)
    assert uss.time < 1.0
    assert uss.oil_produced > 0
    assert not uss.stalled


def test_runs_are_deterministic(uss_settings):
    uss_settings.uss.initial_water_saturation = 0.8
    frames = []
    for _ in range(2):
        net = cubic_network((3, 3, 3))
        frames.append(USSDrainage(net, uss_settings, rng = RandomGenerator(11)).run())
    assert_frame_equal(frames[0], frames[1])


def test_constant_flow_rate(uss_settings):
    uss = USSDrainage(cubic_network((3, 3, 3)), uss_settings)
    uss.setup()
    uss.solve_with_barriers()
    q = np.sum(uss.network['pore.flow'][uss.network['pore.inlet']])

    uss_settings.uss.flow_rate = 2 * q
    net = cubic_network((3, 3, 3))
    uss = USSDrainage(net, uss_settings)
    uss.setup()
    uss.solve_with_barriers()
    q_new = np.sum(net['pore.flow'][net['pore.inlet']])
    assert q_new == pytest.approx(2 * q, rel = 1e-2)
    assert uss.delta_p > uss_settings.uss.delta_p
    assert net.pressure_drop == uss.delta_p


def test_barrier_holds_below_entry_pressure(uss_settings):
    #Entry pressure of a circular pore is 2 sigma / r = 6e3 Pa
    uss_settings.uss.delta_p = 1e3
    net = chain_network(3)
    uss = USSDrainage(net, uss_settings)
    uss.setup()
    assert uss.step() is None
    assert uss.stalled is False
    assert np.all(net['element.oil_fraction'] == 0.0)


def test_water_channel():
    settings = SimulationSettings(two_phase_ss = False, drainage_uss = True)
    net = chain_network(3)
    #Oil from pore 2 to the outlet isolates the water upstream
    net.set_phase([2, 6, 3], Phase.OIL)
    uss = USSDrainage(net, settings)
    assert uss.open_water_channel() == 3
    assert np.all(net['element.phase'] == int(Phase.WATER))
    assert uss.open_water_channel() == 0


@pytest.mark.parametrize('advanced', [True, False])
def test_oil_is_conserved_on_heterogeneous_network(uss_settings, advanced):
    uss_settings.uss.initial_water_saturation = 0.6
    uss_settings.uss.delta_p = 3e5
    uss_settings.uss.time_step = 1e-2
    uss_settings.uss.simulation_time = 1.0
    uss_settings.uss.advanced_trapping = advanced
    net = heterogeneous_network((5, 4, 4), seed = 1)
    uss = USSDrainage(net, uss_settings, rng = RandomGenerator(2))
    uss.setup()
    oil_start = _oil_volume(net)
    assert oil_start > 0
    for _ in range(60):
        if uss.step() is None:
            break
        fo = net['element.oil_fraction']
        assert np.all((fo >= 0) & (fo <= 1))
        assert np.allclose(fo + net['element.water_fraction'], 1.0)
    assert len(uss.dt_history) > 0
    assert _oil_volume(net) - oil_start + uss.oil_produced == pytest.approx(net.injected_volume, rel = 1e-6, abs = 1e-24)


def test_run_with_simple_trapping(uss_settings):
    uss_settings.uss.initial_water_saturation = 0.6
    uss_settings.uss.delta_p = 3e5
    uss_settings.uss.advanced_trapping = False
    uss_settings.uss.max_steps = 200
    net = heterogeneous_network((5, 4, 4), seed = 1)
    uss = USSDrainage(net, uss_settings, rng = RandomGenerator(2))
    df = uss.run()
    assert len(df) >= 2
    assert np.all(np.diff(df['time']) > 0)
    #The outlet elements always drain to the outlet
    assert not np.any(net['element.water_trapped'] & net['element.outlet'])
