import logging
import numpy as np
import scipy.sparse as sprs
import scipy.sparse.csgraph as csgraph
from tqdm.auto import tqdm
from ._exceptions import SolverDivergence
from ._context import SimulationContext
from ._random import RandomGenerator
from ._network import Phase
from ._cluster_funcs import cluster_water_elements, update_trapping
from ._capillary_funcs import drainage_entry_pressures, update_film_stability, update_films
from ._conductance_funcs import null_g
from ._flow_funcs import (solve_pressures, update_flows, _boundary_pressures,
                          calculate_permeability_and_porosity)

logger = logging.getLogger(__name__)


__all__ = [
    'USSDrainage',
    'initial_water_distribution',
]


#Fractions closer than this to 0 or 1 are snapped
_SNAP = 1e-12


def initial_water_distribution(network, saturation, distribution, rng):
    r"""
    Fill the network with water and place oil until the water saturation is
    reached. One element can be left partially filled.

    Parameters:
    ----------------
    network: Network
    saturation: water saturation to reach
    distribution: where the water stays. 1: random elements, 2: the smallest
    elements (oil fills the largest first), 3: the largest elements
    rng: RandomGenerator

    Returns:
    ----------------
    Element ids filled with oil, in filling order
    """
    network.set_phase(np.arange(network.Ne), Phase.WATER)
    if saturation >= 1:
        return np.array([], dtype = int)
    ids = np.where(network.accessible)[0]
    if distribution == 1:
        order = rng.shuffle(ids.copy())
    else:
        order = ids[np.argsort(network['element.radius'][ids], kind = 'stable')]
        if distribution == 2:
            order = order[::-1]
    V = network['element.volume']
    target = (1 - saturation) * network.total_volume()
    cum = np.cumsum(V[order])
    n = int(np.searchsorted(cum, target, side = 'right'))
    filled = order[:n]
    network.set_phase(filled, Phase.OIL)
    network['element.oil_contacted'][filled] = True
    if n < len(order):
        e = order[n]
        fraction = (target - (cum[n - 1] if n > 0 else 0.0)) / V[e]
        if fraction >= 1 - _SNAP:
            network.set_phase(e, Phase.OIL)
        elif fraction > _SNAP:
            network['element.oil_fraction'][e] = fraction
            network['element.water_fraction'][e] = 1 - fraction
        if fraction > _SNAP:
            network['element.oil_contacted'][e] = True
            filled = order[:n + 1]
    logger.info('Initial water saturation %.4f, %i elements with oil', network.get_water_saturation(), len(filled))
    return filled


class USSDrainage:
    r"""
    Unsteady state oil injection into a water saturated network.

    Each step solves the pressure field with capillary barriers at the oil
    front, moves the fluids with the pore flows and advances the fractions
    with the largest time step that keeps them inside [0, 1].

    Parameters
    ----------
    network: Network, with contact angles assigned
    settings: SimulationSettings. Uses settings.uss
    context: SimulationContext
    rng: RandomGenerator, used for the initial water distribution

    Notes
    -----
    -A pore at the oil front has a barrier: the entry pressure of the pore
    (or of the water-filled node the oil enters) is a capillary source in
    the flow equation. The barrier is closed (null conductance) if the
    pressure drop in the direction of the oil is below the entry pressure,
    so the front never recedes.
    -The fluid leaving an element is water while it holds water, so the
    displaced water leaves first.
    -The inlet reservoir holds oil. The outlet accepts any fluid.
    """

    def __init__(self, network, settings, context = None, rng = None):
        self.network = network
        self.settings = settings
        self.context = context if context is not None else SimulationContext()
        self.rng = rng if rng is not None else RandomGenerator(settings.network.seed)
        self.time = 0.0
        self.delta_p = settings.uss.delta_p
        self.dt_history = []
        self.breakthrough_time = None
        self.stalled = False

    ############# Setup

    def setup(self):
        r"""
        Initial state: water distribution, optional water channel, films,
        entry pressures. Raises a fatal SolverDivergence if the inlet and the
        outlet are not connected
        """
        net = self.network
        uss = self.settings.uss
        if net.absolute_permeability <= 0:
            calculate_permeability_and_porosity(net, self.settings)
        initial_water_distribution(net, uss.initial_water_saturation, uss.water_distribution, self.rng)
        if uss.enhanced_water_connectivity:
            self.open_water_channel()
        net['element.water_trapped'] = False
        net['element.oil_trapped'] = False
        update_film_stability(net)
        update_films(net)
        net['element.entry_pressure'] = drainage_entry_pressures(net, self.settings.fluids.ow_surface_tension)
        net['pore.flow'] = 0.0
        net.injected_volume = 0.0
        net.pressure_drop = self.delta_p
        self.time = 0.0
        self.dt_history = []
        self.oil_produced = 0.0
        self.water_produced = 0.0

    def open_water_channel(self):
        r"""
        Connect every water cluster without outlet to the outlet, filling with
        water the elements of the shortest path (in elements) between them.

        Returns:
        ----------------
        Number of elements changed to water
        """
        net = self.network
        clusters = cluster_water_elements(net, films = False)
        isolated = [c for c in clusters if not c.outlet]
        if not isolated:
            return 0
        Ne = net.Ne
        is_open = net.accessible.astype(float)
        D = sprs.diags(is_open)
        am = (D @ net.adjacency @ D).tocoo()
        #Extra vertex Ne linked to all outlet elements
        outlets = np.where(net['element.outlet'] & net.accessible)[0]
        rows = np.concatenate((am.row, np.full(len(outlets), Ne)))
        cols = np.concatenate((am.col, outlets))
        graph = sprs.coo_matrix((np.ones(len(rows)), (rows, cols)), shape = (Ne + 1, Ne + 1)).tocsr()
        _, pred = csgraph.breadth_first_order(graph, Ne, directed = False, return_predecessors = True)
        changed = []
        for c in isolated:
            e = c.members[0]
            while e >= 0 and e != Ne:
                if net['element.water_fraction'][e] < 1:
                    changed.append(e)
                e = pred[e]
        changed = np.unique(np.array(changed, dtype = int))
        if len(changed):
            net.set_phase(changed, Phase.WATER)
        logger.info('Water channel: %i elements filled with water', len(changed))
        return len(changed)

    ############# Run

    def run(self):
        r"""
        Run until the simulation time (or the injected pore volumes) is
        reached, the oil breaks through with stop_at_breakthrough, the flow
        stalls or a cancellation is requested.

        Returns:
        ----------------
        Recorded outputs as a DataFrame
        """
        net = self.network
        uss = self.settings.uss
        self.setup()
        self.context.notify('USS drainage started')
        self._record()
        next_output = uss.extraction_timestep
        last_recorded = 0.0
        steps = 0
        total = uss.injected_pvs if uss.override_by_injected_pvs else uss.simulation_time
        with tqdm(total = total, desc = 'USS drainage', disable = not self.settings.network.progress_bar) as bar:
            while not self._finished():
                self.context.check_cancel()
                if steps >= uss.max_steps:
                    logger.warning('Maximum number of steps (%i) reached', uss.max_steps)
                    break
                progress = self._progress()
                dt = self.step(next_output)
                steps += 1
                if dt is None:
                    self.stalled = True
                    self.context.notify(f'USS drainage stalled at t = {self.time:.4g} s')
                    break
                bar.update(self._progress() - progress)
                if self.time >= next_output * (1 - 1e-12):
                    self._record()
                    last_recorded = self.time
                    while next_output <= self.time * (1 + 1e-12):
                        next_output += uss.extraction_timestep
                self.context.emit_plot()
                if uss.stop_at_breakthrough and self.breakthrough_time is not None:
                    self.context.notify(f'Oil breakthrough at t = {self.breakthrough_time:.4g} s')
                    break
        if last_recorded != self.time:
            self._record()
        self.context.notify(f'USS drainage finished: t = {self.time:.4g} s, Sw = {net.get_water_saturation():.4f}')
        return net.output_frame()

    def _progress(self):
        if self.settings.uss.override_by_injected_pvs:
            return self.network.injected_volume / self.network.total_volume()
        return self.time

    def _finished(self):
        uss = self.settings.uss
        if uss.override_by_injected_pvs:
            return self.network.injected_volume >= uss.injected_pvs * self.network.total_volume() * (1 - 1e-12)
        return self.time >= uss.simulation_time * (1 - 1e-12)

    def step(self, next_output = np.inf):
        r"""
        One time step. Returns dt, or None if nothing flows
        """
        net = self.network
        uss = self.settings.uss
        try:
            self.solve_with_barriers()
        except SolverDivergence as e:
            if e.fatal:
                raise
            logger.warning('Step at t = %.4g s without flow: %s', self.time, e)
            net['pore.flow'] = 0.0
            dt = min(uss.time_step, uss.simulation_time - self.time) if not uss.override_by_injected_pvs else uss.time_step
            self.time += dt
            self.dt_history.append(dt)
            return dt
        rate, q_in, oil_out, water_out = self.phase_rates()
        if q_in <= 0:
            return None
        dt = self.stable_time_step(rate)
        dt = min(dt, uss.time_step, max(next_output - self.time, 0) or uss.time_step)
        if uss.override_by_injected_pvs:
            remaining = uss.injected_pvs * net.total_volume() - net.injected_volume
            dt = min(dt, remaining / q_in)
        else:
            dt = min(dt, uss.simulation_time - self.time)
        self.advance(rate, dt)
        net.injected_volume += q_in * dt
        self.oil_produced += oil_out * dt
        self.water_produced += water_out * dt
        if oil_out > 0 and self.breakthrough_time is None:
            self.breakthrough_time = self.time + dt
            logger.info('Oil breakthrough at t = %.4g s', self.breakthrough_time)
        self.time += dt
        self.dt_history.append(dt)
        update_films(net)
        update_trapping(net, Phase.WATER, advanced = uss.advanced_trapping)
        return dt

    ############# Pressure field

    def conductance(self):
        r"""
        Pore conductance with the mixture viscosity fo * mu_o + fw * mu_w.
        Pores touching closed elements or elements filled with trapped water
        get null_g
        """
        net = self.network
        fl = self.settings.fluids
        Np = net.Np
        fo = net['element.oil_fraction']
        fw = net['element.water_fraction']
        mu = fo[:Np] * fl.oil_viscosity + fw[:Np] * fl.water_viscosity
        g = net['pore.conductivity'] / mu
        blocked = net['element.closed'] | (net['element.water_trapped'] & (fo <= 0))
        conns = net['pore.conns']
        ok = ~blocked[:Np]
        for cn in [0, 1]:
            mask = conns[:, cn] >= 0
            ok[mask] &= ~blocked[Np + conns[mask, cn]]
        return np.maximum(np.where(ok, g, null_g), null_g)

    def front_barriers(self):
        r"""
        Direction (+1 from column 0 to column 1 of 'pore.conns', -1 the
        other way, 0 without barrier) and entry pressure of the barrier of
        each pore
        """
        net = self.network
        Np = net.Np
        conns = net['pore.conns']
        fo = net['element.oil_fraction']
        entry = net['element.entry_pressure']
        full = fo >= 1
        empty = fo <= 0
        end_fo = np.zeros((Np, 2))
        end_full = np.zeros((Np, 2), dtype = bool)
        node_empty = np.zeros((Np, 2), dtype = bool)
        for cn in [0, 1]:
            mask = conns[:, cn] >= 0
            ne = Np + conns[mask, cn]
            end_fo[mask, cn] = fo[ne]
            end_full[mask, cn] = full[ne]
            node_empty[mask, cn] = empty[ne]
        #Inlet reservoir holds oil, the outlet is neutral
        end_fo[conns[:, 0] < 0, 0] = 1
        end_full[conns[:, 0] < 0, 0] = True
        p0, p1 = _boundary_pressures(net, net.pressure_drop, 0.0)
        higher0 = ~(p1 > p0)

        direction = np.zeros(Np, dtype = int)
        pe = np.zeros(Np)
        #Water-filled pore, oil at one or both ends
        water_pore = empty[:Np] & (end_full[:, 0] | end_full[:, 1])
        one = end_full[:, 0] ^ end_full[:, 1]
        direction[water_pore & one] = np.where(end_full[water_pore & one, 0], 1, -1)
        both = water_pore & ~one
        direction[both] = np.where(higher0[both], 1, -1)
        pe[water_pore] = entry[:Np][water_pore]
        #Oil-filled pore, water-filled node ahead
        oil_pore = full[:Np] & (node_empty[:, 0] | node_empty[:, 1])
        ahead = np.where(node_empty[:, 0] & node_empty[:, 1], np.where(higher0, 1, 0),
                         np.where(node_empty[:, 1], 1, 0))
        direction[oil_pore] = np.where(ahead[oil_pore] == 1, 1, -1)
        node = np.where(ahead == 1, conns[:, 1], conns[:, 0])
        pe[oil_pore] = entry[Np + node[oil_pore]]
        #Meniscus inside the pore
        partial = ~full[:Np] & ~empty[:Np]
        direction[partial] = np.where(end_fo[partial, 0] >= end_fo[partial, 1], 1, -1)
        pe[partial] = entry[:Np][partial]
        return direction, pe

    def solve_with_barriers(self):
        r"""
        Solve the pressure field opening and closing barriers until they are
        consistent with the pressures. In constant flow rate mode, the
        pressure drop is scaled to the target rate. Writes 'pore.flow'
        """
        net = self.network
        uss = self.settings.uss
        solver = self.settings.network.solver_choice
        tol = self.settings.network.solver_tolerance
        g = self.conductance()
        net.pressure_drop = self.delta_p
        direction, pe = self.front_barriers()
        barrier = direction != 0
        source = direction * pe
        n_rate = uss.max_threshold_iterations if uss.flow_rate > 0 else 1
        for _ in range(n_rate):
            is_open = np.ones(net.Np, dtype = bool)
            for it in range(uss.max_threshold_iterations):
                g_eff = np.where(is_open, g, null_g)
                solve_pressures(net, g_eff, self.delta_p, 0.0, capillary_source = source,
                                solver = solver, tol = tol, require_path = False)
                p0, p1 = _boundary_pressures(net, self.delta_p, 0.0)
                drive = np.nan_to_num(direction * (p0 - p1), nan = -np.inf)
                should_open = ~barrier | (drive > pe)
                if np.all(should_open == is_open):
                    break
                is_open = should_open
            else:
                logger.debug('Barriers not converged after %i iterations', uss.max_threshold_iterations)
            q_out = update_flows(net, g_eff, self.delta_p, 0.0, capillary_source = source)
            if uss.flow_rate <= 0:
                break
            q_in = np.sum(net['pore.flow'][net['pore.inlet']])
            if q_in <= 0:
                self.delta_p *= 2
            elif abs(q_in - uss.flow_rate) <= 1e-3 * uss.flow_rate:
                break
            else:
                self.delta_p *= uss.flow_rate / q_in
            net.pressure_drop = self.delta_p
        net.pressure_drop = self.delta_p
        return q_out

    ############# Fluid transport

    def oil_out_fraction(self):
        r"""
        Oil fraction of the fluid leaving each element: water leaves first, so
        it is 1 only if the element has no mobile water
        """
        net = self.network
        fw = net['element.water_fraction']
        return ((fw <= 0) | net['element.water_trapped']).astype(float)

    def phase_rates(self):
        r"""
        Oil volume change rate of each element from the pore flows.

        Returns:
        ----------------
        rate (Ne array), inlet flow, oil and water flow through the outlet
        """
        net = self.network
        Np = net.Np
        q = net['pore.flow']
        conns = net['pore.conns']
        c = self.oil_out_fraction()
        forward = q >= 0
        up = np.where(forward, conns[:, 0], conns[:, 1])
        down = np.where(forward, conns[:, 1], conns[:, 0])
        aq = np.abs(q)
        c_up = np.zeros(Np)
        has_up = up >= 0
        c_up[has_up] = c[Np + up[has_up]]
        #Flow coming from the inlet reservoir is oil, from the outlet water
        c_up[~has_up & forward] = 1.0
        c_p = c[:Np]
        rate = np.zeros(net.Ne)
        rate[:Np] += aq * (c_up - c_p)
        np.add.at(rate, Np + up[has_up], -aq[has_up] * c_up[has_up])
        has_down = down >= 0
        np.add.at(rate, Np + down[has_down], aq[has_down] * c_p[has_down])
        scale = np.max(aq) if len(aq) else 0.0
        rate[np.abs(rate) <= 1e-10 * scale] = 0.0
        q_in = np.sum(aq[~has_up & forward])
        out = ~has_down
        return rate, q_in, np.sum(aq[out] * c_p[out]), np.sum(aq[out] * (1 - c_p[out]))

    def stable_time_step(self, rate):
        r"""
        Largest dt keeping all the oil fractions in [0, 1]
        """
        net = self.network
        fo = net['element.oil_fraction']
        V = net['element.volume']
        dt = np.inf
        fill = (rate > 0) & (fo < 1)
        if np.any(fill):
            dt = min(dt, np.min((1 - fo[fill]) * V[fill] / rate[fill]))
        drain = (rate < 0) & (fo > 0)
        if np.any(drain):
            dt = min(dt, np.min(fo[drain] * V[drain] / -rate[drain]))
        return dt

    def advance(self, rate, dt):
        r"""
        Move the oil fractions by rate * dt. Elements reaching 0 or 1 change
        phase. Water fraction is the complement of oil and gas
        """
        net = self.network
        fo = net['element.oil_fraction'] + rate * dt / net['element.volume']
        fo[fo < _SNAP] = 0.0
        fo[fo > 1 - _SNAP] = 1.0
        fo = np.clip(fo, 0, 1)
        net['element.oil_fraction'] = fo
        net['element.water_fraction'] = 1 - fo - net['element.gas_fraction']
        phase = net['element.phase']
        phase[fo >= 1] = int(Phase.OIL)
        phase[fo <= 0] = int(Phase.WATER)
        net['element.oil_contacted'] = net['element.oil_contacted'] | (fo > 0)

    def _record(self):
        net = self.network
        net.record_output(time = self.time,
                          injected_pvs = net.injected_volume / net.total_volume(),
                          water_saturation = net.get_water_saturation(),
                          pressure_drop = net.pressure_drop,
                          outlet_flow = net.outlet_flow,
                          oil_produced = self.oil_produced,
                          water_produced = self.water_produced,
                          water_trapped = int(np.sum(net['element.water_trapped'])))
