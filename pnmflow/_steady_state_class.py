import logging
import heapq as hq
import numpy as np
from tqdm.auto import tqdm
from ._exceptions import PercolationExhausted, SolverDivergence
from ._context import SimulationContext
from ._random import RandomGenerator
from ._network import Phase, Wettability
from ._cluster_funcs import cluster_oil_elements, cluster_water_elements, update_trapping
from ._capillary_funcs import (drainage_entry_pressures, imbibition_entry_pressures,
                               pressure_PB1, update_film_stability, update_films)
from ._flow_funcs import calculate_relative_permeabilities

logger = logging.getLogger(__name__)


__all__ = [
    'TwoPhaseSteadyState',
]


class TwoPhaseSteadyState:
    r"""
    Quasi-static two phase displacement, as a sequence of invasion percolation
    stages under a capillary pressure ramp:

    primary drainage -> spontaneous imbibition -> forced water injection ->
    spontaneous oil invasion -> secondary drainage

    Each stage is enabled with its flag in TwoPhaseSSSettings.

    Parameters
    ----------
    network: Network, with contact angles assigned
    settings: SimulationSettings
    context: SimulationContext. Cancellation is checked after each invasion
    rng: RandomGenerator, used by pore body filling

    Notes
    -----
    Candidates are kept in a heap of (key, element id), with key = pc for
    the stages where oil invades (ascending pressure) and key = -pc where water
    invades (descending pressure). Equal entry pressures are invaded in
    ascending element id. Entries are validated when popped, so an element
    whose entry pressure changed is pushed again instead of being updated.
    """

    def __init__(self, network, settings, context = None, rng = None):
        self.network = network
        self.settings = settings
        self.context = context if context is not None else SimulationContext()
        self.rng = rng if rng is not None else RandomGenerator(settings.network.seed)
        self.pc = 0.0
        self.invasion_sequence = {}
        self._theta_backup = None
        self._wettability_backup = None

    def run(self):
        r"""
        Run the enabled stages. Returns the recorded outputs as a DataFrame
        """
        tp = self.settings.two_phase
        stages = [(tp.primary_drainage_simulation, self.primary_drainage),
                  (tp.spontaneous_imbibition_simulation, self.spontaneous_imbibition),
                  (tp.forced_water_injection_simulation, self.forced_water_injection),
                  (tp.spontaneous_oil_invasion_simulation, self.spontaneous_oil_invasion),
                  (tp.secondary_oil_drainage_simulation, self.secondary_drainage)]
        for enabled, stage in stages:
            if not enabled:
                continue
            self.context.check_cancel()
            stage()
            self.context.emit_plot()
        return self.network.output_frame()

    ############# Stages

    def primary_drainage(self):
        r"""
        Oil invades the water-filled network. The network is water-wet during
        this stage; the configured contact angles are restored afterwards on
        the elements contacted by oil
        """
        net = self.network
        wet = self.settings.wettability
        tp = self.settings.two_phase
        self._theta_backup = net['element.contact_angle'].copy()
        self._wettability_backup = net['element.wettability'].copy()
        theta = self._theta_backup.copy()
        oil_wet = self._wettability_backup == int(Wettability.OIL_WET)
        theta[oil_wet] = np.radians(wet.min_water_wet_theta)
        net['element.contact_angle'] = theta
        net['element.wettability'] = int(Wettability.WATER_WET)
        update_film_stability(net)
        self._run_stage('Primary drainage', Phase.OIL, tp.final_pc_pd, tp.final_saturation_pd)
        self._restore_wettability()

    def spontaneous_imbibition(self):
        tp = self.settings.two_phase
        self._run_stage('Spontaneous imbibition', Phase.WATER, tp.final_pc_pi, tp.final_saturation_pi)

    def forced_water_injection(self):
        tp = self.settings.two_phase
        self._run_stage('Forced water injection', Phase.WATER, tp.final_pc_sd, tp.final_saturation_sd)

    def spontaneous_oil_invasion(self):
        tp = self.settings.two_phase
        self._run_stage('Spontaneous oil invasion', Phase.OIL, tp.final_pc_si, tp.final_saturation_si)

    def secondary_drainage(self):
        tp = self.settings.two_phase
        self._run_stage('Secondary drainage', Phase.OIL, tp.final_pc_td, tp.final_saturation_td)

    def _restore_wettability(self):
        r"""
        Wettability alteration after primary drainage: the elements contacted
        by oil recover their contact angles, the others stay water-wet
        """
        net = self.network
        contacted = net['element.oil_contacted']
        net['element.contact_angle'][contacted] = self._theta_backup[contacted]
        net['element.wettability'][contacted] = self._wettability_backup[contacted]
        update_film_stability(net)
        update_films(net)
        logger.info('Contact angles restored on %i elements contacted by oil', int(np.sum(contacted)))

    ############# Invasion percolation

    def _run_stage(self, name, invading, final_pc, final_sw):
        net = self.network
        ascending = invading == Phase.OIL
        self._sign = 1 if ascending else -1
        self._invading = invading
        defending = Phase.WATER if ascending else Phase.OIL
        net['element.' + ('oil' if ascending else 'water') + '_trapped'] = False
        self._prepare_entry_pressures(invading)
        self._heap = []
        self._key = np.full(net.Ne, np.nan)
        self._connected = self._source_connected(invading)
        for e in np.where(self._connected)[0]:
            self._push(e)
            for nb in net.element_neighbors(e):
                self._push(nb)
        for e in np.where(net['element.inlet'])[0]:
            self._push(e)

        if ascending:
            def target_reached(sw):
                return sw <= final_sw + 1e-12
        else:
            def target_reached(sw):
                return sw >= final_sw - 1e-12

        sequence = np.full(net.Ne, -1)
        count = 0
        sw = net.get_water_saturation()
        finished = target_reached(sw)
        levels = self._pressure_levels(final_pc)
        logger.info('%s: %i candidates, pc from %.4g to %.4g Pa', name, len(self._heap), levels[0], levels[-1])
        for pc in tqdm(levels, desc = name, disable = not self.settings.network.progress_bar):
            if finished:
                break
            self.context.check_cancel()
            self.pc = pc
            try:
                while True:
                    e = self._pop(pc)
                    if e is None:
                        break
                    self._invade(e)
                    sequence[e] = count
                    count += 1
                    update_films(net)
                    update_trapping(net, defending)
                    self.context.emit_plot()
                    sw = net.get_water_saturation()
                    if target_reached(sw):
                        finished = True
                        break
                    self.context.check_cancel()
            except PercolationExhausted:
                logger.info('%s: no more elements can be invaded', name)
                finished = True
            self._record(name, pc)
            self.context.notify(f'{name}: Pc = {pc:.4g} Pa, Sw = {sw:.4f}')
        self.invasion_sequence[name] = sequence
        logger.info('%s finished: %i elements invaded, Sw = %.4f', name, count, sw)
        return sequence

    def _pressure_levels(self, final_pc):
        r"""
        Capillary pressure ramp, from the first possible invasion (or the
        current pressure if it is further) to final_pc
        """
        steps = self.settings.two_phase.two_phase_simulation_steps
        best = None
        while self._heap:
            key, e = self._heap[0]
            if key == self._key[e] and self._is_candidate(e):
                best = self._sign * key
                break
            hq.heappop(self._heap)
        if best is None:
            return np.array([final_pc])
        if self._sign > 0:
            start = min(max(best, self.pc), final_pc)
        else:
            start = max(min(best, self.pc), final_pc)
        if start == final_pc:
            return np.array([final_pc])
        return np.linspace(start, final_pc, steps)

    def _source_connected(self, invading):
        r"""
        Elements holding the invading phase (films included) in a cluster
        connected to the inlet
        """
        net = self.network
        if invading == Phase.OIL:
            clusters = cluster_oil_elements(net)
        else:
            clusters = cluster_water_elements(net)
        connected = np.zeros(net.Ne, dtype = bool)
        for c in clusters:
            if c.inlet:
                connected[c.members] = True
        return connected

    def _prepare_entry_pressures(self, invading):
        net = self.network
        sigma = self.settings.fluids.ow_surface_tension
        if invading == Phase.OIL:
            self._piston = drainage_entry_pressures(net, sigma)
            self._snapoff = None
        else:
            self._piston, self._snapoff = imbibition_entry_pressures(
                net, sigma, self.rng, perm = net.absolute_permeability,
                par_value = self.settings.two_phase.pore_body_filling_parameter)

    def _is_candidate(self, e):
        net = self.network
        defending = 'water' if self._invading == Phase.OIL else 'oil'
        return (not net['element.closed'][e]
                and net['element.phase'][e] != int(self._invading)
                and not net[f'element.{defending}_trapped'][e])

    def _entry(self, e):
        r"""
        Entry pressure of element e for the invading phase, None if it can not
        be invaded now. Piston-like displacement needs a neighbour with the
        invading phase at the center, connected to the inlet (or e is an inlet
        element). Snap-off only needs a connected water film
        """
        net = self.network
        nbs = net.element_neighbors(e)
        bulk = net['element.phase'][nbs] == int(self._invading)
        piston_ok = net['element.inlet'][e] or np.any(self._connected[nbs] & bulk)
        if self._invading == Phase.OIL:
            return self._piston[e] if piston_ok else None
        values = []
        if piston_ok:
            theta = net['element.contact_angle'][e]
            if e >= net.Np and theta < np.pi / 2:
                n_inv = int(np.sum(net['element.oil_fraction'][nbs] > 0))
                values.append(pressure_PB1(n_inv, self.settings.fluids.ow_surface_tension, theta,
                                           net['element.radius'][e], self.rng,
                                           perm = net.absolute_permeability or 3.70e-12,
                                           par_value = self.settings.two_phase.pore_body_filling_parameter))
            else:
                values.append(self._piston[e])
        if self._connected[e] and net['element.water_film'][e] and np.isfinite(self._snapoff[e]):
            values.append(self._snapoff[e])
        return max(values) if values else None

    def _push(self, e):
        if not self._is_candidate(e):
            return
        entry = self._entry(e)
        if entry is None:
            return
        key = self._sign * entry
        if key != self._key[e]:
            self._key[e] = key
            self.network['element.entry_pressure'][e] = entry
            hq.heappush(self._heap, (key, int(e)))

    def _pop(self, pc):
        r"""
        Next element to invade at capillary pressure pc. None if the best
        candidate needs a further pressure, PercolationExhausted if there are
        no candidates
        """
        while self._heap:
            key, e = self._heap[0]
            if key != self._key[e] or not self._is_candidate(e):
                hq.heappop(self._heap)
                continue
            if key > self._sign * pc:
                return None
            hq.heappop(self._heap)
            self._key[e] = np.nan
            return e
        raise PercolationExhausted('No eligible elements')

    def _invade(self, e):
        net = self.network
        invading = self._invading
        net.set_phase(e, invading)
        if invading == Phase.OIL:
            net['element.oil_contacted'][e] = True
        name = 'oil' if invading == Phase.OIL else 'water'
        present = (net[f'element.{name}_fraction'] > 0) | net[f'element.{name}_film']
        #Invaded element joins the connected phase with everything it touches
        new = [e]
        stack = [e]
        self._connected[e] = True
        while stack:
            x = stack.pop()
            for nb in net.element_neighbors(x):
                if present[nb] and not self._connected[nb] and not net['element.closed'][nb]:
                    self._connected[nb] = True
                    stack.append(nb)
                    new.append(nb)
        for x in new:
            self._push(x)
            for nb in net.element_neighbors(x):
                self._push(nb)

    def _record(self, name, pc):
        net = self.network
        sigma = self.settings.fluids.ow_surface_tension
        record = {
            'stage': name,
            'capillary_pressure': pc,
            'water_saturation': net.get_water_saturation(),
            'water_saturation_with_films': net.get_water_saturation_with_films(pc, sigma),
            'water_trapped': int(np.sum(net['element.water_trapped'])),
            'oil_trapped': int(np.sum(net['element.oil_trapped'])),
        }
        if self.settings.two_phase.relative_permeabilities_calculation:
            try:
                krw, kro = calculate_relative_permeabilities(net, self.settings, pc)
            except SolverDivergence as e:
                if e.fatal:
                    raise
                logger.warning('Relative permeabilities not calculated at pc = %.4g: %s', pc, e)
                krw = kro = np.nan
            record['water_relative_permeability'] = krw
            record['oil_relative_permeability'] = kro
        net.record_output(**record)
