import logging
import numpy as np
from tqdm.auto import tqdm
from ._context import SimulationContext
from ._random import RandomGenerator
from ._network import Phase
from ._conductance_funcs import phase_conductance
from ._flow_funcs import solve_flow
from ._uss_class import initial_water_distribution

logger = logging.getLogger(__name__)


__all__ = [
    'TracerFlow',
]


class TracerFlow:
    r"""
    Tracer injected with the oil. The oil pressure field is solved once; the
    concentration is advanced with explicit upwind advection and, if
    tracer_diffusion_coef > 0, molecular diffusion between each pore and
    its ends. The inlet concentration is 1.

    Parameters
    ----------
    network: Network
    settings: SimulationSettings. Uses settings.tracer
    context: SimulationContext
    rng: RandomGenerator, used for the initial water distribution
    """

    def __init__(self, network, settings, context = None, rng = None):
        self.network = network
        self.settings = settings
        self.context = context if context is not None else SimulationContext()
        self.rng = rng if rng is not None else RandomGenerator(settings.network.seed)
        self.time = 0.0
        self.dt_history = []

    def setup(self):
        r"""
        Place the water, solve the oil flow field and compute the diffusive
        conductances. Raises a fatal SolverDivergence if the oil does not
        connect the inlet and the outlet
        """
        net = self.network
        tr = self.settings.tracer
        net['element.water_trapped'] = False
        net['element.oil_trapped'] = False
        initial_water_distribution(net, tr.initial_water_saturation, tr.water_distribution, self.rng)
        net['element.concentration'] = 0.0
        g = phase_conductance(net, Phase.OIL, self.settings.fluids.oil_viscosity, exclude_trapped = False)
        q_out = solve_flow(net, g, tr.delta_p, 0.0,
                           solver = self.settings.network.solver_choice,
                           tol = self.settings.network.solver_tolerance)
        net.pressure_drop = tr.delta_p
        self.oil_volume = net['element.volume'] * net['element.oil_fraction']
        #Diffusive conductance of each half pore, D A / (L / 2)
        Np = net.Np
        oil_pore = (net['pore.oil_fraction'] > 0) & ~net['pore.closed']
        self.diffusion = np.where(oil_pore, tr.tracer_diffusion_coef * net['pore.area']
                                  * net['pore.oil_fraction'] / (net['pore.length'] / 2), 0.0)
        conns = net['pore.conns']
        self._diff_end = np.zeros((Np, 2), dtype = bool)
        for cn in [0, 1]:
            mask = conns[:, cn] >= 0
            self._diff_end[mask, cn] = self.oil_volume[Np + conns[mask, cn]] > 0
        #Diffusion from the inlet reservoir, none through the outlet
        self._diff_end[conns[:, 0] < 0, 0] = True
        self.time = 0.0
        self.dt_history = []
        net.injected_volume = 0.0
        logger.info('Tracer flow field: outlet flow %.4e m3/s', q_out)

    def concentration_rates(self):
        r"""
        Rate of change of tracer volume in each element and outlet
        concentration (flow weighted)
        """
        net = self.network
        Np = net.Np
        c = net['element.concentration']
        q = net['pore.flow']
        conns = net['pore.conns']
        forward = q >= 0
        up = np.where(forward, conns[:, 0], conns[:, 1])
        down = np.where(forward, conns[:, 1], conns[:, 0])
        aq = np.abs(q)
        has_up = up >= 0
        c_up = np.zeros(Np)
        c_up[has_up] = c[Np + up[has_up]]
        c_up[~has_up & forward] = 1.0
        c_p = c[:Np]
        rate = np.zeros(net.Ne)
        rate[:Np] += aq * (c_up - c_p)
        np.add.at(rate, Np + up[has_up], -aq[has_up] * c_up[has_up])
        has_down = down >= 0
        np.add.at(rate, Np + down[has_down], aq[has_down] * c_p[has_down])
        if np.any(self.diffusion > 0):
            for cn in [0, 1]:
                end = self._diff_end[:, cn]
                c_end = np.where(conns[:, cn] >= 0, c[Np + np.maximum(conns[:, cn], 0)], 1.0)
                flux = np.where(end, self.diffusion * (c_end - c_p), 0.0)
                rate[:Np] += flux
                node = end & (conns[:, cn] >= 0)
                np.add.at(rate, Np + conns[node, cn], -flux[node])
        out = ~has_down
        q_out = np.sum(aq[out])
        c_out = np.sum(aq[out] * c_p[out]) / q_out if q_out > 0 else 0.0
        return rate, c_out

    def stable_time_step(self):
        r"""
        Largest dt of the explicit scheme: the outflow and the diffusive
        exchange of each element can not exceed its oil volume
        """
        net = self.network
        Np = net.Np
        q = net['pore.flow']
        conns = net['pore.conns']
        out = np.zeros(net.Ne)
        aq = np.abs(q)
        out[:Np] += aq
        up = np.where(q >= 0, conns[:, 0], conns[:, 1])
        np.add.at(out, Np + up[up >= 0], aq[up >= 0])
        for cn in [0, 1]:
            end = self._diff_end[:, cn]
            out[:Np] += np.where(end, self.diffusion, 0.0)
            node = end & (conns[:, cn] >= 0)
            np.add.at(out, Np + conns[node, cn], self.diffusion[node])
        mask = (out > 0) & (self.oil_volume > 0)
        if not np.any(mask):
            return np.inf
        return np.min(self.oil_volume[mask] / out[mask])

    def run(self):
        r"""
        Returns:
        ----------------
        DataFrame with time, injected pore volumes and outlet concentration
        """
        net = self.network
        tr = self.settings.tracer
        self.setup()
        rate, c_out = self.concentration_rates()
        self._record(c_out)
        dt_stable = self.stable_time_step()
        q_in = np.sum(np.abs(net['pore.flow'][net['pore.inlet']]))
        V = net.total_volume()
        total = tr.injected_pvs if tr.override_by_injected_pvs else tr.simulation_time
        next_output = tr.extraction_timestep
        steps = 0
        last_recorded = 0.0
        self.context.notify('Tracer flow started')
        with tqdm(total = total, desc = 'Tracer flow', disable = not self.settings.network.progress_bar) as bar:
            while True:
                if tr.override_by_injected_pvs:
                    remaining = (tr.injected_pvs * V - net.injected_volume) / q_in if q_in > 0 else 0.0
                    done = net.injected_volume >= tr.injected_pvs * V * (1 - 1e-12)
                else:
                    remaining = tr.simulation_time - self.time
                    done = self.time >= tr.simulation_time * (1 - 1e-12)
                if done or remaining <= 0:
                    break
                self.context.check_cancel()
                if steps >= tr.max_steps:
                    logger.warning('Maximum number of steps (%i) reached', tr.max_steps)
                    break
                dt = min(dt_stable, tr.time_step, remaining, max(next_output - self.time, 0) or tr.time_step)
                mask = self.oil_volume > 0
                c = net['element.concentration']
                c[mask] += rate[mask] * dt / self.oil_volume[mask]
                np.clip(c, 0, 1, out = c)
                self.time += dt
                net.injected_volume += q_in * dt
                self.dt_history.append(dt)
                steps += 1
                bar.update(q_in * dt / V if tr.override_by_injected_pvs else dt)
                rate, c_out = self.concentration_rates()
                if self.time >= next_output * (1 - 1e-12):
                    self._record(c_out)
                    last_recorded = self.time
                    while next_output <= self.time * (1 + 1e-12):
                        next_output += tr.extraction_timestep
                    self.context.emit_plot()
        if last_recorded != self.time:
            self._record(c_out)
        self.context.notify(f'Tracer flow finished: t = {self.time:.4g} s, outlet concentration = {c_out:.4f}')
        return net.output_frame()

    def _record(self, c_out):
        net = self.network
        net.record_output(time = self.time,
                          injected_pvs = net.injected_volume / net.total_volume(),
                          outlet_concentration = c_out,
                          mean_concentration = np.sum(self.oil_volume * net['element.concentration'])
                          / np.sum(self.oil_volume))
