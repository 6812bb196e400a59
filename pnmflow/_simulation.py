import logging
import threading
from ._exceptions import PNMError, ConfigurationError, SolverDivergence, CancellationRequested
from ._settings import SimulationSettings
from ._context import SimulationContext
from ._random import RandomGenerator
from ._cluster_funcs import define_accessible_elements
from ._capillary_funcs import assign_contact_angles
from ._flow_funcs import calculate_permeability_and_porosity
from ._steady_state_class import TwoPhaseSteadyState
from ._uss_class import USSDrainage
from ._tracer_class import TracerFlow

logger = logging.getLogger(__name__)


__all__ = [
    'PoreNetworkModel',
]


class PoreNetworkModel:
    r"""
    Front end of a simulation: checks the network and the settings, runs the
    selected displacement on a worker thread and exposes the status and the
    results.

    Example
    -------
        model = PoreNetworkModel(network, settings)
        model.setup_model()
        model.context.add_listener(repaint)
        model.start()
        ...
        model.cancel()
    """

    def __init__(self, network = None, settings = None):
        self.network = network
        self.settings = settings if settings is not None else SimulationSettings()
        self.context = SimulationContext()
        self.rng = None
        self.engine = None
        self.last_error = None
        self._thread = None

    def setup_model(self, network = None):
        r"""
        Validate settings and network, close the isolated elements and assign
        the contact angles. Nothing is changed if the validation fails.
        """
        if network is not None:
            self.network = network
        if self.network is None:
            raise ConfigurationError('No network loaded')
        self.settings.validate()
        self.network.check_consistency()
        self.context = SimulationContext()
        self.rng = RandomGenerator(self.settings.network.seed)
        define_accessible_elements(self.network)
        assign_contact_angles(self.network, self.settings.wettability, self.rng)
        self.context.ready = True
        self.context.notify(f'Network ready: {self.network.Np} pores, {self.network.Nn} nodes')
        return self.network

    def reset(self):
        r"""
        Back to a water filled network. The context is discarded
        """
        if self.is_running:
            raise PNMError('Can not reset while a simulation is running')
        if self.network is not None:
            self.network.reset_state()
        self.context = SimulationContext()
        self.engine = None
        self.last_error = None

    def run_simulation(self):
        r"""
        Run the selected simulation in the calling thread.

        Returns:
        ----------------
        DataFrame with the recorded outputs. A cancelled run returns the
        outputs recorded until the cancellation

        Raises:
        ----------------
        ConfigurationError if the model is not ready, fatal SolverDivergence
        """
        ctx = self.context
        if not ctx.ready:
            raise ConfigurationError('Model not ready. Call setup_model first')
        ctx.simulation_running = True
        net = self.network
        try:
            if self.settings.network.absolute_permeability_calculation:
                ctx.notify('Calculating absolute permeability')
                calculate_permeability_and_porosity(net, self.settings)
            if self.settings.two_phase_ss:
                self.engine = TwoPhaseSteadyState(net, self.settings, ctx, self.rng)
            elif self.settings.drainage_uss:
                self.engine = USSDrainage(net, self.settings, ctx, self.rng)
            elif self.settings.tracer_flow:
                self.engine = TracerFlow(net, self.settings, ctx, self.rng)
            if self.engine is not None:
                self.engine.run()
            ctx.notify('Simulation finished')
        except CancellationRequested:
            ctx.notify('Simulation cancelled')
        except SolverDivergence as e:
            ctx.notify(f'Simulation failed: {e}')
            raise
        finally:
            ctx.simulation_running = False
            ctx.set_cancel(False)
            ctx.emit_plot()
        return net.output_frame()

    def start(self):
        r"""
        Run the simulation on a worker thread. Returns the thread
        """
        if self.is_running:
            raise PNMError('A simulation is already running')
        self.last_error = None
        self._thread = threading.Thread(target = self._run_worker, name = 'pnmflow-simulation', daemon = True)
        self._thread.start()
        return self._thread

    def _run_worker(self):
        try:
            self.run_simulation()
        except PNMError as e:
            self.last_error = e
            logger.error('Simulation stopped: %s', e)
        except Exception as e:
            self.last_error = e
            self.context.notify(f'Simulation failed: {e}')
            logger.exception('Simulation stopped by an unexpected error')

    def wait(self, timeout = None):
        if self._thread is not None:
            self._thread.join(timeout)
        return not self.is_running

    def cancel(self):
        r"""
        Ask the running simulation to stop at the next step
        """
        self.context.set_cancel(True)

    ############# Status

    @property
    def is_ready(self):
        return self.context.ready

    @property
    def is_running(self):
        return self.context.simulation_running or (self._thread is not None and self._thread.is_alive())

    @property
    def notification(self):
        return self.context.notification

    @property
    def absolute_permeability(self):
        return self.network.absolute_permeability

    @property
    def porosity(self):
        return self.network.porosity

    @property
    def oil_relative_permeability(self):
        return self.network.oil_relative_permeability

    @property
    def water_relative_permeability(self):
        return self.network.water_relative_permeability

    @property
    def outlet_flow(self):
        return self.network.outlet_flow

    @property
    def water_saturation(self):
        return self.network.get_water_saturation()

    def results(self):
        return self.network.output_frame()
