import logging
import re
import configparser
import numpy as np
from ._exceptions import ConfigurationError

logger = logging.getLogger(__name__)


__all__ = [
    'NetworkSettings',
    'FluidSettings',
    'WettabilitySettings',
    'TwoPhaseSSSettings',
    'USSSettings',
    'TracerSettings',
    'SimulationSettings',
    'load_settings',
]


class _Settings:
    r"""
    Base for the settings classes. Defaults are class attributes, instances hold
    the values used in one simulation.
    """

    def __init__(self, **kwargs):
        for key, value in self._defaults().items():
            setattr(self, key, value)
        self._update(kwargs)

    @classmethod
    def _defaults(cls):
        defaults = {}
        for klass in reversed(cls.__mro__):
            for key, value in vars(klass).items():
                if not key.startswith('_') and not callable(value):
                    defaults[key] = value
        return defaults

    def _update(self, values):
        defaults = self._defaults()
        for key, value in values.items():
            if key not in defaults:
                raise ConfigurationError(f'Unknown setting {key} for {type(self).__name__}')
            setattr(self, key, value)

    def as_dict(self):
        return {key: getattr(self, key) for key in self._defaults()}

    def __repr__(self):
        items = ', '.join(f'{k}={v!r}' for k, v in self.as_dict().items())
        return f'{type(self).__name__}({items})'


class NetworkSettings(_Settings):
    r"""

    Parameters
    ----------
    seed : int
        Seed of the pseudorandom generator. Same seed, same trajectory
    solver_choice : str
        'direct' (sparse LU) or 'cg' (conjugate gradient)
    solver_tolerance : float
        Relative tolerance of the iterative solver
    pressure_in, pressure_out : float
        Boundary pressures (Pa) used for single phase flow
    radius_distribution : int
        Used by the loader if the radii are missing. 1: uniform, 2: rayleigh,
        3: triangular, 4: truncated normal, 5: weibull
    shape_factor : float
        Shape factor assigned when the loader gets none. Zero for random
        triangles
    progress_bar : bool
        Show tqdm progress bars on the stage loops
    """
    seed = 0
    solver_choice = 'direct'
    solver_tolerance = 1e-10
    pressure_in = 1.0
    pressure_out = 0.0
    absolute_permeability_calculation = True
    radius_distribution = 1
    min_radius = 1e-6
    max_radius = 1e-5
    min_node_radius = 0.0
    max_node_radius = 0.0
    rayleigh_parameter = 2e-6
    triangular_parameter = 5e-6
    normal_mu_parameter = 5e-6
    normal_sigma_parameter = 1e-6
    weibull_alpha_parameter = 1.5
    weibull_beta_parameter = 0.2
    shape_factor = 0.0
    progress_bar = True


class FluidSettings(_Settings):
    r"""
    Fluid properties, SI units. Properties from Valvatne - Blunt (2004) Table 1
    """
    ow_surface_tension = 30e-3
    og_surface_tension = 20e-3
    wg_surface_tension = 70e-3
    oil_viscosity = 1.39e-3
    water_viscosity = 1.05e-3
    gas_viscosity = 1.8e-5


class WettabilitySettings(_Settings):
    r"""

    Parameters
    ----------
    wetting_type_flag : int
        1: water-wet, 2: oil-wet, 3: fractional-wet, 4: mixed-wet with the
        largest elements oil-wet, 5: mixed-wet with the smallest elements oil-wet
    min/max_water_wet_theta, min/max_oil_wet_theta : float
        Contact angle ranges in degrees
    oil_wet_fraction : float
        Fraction of oil-wet elements for the flags 3, 4 and 5
    """
    wetting_type_flag = 1
    min_water_wet_theta = 0.0
    max_water_wet_theta = 0.0
    min_oil_wet_theta = 120.0
    max_oil_wet_theta = 180.0
    oil_wet_fraction = 0.0


class TwoPhaseSSSettings(_Settings):
    r"""
    Quasi-steady state stages. Final saturations refer to the water saturation,
    final capillary pressures are in Pa (p_oil - p_water).
    PD: primary drainage, PI: spontaneous imbibition, SD: forced water injection,
    SI: spontaneous oil invasion, TD: secondary drainage.
    """
    primary_drainage_simulation = True
    spontaneous_imbibition_simulation = False
    forced_water_injection_simulation = False
    spontaneous_oil_invasion_simulation = False
    secondary_oil_drainage_simulation = False
    two_phase_simulation_steps = 10
    final_saturation_pd = 0.0
    final_pc_pd = 1e5
    final_saturation_pi = 1.0
    final_pc_pi = 0.0
    final_saturation_sd = 1.0
    final_pc_sd = -1e5
    final_saturation_si = 0.0
    final_pc_si = 0.0
    final_saturation_td = 0.0
    final_pc_td = 1e5
    film_conductance_resistivity = 1.0
    pore_body_filling_parameter = None
    relative_permeabilities_calculation = True


class USSSettings(_Settings):
    r"""

    Parameters
    ----------
    initial_water_saturation : float
        Water saturation before the oil injection
    water_distribution : int
        Location of the initial water when < 1. 1: random, 2: smallest
        elements, 3: largest elements
    flow_rate : float
        Injection rate in m3/s. If zero, the pressure drop delta_p is fixed
    delta_p : float
        Pressure drop (Pa), or first guess in constant flow rate mode
    time_step : float
        Largest time step (s)
    simulation_time : float
        Simulated time (s)
    override_by_injected_pvs, injected_pvs
        Stop after injected_pvs pore volumes instead of simulation_time
    enhanced_water_connectivity : bool
        Open a water channel to the outlet from isolated water clusters
    advanced_trapping : bool
        True: an element is trapped if its cluster lacks the outlet.
        False: an element is trapped if all its neighbours hold oil
    stop_at_breakthrough : bool
        Stop when oil leaves through the outlet
    extraction_timestep : float
        Output interval (s)
    """
    initial_water_saturation = 1.0
    water_distribution = 1
    flow_rate = 0.0
    delta_p = 1e5
    time_step = 1e-2
    simulation_time = 1.0
    override_by_injected_pvs = False
    injected_pvs = 1.0
    enhanced_water_connectivity = False
    advanced_trapping = True
    stop_at_breakthrough = False
    extraction_timestep = 1e-3
    max_threshold_iterations = 50
    max_steps = 1000000


class TracerSettings(_Settings):
    r"""
    Tracer injection in the oil phase. Concentration at the inlet is 1
    """
    tracer_diffusion_coef = 0.0
    initial_water_saturation = 0.0
    water_distribution = 1
    delta_p = 1e4
    time_step = 1e-2
    simulation_time = 1.0
    override_by_injected_pvs = False
    injected_pvs = 1.0
    extraction_timestep = 1e-3
    max_steps = 1000000


class SimulationSettings:
    r"""
    Group of settings for one simulation. two_phase_ss, drainage_uss and
    tracer_flow select what run_simulation executes.
    """

    _sections = {
        'NetworkGeneration': 'network',
        'Fluids': 'fluids',
        'Wettability': 'wettability',
        'TwoPhaseSS': 'two_phase',
        'USS': 'uss',
        'Tracer': 'tracer',
        'Misc': 'network',
    }

    def __init__(self, two_phase_ss = True, drainage_uss = False, tracer_flow = False):
        self.two_phase_ss = two_phase_ss
        self.drainage_uss = drainage_uss
        self.tracer_flow = tracer_flow
        self.network = NetworkSettings()
        self.fluids = FluidSettings()
        self.wettability = WettabilitySettings()
        self.two_phase = TwoPhaseSSSettings()
        self.uss = USSSettings()
        self.tracer = TracerSettings()

    def validate(self):
        r"""
        Check contradictory or out of range values. Raise ConfigurationError
        """
        errors = []
        if sum([self.two_phase_ss, self.drainage_uss, self.tracer_flow]) > 1:
            errors.append('only one of two_phase_ss, drainage_uss, tracer_flow can be selected')
        net = self.network
        if net.solver_choice not in ['direct', 'cg']:
            errors.append(f'solver_choice must be direct or cg, not {net.solver_choice}')
        if net.pressure_in <= net.pressure_out:
            errors.append('pressure_in must be larger than pressure_out')
        if net.min_radius <= 0 or net.max_radius < net.min_radius:
            errors.append('radius range must be positive and ordered')
        if net.radius_distribution not in [1, 2, 3, 4, 5]:
            errors.append('radius_distribution must be between 1 and 5')
        if net.shape_factor < 0 or net.shape_factor > 1 / (4 * np.pi):
            errors.append('shape_factor must be between 0 and 1/(4 pi)')
        fl = self.fluids
        for key in ['oil_viscosity', 'water_viscosity', 'gas_viscosity', 'ow_surface_tension']:
            if getattr(fl, key) <= 0:
                errors.append(f'{key} must be positive')
        wet = self.wettability
        if wet.wetting_type_flag not in [1, 2, 3, 4, 5]:
            errors.append('wetting_type_flag must be between 1 and 5')
        if not (0 <= wet.min_water_wet_theta <= wet.max_water_wet_theta <= 90):
            errors.append('water-wet contact angles must be ordered inside [0, 90]')
        if not (90 <= wet.min_oil_wet_theta <= wet.max_oil_wet_theta <= 180):
            errors.append('oil-wet contact angles must be ordered inside [90, 180]')
        if not (0 <= wet.oil_wet_fraction <= 1):
            errors.append('oil_wet_fraction must be inside [0, 1]')
        tp = self.two_phase
        for key in ['final_saturation_pd', 'final_saturation_pi', 'final_saturation_sd',
                    'final_saturation_si', 'final_saturation_td']:
            if not (0 <= getattr(tp, key) <= 1):
                errors.append(f'{key} must be inside [0, 1]')
        if tp.two_phase_simulation_steps < 1:
            errors.append('two_phase_simulation_steps must be at least 1')
        if tp.final_pc_pi < 0:
            errors.append('final_pc_pi must be positive or zero')
        if tp.final_pc_sd > 0:
            errors.append('final_pc_sd must be negative or zero')
        if tp.final_pc_si > 0:
            errors.append('final_pc_si must be negative or zero')
        uss = self.uss
        if not (0 <= uss.initial_water_saturation <= 1):
            errors.append('initial_water_saturation must be inside [0, 1]')
        if uss.water_distribution not in [1, 2, 3]:
            errors.append('water_distribution must be 1, 2 or 3')
        if uss.flow_rate < 0 or uss.delta_p <= 0:
            errors.append('flow_rate must be positive or zero and delta_p positive')
        for key in ['time_step', 'simulation_time', 'injected_pvs', 'extraction_timestep']:
            if getattr(uss, key) <= 0:
                errors.append(f'USS {key} must be positive')
        tr = self.tracer
        if not (0 <= tr.initial_water_saturation < 1):
            errors.append('tracer initial_water_saturation must be inside [0, 1)')
        if tr.tracer_diffusion_coef < 0:
            errors.append('tracer_diffusion_coef must be positive or zero')
        for key in ['time_step', 'simulation_time', 'injected_pvs', 'extraction_timestep', 'delta_p']:
            if getattr(tr, key) <= 0:
                errors.append(f'tracer {key} must be positive')
        if errors:
            raise ConfigurationError('; '.join(errors))
        return True


def _snake_case(name):
    name = re.sub(r'(.)([A-Z][a-z]+)', r'\1_\2', name)
    return re.sub(r'([a-z0-9])([A-Z])', r'\1_\2', name).lower()


def _coerce(value, default):
    text = value.strip()
    if isinstance(default, bool):
        if text.lower() in ['true', '1', 'yes', 'on']:
            return True
        if text.lower() in ['false', '0', 'no', 'off']:
            return False
        raise ConfigurationError(f'Can not read {value} as a boolean')
    try:
        if isinstance(default, int):
            return int(text)
        if isinstance(default, float) or default is None:
            return float(text)
    except ValueError:
        raise ConfigurationError(f'Can not read {value} as a number') from None
    return text


def load_settings(filename):
    r"""
    Read a simulation settings file in INI format.
    Keys can be written in snake_case or camelCase (the original key style,
    e.g. minRadius). Unknown keys raise ConfigurationError.

    Parameters:
    ----------------
    filename: path to the INI file

    Returns:
    ----------------
    SimulationSettings, validated
    """
    parser = configparser.ConfigParser()
    parser.optionxform = str
    if not parser.read(filename):
        raise ConfigurationError(f'Settings file {filename} can not be read')
    settings = SimulationSettings()
    if parser.has_section('FluidInjection'):
        for key, value in parser.items('FluidInjection'):
            key = _snake_case(key)
            if key not in ['two_phase_ss', 'drainage_uss', 'tracer_flow']:
                raise ConfigurationError(f'Unknown setting {key} in FluidInjection')
            setattr(settings, key, _coerce(value, False))
    for section, attr in SimulationSettings._sections.items():
        if not parser.has_section(section):
            continue
        group = getattr(settings, attr)
        defaults = group._defaults()
        values = {}
        for key, value in parser.items(section):
            key = _snake_case(key)
            if key not in defaults:
                raise ConfigurationError(f'Unknown setting {key} in {section}')
            values[key] = _coerce(value, defaults[key])
        group._update(values)
    settings.validate()
    logger.info('Settings loaded from %s', filename)
    return settings
