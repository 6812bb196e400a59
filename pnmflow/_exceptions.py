import logging

logger = logging.getLogger(__name__)


__all__ = [
    'PNMError',
    'ConfigurationError',
    'SolverDivergence',
    'PercolationExhausted',
    'CancellationRequested',
]


class PNMError(Exception):
    r"""
    Base class of the errors raised by the displacement engine
    """


class ConfigurationError(PNMError):
    r"""
    Invalid or contradictory simulation parameters, or a malformed network.
    Raised before any simulation state is modified.
    """


class SolverDivergence(PNMError):
    r"""
    The linear solve failed or the system is numerically degenerate.

    Parameters:
    ----------------
    message: description of the failure
    fatal: If True, no meaningful flow exists (fully disconnected network) and the
    simulation can not continue. If False, the caller treats the flow as zero.
    """

    def __init__(self, message, fatal = False):
        super().__init__(message)
        self.fatal = fatal


class PercolationExhausted(PNMError):
    r"""
    No eligible element is left for the invasion. Normal end of an invasion stage.
    """


class CancellationRequested(PNMError):
    r"""
    Cooperative stop requested through the simulation context
    """
