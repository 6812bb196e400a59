import logging
import threading
from ._exceptions import CancellationRequested

logger = logging.getLogger(__name__)


__all__ = [
    'SimulationContext',
]


class SimulationContext:
    r"""
    Holds the state shared between the worker running a simulation and the
    front end: the cancellation flag, the ready/running status, the current
    notification string and the listeners of the plot signal.

    Created when the model is set up and discarded on reset.
    """

    def __init__(self):
        self._cancel = threading.Event()
        self._listeners = []
        self.ready = False
        self.simulation_running = False
        self.notification = ''

    @property
    def cancel(self):
        return self._cancel.is_set()

    def set_cancel(self, value = True):
        if value:
            self._cancel.set()
        else:
            self._cancel.clear()

    def check_cancel(self):
        r"""
        Called between steps. Raises CancellationRequested if a stop was asked
        """
        if self._cancel.is_set():
            raise CancellationRequested(self.notification)

    def notify(self, message):
        self.notification = message
        logger.info(message)

    def add_listener(self, callback):
        r"""
        Register a callable without arguments fired after each displacement
        step or stage transition
        """
        self._listeners.append(callback)

    def remove_listener(self, callback):
        self._listeners.remove(callback)

    def emit_plot(self):
        r"""
        Fire and forget. A failing listener is logged and dropped for this call
        """
        for callback in list(self._listeners):
            try:
                callback()
            except Exception:
                logger.exception('Plot listener %r failed', callback)
