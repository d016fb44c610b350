# radio_session.py

from PyQt6.QtCore import QObject, pyqtSignal

from logger import get_logger
from scheduled_task import ScheduledTask

from constants import (
    STATE_CONNECTED,
    STATE_DISCONNECTED
)

log = get_logger(__name__)

class RadioSession(QObject):
    """
        Base class of every network adapter.

        Each instance owns its socket, its timers and its state. Consumers
        subscribe to the signals below; subclasses add protocol specific ones.
    """
    status_changed  = pyqtSignal(dict)
    error_occurred  = pyqtSignal(str)
    connected       = pyqtSignal()
    disconnected    = pyqtSignal()

    def __init__(self, name, task_factory=None, parent=None):
        super().__init__(parent)

        self.name           = name
        self.state          = STATE_DISCONNECTED

        self._task_factory  = task_factory or ScheduledTask
        self._epoch         = 0

    @property
    def is_connected(self):
        return self.state == STATE_CONNECTED

    def create_task(self, callback):
        return self._task_factory(callback, self)

    def _next_epoch(self):
        self._epoch += 1
        return self._epoch

    def _is_current(self, epoch):
        return epoch == self._epoch

    def _set_state(self, state, **details):
        if state == self.state:
            return

        previous_state  = self.state
        self.state      = state

        status = {
            'state'     : state,
            'connected' : state == STATE_CONNECTED
        }
        status.update(details)

        log.info(f"[{self.name}] {previous_state} -> {state}")
        self.status_changed.emit(status)

        if state == STATE_CONNECTED:
            self.connected.emit()
        elif previous_state == STATE_CONNECTED:
            self.disconnected.emit()

    def _emit_error(self, message):
        log.error(f"[{self.name}] {message}")
        self.error_occurred.emit(message)

    def stop(self):
        raise NotImplementedError
