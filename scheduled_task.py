# scheduled_task.py

from PyQt6.QtCore import QObject, QTimer

class ScheduledTask(QObject):
    """
        Single-shot timer owned by one adapter for one purpose.

        start() re-arms the timer (an outstanding shot is replaced, never
        duplicated) and cancel() guarantees the callback won't fire.
    """
    def __init__(self, callback, parent=None):
        super().__init__(parent)
        self._callback = callback
        self.delay = None

        self._timer = QTimer(self)
        self._timer.setSingleShot(True)
        self._timer.timeout.connect(self._fire)

    def start(self, delay_ms):
        self.delay = int(delay_ms)
        self._timer.start(self.delay)

    def cancel(self):
        self._timer.stop()

    def is_active(self):
        return self._timer.isActive()

    def _fire(self):
        self._callback()
