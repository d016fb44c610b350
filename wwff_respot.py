# wwff_respot.py
#
# One-shot DX spot to the WWFF Spotline DXSpider cluster

import argparse
import math
import re
import sys

from functools import partial

from PyQt6.QtCore import QCoreApplication, QObject, pyqtSignal
from PyQt6.QtNetwork import QAbstractSocket, QTcpSocket

from logger import get_logger
from scheduled_task import ScheduledTask

from constants import (
    WWFF_HOST,
    WWFF_PORT,
    WWFF_TIMEOUT,
    WWFF_CLOSE_DELAY
)

log = get_logger(__name__)

LOGIN_PROMPT_RE     = re.compile(r"login:|call:|Please enter your call", re.IGNORECASE)
COMMAND_PROMPT_RE   = re.compile(r">\s*$")

STATE_LOGIN         = 'login'
STATE_PROMPT        = 'prompt'
STATE_DONE          = 'done'

def build_dx_command(activator, frequency, reference, mode, comments=None):
    freq_khz = math.floor(float(frequency) + 0.5)
    comment = ' '.join(part for part in (reference, mode, comments) if part)
    return f"DX {freq_khz} {activator} {comment}"

class WwffRespotter(QObject):
    """
        login prompt -> send our call -> command prompt -> send DX -> close

        The cluster may hang up right after accepting the spot, so a clean
        close is a success whatever the handshake state.
    """
    finished = pyqtSignal(bool, str)

    def __init__(self, socket_factory=None, task_factory=None, parent=None):
        super().__init__(parent)

        self.state              = None
        self.command            = None
        self.is_finished        = False

        self._spotter           = None
        self._buffer            = ''

        self._socket_factory    = socket_factory or QTcpSocket
        self._socket            = None

        task_factory            = task_factory or ScheduledTask
        self._timeout_task      = task_factory(self._on_timeout, self)
        self._close_task        = task_factory(partial(self._finish, True, ''), self)

    def post(self, activator, spotter, frequency, reference, mode, comments=None, host=WWFF_HOST, port=WWFF_PORT):
        self.state      = STATE_LOGIN
        self._spotter   = spotter
        self._buffer    = ''
        self.command    = build_dx_command(activator, frequency, reference, mode, comments)

        self._socket = self._socket_factory(self)
        self._socket.readyRead.connect(self._on_ready_read)
        self._socket.disconnected.connect(self._on_disconnected)
        self._socket.errorOccurred.connect(self._on_socket_error)

        log.info(f"Posting WWFF respot to {host}:{port}: {self.command}")
        self._timeout_task.start(WWFF_TIMEOUT)
        self._socket.connectToHost(host, port)

    def _on_ready_read(self):
        if self.is_finished or self._socket is None:
            return
        self._handle_data(bytes(self._socket.readAll()).decode('utf-8', errors='replace'))

    def _handle_data(self, text):
        if self.is_finished:
            return

        self._buffer += text

        if self.state == STATE_LOGIN and LOGIN_PROMPT_RE.search(self._buffer):
            self.state      = STATE_PROMPT
            self._buffer    = ''
            self._write(f"{self._spotter}\r\n")
        elif self.state == STATE_PROMPT and COMMAND_PROMPT_RE.search(self._buffer):
            self.state      = STATE_DONE
            self._buffer    = ''
            self._write(f"{self.command}\r\n")
            # Let the cluster acknowledge before hanging up
            self._close_task.start(WWFF_CLOSE_DELAY)

    def _write(self, text):
        log.debug(f"WWFF >>> {text.strip()}")
        self._socket.write(text.encode('utf-8'))

    def _on_disconnected(self):
        self._finish(True, '')

    def _on_socket_error(self, error=None):
        if self.is_finished or self._socket is None:
            return
        if error == QAbstractSocket.SocketError.RemoteHostClosedError:
            self._finish(True, '')
            return
        self._finish(False, self._socket.errorString())

    def _on_timeout(self):
        self._finish(False, 'WWFF respot timed out')

    def _finish(self, ok, message):
        if self.is_finished:
            return
        self.is_finished = True

        self._timeout_task.cancel()
        self._close_task.cancel()

        if self._socket is not None:
            socket          = self._socket
            self._socket    = None
            socket.abort()
            socket.deleteLater()

        if ok:
            log.info(f"WWFF respot done (state: {self.state})")
        else:
            log.error(f"WWFF respot failed: {message}")
        self.finished.emit(ok, message)

def post_wwff_respot(activator, spotter, frequency, reference, mode, comments=None, parent=None):
    respotter = WwffRespotter(parent=parent)
    respotter.post(activator, spotter, frequency, reference, mode, comments)
    return respotter

def parse_arguments(argv=None):
    parser = argparse.ArgumentParser(description='Post a re-spot to WWFF Spotline.')
    parser.add_argument('activator', help='Activator callsign.')
    parser.add_argument('frequency', help='Frequency in kHz.')
    parser.add_argument('reference', help='WWFF reference, ie VEFF-3789.')
    parser.add_argument('--spotter', required=True, help='Your callsign, used to log in.')
    parser.add_argument('--mode', default='SSB', help='Mode.')
    parser.add_argument('--comments', default=None, help='Optional comment.')
    return parser.parse_args(argv)

def main(argv=None):
    args = parse_arguments(argv)
    app = QCoreApplication(sys.argv[:1])

    respotter = post_wwff_respot(
        args.activator,
        args.spotter,
        args.frequency,
        args.reference,
        args.mode,
        args.comments
    )
    respotter.finished.connect(lambda ok, message: app.exit(0 if ok else 1))
    return app.exec()

if __name__ == "__main__":
    sys.exit(main())
