# tci_client.py

import re

from functools import partial

from PyQt6.QtCore import QUrl
from PyQt6.QtWebSockets import QWebSocket

from logger import get_logger
from radio_session import RadioSession
from spot_tracker import SpotLifecycleTracker
from utils import clean_callsign, spot_frequency_khz

from constants import (
    DEFAULT_TCI_HOST,
    DEFAULT_TCI_PORT,
    DEFAULT_SOURCE,
    TCI_FREQ_CHANGE_THRESHOLD,
    TCI_DEFAULT_MODE,
    TCI_SOURCE_COLORS,
    RECONNECT_DELAY,
    STATE_CONNECTED,
    STATE_CONNECTING,
    STATE_DISCONNECTED
)

log = get_logger(__name__)

class TciClient(RadioSession):
    """
        TCI (Transceiver Control Interface) WebSocket client, pushes spot
        markers to Thetis, ExpertSDR3 or SunSDR panadapters.

        The radio announces "ready;" once its initial state dump is over,
        commands issued before that are queued in order.
    """
    def __init__(self, socket_factory=None, task_factory=None, parent=None):
        super().__init__("TCI", task_factory, parent)

        self.host               = None
        self.port               = DEFAULT_TCI_PORT
        self.ready              = False
        self.protocol           = None
        self.device             = None

        self._pending_commands  = []

        self._socket_factory    = socket_factory or QWebSocket
        self._socket            = None

        self.tracker            = SpotLifecycleTracker(
            TCI_FREQ_CHANGE_THRESHOLD,
            self._add_spot_marker,
            self._remove_spot_marker
        )

        self._reconnect_task    = self.create_task(self._reconnect)

    @property
    def url(self):
        return f"ws://{self.host}:{self.port}"

    def connect_to_host(self, host=DEFAULT_TCI_HOST, port=DEFAULT_TCI_PORT):
        self.stop()

        self.host = host or DEFAULT_TCI_HOST
        self.port = int(port or DEFAULT_TCI_PORT)
        self._connect()

    def _connect(self):
        epoch = self._next_epoch()

        self._socket = self._socket_factory()
        self._socket.setParent(self)
        self._socket.connected.connect(partial(self._on_connected, epoch))
        self._socket.disconnected.connect(partial(self._on_disconnected, epoch))
        self._socket.textMessageReceived.connect(partial(self._on_text_message, epoch))
        self._socket.errorOccurred.connect(partial(self._on_socket_error, epoch))

        self._set_state(STATE_CONNECTING, url=self.url)
        log.info(f"Connecting to TCI at {self.url}")
        self._socket.open(QUrl(self.url))

    def _reconnect(self):
        if self.host is not None and not self.is_connected:
            self._connect()

    def _schedule_reconnect(self):
        if self.host is None or self._reconnect_task.is_active():
            return
        log.info(f"Reconnecting to TCI in {RECONNECT_DELAY // 1000}s")
        self._reconnect_task.start(RECONNECT_DELAY)

    def _on_connected(self, epoch):
        if not self._is_current(epoch):
            return
        self._set_state(STATE_CONNECTED, url=self.url)

    def _on_disconnected(self, epoch):
        if not self._is_current(epoch):
            return
        log.warning(f"TCI connection to {self.url} closed")
        self._connection_lost()

    def _on_socket_error(self, epoch, error=None):
        if not self._is_current(epoch) or self._socket is None:
            return

        self._emit_error(f"TCI socket error: {self._socket.errorString()}")
        if not self.is_connected:
            self._connection_lost()

    def _connection_lost(self):
        self._next_epoch()
        self._reset_readiness()
        self._discard_socket()
        self._set_state(STATE_DISCONNECTED, url=self.url)
        self._schedule_reconnect()

    def _reset_readiness(self):
        self.ready = False
        self._pending_commands = []

    def _discard_socket(self):
        if self._socket is None:
            return
        socket          = self._socket
        self._socket    = None
        socket.close()
        socket.deleteLater()

    def stop(self):
        self._reconnect_task.cancel()
        self._next_epoch()

        self.host = None
        self._reset_readiness()
        self._discard_socket()
        self._set_state(STATE_DISCONNECTED)

    def _on_text_message(self, epoch, text):
        if not self._is_current(epoch):
            return
        self._handle_text(text)

    def _handle_text(self, text):
        # One message may carry several commands
        for part in text.split(';'):
            token = part.strip()
            if not token:
                continue

            if token == 'ready':
                log.info("TCI ready")
                self.ready = True
                self._flush_pending_commands()
            elif token.startswith('protocol:'):
                self.protocol = token[len('protocol:'):]
                log.info(f"TCI protocol: {self.protocol}")
            elif token.startswith('device:'):
                self.device = token[len('device:'):]
                log.info(f"TCI device: {self.device}")
            else:
                log.debug(f"TCI <<< {token}")

    def _flush_pending_commands(self):
        pending_commands        = self._pending_commands
        self._pending_commands  = []
        for command in pending_commands:
            self._write(command)

    def _write(self, command):
        if self._socket is None:
            return
        self._socket.sendTextMessage(command)
        log.debug(f"TCI >>> {command}")

    def _send(self, command):
        if not self.is_connected:
            return
        if not self.ready:
            self._pending_commands.append(command)
            return
        self._write(command)

    """
        Spot markers
    """
    def add_spot(self, spot):
        freq_khz = spot_frequency_khz(spot)
        if not freq_khz:
            return False

        callsign = clean_callsign(spot.get('callsign'))
        if not callsign:
            return False

        self.tracker.add(callsign, round(freq_khz * 1000), spot)
        return True

    def _add_spot_marker(self, callsign, freq_hz, spot):
        spot        = spot or {}
        mode        = spot.get('mode') or TCI_DEFAULT_MODE
        color       = TCI_SOURCE_COLORS.get(spot.get('source'), TCI_SOURCE_COLORS[DEFAULT_SOURCE])
        # , and ; are TCI separators
        description = re.sub(r"[,;]", " ", (spot.get('reference') or spot.get('park_name') or '')[:40])

        self._send(f"spot:{callsign},{mode},{freq_hz},{color},{description};")

    def _remove_spot_marker(self, callsign):
        self._send(f"spot_delete:{callsign};")

    def prune_stale_spots(self):
        return self.tracker.prune()

    def clear_spots(self):
        for callsign in self.tracker.tracked_callsigns():
            self._remove_spot_marker(callsign)
        self.tracker.reset()
