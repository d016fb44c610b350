# smartsdr_client.py

import re
import time

from functools import partial

from PyQt6.QtCore import pyqtSignal
from PyQt6.QtNetwork import QAbstractSocket, QTcpSocket

from logger import get_logger
from radio_session import RadioSession
from spot_tracker import SpotLifecycleTracker
from utils import clean_callsign, spot_frequency_mhz

from constants import (
    DEFAULT_SMARTSDR_HOST,
    SMARTSDR_PORT,
    SMARTSDR_SPOT_SOURCE,
    SMARTSDR_FREQ_CHANGE_THRESHOLD,
    SMARTSDR_IGNORED_STATUS,
    SOURCE_COLORS,
    SOURCE_LIFETIMES,
    DEFAULT_SOURCE,
    DEFAULT_SPOT_LIFETIME,
    CLIENT_BIND_DELAY,
    CW_PTT_HOLDOFF,
    RECONNECT_DELAY,
    STATE_CONNECTED,
    STATE_CONNECTING,
    STATE_DISCONNECTED
)

log = get_logger(__name__)

HANDLE_RE           = re.compile(r"^H([0-9A-Fa-f]+)")
RESPONSE_RE         = re.compile(r"^R(\d+)\|([0-9A-Fa-f]+)")
CLIENT_ID_RE        = re.compile(r"client_id=([0-9A-Fa-f-]+)")
CLIENT_HANDLE_RE    = re.compile(r"\|client\s+0x([0-9A-Fa-f]+)")

class SmartSdrClient(RadioSession):
    """
        SmartSDR TCP API client: pushes spot markers to the FlexRadio
        panadapter, tunes slices and keys CW.

        Commands go out as C<seq>|<command>, the radio answers with
        R<seq>|<hex status>|<message> and broadcasts S<handle>|<status>.
    """
    command_failed  = pyqtSignal(dict)
    cw_auth_changed = pyqtSignal(dict)

    def __init__(
            self,
            persistent_id   = None,
            socket_factory  = None,
            task_factory    = None,
            parent          = None
        ):
        super().__init__("SmartSDR", task_factory, parent)

        self.host                   = None
        self.port                   = SMARTSDR_PORT
        self.persistent_id          = persistent_id

        self.client_handle          = None
        self.radio_version          = None

        self.needs_cw               = False
        self.cw_bound               = False
        self.discovered_gui_clients = []
        self.gui_client_handle      = None
        self.cw_key_index           = 0
        self.cw_ptt_active          = False

        self._bind_seq              = None
        self._seq                   = 1
        self._buffer                = b''

        self._socket_factory        = socket_factory or QTcpSocket
        self._socket                = None

        self.tracker                = SpotLifecycleTracker(
            SMARTSDR_FREQ_CHANGE_THRESHOLD,
            self._add_spot_marker,
            self._remove_spot_marker
        )

        self._reconnect_task        = self.create_task(self._reconnect)
        self._bind_task             = self.create_task(self._try_client_bind)
        self._ptt_holdoff_task      = self.create_task(self.cw_ptt_release)

    def set_persistent_id(self, persistent_id):
        self.persistent_id = persistent_id or None

    def set_needs_cw(self, needs_cw):
        self.needs_cw = bool(needs_cw)
        if self.needs_cw and self.is_connected and not self.cw_bound:
            self._try_client_bind()

    def connect_to_host(self, host=DEFAULT_SMARTSDR_HOST, port=SMARTSDR_PORT):
        self.stop()

        self.host = host or DEFAULT_SMARTSDR_HOST
        self.port = int(port or SMARTSDR_PORT)
        self._connect()

    def _connect(self):
        epoch = self._next_epoch()
        self._buffer = b''

        self._socket = self._socket_factory(self)
        self._socket.connected.connect(partial(self._on_connected, epoch))
        self._socket.readyRead.connect(partial(self._on_ready_read, epoch))
        self._socket.disconnected.connect(partial(self._on_disconnected, epoch))
        self._socket.errorOccurred.connect(partial(self._on_socket_error, epoch))

        self._set_state(STATE_CONNECTING, host=self.host, port=self.port)
        log.info(f"Connecting to SmartSDR at {self.host}:{self.port}")
        self._socket.connectToHost(self.host, self.port)

    def _reconnect(self):
        if self.host is not None and not self.is_connected:
            self._connect()

    def _schedule_reconnect(self):
        if self.host is None or self._reconnect_task.is_active():
            return
        log.info(f"Reconnecting to SmartSDR in {RECONNECT_DELAY // 1000}s")
        self._reconnect_task.start(RECONNECT_DELAY)

    def _on_connected(self, epoch):
        if not self._is_current(epoch):
            return

        self._socket.setSocketOption(QAbstractSocket.SocketOption.LowDelayOption, 1)

        self.cw_bound               = False
        self._bind_seq              = None
        self.discovered_gui_clients = []
        self.gui_client_handle      = None
        self.cw_key_index           = 0

        self._set_state(STATE_CONNECTED, host=self.host, port=self.port)

        # Needed to discover GUI clients we can bind to for CW
        self._send('sub client all')

        if self.needs_cw:
            self._bind_task.start(CLIENT_BIND_DELAY)

    def _on_disconnected(self, epoch):
        if not self._is_current(epoch):
            return
        log.warning(f"SmartSDR at {self.host}:{self.port} closed the connection")
        self._connection_lost()

    def _on_socket_error(self, epoch, error=None):
        if not self._is_current(epoch) or self._socket is None:
            return

        self._emit_error(f"SmartSDR socket error: {self._socket.errorString()}")
        """
            A failed connect never emits disconnected,
            an established one does right after the error
        """
        if not self.is_connected:
            self._connection_lost()

    def _connection_lost(self):
        self._next_epoch()
        self._bind_task.cancel()
        self._ptt_holdoff_task.cancel()

        self.cw_ptt_active  = False
        self.cw_bound       = False
        self._bind_seq      = None

        self._discard_socket()
        self._set_state(STATE_DISCONNECTED, host=self.host, port=self.port)
        self._schedule_reconnect()

    def _discard_socket(self, graceful=False):
        if self._socket is None:
            return

        socket          = self._socket
        self._socket    = None

        if graceful and socket.state() == QAbstractSocket.SocketState.ConnectedState:
            socket.disconnected.connect(socket.deleteLater)
            socket.disconnectFromHost()
        else:
            socket.abort()
            socket.deleteLater()

    def stop(self):
        self.cw_ptt_release()

        self._reconnect_task.cancel()
        self._bind_task.cancel()
        self._ptt_holdoff_task.cancel()
        self._next_epoch()

        self.host           = None
        self.cw_bound       = False
        self._bind_seq      = None
        self._buffer        = b''

        self._discard_socket(graceful=True)
        self._set_state(STATE_DISCONNECTED)

    def _on_ready_read(self, epoch):
        if not self._is_current(epoch) or self._socket is None:
            return

        self._buffer += bytes(self._socket.readAll())
        while b'\n' in self._buffer:
            line, self._buffer = self._buffer.split(b'\n', 1)
            self._handle_line(line.decode('utf-8', errors='replace').rstrip('\r'))
            if not self._is_current(epoch):
                return

    def _handle_line(self, line):
        if not line:
            return

        match = HANDLE_RE.match(line)
        if match:
            self.client_handle = match.group(1)
            log.info(f"SmartSDR handle: {self.client_handle}")
            return

        if line.startswith('V'):
            self.radio_version = line[1:]
            log.info(f"SmartSDR version: {self.radio_version}")
            return

        if line.startswith('S'):
            self._parse_status_message(line)
            return

        match = RESPONSE_RE.match(line)
        if match:
            self._handle_response(int(match.group(1)), int(match.group(2), 16), line)
            return

        log.debug(f"Ignored SmartSDR line: {line}")

    def _parse_status_message(self, line):
        """
            S<handle>|client 0x4E1DDC50 connected local_ptt=1 client_id=FC77859A-... program=SmartSDR-Win
            client_id is needed for client bind, the hex handle for cw key client_handle=
        """
        id_match = CLIENT_ID_RE.search(line)
        if not id_match:
            return

        client_id = id_match.group(1)
        if client_id == self.persistent_id or client_id in self.discovered_gui_clients:
            return

        self.discovered_gui_clients.append(client_id)

        handle_match = CLIENT_HANDLE_RE.search(line)
        if handle_match and not self.gui_client_handle:
            self.gui_client_handle = handle_match.group(1)
            log.info(f"Discovered GUI client: id={client_id} handle=0x{self.gui_client_handle}")
        else:
            log.info(f"Discovered GUI client_id: {client_id} (total: {len(self.discovered_gui_clients)})")

    def _handle_response(self, seq, status, line):
        if self._bind_seq is not None and seq == self._bind_seq:
            self._bind_seq = None
            if status == 0:
                log.info("Client bind succeeded, bound to GUI client for CW")
                self.cw_bound = True
                self.cw_auth_changed.emit({'method': 'bind', 'ok': True})
            else:
                log.warning(f"Client bind failed (status 0x{status:x}), CW key commands may still work")
                self.cw_auth_changed.emit({'method': 'unbound', 'ok': True})
            return

        # Successful spot acks are not worth logging
        if status not in (0, SMARTSDR_IGNORED_STATUS):
            log.error(f"SmartSDR command error: R{seq}|{status:x}|{line}")
            self.command_failed.emit({
                'seq'       : seq,
                'status'    : status,
                'line'      : line
            })

    def _try_client_bind(self):
        if self.cw_bound or not self.is_connected:
            return

        """
            Unbound keying works on most radios even though nothing
            guarantees it, report it as ok rather than as an error
        """
        if not self.discovered_gui_clients:
            log.warning("No GUI clients discovered to bind to, CW key commands may still work")
            self.cw_auth_changed.emit({'method': 'unbound', 'ok': True})
            return

        target_id = self.discovered_gui_clients[0]
        log.info(f"Attempting client bind to GUI client {target_id}")
        self._bind_seq = self._send(f"client bind client_id={target_id}")

    def _send(self, command):
        if self._socket is None or not self.is_connected:
            return None

        seq         = self._seq
        self._seq  += 1
        self._socket.write(f"C{seq}|{command}\n".encode('utf-8'))
        log.debug(f"SmartSDR >>> C{seq}|{command}")
        return seq

    """
        Spot markers
    """
    def add_spot(self, spot):
        freq_mhz = spot_frequency_mhz(spot)
        if not freq_mhz:
            return False

        callsign = clean_callsign(spot.get('callsign'))
        if not callsign:
            return False

        self.tracker.add(callsign, freq_mhz, spot)
        return True

    def _add_spot_marker(self, callsign, freq_mhz, spot):
        spot        = spot or {}
        source      = spot.get('source') or DEFAULT_SOURCE
        mode        = spot.get('mode') or ''
        color       = SOURCE_COLORS.get(source, SOURCE_COLORS[DEFAULT_SOURCE])
        lifetime    = SOURCE_LIFETIMES.get(source, DEFAULT_SPOT_LIFETIME)
        comment     = re.sub(r"\s", "_", (spot.get('reference') or spot.get('park_name') or '')[:40])

        command = (
            f"spot add rx_freq={freq_mhz:.6f} callsign={callsign} mode={mode} color={color} "
            f"source={SMARTSDR_SPOT_SOURCE} trigger_action=tune lifetime_seconds={lifetime}"
        )
        if comment:
            command += f" comment={comment}"
        self._send(command)

    def _remove_spot_marker(self, callsign):
        self._send(f"spot remove callsign={callsign} source={SMARTSDR_SPOT_SOURCE}")

    def prune_stale_spots(self):
        return self.tracker.prune()

    def clear_spots(self):
        self._send('spot clear')
        self.tracker.reset()

    def tune_slice(self, slice_index, freq_mhz, mode=None, filter_width=0):
        """
            slice_index 0=A, 1=B, 2=C, 3=D
            mode is a FlexRadio mode (DIGU, USB, CW...), filter_width in Hz
        """
        self._send(f"slice tune {slice_index} {float(freq_mhz):.6f} autopan=1")
        if not mode:
            return

        self._send(f"slice set {slice_index} mode={mode}")
        if filter_width and filter_width > 0:
            half_width = round(filter_width / 2)
            if mode.upper() == 'CW':
                filter_lo = max(0, 600 - half_width)
                filter_hi = 600 + half_width
            else:
                filter_lo = 100
                filter_hi = 100 + int(filter_width)
            self._send(f"slice set {slice_index} filter_lo={filter_lo} filter_hi={filter_hi}")

    """
        CW keying

        Timestamps and index let the radio rebuild the operator's timing
        despite network jitter: cw key <0|1> time=0x<NNNN> index=<N> client_handle=0x<HANDLE>
    """
    def _cw_command(self, verb, value):
        timestamp   = time.monotonic_ns() // 1_000_000 & 0xFFFF
        index       = self.cw_key_index
        self.cw_key_index += 1

        command = f"cw {verb} {value} time=0x{timestamp:04X} index={index}"
        if self.gui_client_handle:
            command += f" client_handle=0x{self.gui_client_handle}"
        return self._send(command)

    def cw_key(self, down):
        self._cw_command('key', 1 if down else 0)
        if self.cw_ptt_active:
            self._ptt_holdoff_task.start(CW_PTT_HOLDOFF)

    def cw_ptt_on(self):
        if not self.is_connected:
            return

        if not self.cw_ptt_active:
            log.info("CW PTT on")
            self._cw_command('ptt', 1)
            self.cw_ptt_active = True

        self._ptt_holdoff_task.start(CW_PTT_HOLDOFF)

    def cw_ptt_release(self):
        self._ptt_holdoff_task.cancel()
        if not self.cw_ptt_active:
            return

        log.info("CW PTT off")
        self._cw_command('ptt', 0)
        self.cw_ptt_active = False

    def set_cw_speed(self, wpm):
        self._send(f"cw wpm {int(wpm)}")

    def cw_stop(self):
        self.cw_key(False)
        self.cw_ptt_release()
