# wsjtx_listener.py

from functools import partial

from PyQt6.QtCore import pyqtSignal
from PyQt6.QtNetwork import QAbstractSocket, QHostAddress, QUdpSocket

from logger import get_logger
from radio_session import RadioSession
from utils import hexdump

from wsjtx_packets import (
    PacketError,
    MagicNumberError,
    MESSAGE_TYPES,
    GenericWSJTXPacket,
    WSJTXPacketClassFactory,
    HeartBeatPacket,
    StatusPacket,
    DecodePacket,
    ClearPacket,
    QSOLoggedPacket,
    ClosePacket,
    LoggedADIFPacket,
    ReplyPacket,
    HaltTxPacket,
    HighlightCallsignPacket
)

from constants import (
    APP_NAME,
    DEFAULT_UDP_ADDRESS,
    DEFAULT_UDP_PORT,
    HEARTBEAT_TIMEOUT_THRESHOLD,
    RECONNECT_DELAY,
    STATE_CONNECTED,
    STATE_DISCONNECTED,
    STATE_LISTENING
)

log = get_logger(__name__)

class WsjtxListener(RadioSession):
    decode_received         = pyqtSignal(object)
    wsjtx_status_received   = pyqtSignal(object)
    clear_received          = pyqtSignal(object)
    qso_logged              = pyqtSignal(object)
    logged_adif_received    = pyqtSignal(object)

    def __init__(
            self,
            enable_log_packet_data  = False,
            socket_factory          = None,
            task_factory            = None,
            parent                  = None
        ):
        super().__init__("WSJT-X", task_factory, parent)

        self.enable_log_packet_data = enable_log_packet_data

        self.address                = DEFAULT_UDP_ADDRESS
        self.port                   = DEFAULT_UDP_PORT

        self.wsjtx_id               = None
        self.version                = None
        self.peer_address           = None
        self.peer_port              = None
        self.highlighted_callsigns  = {}

        self._socket_factory        = socket_factory or QUdpSocket
        self._socket                = None

        self._heartbeat_task        = self.create_task(self._on_heartbeat_timeout)
        self._rebind_task           = self.create_task(self._bind)

    def listen(self, address=DEFAULT_UDP_ADDRESS, port=DEFAULT_UDP_PORT):
        self.stop()

        self.address    = address or DEFAULT_UDP_ADDRESS
        self.port       = int(port or DEFAULT_UDP_PORT)
        self._bind()

    def _bind(self):
        epoch = self._next_epoch()

        self._socket = self._socket_factory(self)
        self._socket.readyRead.connect(partial(self._on_ready_read, epoch))
        self._socket.errorOccurred.connect(partial(self._on_socket_error, epoch))

        bind_mode = (
            QAbstractSocket.BindFlag.ShareAddress |
            QAbstractSocket.BindFlag.ReuseAddressHint
        )

        host_address = QHostAddress(self.address)
        if host_address.isMulticast():
            log.info(f"Starting with multicast setup: {self.address}:{self.port}")
            bound = self._socket.bind(
                QHostAddress(QHostAddress.SpecialAddress.AnyIPv4),
                self.port,
                bind_mode
            )
            if bound and not self._socket.joinMulticastGroup(host_address):
                log.warning(f"Unable to join multicast group {self.address}: {self._socket.errorString()}")
        else:
            bound = self._socket.bind(host_address, self.port, bind_mode)

        if not bound:
            self._emit_error(f"Unable to bind {self.address}:{self.port}: {self._socket.errorString()}")
            self._close_socket()
            self._set_state(STATE_DISCONNECTED, listening=False)
            self._rebind_task.start(RECONNECT_DELAY)
            return

        log.info(f"Listener started on {self.address}:{self.port}")
        self._set_state(STATE_LISTENING, listening=True, port=self.port)

    def stop(self):
        self._heartbeat_task.cancel()
        self._rebind_task.cancel()
        self._next_epoch()

        self._reset_session()
        self.peer_address   = None
        self.peer_port      = None

        self._close_socket()
        self._set_state(STATE_DISCONNECTED, listening=False)

    def _close_socket(self):
        if self._socket is None:
            return
        self._socket.close()
        self._socket.deleteLater()
        self._socket = None

    def _reset_session(self):
        self.wsjtx_id = None
        self.version = None
        self.highlighted_callsigns.clear()

    def _on_socket_error(self, epoch, error=None):
        if not self._is_current(epoch) or self._socket is None:
            return
        self._emit_error(f"UDP socket error: {self._socket.errorString()}")

    def _on_ready_read(self, epoch):
        while (
            self._is_current(epoch) and
            self._socket is not None and
            self._socket.hasPendingDatagrams()
        ):
            datagram = self._socket.receiveDatagram(GenericWSJTXPacket.MAXIMUM_NETWORK_MESSAGE_SIZE)
            self._handle_datagram(
                bytes(datagram.data()),
                datagram.senderAddress().toString(),
                datagram.senderPort()
            )

    def _handle_datagram(self, data, address, port):
        if len(data) < GenericWSJTXPacket.MINIMUM_NETWORK_MESSAGE_SIZE:
            return

        if self.enable_log_packet_data:
            log.debug(f"Received packet of length {len(data)} from {address}:{port}\n{hexdump(data)}")

        try:
            packet = WSJTXPacketClassFactory.from_udp_packet((address, port), data)
        except MagicNumberError as e:
            log.debug(f"Dropped datagram from {address}:{port}: {e}")
            return
        except PacketError as e:
            self._emit_error(f"Malformed packet from {address}:{port}: {e}")
            return

        """
            Remember where WSJT-X talks from, replies go back there
        """
        self.peer_address   = address
        self.peer_port      = port

        if packet.pkt_type not in MESSAGE_TYPES:
            self._emit_error(f"Unknown message type {packet.pkt_type} from {address}:{port}")
            return

        self.assign_packet(packet)

    def assign_packet(self, packet):
        if self.enable_log_packet_data:
            log.debug(packet)

        if isinstance(packet, HeartBeatPacket):
            self._learn_session(packet.wsjtx_id, packet.version)
            self._send(HeartBeatPacket.Builder(
                packet.wsjtx_id,
                GenericWSJTXPacket.SCHEMA_VERSION,
                APP_NAME,
                ''
            ))
        elif isinstance(packet, StatusPacket):
            self._learn_session(packet.wsjtx_id)
            self.wsjtx_status_received.emit(packet)
        elif isinstance(packet, DecodePacket):
            self.decode_received.emit(packet)
        elif isinstance(packet, ClearPacket):
            self.clear_received.emit(packet)
        elif isinstance(packet, QSOLoggedPacket):
            self.qso_logged.emit(packet)
        elif isinstance(packet, ClosePacket):
            log.debug("Received ClosePacket method")
            self._end_session()
        elif isinstance(packet, LoggedADIFPacket):
            self.logged_adif_received.emit(packet)
        else:
            log.debug(f"Ignored {packet.type_name} from {packet.addr_port}")

    def _learn_session(self, wsjtx_id, version=None):
        self.wsjtx_id = wsjtx_id
        if version is not None:
            self.version = version

        self._heartbeat_task.start(HEARTBEAT_TIMEOUT_THRESHOLD * 1000)

        details = {'id': wsjtx_id}
        if version is not None:
            details['version'] = version
        self._set_state(STATE_CONNECTED, **details)

    def _end_session(self):
        self._heartbeat_task.cancel()
        if self.state != STATE_CONNECTED:
            return

        self._reset_session()
        self._set_state(STATE_LISTENING, listening=True, port=self.port)

    def _on_heartbeat_timeout(self):
        log.warning(f"No packet from WSJT-X for {HEARTBEAT_TIMEOUT_THRESHOLD} seconds")
        self._end_session()

    def _send(self, data):
        if (
            self._socket is None or
            self.wsjtx_id is None or
            self.peer_address is None
        ):
            return False

        self._socket.writeDatagram(data, QHostAddress(self.peer_address), self.peer_port)
        if self.enable_log_packet_data:
            log.debug(f"Sent packet to {self.peer_address}:{self.peer_port}\n{hexdump(data)}")
        return True

    """
        Outbound commands, ignored until a WSJT-X instance has been heard
    """
    def reply(self, decode, modifiers=0):
        if self.wsjtx_id is None:
            return False
        return self._send(ReplyPacket.Builder(self.wsjtx_id, decode, modifiers))

    def halt_tx(self, auto_tx_only=True):
        if self.wsjtx_id is None:
            return False
        return self._send(HaltTxPacket.Builder(self.wsjtx_id, auto_tx_only))

    def highlight_callsign(self, callsign, bg_color=None, fg_color=None, highlight_last=False):
        if self.wsjtx_id is None:
            return False

        sent = self._send(HighlightCallsignPacket.Builder(
            self.wsjtx_id,
            callsign,
            bg_color,
            fg_color,
            highlight_last
        ))
        if bg_color or fg_color:
            self.highlighted_callsigns[callsign] = None
        else:
            self.highlighted_callsigns.pop(callsign, None)
        return sent

    def clear_highlights(self):
        if self.wsjtx_id is None:
            return
        for callsign in list(self.highlighted_callsigns):
            self._send(HighlightCallsignPacket.Builder(self.wsjtx_id, callsign, None, None, False))
        self.highlighted_callsigns.clear()
