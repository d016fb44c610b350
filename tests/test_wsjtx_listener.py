"""
WSJT-X listener tests: binding, session lifecycle, heartbeat timeout and
outbound commands. Datagrams are pushed straight into _handle_datagram.
"""

import pytest

from fakes import FakeUdpSocket, SocketFactory
from wsjtx_listener import WsjtxListener
from wsjtx_packet_sender import WSJTXPacketSender
from wsjtx_packets import (
    PacketWriter,
    WSJTXPacketClassFactory,
    HeartBeatPacket,
    HaltTxPacket,
    ReplyPacket,
    HighlightCallsignPacket,
    REPLAY,
    QSO_LOGGED,
)

PEER = ("127.0.0.1", 55000)


class Recorder:
    def __init__(self, listener):
        self.statuses = []
        self.errors = []
        self.decodes = []
        self.wsjtx_statuses = []
        self.clears = []
        self.qsos = []
        self.adifs = []
        self.connected = 0
        self.disconnected = 0

        listener.status_changed.connect(self.statuses.append)
        listener.error_occurred.connect(self.errors.append)
        listener.decode_received.connect(self.decodes.append)
        listener.wsjtx_status_received.connect(self.wsjtx_statuses.append)
        listener.clear_received.connect(self.clears.append)
        listener.qso_logged.connect(self.qsos.append)
        listener.logged_adif_received.connect(self.adifs.append)
        listener.connected.connect(self._on_connected)
        listener.disconnected.connect(self._on_disconnected)

    def _on_connected(self):
        self.connected += 1

    def _on_disconnected(self):
        self.disconnected += 1


@pytest.fixture
def sockets():
    return SocketFactory(FakeUdpSocket)


@pytest.fixture
def listener(clock, sockets):
    listener = WsjtxListener(socket_factory=sockets, task_factory=clock)
    listener.listen()
    return listener


@pytest.fixture
def events(listener):
    return Recorder(listener)


@pytest.fixture
def sender():
    return WSJTXPacketSender(wsjtx_id="WSJT-X")


def receive(listener, data):
    listener._handle_datagram(data, *PEER)


def sent_packets(sockets):
    return [WSJTXPacketClassFactory.from_udp_packet(PEER, data) for data, _, _ in sockets.last.sent]


class TestBinding:

    def test_listen_binds_and_reports_listening(self, clock, sockets):
        listener = WsjtxListener(socket_factory=sockets, task_factory=clock)
        events = Recorder(listener)
        listener.listen("0.0.0.0", 2237)

        assert sockets.last.bound == ("0.0.0.0", 2237)
        assert listener.state == "Listening"
        assert events.statuses == [{"state": "Listening", "connected": False, "listening": True, "port": 2237}]

    def test_multicast_group_is_joined(self, clock, sockets):
        listener = WsjtxListener(socket_factory=sockets, task_factory=clock)
        listener.listen("239.255.0.1", 2238)

        assert sockets.last.bound == ("0.0.0.0", 2238)
        assert sockets.last.joined == ["239.255.0.1"]

    def test_bind_failure_emits_error_and_retries(self, clock):
        sockets = SocketFactory(FakeUdpSocket, bind_result=False)
        listener = WsjtxListener(socket_factory=sockets, task_factory=clock)
        events = Recorder(listener)
        listener.listen()

        assert len(events.errors) == 1
        assert "Address already in use" in events.errors[0]
        assert listener.state == "Disconnected"
        assert sockets.last.closed

        clock.advance(4_999)
        assert len(sockets.created) == 1
        clock.advance(1)
        assert len(sockets.created) == 2

    def test_listen_again_replaces_socket(self, listener, sockets):
        first = sockets.last
        listener.listen("127.0.0.1", 2240)
        assert first.closed
        assert sockets.last.bound == ("127.0.0.1", 2240)


class TestSession:

    def test_heartbeat_connects_and_is_answered(self, listener, events, sockets, sender):
        receive(listener, sender.build_heartbeat_packet(version="2.7.0"))

        assert listener.state == "Connected"
        assert listener.wsjtx_id == "WSJT-X"
        assert (listener.peer_address, listener.peer_port) == PEER
        assert events.statuses[-1] == {"state": "Connected", "connected": True, "id": "WSJT-X", "version": "2.7.0"}
        assert events.connected == 1

        replies = sent_packets(sockets)
        assert len(replies) == 1
        assert isinstance(replies[0], HeartBeatPacket)
        assert replies[0].wsjtx_id == "WSJT-X"
        assert replies[0].max_schema == 3
        assert replies[0].version == "POTACAT"
        assert sockets.last.sent[0][1:] == PEER

    def test_every_heartbeat_is_answered(self, listener, events, sockets, sender):
        for _ in range(3):
            receive(listener, sender.build_heartbeat_packet())

        assert len(sockets.last.sent) == 3
        assert events.connected == 1

    def test_status_connects_and_is_forwarded(self, listener, events, sender):
        receive(listener, sender.build_status_packet(dial_frequency=7_074_000))

        assert listener.state == "Connected"
        assert events.statuses[-1] == {"state": "Connected", "connected": True, "id": "WSJT-X"}
        assert events.wsjtx_statuses[0].dial_frequency == 7_074_000

    def test_decode_is_forwarded_with_callsigns(self, listener, events, sender):
        receive(listener, sender.build_decode_packet("CQ DX W2XYZ FN42", snr=-3))

        assert len(events.decodes) == 1
        assert events.decodes[0].dx_call == "W2XYZ"
        assert events.decodes[0].snr == -3

    def test_other_inbound_messages_are_forwarded(self, listener, events, sender):
        receive(listener, sender.build_clear_packet(window=0))
        receive(listener, sender.build_qso_logged_packet("K1ABC"))
        receive(listener, sender.build_logged_adif_packet("<call:5>K1ABC <eor>"))

        assert events.clears[0].window == 0
        assert events.qsos[0].call == "K1ABC"
        assert events.adifs[0].adif_text == "<call:5>K1ABC <eor>"

    def test_heartbeat_timeout_returns_to_listening_once(self, listener, events, clock, sender):
        receive(listener, sender.build_heartbeat_packet())

        clock.advance(29_999)
        assert listener.state == "Connected"

        clock.advance(1)
        assert listener.state == "Listening"
        assert events.disconnected == 1
        assert events.statuses[-1] == {"state": "Listening", "connected": False, "listening": True, "port": 2237}

        clock.advance(120_000)
        assert events.disconnected == 1
        assert [status["state"] for status in events.statuses] == ["Connected", "Listening"]

    def test_heartbeat_rearms_timeout(self, listener, clock, sender):
        receive(listener, sender.build_heartbeat_packet())
        clock.advance(20_000)
        receive(listener, sender.build_status_packet())
        clock.advance(20_000)
        assert listener.state == "Connected"
        clock.advance(10_000)
        assert listener.state == "Listening"

    def test_close_returns_to_listening_and_clears_session(self, listener, events, clock, sender):
        receive(listener, sender.build_heartbeat_packet())
        listener.highlight_callsign("K1ABC", {"r": 255, "g": 0, "b": 0})
        receive(listener, sender.build_close_packet())

        assert listener.state == "Listening"
        assert listener.wsjtx_id is None
        assert listener.highlighted_callsigns == {}
        assert events.disconnected == 1

        clock.advance(60_000)
        assert events.disconnected == 1

    def test_reconnect_after_close(self, listener, events, sender):
        receive(listener, sender.build_heartbeat_packet())
        receive(listener, sender.build_close_packet())
        receive(listener, sender.build_heartbeat_packet())

        assert listener.state == "Connected"
        assert events.connected == 2


class TestMalformedInput:

    def test_short_datagram_is_ignored(self, listener, events):
        receive(listener, b"\xad\xbc\xcb\xda")
        assert events.errors == []
        assert listener.peer_address is None

    def test_bad_magic_is_dropped_silently(self, listener, events, sender):
        data = bytearray(sender.build_heartbeat_packet())
        data[0] = 0
        receive(listener, bytes(data))

        assert events.errors == []
        assert listener.state == "Listening"

    def test_truncated_frame_emits_error(self, listener, events, sender):
        receive(listener, sender.build_decode_packet("CQ K1ABC FN42")[:-12])

        assert len(events.errors) == 1
        assert events.decodes == []

    def test_unknown_type_emits_error(self, listener, events):
        receive(listener, bytes(PacketWriter(99, "WSJT-X").packet))
        assert len(events.errors) == 1
        assert "99" in events.errors[0]

    def test_known_type_without_handler_is_ignored(self, listener, events):
        receive(listener, bytes(PacketWriter(REPLAY, "WSJT-X").packet))
        assert events.errors == []
        assert listener.state == "Listening"

    def test_session_survives_bad_frames(self, listener, events, sender):
        receive(listener, sender.build_heartbeat_packet())
        receive(listener, b"\xad\xbc\xcb\xda\x00\x00\x00\x03\x00\x00\x00\x02\xff")
        receive(listener, sender.build_decode_packet("CQ K1ABC FN42"))

        assert listener.state == "Connected"
        assert len(events.decodes) == 1

    @pytest.mark.parametrize("julian_day", [0, -2 ** 63])
    def test_qso_logged_with_invalid_date_is_dropped(self, listener, events, sender, julian_day):
        receive(listener, sender.build_heartbeat_packet())

        writer = PacketWriter(QSO_LOGGED, "WSJT-X")
        writer.write_QInt64(julian_day)
        writer.write_QUInt32(0)
        writer.write_QUInt8(1)
        receive(listener, bytes(writer.packet))

        assert len(events.errors) == 1
        assert events.qsos == []
        assert listener.state == "Connected"

        receive(listener, sender.build_decode_packet("CQ K1ABC FN42"))
        assert len(events.decodes) == 1


class TestOutboundCommands:

    def test_commands_are_noops_without_session(self, listener, sockets, sender):
        decode = WSJTXPacketClassFactory.from_udp_packet(PEER, sender.build_decode_packet("CQ K1ABC FN42"))

        assert listener.reply(decode) is False
        assert listener.halt_tx() is False
        assert listener.highlight_callsign("K1ABC", {"r": 1, "g": 2, "b": 3}) is False
        listener.clear_highlights()

        assert sockets.last.sent == []

    def test_reply(self, listener, sockets, sender):
        receive(listener, sender.build_status_packet())
        decode = WSJTXPacketClassFactory.from_udp_packet(PEER, sender.build_decode_packet("CQ K1ABC FN42", snr=-9))

        assert listener.reply(decode, modifiers=4) is True

        reply = sent_packets(sockets)[-1]
        assert isinstance(reply, ReplyPacket)
        assert reply.message == "CQ K1ABC FN42"
        assert reply.snr == -9
        assert reply.modifiers == 4

    def test_halt_tx(self, listener, sockets, sender):
        receive(listener, sender.build_status_packet())
        listener.halt_tx(auto_tx_only=False)

        halt = sent_packets(sockets)[-1]
        assert isinstance(halt, HaltTxPacket)
        assert halt.auto_tx_only is False

    def test_highlight_and_clear(self, listener, sockets, sender):
        receive(listener, sender.build_status_packet())
        listener.highlight_callsign("K1ABC", {"r": 255, "g": 255, "b": 0})
        listener.highlight_callsign("W2XYZ", None, {"r": 0, "g": 0, "b": 255})
        listener.highlight_callsign("N0CALL", {"r": 1, "g": 1, "b": 1})
        listener.highlight_callsign("N0CALL")

        assert list(listener.highlighted_callsigns) == ["K1ABC", "W2XYZ"]

        sockets.last.sent.clear()
        listener.clear_highlights()

        cleared = sent_packets(sockets)
        assert [packet.callsign for packet in cleared] == ["K1ABC", "W2XYZ"]
        assert all(isinstance(packet, HighlightCallsignPacket) for packet in cleared)
        assert all(packet.background_color is None and packet.foreground_color is None for packet in cleared)
        assert listener.highlighted_callsigns == {}


class TestStop:

    def test_stop_tears_everything_down(self, listener, events, sockets, clock, sender):
        receive(listener, sender.build_heartbeat_packet())
        socket = sockets.last
        listener.stop()

        assert listener.state == "Disconnected"
        assert socket.closed
        assert listener.wsjtx_id is None
        assert events.statuses[-1] == {"state": "Disconnected", "connected": False, "listening": False}
        assert events.disconnected == 1

        clock.advance(120_000)
        assert len(events.statuses) == 2
        assert len(sockets.created) == 1

    def test_stale_socket_events_are_ignored(self, listener, events, sockets):
        stale_epoch = listener._epoch
        listener.stop()

        listener._on_ready_read(stale_epoch)
        listener._on_socket_error(stale_epoch)
        assert events.errors == []

    def test_stop_is_safe_in_any_state(self, clock, sockets):
        listener = WsjtxListener(socket_factory=sockets, task_factory=clock)
        listener.stop()
        listener.stop()
        assert listener.state == "Disconnected"

    def test_packet_logging_does_not_change_behaviour(self, clock, sockets, sender):
        listener = WsjtxListener(enable_log_packet_data=True, socket_factory=sockets, task_factory=clock)
        listener.listen()
        receive(listener, sender.build_heartbeat_packet())
        assert listener.state == "Connected"
        assert len(sockets.last.sent) == 1
