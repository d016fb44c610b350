import pytest

from fakes import FakeWebSocket, SocketFactory
from tci_client import TciClient


@pytest.fixture
def sockets():
    return SocketFactory(FakeWebSocket)


@pytest.fixture
def make_client(clock, sockets):
    def make():
        return TciClient(socket_factory=sockets, task_factory=clock)
    return make


@pytest.fixture
def client(make_client, sockets):
    client = make_client()
    client.connect_to_host("sdr.local")
    sockets.last.simulate_connected()
    return client


@pytest.fixture
def ready_client(client, sockets):
    sockets.last.receive("protocol:ExpertSDR3,1.9;device:SunSDR2PRO;ready;")
    return client


class TestConnection:

    def test_url_and_states(self, make_client, sockets):
        client = make_client()
        statuses = []
        client.status_changed.connect(statuses.append)

        client.connect_to_host("sdr.local")
        assert sockets.last.url == "ws://sdr.local:50001"
        assert statuses[-1] == {"state": "Connecting", "connected": False, "url": "ws://sdr.local:50001"}

        sockets.last.simulate_connected()
        assert statuses[-1] == {"state": "Connected", "connected": True, "url": "ws://sdr.local:50001"}
        assert not client.ready

    def test_handshake_fields(self, ready_client):
        assert ready_client.ready
        assert ready_client.protocol == "ExpertSDR3,1.9"
        assert ready_client.device == "SunSDR2PRO"

    def test_reconnects_after_close(self, ready_client, sockets, clock):
        sockets.last.simulate_remote_close()
        assert ready_client.state == "Disconnected"
        assert not ready_client.ready
        assert sockets.created[0].closed

        clock.advance(5_000)
        assert len(sockets.created) == 2
        assert sockets.last.url == "ws://sdr.local:50001"

    def test_failed_open_retries(self, make_client, sockets, clock):
        client = make_client()
        errors = []
        client.error_occurred.connect(errors.append)

        client.connect_to_host("sdr.local", 40001)
        sockets.last.simulate_error()

        assert len(errors) == 1
        assert client.state == "Disconnected"
        clock.advance(5_000)
        assert sockets.last.url == "ws://sdr.local:40001"

    def test_stop(self, ready_client, sockets, clock):
        socket = sockets.last
        ready_client.stop()

        assert socket.closed
        assert ready_client.state == "Disconnected"

        socket.receive("ready;")
        socket.simulate_connected()
        clock.advance(60_000)

        assert not ready_client.ready
        assert len(sockets.created) == 1


class TestCommandQueue:

    def test_commands_wait_for_ready_and_keep_order(self, client, sockets):
        client.add_spot({"callsign": "K1ABC", "frequency": "14074"})
        client.add_spot({"callsign": "W2XYZ", "frequency": "7074"})
        assert sockets.last.sent == []

        sockets.last.receive("ready;")
        assert sockets.last.sent == [
            "spot:K1ABC,USB,14074000,4283354275,;",
            "spot:W2XYZ,USB,7074000,4283354275,;",
        ]

    def test_commands_are_dropped_when_not_connected(self, make_client, sockets):
        client = make_client()
        client.connect_to_host("sdr.local")
        client.add_spot({"callsign": "K1ABC", "frequency": "14074"})

        sockets.last.simulate_connected()
        sockets.last.receive("ready;")
        assert sockets.last.sent == []

    def test_close_drops_queued_commands(self, client, sockets, clock):
        client.add_spot({"callsign": "K1ABC", "frequency": "14074"})
        sockets.last.simulate_remote_close()
        clock.advance(5_000)

        sockets.last.simulate_connected()
        sockets.last.receive("ready;")
        assert sockets.last.sent == []


class TestSpots:

    def test_spot_format(self, ready_client, sockets):
        ready_client.add_spot({
            "callsign": "K1ABC",
            "freq_mhz": 14.0745,
            "mode": "CW",
            "source": "sota",
            "reference": "W1/HA-001; Mount, Top",
        })
        assert sockets.last.sent[-1] == "spot:K1ABC,CW,14074500,4293960960,W1/HA-001  Mount  Top;"

    def test_long_description_is_cut(self, ready_client, sockets):
        ready_client.add_spot({"callsign": "K1ABC", "frequency": "14074", "park_name": "x" * 60})
        description = sockets.last.sent[-1].rstrip(";").split(",")[-1]
        assert description == "x" * 40

    def test_unknown_source_uses_default_color(self, ready_client, sockets):
        ready_client.add_spot({"callsign": "K1ABC", "frequency": "14074", "source": "other"})
        assert ",4283354275," in sockets.last.sent[-1]

    def test_invalid_spots_are_skipped(self, ready_client, sockets):
        assert ready_client.add_spot({"callsign": "K1ABC", "frequency": ""}) is False
        assert ready_client.add_spot({"callsign": "", "frequency": "14074"}) is False
        assert sockets.last.sent == []

    def test_frequency_change_threshold(self, ready_client, sockets):
        ready_client.add_spot({"callsign": "K1ABC", "frequency": "14074.00"})
        ready_client.add_spot({"callsign": "K1ABC", "frequency": "14074.05"})
        assert not any(command.startswith("spot_delete") for command in sockets.last.sent)

        ready_client.add_spot({"callsign": "K1ABC", "frequency": "14074.20"})
        assert sockets.last.sent[-2:] == [
            "spot_delete:K1ABC;",
            "spot:K1ABC,USB,14074200,4283354275,;",
        ]

    def test_prune(self, ready_client, sockets):
        ready_client.add_spot({"callsign": "K1ABC", "frequency": "14074"})
        ready_client.add_spot({"callsign": "W2XYZ", "frequency": "7074"})
        ready_client.prune_stale_spots()
        ready_client.add_spot({"callsign": "K1ABC", "frequency": "14074"})

        assert ready_client.prune_stale_spots() == ["W2XYZ"]
        assert sockets.last.sent[-1] == "spot_delete:W2XYZ;"

    def test_clear_spots(self, ready_client, sockets):
        ready_client.add_spot({"callsign": "K1ABC", "frequency": "14074"})
        ready_client.prune_stale_spots()
        ready_client.add_spot({"callsign": "W2XYZ", "frequency": "7074"})
        ready_client.clear_spots()

        assert sockets.last.sent[-2:] == ["spot_delete:K1ABC;", "spot_delete:W2XYZ;"]
        assert ready_client.tracker.tracked_callsigns() == []
