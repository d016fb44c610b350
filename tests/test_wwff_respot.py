import pytest

from PyQt6.QtNetwork import QAbstractSocket

from fakes import FakeTcpSocket, SocketFactory
from wwff_respot import WwffRespotter, build_dx_command, parse_arguments


@pytest.fixture
def sockets():
    return SocketFactory(FakeTcpSocket)


@pytest.fixture
def respotter(sockets, clock):
    return WwffRespotter(socket_factory=sockets, task_factory=clock)


@pytest.fixture
def results(respotter):
    results = []
    respotter.finished.connect(lambda ok, message: results.append((ok, message)))
    return results


def post(respotter):
    respotter.post("K1ABC", "W2XYZ", "14244.5", "KFF-1234", "SSB", "QRP")


class TestBuildDxCommand:

    def test_full_command(self):
        assert build_dx_command("K1ABC", "14244.5", "KFF-1234", "SSB", "QRP") == "DX 14245 K1ABC KFF-1234 SSB QRP"

    def test_without_comment(self):
        assert build_dx_command("K1ABC", 7144.2, "KFF-1234", "CW") == "DX 7144 K1ABC KFF-1234 CW"

    def test_half_khz_rounds_up(self):
        assert build_dx_command("K1ABC", "7030.5", "KFF-1", "CW").startswith("DX 7031 ")


class TestHandshake:

    def test_connects_to_spotline(self, respotter, sockets):
        post(respotter)
        assert (sockets.last.host, sockets.last.port) == ("spots.wwff.co", 7300)

    def test_full_exchange(self, respotter, sockets, clock, results):
        post(respotter)
        socket = sockets.last
        socket.simulate_connected()

        socket.feed("Welcome to WWFF Spotline\r\nPlease enter your call: ")
        assert socket.lines == ["W2XYZ"]

        socket.feed("Hello W2XYZ\r\nW2XYZ de WWFF >\r\n")
        assert socket.lines == ["W2XYZ", "DX 14245 K1ABC KFF-1234 SSB QRP"]
        assert results == []

        clock.advance(1_500)
        assert results == [(True, "")]
        assert socket.aborted

    def test_login_prompt_split_across_chunks(self, respotter, sockets):
        post(respotter)
        socket = sockets.last
        socket.feed("log")
        assert socket.writes == []
        socket.feed("in: ")
        assert socket.lines == ["W2XYZ"]

    def test_command_prompt_before_login_is_ignored(self, respotter, sockets):
        post(respotter)
        sockets.last.feed("banner >\r\n")
        assert sockets.last.writes == []

    def test_remote_close_counts_as_success(self, respotter, sockets, results):
        post(respotter)
        socket = sockets.last
        socket.feed("login: ")
        socket.feed("W2XYZ de WWFF >")
        socket.simulate_remote_close()

        assert results == [(True, "")]

    def test_remote_host_closed_error_is_success(self, respotter, sockets, results):
        post(respotter)
        sockets.last.simulate_error(QAbstractSocket.SocketError.RemoteHostClosedError, "Remote host closed")
        assert results == [(True, "")]

    def test_connection_error(self, respotter, sockets, results):
        post(respotter)
        sockets.last.simulate_error()
        assert results == [(False, "Connection refused")]
        assert sockets.last.aborted

    def test_timeout(self, respotter, sockets, clock, results):
        post(respotter)
        sockets.last.feed("login: ")

        clock.advance(9_999)
        assert results == []
        clock.advance(1)
        assert results == [(False, "WWFF respot timed out")]

    def test_finished_is_emitted_once(self, respotter, sockets, clock, results):
        post(respotter)
        socket = sockets.last
        socket.feed("login: ")
        socket.feed(">")
        clock.advance(1_500)

        socket.simulate_remote_close()
        socket.simulate_error()
        socket.feed("more data >")
        clock.advance(20_000)

        assert results == [(True, "")]
        assert respotter.is_finished


def test_command_line_arguments():
    args = parse_arguments(["K1ABC", "14244.5", "KFF-1234", "--spotter", "W2XYZ", "--mode", "CW"])
    assert args.activator == "K1ABC"
    assert args.frequency == "14244.5"
    assert args.reference == "KFF-1234"
    assert args.spotter == "W2XYZ"
    assert args.mode == "CW"
    assert args.comments is None
