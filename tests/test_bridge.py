from bridge import RadioLinkBridge, apply_arguments, parse_arguments
from settings import DEFAULT_PARAMS


class FakeRadio:
    def __init__(self):
        self.calls = []

    def add_spot(self, spot):
        self.calls.append(('add', spot['callsign']))
        return True

    def prune_stale_spots(self):
        self.calls.append(('prune',))
        return []


def test_arguments_override_saved_params():
    args = parse_arguments(["--no-wsjtx", "--tci", "--tci_host", "10.0.0.5", "--udp_port", "2238"])
    params = apply_arguments(dict(DEFAULT_PARAMS), args)

    assert params['enable_wsjtx'] is False
    assert params['enable_tci'] is True
    assert params['tci_host'] == '10.0.0.5'
    assert params['udp_server_port'] == 2238
    assert params['enable_smartsdr'] == DEFAULT_PARAMS['enable_smartsdr']
    assert params['smartsdr_host'] == DEFAULT_PARAMS['smartsdr_host']


def test_spots_are_forwarded_then_pruned():
    bridge = RadioLinkBridge(dict(DEFAULT_PARAMS))
    bridge.smartsdr_client = FakeRadio()
    bridge.tci_client = FakeRadio()

    bridge.forward_spots([{'callsign': 'K1ABC'}, {'callsign': 'W2XYZ'}])

    expected = [('add', 'K1ABC'), ('add', 'W2XYZ'), ('prune',)]
    assert bridge.smartsdr_client.calls == expected
    assert bridge.tci_client.calls == expected


def test_nothing_enabled():
    params = dict(DEFAULT_PARAMS, enable_wsjtx=False)
    bridge = RadioLinkBridge(params)
    bridge.start()
    assert bridge.adapters == []
    bridge.stop()
