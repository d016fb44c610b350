# bridge.py

import argparse
import logging
import signal
import sys

from functools import partial

from PyQt6.QtCore import QCoreApplication, QObject, QTimer

import logger

from logger import get_logger
from settings import load_params, save_params
from wsjtx_listener import WsjtxListener
from smartsdr_client import SmartSdrClient
from tci_client import TciClient
from pskreporter_client import PskReporterClient

from constants import (
    GUI_LABEL_VERSION
)

log = get_logger(__name__)

class RadioLinkBridge(QObject):
    """
        Headless host: starts the enabled adapters, logs what they report
        and pushes PSKReporter spots to the panadapters
    """
    def __init__(self, params, parent=None):
        super().__init__(parent)

        self.params             = params
        self.adapters           = []

        self.wsjtx_listener     = None
        self.smartsdr_client    = None
        self.tci_client         = None
        self.pskreporter_client = None

    def start(self):
        if self.params.get('enable_wsjtx'):
            self.wsjtx_listener = WsjtxListener(
                enable_log_packet_data = self.params.get('enable_log_packet_data'),
                parent = self
            )
            self.wsjtx_listener.decode_received.connect(self.on_decode)
            self.wsjtx_listener.qso_logged.connect(self.on_qso_logged)
            self._watch(self.wsjtx_listener)
            self.wsjtx_listener.listen(
                self.params.get('udp_server_address'),
                self.params.get('udp_server_port')
            )

        if self.params.get('enable_smartsdr'):
            self.smartsdr_client = SmartSdrClient(
                persistent_id = self.params.get('smartsdr_persistent_id'),
                parent = self
            )
            self.smartsdr_client.command_failed.connect(
                lambda failure: log.warning(f"SmartSDR rejected command #{failure['seq']}: 0x{failure['status']:08X}")
            )
            self._watch(self.smartsdr_client)
            self.smartsdr_client.connect_to_host(self.params.get('smartsdr_host'))

        if self.params.get('enable_tci'):
            self.tci_client = TciClient(parent=self)
            self._watch(self.tci_client)
            self.tci_client.connect_to_host(
                self.params.get('tci_host'),
                self.params.get('tci_port')
            )

        if self.params.get('enable_pskreporter'):
            self.pskreporter_client = PskReporterClient(
                home_grid   = self.params.get('home_grid'),
                app_contact = self.params.get('pskreporter_app_contact'),
                parent      = self
            )
            self.pskreporter_client.spots_received.connect(self.forward_spots)
            self._watch(self.pskreporter_client)
            self.pskreporter_client.start()

        if not self.adapters:
            log.warning("No adapter enabled, nothing to do")

    def _watch(self, adapter):
        self.adapters.append(adapter)
        adapter.status_changed.connect(partial(self.on_status_changed, adapter.name))
        adapter.error_occurred.connect(partial(self.on_error, adapter.name))

    def on_status_changed(self, name, status):
        details = ' '.join(f"{key}={value}" for key, value in status.items() if key not in ('state', 'connected'))
        log.warning(f"{name}: {status['state']} {details}".strip())

    def on_error(self, name, message):
        log.error(f"{name}: {message}")

    def on_decode(self, decode):
        decode_time_str = decode.time.strftime('%H:%M:%S')
        log.info(
            f"{decode_time_str} "
            f"{decode.snr:+3d} dB "
            f"{decode.delta_t:+5.1f}s "
            f"{decode.delta_f:+6d}Hz ~ "
            f"{decode.message}"
        )

    def on_qso_logged(self, qso):
        log.warning(f"QSO logged with {qso.call} on {qso.frequency} Hz ({qso.mode})")

    def forward_spots(self, spots):
        for radio in (self.smartsdr_client, self.tci_client):
            if radio is None:
                continue
            for spot in spots:
                radio.add_spot(spot)
            radio.prune_stale_spots()

    def stop(self):
        for adapter in self.adapters:
            adapter.stop()
        log.info("Manual stop.")

def parse_arguments(argv=None):
    parser = argparse.ArgumentParser(description=GUI_LABEL_VERSION)
    parser.add_argument('--wsjtx', action=argparse.BooleanOptionalAction, default=None, help='Listen to WSJT-X.')
    parser.add_argument('--udp_address', type=str, help='WSJT-X UDP address, multicast groups are joined.')
    parser.add_argument('--udp_port', type=int, help='WSJT-X UDP port.')
    parser.add_argument('--smartsdr', action=argparse.BooleanOptionalAction, default=None, help='Push spots to SmartSDR.')
    parser.add_argument('--smartsdr_host', type=str, help='FlexRadio address.')
    parser.add_argument('--tci', action=argparse.BooleanOptionalAction, default=None, help='Push spots to a TCI server.')
    parser.add_argument('--tci_host', type=str, help='TCI server address.')
    parser.add_argument('--tci_port', type=int, help='TCI server port.')
    parser.add_argument('--pskreporter', action=argparse.BooleanOptionalAction, default=None, help='Poll PSKReporter for FreeDV spots.')
    parser.add_argument('--home_grid', type=str, help='Home locator, adds distance and bearing to spots.')
    parser.add_argument('--log_packet_data', action=argparse.BooleanOptionalAction, default=None, help='Dump WSJT-X packets.')
    parser.add_argument('--log_file', action=argparse.BooleanOptionalAction, default=None, help='Write a daily rotated log file.')
    parser.add_argument('--debug', action='store_true', help='Debug output.')
    parser.add_argument('--save', action='store_true', help='Save these settings as defaults.')
    return parser.parse_args(argv)

def apply_arguments(params, args):
    overrides = {
        'enable_wsjtx'              : args.wsjtx,
        'udp_server_address'        : args.udp_address,
        'udp_server_port'           : args.udp_port,
        'enable_smartsdr'           : args.smartsdr,
        'smartsdr_host'             : args.smartsdr_host,
        'enable_tci'                : args.tci,
        'tci_host'                  : args.tci_host,
        'tci_port'                  : args.tci_port,
        'enable_pskreporter'        : args.pskreporter,
        'home_grid'                 : args.home_grid,
        'enable_log_packet_data'    : args.log_packet_data,
        'enable_log_file'           : args.log_file,
    }
    params.update({key: value for key, value in overrides.items() if value is not None})
    return params

def main(argv=None):
    args    = parse_arguments(argv)
    params  = apply_arguments(load_params(), args)

    if args.save:
        save_params(params)

    if args.debug or params.get('enable_log_packet_data'):
        logger.set_level(logging.DEBUG)

    if params.get('enable_log_file'):
        logger.add_timed_file_handler()

    app     = QCoreApplication(sys.argv[:1])
    bridge  = RadioLinkBridge(params)

    def signal_handler(sig, frame):
        app.quit()

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    # Python signal handlers only run when the interpreter gets control back
    signal_timer = QTimer()
    signal_timer.timeout.connect(lambda: None)
    signal_timer.start(200)

    app.aboutToQuit.connect(bridge.stop)
    bridge.start()

    return app.exec()

if __name__ == "__main__":
    sys.exit(main())
