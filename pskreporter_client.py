# pskreporter_client.py
#
# The PSKReporter MQTT feed doesn't carry FreeDV spots,
# so the XML query API is polled instead

import re
import requests

from datetime import datetime, timezone
from functools import partial

from PyQt6.QtCore import QThread, pyqtSignal

from logger import get_logger
from radio_session import RadioSession
from utils import get_amateur_band
from grid import grid_to_lat_lon, haversine_distance_miles, bearing

from constants import (
    PSKREPORTER_QUERY_URL,
    PSKREPORTER_APP_CONTACT,
    PSKREPORTER_MODE,
    PSKREPORTER_POLL_INTERVAL,
    PSKREPORTER_BACKOFF_INTERVAL,
    PSKREPORTER_REQUEST_TIMEOUT,
    PSKREPORTER_USER_AGENT,
    STATE_CONNECTED,
    STATE_DISCONNECTED
)

log = get_logger(__name__)

REPORT_RE       = re.compile(r"<receptionReport\s+([^/>]+)/>")
ATTRIBUTE_RE    = re.compile(r'(\w+)="([^"]*)"')

def _to_int(value):
    try:
        return int(value)
    except (TypeError, ValueError):
        return None

def _to_datetime(timestamp):
    if timestamp:
        try:
            return datetime.fromtimestamp(timestamp, timezone.utc)
        except (ValueError, OverflowError, OSError) as e:
            log.warning(f"PSKReporter: invalid flowStartSeconds {timestamp}: {e}")
    return datetime.now(timezone.utc)

def _format_khz(freq_hz):
    freq_khz = round(freq_hz / 100) / 10
    if freq_khz == int(freq_khz):
        return str(int(freq_khz))
    return str(freq_khz)

def parse_reception_reports(body, home_grid=None):
    """
        Extracts spots from the <receptionReport .../> tags of a query
        response, reports without sender or frequency are dropped
    """
    home_position = grid_to_lat_lon(home_grid) if home_grid else None
    spots = []

    for match in REPORT_RE.finditer(body or ''):
        attributes  = dict(ATTRIBUTE_RE.findall(match.group(1)))

        callsign    = attributes.get('senderCallsign', '')
        freq_hz     = _to_int(attributes.get('frequency'))
        if not callsign or not freq_hz:
            continue

        spot_time   = _to_datetime(_to_int(attributes.get('flowStartSeconds')))

        spot = {
            'callsign'      : callsign,
            'spotter'       : attributes.get('receiverCallsign', ''),
            'frequency'     : _format_khz(freq_hz),
            'freq_mhz'      : freq_hz / 1_000_000,
            'mode'          : (attributes.get('mode') or PSKREPORTER_MODE).upper(),
            'band'          : get_amateur_band(freq_hz) or '',
            'snr'           : _to_int(attributes.get('sNR')),
            'sender_grid'   : attributes.get('senderLocator', ''),
            'receiver_grid' : attributes.get('receiverLocator', ''),
            'spot_time'     : spot_time.isoformat(timespec='milliseconds').replace('+00:00', 'Z'),
            'source'        : 'pskr'
        }

        if home_position:
            sender_position = grid_to_lat_lon(spot['sender_grid'])
            if sender_position:
                spot['distance_miles']  = round(haversine_distance_miles(*home_position, *sender_position))
                spot['bearing']         = round(bearing(*home_position, *sender_position))

        spots.append(spot)

    return spots

class PskReporterFetcher(QThread):
    response_received   = pyqtSignal(int, str)
    request_failed      = pyqtSignal(str)

    def __init__(self, url, params, parent=None):
        super().__init__(parent)
        self.url    = url
        self.params = params

    def run(self):
        try:
            response = requests.get(
                self.url,
                params  = self.params,
                timeout = PSKREPORTER_REQUEST_TIMEOUT,
                headers = {'User-Agent': PSKREPORTER_USER_AGENT}
            )
            self.response_received.emit(response.status_code, response.text)
        except requests.RequestException as e:
            log.error(f"Can't fetch PSKReporter spots: {e}")
            self.request_failed.emit(str(e))

class PskReporterClient(RadioSession):
    spots_received = pyqtSignal(list)

    def __init__(
            self,
            home_grid       = None,
            app_contact     = PSKREPORTER_APP_CONTACT,
            fetcher_factory = None,
            task_factory    = None,
            parent          = None
        ):
        super().__init__("PSKReporter", task_factory, parent)

        self.home_grid              = home_grid or None
        self.app_contact            = app_contact
        self.active                 = False

        self._fetcher_factory       = fetcher_factory or PskReporterFetcher
        self._fetcher               = None
        self._running_fetchers      = set()
        # Requests dropped by stop(), the next poll waits for them
        self._abandoned_fetchers    = set()
        self._poll_deferred         = False

        self._poll_task             = self.create_task(self.poll)

    @property
    def query_params(self):
        # Always the last 15 minutes, no lastseqno tracking
        return {
            'mode'              : PSKREPORTER_MODE,
            'flowStartSeconds'  : -900,
            'rronly'            : 1,
            'rptlimit'          : 100,
            'appcontact'        : self.app_contact
        }

    def start(self):
        self.stop()
        self.active = True
        self.poll()

    def stop(self):
        if self._fetcher is not None:
            self._abandoned_fetchers.add(self._fetcher)

        self.active         = False
        self._fetcher       = None
        self._poll_deferred = False
        self._poll_task.cancel()
        self._next_epoch()
        self._set_state(STATE_DISCONNECTED)

    def poll(self):
        if not self.active or self._fetcher is not None:
            return

        if self._abandoned_fetchers:
            log.debug("PSKReporter: previous request still running, poll deferred")
            self._poll_deferred = True
            return

        log.info("PSKReporter: fetching FreeDV spots")
        fetcher = self._fetcher_factory(PSKREPORTER_QUERY_URL, self.query_params)
        fetcher.response_received.connect(partial(self._on_response_received, fetcher))
        fetcher.request_failed.connect(partial(self._on_request_failed, fetcher))
        fetcher.finished.connect(partial(self._on_fetcher_finished, fetcher))

        self._fetcher = fetcher
        self._running_fetchers.add(fetcher)
        fetcher.start()

    def _on_fetcher_finished(self, fetcher):
        self._running_fetchers.discard(fetcher)
        fetcher.deleteLater()

        if fetcher in self._abandoned_fetchers:
            self._abandoned_fetchers.discard(fetcher)
            if self._poll_deferred and not self._abandoned_fetchers:
                self._poll_deferred = False
                self.poll()

    def _on_response_received(self, fetcher, status_code, body):
        if fetcher is not self._fetcher:
            return
        self._fetcher = None
        self._handle_response(status_code, body)

    def _on_request_failed(self, fetcher, message):
        if fetcher is not self._fetcher:
            return
        self._fetcher = None
        self._handle_failure(message)

    def _schedule_poll(self, delay_ms):
        if not self.active:
            return
        self._poll_task.start(delay_ms)

    def _handle_response(self, status_code, body):
        if not self.active:
            return

        if status_code == 200:
            spots = parse_reception_reports(body, self.home_grid)
            log.info(f"PSKReporter: {len(spots)} spots received")
            self.spots_received.emit(spots)
            self._set_state(STATE_CONNECTED, spot_count=len(spots))
            self._schedule_poll(PSKREPORTER_POLL_INTERVAL)
        elif status_code == 503:
            self._emit_error("PSKReporter: rate limited, backing off")
            self._schedule_poll(PSKREPORTER_BACKOFF_INTERVAL)
        else:
            self._emit_error(f"PSKReporter HTTP {status_code}")
            self._set_state(STATE_DISCONNECTED)
            self._schedule_poll(PSKREPORTER_BACKOFF_INTERVAL)

    def _handle_failure(self, message):
        if not self.active:
            return

        self._emit_error(f"PSKReporter: {message}")
        self._set_state(STATE_DISCONNECTED)
        self._schedule_poll(PSKREPORTER_BACKOFF_INTERVAL)
