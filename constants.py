# constants.py

import os

from utils import get_app_data_dir

CURRENT_VERSION_NUMBER          = "1.0"

APP_NAME                        = "POTACAT"
GUI_LABEL_NAME                  = "POTACAT Radio Link"
GUI_LABEL_VERSION               = f"{GUI_LABEL_NAME} build {CURRENT_VERSION_NUMBER}"

PARAMS_FILE                     = os.path.join(get_app_data_dir(), "params.pkl")
LOG_FILENAME                    = "potacat.log"

"""
    Connection states shared by every adapter
"""
STATE_DISCONNECTED              = "Disconnected"
STATE_LISTENING                 = "Listening"
STATE_CONNECTING                = "Connecting"
STATE_CONNECTED                 = "Connected"

RECONNECT_DELAY                 = 5_000 # ms

"""
    WSJT-X
"""
DEFAULT_UDP_ADDRESS             = "0.0.0.0"
DEFAULT_UDP_PORT                = 2237
HEARTBEAT_TIMEOUT_THRESHOLD     = 30 # seconds

"""
    SmartSDR
"""
SMARTSDR_PORT                   = 4992
SMARTSDR_SPOT_SOURCE            = APP_NAME
SMARTSDR_FREQ_CHANGE_THRESHOLD  = 0.0005 # MHz
SMARTSDR_IGNORED_STATUS         = 0x50001000
CLIENT_BIND_DELAY               = 500 # ms
CW_PTT_HOLDOFF                  = 1_500 # ms

SOURCE_COLORS                   = {
    'pota'                      : '#FF4ECCA3',
    'sota'                      : '#FFF0A500',
    'dxc'                       : '#FFE040FB',
    'rbn'                       : '#FF4FC3F7',
    'pskr'                      : '#FFFF6B6B',
}

SOURCE_LIFETIMES                = {
    'pota'                      : 600,
    'sota'                      : 600,
    'dxc'                       : 300,
    'rbn'                       : 120,
    'pskr'                      : 300,
}

DEFAULT_SOURCE                  = 'pota'
DEFAULT_SPOT_LIFETIME           = 600

"""
    TCI
"""
DEFAULT_TCI_PORT                = 50001
TCI_FREQ_CHANGE_THRESHOLD       = 50 # Hz
TCI_DEFAULT_MODE                = "USB"

TCI_SOURCE_COLORS               = {
    'pota'                      : 0xFF4ECCA3,
    'sota'                      : 0xFFF0A500,
    'dxc'                       : 0xFFE040FB,
    'rbn'                       : 0xFF4FC3F7,
    'pskr'                      : 0xFFFF6B6B,
}

"""
    PSKReporter
"""
PSKREPORTER_QUERY_URL           = "https://retrieve.pskreporter.info/query"
PSKREPORTER_APP_CONTACT         = "potacat-app"
PSKREPORTER_MODE                = "FREEDV"
PSKREPORTER_POLL_INTERVAL       = 300_000 # ms
PSKREPORTER_BACKOFF_INTERVAL    = 600_000 # ms
PSKREPORTER_REQUEST_TIMEOUT     = 15 # seconds
PSKREPORTER_USER_AGENT          = f"{GUI_LABEL_NAME.replace(' ', '-')}/{CURRENT_VERSION_NUMBER} (Python)"

"""
    WWFF Spotline
"""
WWFF_HOST                       = "spots.wwff.co"
WWFF_PORT                       = 7300
WWFF_TIMEOUT                    = 10_000 # ms
WWFF_CLOSE_DELAY                = 1_500 # ms

"""
    Default parameters, overridden by params.pkl and command line
"""
DEFAULT_ENABLE_WSJTX            = True
DEFAULT_ENABLE_SMARTSDR         = False
DEFAULT_SMARTSDR_HOST           = "127.0.0.1"
DEFAULT_ENABLE_TCI              = False
DEFAULT_TCI_HOST                = "127.0.0.1"
DEFAULT_ENABLE_PSKREPORTER      = False
DEFAULT_HOME_GRID               = ""
DEFAULT_LOG_PACKET_DATA         = False
DEFAULT_ENABLE_LOG_FILE         = False
