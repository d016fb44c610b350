# settings.py

import os
import pickle

from logger import get_logger

from constants import (
    PARAMS_FILE,
    DEFAULT_UDP_ADDRESS,
    DEFAULT_UDP_PORT,
    DEFAULT_ENABLE_WSJTX,
    DEFAULT_ENABLE_SMARTSDR,
    DEFAULT_SMARTSDR_HOST,
    DEFAULT_ENABLE_TCI,
    DEFAULT_TCI_HOST,
    DEFAULT_TCI_PORT,
    DEFAULT_ENABLE_PSKREPORTER,
    DEFAULT_HOME_GRID,
    DEFAULT_LOG_PACKET_DATA,
    DEFAULT_ENABLE_LOG_FILE,
    PSKREPORTER_APP_CONTACT
)

log = get_logger(__name__)

DEFAULT_PARAMS = {
    'enable_wsjtx'              : DEFAULT_ENABLE_WSJTX,
    'udp_server_address'        : DEFAULT_UDP_ADDRESS,
    'udp_server_port'           : DEFAULT_UDP_PORT,
    'enable_smartsdr'           : DEFAULT_ENABLE_SMARTSDR,
    'smartsdr_host'             : DEFAULT_SMARTSDR_HOST,
    'smartsdr_persistent_id'    : None,
    'enable_tci'                : DEFAULT_ENABLE_TCI,
    'tci_host'                  : DEFAULT_TCI_HOST,
    'tci_port'                  : DEFAULT_TCI_PORT,
    'enable_pskreporter'        : DEFAULT_ENABLE_PSKREPORTER,
    'pskreporter_app_contact'   : PSKREPORTER_APP_CONTACT,
    'home_grid'                 : DEFAULT_HOME_GRID,
    'enable_log_packet_data'    : DEFAULT_LOG_PACKET_DATA,
    'enable_log_file'           : DEFAULT_ENABLE_LOG_FILE,
}

def load_params(params_file=PARAMS_FILE):
    params = dict(DEFAULT_PARAMS)

    if not os.path.exists(params_file):
        return params

    try:
        with open(params_file, "rb") as f:
            stored_params = pickle.load(f)
    except (pickle.UnpicklingError, EOFError, AttributeError, ValueError) as e:
        log.warning(f"Seems {params_file} is either empty or corrupted ({e}), removing it")
        os.remove(params_file)
        return params

    if isinstance(stored_params, dict):
        params.update(stored_params)
    else:
        log.warning(f"Ignoring {params_file}: unexpected content {type(stored_params).__name__}")

    return params

def save_params(params, params_file=PARAMS_FILE):
    with open(params_file, "wb") as f:
        pickle.dump(params, f)
