# logger.py

import logging
import os
import sys

from logging.handlers import TimedRotatingFileHandler
from colorama import init, Back, Fore, Style
from utils import get_app_data_dir

from constants import (
    GUI_LABEL_VERSION,
    LOG_FILENAME
)

# Init colorama for Windows
init()

LOG_FORMAT      = "[%(asctime)s @%(name)s] %(levelname)s --:\n\t%(message)s"
DATE_FORMAT     = "%y%m%d_%H%M%S"  # YYMMDD_HHMMSS

# requests talks a lot through urllib3 once DEBUG is on
NOISY_LOGGERS   = ('urllib3', 'requests')

class ColoredFormatter(logging.Formatter):
    COLOR_MAP = {
        'DEBUG'     : Fore.CYAN,
        'INFO'      : Fore.GREEN,
        'WARNING'   : Fore.YELLOW,
        'ERROR'     : Fore.RED,
        'CRITICAL'  : Back.RED + Fore.WHITE,
    }

    def format(self, record):
        message = super().format(record)
        color = self.COLOR_MAP.get(record.levelname)
        if not color:
            return message
        return f"{color}{message}{Style.RESET_ALL}"

def configure_root_logger(level=logging.INFO):
    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    if root_logger.hasHandlers():
        root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setFormatter(ColoredFormatter(LOG_FORMAT, datefmt=DATE_FORMAT))
    root_logger.addHandler(console_handler)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    root_logger.warning(GUI_LABEL_VERSION)

def set_level(level):
    """
        Only the root logger moves, third party loggers stay quiet
    """
    logging.getLogger().setLevel(level)

def add_timed_file_handler(log_dir=None):
    log_filename = os.path.join(log_dir or get_app_data_dir(), LOG_FILENAME)

    handler = TimedRotatingFileHandler(
        log_filename,
        when        = 'midnight',
        interval    = 1,
        backupCount = 7,
        encoding    = 'utf-8'
    )
    handler.suffix = "%y%m%d"
    handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))

    root_logger = logging.getLogger()
    root_logger.addHandler(handler)
    root_logger.info(f"Daily log file: {log_filename}")
    return handler

configure_root_logger()

def get_logger(name):
    return logging.getLogger(name)
