# utils.py

import os
import re
import sys

from PyQt6.QtCore import QCoreApplication, QStandardPaths

QCoreApplication.setApplicationName("POTACAT Radio Link")

AMATEUR_BANDS = {
        '160m'  : (1_800_000, 2_000_000),
        '80m'   : (3_500_000, 4_000_000),
        '60m'   : (5_330_000, 5_410_000),
        '40m'   : (7_000_000, 7_300_000),
        '30m'   : (10_100_000, 10_150_000),
        '20m'   : (14_000_000, 14_350_000),
        '17m'   : (18_068_000, 18_168_000),
        '15m'   : (21_000_000, 21_450_000),
        '12m'   : (24_890_000, 24_990_000),
        '10m'   : (28_000_000, 29_700_000),
        '6m'    : (50_000_000, 54_000_000),
        '2m'    : (144_000_000, 148_000_000),
        '70cm'  : (430_000_000, 440_000_000)
}

CQ_QUALIFIER_RE = re.compile(r"^[A-Z]{2,4}$")

def get_app_data_dir():
    if getattr(sys, 'frozen', False):
        app_data_dir = QStandardPaths.writableLocation(QStandardPaths.StandardLocation.AppDataLocation)
    else:
        app_data_dir = os.path.abspath(".")

    if not os.path.exists(app_data_dir):
        os.makedirs(app_data_dir)

    return app_data_dir

def get_amateur_band(frequency):
    """
        frequency is in Hz, returns None outside of known bands
    """
    if not frequency:
        return None

    for band, (lower_bound, upper_bound) in AMATEUR_BANDS.items():
        if lower_bound <= frequency <= upper_bound:
            return band

    return None

def extract_callsigns(message):
    """
        Extract callsigns from an FT8/FT4 decode message:

        "CQ K1ABC FN42"       -> dx_call = K1ABC
        "CQ DX K1ABC FN42"    -> dx_call = K1ABC (qualifier skipped)
        "CQ DX"               -> dx_call is empty
        "W2XYZ K1ABC R-12"    -> de_call = W2XYZ, dx_call = K1ABC

        Qualifiers run up to 4 letters rather than the usual 2 or 3, so
        "CQ POTA" and "CQ TEST" are skipped as well
    """
    if not message:
        return {'dx_call': '', 'de_call': ''}

    parts = [part.strip('<>') for part in message.strip().split()]
    if not parts:
        return {'dx_call': '', 'de_call': ''}

    if parts[0] == 'CQ':
        call_index = 1
        # A token made of letters only can't be a callsign
        if len(parts) > 1 and CQ_QUALIFIER_RE.match(parts[1]):
            call_index = 2
        dx_call = parts[call_index] if len(parts) > call_index else ''
        return {'dx_call': dx_call, 'de_call': ''}

    return {
        'de_call': parts[0],
        'dx_call': parts[1] if len(parts) > 1 else ''
    }

def clean_callsign(callsign):
    return re.sub(r"\s", "", callsign or "")

def spot_frequency_khz(spot):
    """
        Spots carry either 'frequency' (kHz, str or number) or 'freq_mhz'
    """
    frequency = spot.get('frequency')
    if frequency not in (None, ''):
        try:
            return float(frequency)
        except (TypeError, ValueError):
            return None

    freq_mhz = spot.get('freq_mhz')
    if freq_mhz in (None, ''):
        return None
    try:
        return float(freq_mhz) * 1000
    except (TypeError, ValueError):
        return None

def spot_frequency_mhz(spot):
    freq_mhz = spot.get('freq_mhz')
    if freq_mhz not in (None, ''):
        try:
            return float(freq_mhz)
        except (TypeError, ValueError):
            return None

    freq_khz = spot_frequency_khz(spot)
    return freq_khz / 1000 if freq_khz is not None else None

def hexdump(src, length=16):
    FILTER = ''.join([(len(repr(chr(x))) == 3) and chr(x) or '.' for x in range(256)])
    lines = []
    for c in range(0, len(src), length):
        chars = src[c:c + length]
        hex_str = ' '.join(["%02x" % x for x in chars])
        printable = ''.join(["%s" % ((x <= 127 and FILTER[x]) or '.') for x in chars])
        lines.append("%04x  %-*s  %s\n" % (c, length * 3, hex_str, printable))
    return ''.join(lines)
