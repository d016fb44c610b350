# grid.py
#
# Maidenhead locator helpers

from math import asin, atan2, cos, degrees, radians, sin, sqrt

EARTH_RADIUS_MILES = 3958.8

def grid_to_lat_lon(grid):
    """
        Returns the (lat, lon) center of a 4 or 6 character locator,
        None if the locator can't be parsed
    """
    if not grid or len(grid) < 4:
        return None

    locator = grid.strip().upper()
    if (
        not ('A' <= locator[0] <= 'R' and 'A' <= locator[1] <= 'R') or
        not (locator[2].isdigit() and locator[3].isdigit())
    ):
        return None

    lon = (ord(locator[0]) - 65) * 20 + int(locator[2]) * 2 - 180
    lat = (ord(locator[1]) - 65) * 10 + int(locator[3]) - 90

    if len(locator) >= 6 and 'A' <= locator[4] <= 'X' and 'A' <= locator[5] <= 'X':
        lon += (ord(locator[4]) - 65) * (2 / 24) + 1 / 24
        lat += (ord(locator[5]) - 65) * (1 / 24) + 1 / 48
    else:
        lon += 1
        lat += 0.5

    return lat, lon

def lat_lon_to_grid(lat, lon):
    lon += 180
    lat += 90

    field = chr(65 + int(lon // 20)) + chr(65 + int(lat // 10))
    lon %= 20
    lat %= 10

    square_lon = int(lon // 2)
    square_lat = int(lat // 1)
    lon -= square_lon * 2
    lat -= square_lat

    subsquare = chr(97 + int(lon // (2 / 24))) + chr(97 + int(lat // (1 / 24)))
    return f"{field}{square_lon}{square_lat}{subsquare}"

def haversine_distance_miles(lat1, lon1, lat2, lon2):
    lat1, lon1, lat2, lon2 = map(radians, [lat1, lon1, lat2, lon2])

    dlat = lat2 - lat1
    dlon = lon2 - lon1
    a = sin(dlat / 2) ** 2 + cos(lat1) * cos(lat2) * sin(dlon / 2) ** 2
    return EARTH_RADIUS_MILES * 2 * asin(min(1.0, sqrt(a)))

def bearing(lat1, lon1, lat2, lon2):
    """
        Initial great circle bearing in degrees, 0 is north
    """
    lat1, lat2 = radians(lat1), radians(lat2)
    dlon = radians(lon2 - lon1)

    y = sin(dlon) * cos(lat2)
    x = cos(lat1) * sin(lat2) - sin(lat1) * cos(lat2) * cos(dlon)
    return (degrees(atan2(y, x)) + 360) % 360
