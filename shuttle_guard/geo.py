from math import radians, cos, sin, atan2, sqrt

from shuttle_guard.utils.variables import EARTH_RADIUS_M


def distance_meters(a, b) -> float:
    """
    Great-circle distance in meters between two (lat, lng) pairs (Haversine).
    """
    lat1, lng1 = a
    lat2, lng2 = b
    dlat = radians(lat2 - lat1)
    dlng = radians(lng2 - lng1)
    h = sin(dlat / 2) ** 2 + cos(radians(lat1)) * cos(radians(lat2)) * sin(dlng / 2) ** 2
    return EARTH_RADIUS_M * 2 * atan2(sqrt(h), sqrt(1 - h))
