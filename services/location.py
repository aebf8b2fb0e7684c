"""Distance helper backing the "nearby tasks" query."""
from __future__ import annotations

import math

# WGS-84 equatorial radius, same constant the device geolocation plugin uses.
EARTH_RADIUS_M = 6378137.0


def distance_meters(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle (haversine) distance between two coordinates in meters."""
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lon2 - lon1)

    a = math.sin(d_phi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    return 2 * EARTH_RADIUS_M * math.asin(math.sqrt(min(1.0, a)))


__all__ = ["EARTH_RADIUS_M", "distance_meters"]
