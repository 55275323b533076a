"""
Geofence distance helpers.

Great-circle distance between a reported check-in coordinate and the
assigned site's reference point, plus the anomaly policy the display layer
uses to flag check-ins outside the site's allowed radius.

Limitations:
  - Spherical Earth (haversine); ellipsoidal error is well under a meter at
    geofence scale (< a few km).
"""

import math
from typing import Optional

from dashboard_config import DEFAULT_CONFIG

EARTH_RADIUS_M = 6371000.0

DEFAULT_ALLOWED_RADIUS_M = DEFAULT_CONFIG.geofence.default_allowed_radius_m


def haversine_m(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Haversine distance between two points, returned in meters."""
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    dphi = math.radians(lat2 - lat1)
    dlambda = math.radians(lon2 - lon1)

    a = (math.sin(dphi / 2) ** 2
         + math.cos(phi1) * math.cos(phi2) * math.sin(dlambda / 2) ** 2)
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))

    return EARTH_RADIUS_M * c


def effective_radius_m(allowed_radius_m: Optional[float]) -> float:
    """Site radius, or the default when the site has none configured (None or 0)."""
    if not allowed_radius_m:
        return DEFAULT_ALLOWED_RADIUS_M
    return float(allowed_radius_m)


def is_distance_anomaly(
    distance_m: Optional[float],
    allowed_radius_m: Optional[float] = None,
) -> bool:
    """True when a computed distance exceeds the site's allowed radius.

    A distance that was never computed (None) is not an anomaly; 0 is a
    real distance and is compared like any other.
    """
    if distance_m is None:
        return False
    return distance_m > effective_radius_m(allowed_radius_m)
