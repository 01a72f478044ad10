"""
Geographic distance helpers.

The classifier's proximity check uses the flat equirectangular degree
approximation. A haversine variant is provided for operating areas away
from low/mid latitudes.
"""

import math

# Kilometres per degree of arc, rounded as used by the dashboard
KM_PER_DEGREE = 111.0

EARTH_RADIUS_KM = 6371.0088


def equirectangular_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """
    Approximate distance as the euclidean degree offset times 111 km.

    Args:
        lat1, lon1: First point (degrees)
        lat2, lon2: Second point (degrees)

    Returns:
        Distance in kilometres

    Example:
        >>> round(equirectangular_km(31.0, 34.0, 32.0, 34.0), 1)
        111.0
    """
    return math.hypot(lat1 - lat2, lon1 - lon2) * KM_PER_DEGREE


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance in kilometres between two lat/lon points."""
    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    dphi = math.radians(lat2 - lat1)
    dlam = math.radians(lon2 - lon1)
    a = math.sin(dphi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(dlam / 2) ** 2
    return EARTH_RADIUS_KM * 2 * math.asin(math.sqrt(a))


DISTANCE_METHODS = {
    "equirectangular": equirectangular_km,
    "haversine": haversine_km,
}
