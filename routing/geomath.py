"""
Purpose: Pure distance / ETA math for the dispatch engine.
What it does:
- haversine great-circle distance between two (lat, lon) points
- speed based duration estimate with a floor
- coordinate validation that callers run before using the math

Rule: No state, no I/O. Callers reject bad coordinates before calling in.
"""

from __future__ import annotations

import math
from typing import Tuple

LatLon = Tuple[float, float]

EARTH_RADIUS_KM = 6371.0


class InvalidCoordinates(ValueError):
    """Raised when a latitude/longitude pair is missing, NaN or out of range."""
    pass


def validate_position(lat, lng) -> LatLon:
    """
    Returns a clean (lat, lng) float tuple or raises InvalidCoordinates.
    Booleans are rejected even though they are ints in Python.
    """
    for name, value in (("lat", lat), ("lng", lng)):
        if value is None or isinstance(value, bool) or not isinstance(value, (int, float)):
            raise InvalidCoordinates(f"{name} must be a number, got {value!r}")
        if math.isnan(value) or math.isinf(value):
            raise InvalidCoordinates(f"{name} must be finite, got {value!r}")

    if not -90.0 <= lat <= 90.0:
        raise InvalidCoordinates(f"lat out of range: {lat}")
    if not -180.0 <= lng <= 180.0:
        raise InvalidCoordinates(f"lng out of range: {lng}")

    return (float(lat), float(lng))


def distance_km(p1: LatLon, p2: LatLon) -> float:
    """
    Great-circle distance in kilometres between two (lat, lon) points.
    """
    lat1, lon1 = p1
    lat2, lon2 = p2

    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    delta_phi = math.radians(lat2 - lat1)
    delta_lambda = math.radians(lon2 - lon1)

    a = (
        math.sin(delta_phi / 2) ** 2
        + math.cos(phi1) * math.cos(phi2) * math.sin(delta_lambda / 2) ** 2
    )
    return 2 * EARTH_RADIUS_KM * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def estimate_duration_minutes(distance: float, avg_speed_kmh: float, minimum_minutes: int = 5) -> int:
    """
    ceil(distance / speed * 60), never below `minimum_minutes`.
    """
    if avg_speed_kmh <= 0:
        raise ValueError("avg_speed_kmh must be > 0")

    minutes = math.ceil(distance / avg_speed_kmh * 60)
    return max(minimum_minutes, minutes)
