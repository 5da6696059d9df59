#Marks routing as a package.
#Re-exports the geo math so other modules import from routing without knowing internal file names.
#No business logic.

from .geomath import (
    EARTH_RADIUS_KM,
    InvalidCoordinates,
    LatLon,
    distance_km,
    estimate_duration_minutes,
    validate_position,
)

__all__ = [
    "EARTH_RADIUS_KM",
    "InvalidCoordinates",
    "LatLon",
    "distance_km",
    "estimate_duration_minutes",
    "validate_position",
]
