"""
Great-circle distance and geofence checks.

Haversine on a spherical Earth of radius 6,371,000 m.
"""
import math

from ..errors import InvalidCoordinate

EARTH_RADIUS_METERS = 6_371_000.0


def validate_coordinate(latitude: float, longitude: float) -> None:
    """Raise InvalidCoordinate for non-finite or out-of-range values."""
    for name, value, limit in (("latitude", latitude, 90.0), ("longitude", longitude, 180.0)):
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise InvalidCoordinate(f"{name} must be a number", **{name: repr(value)})
        if not math.isfinite(value):
            raise InvalidCoordinate(f"{name} must be finite", **{name: str(value)})
        if abs(value) > limit:
            raise InvalidCoordinate(f"{name} must be within ±{limit:g}", **{name: value})


def distance_meters(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Distance in meters between two coordinates."""
    validate_coordinate(lat1, lon1)
    validate_coordinate(lat2, lon2)

    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    delta_phi = math.radians(lat2 - lat1)
    delta_lambda = math.radians(lon2 - lon1)

    a = (math.sin(delta_phi / 2) ** 2 +
         math.cos(phi1) * math.cos(phi2) *
         math.sin(delta_lambda / 2) ** 2)
    # Rounding can push `a` a hair past 1 for antipodal points
    a = min(1.0, a)
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))

    return EARTH_RADIUS_METERS * c


def within_radius(center: tuple[float, float], radius_meters: float, point: tuple[float, float]) -> bool:
    """True when `point` is at most `radius_meters` from `center`."""
    if isinstance(radius_meters, bool) or not isinstance(radius_meters, (int, float)) \
            or not math.isfinite(radius_meters) or radius_meters < 0:
        raise InvalidCoordinate("radius must be a finite, non-negative number", radius_meters=repr(radius_meters))
    return distance_meters(center[0], center[1], point[0], point[1]) <= radius_meters
