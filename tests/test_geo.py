"""Tests for great-circle distance and geofence checks."""
import math
import pytest

from presence.errors import InvalidCoordinate
from presence.services.geo import EARTH_RADIUS_METERS, distance_meters, validate_coordinate, within_radius

CENTER = (48.8584, 2.2945)
METERS_PER_DEGREE = EARTH_RADIUS_METERS * math.pi / 180


def north_of(point, meters):
    return point[0] + meters / METERS_PER_DEGREE, point[1]


class TestDistance:
    """Haversine distance"""

    def test_same_point_is_zero(self):
        assert distance_meters(*CENTER, *CENTER) == 0.0

    def test_symmetric(self):
        other = (48.8628, 2.2872)
        assert distance_meters(*CENTER, *other) == pytest.approx(distance_meters(*other, *CENTER))

    def test_meridian_distance(self):
        assert distance_meters(*CENTER, *north_of(CENTER, 150)) == pytest.approx(150, abs=0.01)

    def test_one_degree_on_equator(self):
        assert distance_meters(0, 0, 0, 1) == pytest.approx(METERS_PER_DEGREE, rel=1e-9)

    def test_antipodal_points(self):
        assert distance_meters(0, 0, 0, 180) == pytest.approx(math.pi * EARTH_RADIUS_METERS)

    def test_close_to_tower(self):
        assert distance_meters(*CENTER, 48.8580, 2.2946) == pytest.approx(45, abs=3)

    @pytest.mark.parametrize("lat,lon", [
        (91, 0),
        (-90.5, 0),
        (0, 180.01),
        (float("nan"), 0),
        (0, float("inf")),
        ("48.8", 2.2),
        (True, 0),
    ])
    def test_invalid_coordinates_rejected(self, lat, lon):
        with pytest.raises(InvalidCoordinate):
            distance_meters(lat, lon, 0, 0)

    def test_boundaries_are_valid(self):
        validate_coordinate(90, 180)
        validate_coordinate(-90, -180)


class TestWithinRadius:
    """Geofence membership"""

    def test_center_is_inside(self):
        assert within_radius(CENTER, 200, CENTER)

    def test_zero_radius_only_admits_center(self):
        assert within_radius(CENTER, 0, CENTER)
        assert not within_radius(CENTER, 0, north_of(CENTER, 1))

    def test_just_inside(self):
        assert within_radius(CENTER, 200, north_of(CENTER, 199))

    def test_just_outside(self):
        assert not within_radius(CENTER, 200, north_of(CENTER, 201))

    def test_tower_scenario(self):
        assert within_radius(CENTER, 200, (48.8580, 2.2946))
        assert not within_radius(CENTER, 200, (48.8628, 2.2872))

    @pytest.mark.parametrize("radius", [-1, float("nan"), float("inf"), "200"])
    def test_invalid_radius(self, radius):
        with pytest.raises(InvalidCoordinate):
            within_radius(CENTER, radius, CENTER)

    def test_invalid_point(self):
        with pytest.raises(InvalidCoordinate):
            within_radius(CENTER, 200, (100, 0))
