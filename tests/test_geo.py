import math

import pytest

from driveads.geo import EARTH_RADIUS_KM, distance_km, implied_speed_kph, is_valid_coordinate


class TestDistance:
    """Test great-circle distance."""

    def test_same_point(self):
        assert distance_km(-23.5505, -46.6333, -23.5505, -46.6333) == 0.0

    def test_one_degree_of_latitude(self):
        """One degree along a meridian is R * pi / 180."""
        expected = EARTH_RADIUS_KM * math.pi / 180
        assert distance_km(0.0, 0.0, 1.0, 0.0) == pytest.approx(expected, rel=1e-9)

    def test_symmetric(self):
        forward = distance_km(51.5074, -0.1278, 48.8566, 2.3522)
        backward = distance_km(48.8566, 2.3522, 51.5074, -0.1278)
        assert forward == pytest.approx(backward)

    def test_london_paris(self):
        assert distance_km(51.5074, -0.1278, 48.8566, 2.3522) == pytest.approx(343.5, abs=1.0)

    def test_antipodal_points(self):
        """Half the circumference for opposite points."""
        assert distance_km(0.0, 0.0, 0.0, 180.0) == pytest.approx(math.pi * EARTH_RADIUS_KM, rel=1e-9)


class TestCoordinateValidation:
    """Test coordinate range checks."""

    @pytest.mark.parametrize("lat,lon", [(0, 0), (90, 180), (-90, -180), (-23.55, -46.63)])
    def test_valid(self, lat, lon):
        assert is_valid_coordinate(lat, lon)

    @pytest.mark.parametrize("lat,lon", [(90.1, 0), (-90.1, 0), (0, 180.5), (0, -181), (float("nan"), 0), (None, 0)])
    def test_invalid(self, lat, lon):
        assert not is_valid_coordinate(lat, lon)


class TestImpliedSpeed:
    """Test speed from distance and elapsed time."""

    def test_speed(self):
        assert implied_speed_kph(10.0, 1800) == pytest.approx(20.0)

    def test_zero_elapsed(self):
        assert implied_speed_kph(5.0, 0) == 0.0

    def test_negative_elapsed(self):
        assert implied_speed_kph(5.0, -10) == 0.0
