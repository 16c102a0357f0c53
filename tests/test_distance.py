"""Unit tests for great-circle distance and the H3 search disk."""

import pytest

from marketplace.domain.dispatch import pickup_cell, search_cells
from marketplace.domain.distance import distance_km, haversine_km, within
from marketplace.domain.entities import Coordinate
from tests.support import CENTER, north_of


class TestHaversine:
    def test_same_point_is_zero(self):
        assert haversine_km(12.97, 77.59, 12.97, 77.59) == 0.0

    def test_known_distance(self):
        # MG Road -> Kempegowda airport is ~25 km as the crow flies
        d = haversine_km(12.9756, 77.6050, 13.1986, 77.7066)
        assert 25.0 < d < 28.0

    def test_symmetric(self):
        d1 = haversine_km(12.0, 77.0, 13.0, 78.0)
        d2 = haversine_km(13.0, 78.0, 12.0, 77.0)
        assert abs(d1 - d2) < 1e-6

    def test_antipodal_points_do_not_fail(self):
        d = haversine_km(0.0, 0.0, 0.0, 180.0)
        assert d == pytest.approx(20015.09, rel=1e-3)


class TestWithin:
    def test_boundary_is_inclusive(self):
        far = north_of(CENTER, 5.0)
        assert within(CENTER, far, distance_km(CENTER, far))

    def test_two_km_is_within_five(self):
        assert within(CENTER, north_of(CENTER, 2.0), 5.0)

    def test_six_km_is_outside_five(self):
        assert not within(CENTER, north_of(CENTER, 6.0), 5.0)


class TestH3SearchDisk:
    def test_nearby_points_same_cell(self):
        """Two points ~1 m apart share an H3 res-7 cell."""
        assert pickup_cell(12.97160, 77.59460) == pickup_cell(12.97161, 77.59460)

    def test_distant_points_different_cell(self):
        assert pickup_cell(12.9716, 77.5946) != pickup_cell(28.6139, 77.2090)

    @pytest.mark.parametrize("km", [0.0, 1.0, 2.5, 4.0, 4.99])
    def test_disk_covers_every_pickup_inside_radius(self, km):
        cells = search_cells(CENTER, 5.0, 7)
        for point in (
            north_of(CENTER, km),
            north_of(CENTER, -km),
            Coordinate(CENTER.lat, CENTER.lng + km / 108.4),
        ):
            assert pickup_cell(point.lat, point.lng, 7) in cells

    def test_disk_does_not_cover_the_whole_city(self):
        cells = search_cells(CENTER, 5.0, 7)
        far = north_of(CENTER, 40.0)
        assert pickup_cell(far.lat, far.lng, 7) not in cells
