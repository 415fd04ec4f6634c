import pytest

from ridehail.geo.distance import haversine_distance_km, is_in_radius
from tests.factories import IBIRAPUERA_PARK, PAULISTA_AVE


@pytest.mark.unit
class TestHaversine:
    def test_one_degree_of_longitude_on_equator(self):
        assert haversine_distance_km(0.0, 0.0, 0.0, 1.0) == 111.19

    def test_same_point_is_zero(self):
        assert haversine_distance_km(*PAULISTA_AVE, *PAULISTA_AVE) == 0.0

    def test_symmetric(self):
        there = haversine_distance_km(*PAULISTA_AVE, *IBIRAPUERA_PARK)
        back = haversine_distance_km(*IBIRAPUERA_PARK, *PAULISTA_AVE)

        assert there == back

    def test_rounded_to_two_decimals(self):
        distance = haversine_distance_km(*PAULISTA_AVE, *IBIRAPUERA_PARK)

        assert distance == round(distance, 2)
        assert 2.6 < distance < 2.9

    def test_antipodal_points(self):
        assert haversine_distance_km(0.0, 0.0, 0.0, 180.0) == 20015.09


@pytest.mark.unit
class TestIsInRadius:
    def test_boundary_is_inclusive(self):
        assert is_in_radius(0.0, 0.0, 0.0, 1.0, 111.19)

    def test_just_outside(self):
        assert not is_in_radius(0.0, 0.0, 0.0, 1.0, 111.18)
