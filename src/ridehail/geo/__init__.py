"""Geospatial primitives: coordinates, distance, the H3 index and location oracles."""

from .coordinates import Coordinate, GeocodedLocation
from .distance import EARTH_RADIUS_KM, haversine_distance_km, is_in_radius
from .geo_index import GeoIndex, IndexedLocation

__all__ = [
    "EARTH_RADIUS_KM",
    "Coordinate",
    "GeoIndex",
    "GeocodedLocation",
    "IndexedLocation",
    "haversine_distance_km",
    "is_in_radius",
]
