import math
import threading
from dataclasses import dataclass
from datetime import datetime

import h3

from ridehail.core.exceptions import ValidationError
from ridehail.db.utils import utc_now

from .distance import haversine_distance_km

DEFAULT_RATING = 5.0


@dataclass(frozen=True)
class IndexedLocation:
    entity_id: str
    lat: float
    lng: float
    cell: str
    updated_at: datetime


def _validate_point(lat: float, lng: float) -> None:
    if not (-90.0 <= lat <= 90.0) or not (-180.0 <= lng <= 180.0):
        raise ValidationError("Coordinates out of range", {"lat": lat, "lng": lng})


class GeoIndex:
    """Spatial index of live positions using H3 hexagonal cells.

    Holds one entry per entity, replaced on every upsert. For drivers the
    index also mirrors availability and rating so radius queries can filter
    and tie-break without a database round trip; these mirrors are updated
    after the database commit and may be one update stale.
    """

    def __init__(self, h3_resolution: int = 9):
        self._h3_resolution = h3_resolution
        self._edge_km = h3.average_hexagon_edge_length(h3_resolution, unit="km")
        self._h3_cells: dict[str, set[str]] = {}
        self._locations: dict[str, IndexedLocation] = {}
        self._available: dict[str, bool] = {}
        self._ratings: dict[str, float] = {}
        self._lock = threading.Lock()

    def upsert(
        self,
        entity_id: str,
        lat: float,
        lng: float,
        updated_at: datetime | None = None,
    ) -> IndexedLocation:
        _validate_point(lat, lng)
        with self._lock:
            new_cell = self._get_h3_cell(lat, lng)
            previous = self._locations.get(entity_id)
            if previous is not None and previous.cell != new_cell:
                self._discard_from_cell(entity_id, previous.cell)
            self._h3_cells.setdefault(new_cell, set()).add(entity_id)

            entry = IndexedLocation(
                entity_id=entity_id,
                lat=lat,
                lng=lng,
                cell=new_cell,
                updated_at=updated_at or utc_now(),
            )
            self._locations[entity_id] = entry
            return entry

    def remove(self, entity_id: str) -> None:
        with self._lock:
            entry = self._locations.pop(entity_id, None)
            if entry is not None:
                self._discard_from_cell(entity_id, entry.cell)
            self._available.pop(entity_id, None)
            self._ratings.pop(entity_id, None)

    def get(self, entity_id: str) -> IndexedLocation | None:
        with self._lock:
            return self._locations.get(entity_id)

    def set_availability(self, entity_id: str, available: bool) -> None:
        with self._lock:
            self._available[entity_id] = available

    def set_rating(self, entity_id: str, rating: float) -> None:
        with self._lock:
            self._ratings[entity_id] = rating

    def is_available(self, entity_id: str) -> bool:
        with self._lock:
            return self._available.get(entity_id, True)

    def query_radius(
        self,
        lat: float,
        lng: float,
        radius_km: float,
        available_only: bool = False,
    ) -> list[tuple[str, float]]:
        """Entities within radius_km, nearest first.

        Ties on distance are broken by rating descending, then id ascending.
        Entities without a location are never returned.
        """
        _validate_point(lat, lng)
        if radius_km < 0:
            raise ValidationError("Radius must be non-negative", {"radius_km": radius_km})

        with self._lock:
            matches: list[tuple[str, float]] = []
            for entity_id in self._candidate_ids(lat, lng, radius_km):
                if available_only and not self._available.get(entity_id, True):
                    continue
                entry = self._locations[entity_id]
                distance = haversine_distance_km(lat, lng, entry.lat, entry.lng)
                if distance <= radius_km:
                    matches.append((entity_id, distance))

            matches.sort(
                key=lambda m: (m[1], -self._ratings.get(m[0], DEFAULT_RATING), m[0])
            )
            return matches

    def count_within(
        self,
        lat: float,
        lng: float,
        radius_km: float,
        available_only: bool = False,
    ) -> int:
        return len(self.query_radius(lat, lng, radius_km, available_only=available_only))

    def _candidate_ids(self, lat: float, lng: float, radius_km: float) -> list[str]:
        # Neighbouring cell centres are sqrt(3) edges apart; two extra rings
        # absorb cell size distortion and points near a cell boundary.
        k = math.ceil(radius_km / self._edge_km) + 2
        disk_size = 3 * k * (k + 1) + 1
        if disk_size >= len(self._locations):
            return list(self._locations)

        ids: list[str] = []
        for cell in h3.grid_disk(self._get_h3_cell(lat, lng), k):
            members = self._h3_cells.get(cell)
            if members:
                ids.extend(members)
        return ids

    def _discard_from_cell(self, entity_id: str, cell: str) -> None:
        members = self._h3_cells.get(cell)
        if members is None:
            return
        members.discard(entity_id)
        if not members:
            del self._h3_cells[cell]

    def _get_h3_cell(self, lat: float, lng: float) -> str:
        return h3.latlng_to_cell(lat, lng, self._h3_resolution)

    def __len__(self) -> int:
        with self._lock:
            return len(self._locations)

    def clear(self) -> None:
        with self._lock:
            self._h3_cells.clear()
            self._locations.clear()
            self._available.clear()
            self._ratings.clear()
