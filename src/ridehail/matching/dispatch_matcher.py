"""Candidate ranking and atomic ride creation."""

import logging
from collections.abc import Callable
from datetime import datetime
from typing import Any
from uuid import uuid4

from pydantic import BaseModel
from sqlalchemy.orm import Session, sessionmaker

from ridehail.core.exceptions import ConflictError, DriverUnavailableError, NotFoundError
from ridehail.core.locks import KeyedLocks
from ridehail.db.repositories import DriverRepository, RideRepository, RideRequestRepository
from ridehail.db.transaction import transaction
from ridehail.db.utils import to_money, utc_now
from ridehail.driver import Driver
from ridehail.fare import FareBreakdown, FareEngine
from ridehail.geo.coordinates import Coordinate
from ridehail.geo.distance import haversine_distance_km
from ridehail.geo.geo_index import GeoIndex
from ridehail.ride import Ride, RideStatus, SettlementStatus

logger = logging.getLogger(__name__)


class DispatchCandidate(BaseModel):
    driver: Driver
    distance: float
    total_distance_to_destination: float
    fare_quote: FareBreakdown


class DispatchMatcher:
    """Ranks nearby drivers for a rider and turns an accepted request into a ride.

    ``create_ride`` is linearizable per driver: it holds the driver's lock and
    flips availability with a compare-and-swap UPDATE, so of two concurrent
    calls for one driver exactly one inserts a Ride and the other raises
    DriverUnavailableError.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Any],
        driver_index: GeoIndex,
        fare_engine: FareEngine,
        driver_locks: KeyedLocks,
        default_radius_km: float,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._session_factory = session_factory
        self._driver_index = driver_index
        self._fare_engine = fare_engine
        self._driver_locks = driver_locks
        self._default_radius_km = default_radius_km
        self._clock = clock

    def find_candidates(
        self,
        rider_location: Coordinate,
        destination: Coordinate,
        radius_km: float | None = None,
        now: datetime | None = None,
    ) -> list[DispatchCandidate]:
        radius = radius_km if radius_km is not None else self._default_radius_km
        now = now or self._clock()

        matches = self._driver_index.query_radius(
            rider_location.lat, rider_location.lng, radius, available_only=True
        )
        if not matches:
            return []

        with self._session_factory() as session:
            drivers = DriverRepository(session).get_many([driver_id for driver_id, _ in matches])

        trip_distance = haversine_distance_km(
            rider_location.lat, rider_location.lng, destination.lat, destination.lng
        )

        # One quote per vehicle class; the inputs are otherwise identical.
        quotes: dict[str, FareBreakdown] = {}
        candidates: list[DispatchCandidate] = []
        for driver_id, distance in matches:
            driver = drivers.get(driver_id)
            if driver is None or not driver.is_dispatchable:
                continue
            assert driver.vehicle_type is not None
            vehicle_type = driver.vehicle_type.value
            if vehicle_type not in quotes:
                quotes[vehicle_type] = self._fare_engine.quote(
                    trip_distance,
                    vehicle_type,
                    rider_location.lat,
                    rider_location.lng,
                    now=now,
                    radius_km=radius,
                )
            candidates.append(
                DispatchCandidate(
                    driver=driver,
                    distance=distance,
                    total_distance_to_destination=round(distance + trip_distance, 2),
                    fare_quote=quotes[vehicle_type],
                )
            )

        logger.debug("Found %d dispatchable drivers within %.1f km", len(candidates), radius)
        return candidates

    def create_ride(
        self,
        driver_id: str,
        rider_id: str,
        request_id: str,
        session: Session | None = None,
        now: datetime | None = None,
    ) -> Ride:
        """Insert the Ride for an ACCEPTED request and mark the driver UNAVAILABLE.

        With ``session`` the writes join the caller's transaction and the
        caller must call ``publish_availability`` after committing. Without
        one, the work runs in its own transaction.
        """
        now = now or self._clock()
        with self._driver_locks.hold(driver_id):
            if session is not None:
                return self._create_ride(session, driver_id, rider_id, request_id, now)

            with self._session_factory() as own_session, transaction(own_session):
                ride = self._create_ride(own_session, driver_id, rider_id, request_id, now)
            self.publish_availability(driver_id, False)
            return ride

    def _create_ride(
        self, session: Session, driver_id: str, rider_id: str, request_id: str, now: datetime
    ) -> Ride:
        driver_repo = DriverRepository(session)
        ride_repo = RideRepository(session)
        request_repo = RideRequestRepository(session)

        request = request_repo.find_accepted(request_id, driver_id, rider_id)
        if request is None:
            raise DriverUnavailableError(
                "No accepted request for this driver and rider",
                {"driver_id": driver_id, "rider_id": rider_id, "request_id": request_id},
            )
        if ride_repo.get_by_request(request_id) is not None:
            raise ConflictError(
                f"Ride request {request_id} already has a ride", {"request_id": request_id}
            )

        driver = driver_repo.get(driver_id)
        if driver is None:
            raise NotFoundError(f"Driver {driver_id} not found", {"driver_id": driver_id})
        if not driver.has_vehicle:
            raise DriverUnavailableError(
                f"Driver {driver_id} has no vehicle assigned", {"driver_id": driver_id}
            )
        if not driver_repo.claim(driver_id):
            raise DriverUnavailableError(
                f"Driver {driver_id} is not available", {"driver_id": driver_id}
            )

        ride = Ride(
            id=str(uuid4()),
            request_id=request.id,
            user_id=request.user_id,
            driver_id=driver_id,
            vehicle_id=driver.vehicle_id,
            vehicle_type=request.vehicle_type,
            pickup=request.pickup,
            destination=request.destination,
            pickup_location=request.pickup_location,
            destination_location=request.destination_location,
            distance=request.distance,
            fare=request.fare,
            total_fare=to_money(request.fare.total_fare),
            status=RideStatus.ACCEPTED,
            accepted_at=now,
            settlement_status=SettlementStatus.PENDING,
        )
        ride_repo.create(ride)
        request_repo.link_ride(request.id, ride.id)
        logger.info(
            "Ride created for driver %s", driver_id, extra={"ride_id": ride.id, "request_id": request_id}
        )
        return ride

    def publish_availability(self, driver_id: str, available: bool) -> None:
        """Mirror a committed availability change into the driver index."""
        self._driver_index.set_availability(driver_id, available)
