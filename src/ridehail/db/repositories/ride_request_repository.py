"""Ride request repository with a PENDING-guarded finalize."""

from datetime import datetime

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from ridehail.fare import FareBreakdown
from ridehail.geo.coordinates import Coordinate
from ridehail.ride_request import RideRequest as RideRequestDomain
from ridehail.ride_request import RideRequestStatus

from ..schema import RideRequest
from ..utils import ensure_utc, join_names, split_names


class RideRequestRepository:
    def __init__(self, session: Session):
        self.session = session

    def create(self, request: RideRequestDomain) -> None:
        row = RideRequest(
            id=request.id,
            user_id=request.user_id,
            driver_id=request.driver_id,
            pickup=request.pickup,
            destination=request.destination,
            pickup_lat=request.pickup_location.lat,
            pickup_lng=request.pickup_location.lng,
            destination_lat=request.destination_location.lat,
            destination_lng=request.destination_location.lng,
            distance=request.distance,
            vehicle_type=request.vehicle_type,
            base_fare=request.fare.base_fare,
            distance_fare=request.fare.distance_fare,
            time_surge=request.fare.time_surge,
            weather_surge=request.fare.weather_surge,
            demand_surge=request.fare.demand_surge,
            degraded_signals=join_names(request.fare.degraded_signals),
            total_fare=request.fare.total_fare,
            status=request.status.value,
            created_at=request.created_at,
            expires_at=request.expires_at,
        )
        self.session.add(row)
        self.session.flush()

    def get(self, request_id: str) -> RideRequestDomain | None:
        row = self.session.get(RideRequest, request_id)
        if row is None:
            return None
        return self._to_domain(row)

    def finalize(
        self,
        request_id: str,
        status: RideRequestStatus,
        finalized_at: datetime,
        ride_id: str | None = None,
    ) -> bool:
        """Move a PENDING request to a terminal status.

        Returns False when the request had already left PENDING, so at most
        one caller ever finalizes a request.
        """
        stmt = (
            update(RideRequest)
            .where(
                RideRequest.id == request_id,
                RideRequest.status == RideRequestStatus.PENDING.value,
            )
            .values(status=status.value, finalized_at=finalized_at, ride_id=ride_id)
        )
        return self.session.execute(stmt).rowcount == 1

    def find_accepted(self, request_id: str, driver_id: str, user_id: str) -> RideRequestDomain | None:
        """ACCEPTED request correlating this driver and rider."""
        stmt = select(RideRequest).where(
            RideRequest.id == request_id,
            RideRequest.driver_id == driver_id,
            RideRequest.user_id == user_id,
            RideRequest.status == RideRequestStatus.ACCEPTED.value,
        )
        row = self.session.execute(stmt).scalar_one_or_none()
        return self._to_domain(row) if row else None

    def link_ride(self, request_id: str, ride_id: str) -> None:
        stmt = (
            update(RideRequest)
            .where(RideRequest.id == request_id)
            .values(ride_id=ride_id)
        )
        self.session.execute(stmt)

    def has_pending_for_rider(self, user_id: str) -> bool:
        stmt = (
            select(RideRequest.id)
            .where(
                RideRequest.user_id == user_id,
                RideRequest.status == RideRequestStatus.PENDING.value,
            )
            .limit(1)
        )
        return self.session.execute(stmt).first() is not None

    def list_pending(self) -> list[RideRequestDomain]:
        stmt = (
            select(RideRequest)
            .where(RideRequest.status == RideRequestStatus.PENDING.value)
            .order_by(RideRequest.expires_at)
        )
        return [self._to_domain(r) for r in self.session.execute(stmt).scalars().all()]

    def _to_domain(self, row: RideRequest) -> RideRequestDomain:
        return RideRequestDomain(
            id=row.id,
            user_id=row.user_id,
            driver_id=row.driver_id,
            pickup=row.pickup,
            destination=row.destination,
            pickup_location=Coordinate(lat=row.pickup_lat, lng=row.pickup_lng),
            destination_location=Coordinate(lat=row.destination_lat, lng=row.destination_lng),
            distance=row.distance,
            vehicle_type=row.vehicle_type,
            fare=FareBreakdown(
                base_fare=row.base_fare,
                distance_fare=row.distance_fare,
                time_surge=row.time_surge,
                weather_surge=row.weather_surge,
                demand_surge=row.demand_surge,
                total_fare=row.total_fare,
                degraded_signals=split_names(row.degraded_signals),
            ),
            status=RideRequestStatus(row.status),
            created_at=ensure_utc(row.created_at),
            expires_at=ensure_utc(row.expires_at),
            finalized_at=ensure_utc(row.finalized_at) if row.finalized_at else None,
            ride_id=row.ride_id,
        )
