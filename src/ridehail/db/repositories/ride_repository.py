"""Ride repository with status-guarded transitions."""

from datetime import datetime

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from ridehail.fare import FareBreakdown
from ridehail.geo.coordinates import Coordinate
from ridehail.ride import Ride as RideDomain
from ridehail.ride import RideStatus, SettlementStatus

from ..schema import Ride
from ..utils import ensure_utc, join_names, split_names, to_money


class RideRepository:
    def __init__(self, session: Session):
        self.session = session

    def create(self, ride: RideDomain) -> None:
        row = Ride(
            id=ride.id,
            request_id=ride.request_id,
            user_id=ride.user_id,
            driver_id=ride.driver_id,
            vehicle_id=ride.vehicle_id,
            vehicle_type=ride.vehicle_type,
            pickup=ride.pickup,
            destination=ride.destination,
            pickup_lat=ride.pickup_location.lat,
            pickup_lng=ride.pickup_location.lng,
            destination_lat=ride.destination_location.lat,
            destination_lng=ride.destination_location.lng,
            distance=ride.distance,
            base_fare=ride.fare.base_fare,
            distance_fare=ride.fare.distance_fare,
            time_surge=ride.fare.time_surge,
            weather_surge=ride.fare.weather_surge,
            degraded_signals=join_names(ride.fare.degraded_signals),
            total_fare=ride.total_fare,
            status=ride.status.value,
            accepted_at=ride.accepted_at,
            settlement_status=ride.settlement_status.value,
        )
        self.session.add(row)
        self.session.flush()

    def get(self, ride_id: str) -> RideDomain | None:
        row = self.session.get(Ride, ride_id)
        if row is None:
            return None
        return self._to_domain(row)

    def get_by_request(self, request_id: str) -> RideDomain | None:
        stmt = select(Ride).where(Ride.request_id == request_id)
        row = self.session.execute(stmt).scalar_one_or_none()
        return self._to_domain(row) if row else None

    def mark_in_progress(self, ride_id: str, pickup_time: datetime) -> bool:
        stmt = (
            update(Ride)
            .where(Ride.id == ride_id, Ride.status == RideStatus.ACCEPTED.value)
            .values(status=RideStatus.IN_PROGRESS.value, pickup_time=pickup_time)
        )
        return self.session.execute(stmt).rowcount == 1

    def mark_completed(self, ride_id: str, drop_time: datetime, duration_minutes: int) -> bool:
        stmt = (
            update(Ride)
            .where(Ride.id == ride_id, Ride.status == RideStatus.IN_PROGRESS.value)
            .values(
                status=RideStatus.COMPLETED.value,
                drop_time=drop_time,
                duration_minutes=duration_minutes,
            )
        )
        return self.session.execute(stmt).rowcount == 1

    def set_settlement_status(self, ride_id: str, status: SettlementStatus) -> None:
        stmt = update(Ride).where(Ride.id == ride_id).values(settlement_status=status.value)
        self.session.execute(stmt)

    def list_by_settlement_status(self, status: SettlementStatus) -> list[RideDomain]:
        stmt = (
            select(Ride)
            .where(Ride.settlement_status == status.value)
            .order_by(Ride.accepted_at)
        )
        return [self._to_domain(r) for r in self.session.execute(stmt).scalars().all()]

    def _to_domain(self, row: Ride) -> RideDomain:
        return RideDomain(
            id=row.id,
            request_id=row.request_id,
            user_id=row.user_id,
            driver_id=row.driver_id,
            vehicle_id=row.vehicle_id,
            vehicle_type=row.vehicle_type,
            pickup=row.pickup,
            destination=row.destination,
            pickup_location=Coordinate(lat=row.pickup_lat, lng=row.pickup_lng),
            destination_location=Coordinate(lat=row.destination_lat, lng=row.destination_lng),
            distance=row.distance,
            fare=FareBreakdown(
                base_fare=row.base_fare,
                distance_fare=row.distance_fare,
                time_surge=row.time_surge,
                weather_surge=row.weather_surge,
                demand_surge=row.demand_surge,
                total_fare=float(row.total_fare),
                degraded_signals=split_names(row.degraded_signals),
            ),
            total_fare=to_money(row.total_fare),
            status=RideStatus(row.status),
            accepted_at=ensure_utc(row.accepted_at),
            pickup_time=ensure_utc(row.pickup_time) if row.pickup_time else None,
            drop_time=ensure_utc(row.drop_time) if row.drop_time else None,
            duration_minutes=row.duration_minutes,
            settlement_status=SettlementStatus(row.settlement_status),
        )
