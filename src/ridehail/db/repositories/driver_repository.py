"""Driver repository: profile reads and availability flips."""

from decimal import Decimal

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from ridehail.driver import Driver as DriverDomain
from ridehail.driver import DriverStatus, VehicleType

from ..schema import Driver
from ..utils import to_money, utc_now


class DriverRepository:
    """Repository for driver rows.

    Availability changes go through conditional UPDATEs so a stale read in
    one thread can never flip a driver another thread already claimed.
    """

    def __init__(self, session: Session):
        self.session = session

    def create(
        self,
        driver_id: str,
        name: str | None = None,
        vehicle_id: str | None = None,
        vehicle_type: VehicleType | None = None,
        is_active: bool = True,
    ) -> DriverDomain:
        driver = Driver(
            id=driver_id,
            name=name,
            status=DriverStatus.AVAILABLE.value,
            is_active=is_active,
            vehicle_id=vehicle_id,
            vehicle_type=vehicle_type.value if vehicle_type else None,
            rating=5.0,
            total_rides=0,
            total_distance=0.0,
            total_time=0,
            total_earnings=Decimal("0.00"),
        )
        self.session.add(driver)
        self.session.flush()
        return self._to_domain(driver)

    def get(self, driver_id: str) -> DriverDomain | None:
        driver = self.session.get(Driver, driver_id)
        if driver is None:
            return None
        return self._to_domain(driver)

    def get_many(self, driver_ids: list[str]) -> dict[str, DriverDomain]:
        if not driver_ids:
            return {}
        stmt = select(Driver).where(Driver.id.in_(driver_ids))
        result = self.session.execute(stmt)
        return {d.id: self._to_domain(d) for d in result.scalars().all()}

    def claim(self, driver_id: str) -> bool:
        """Flip AVAILABLE -> UNAVAILABLE. Returns False if another caller won."""
        stmt = (
            update(Driver)
            .where(
                Driver.id == driver_id,
                Driver.status == DriverStatus.AVAILABLE.value,
                Driver.is_active.is_(True),
            )
            .values(status=DriverStatus.UNAVAILABLE.value, updated_at=utc_now())
        )
        return self.session.execute(stmt).rowcount == 1

    def release(self, driver_id: str) -> None:
        stmt = (
            update(Driver)
            .where(Driver.id == driver_id)
            .values(status=DriverStatus.AVAILABLE.value, updated_at=utc_now())
        )
        self.session.execute(stmt)

    def set_active(self, driver_id: str, is_active: bool) -> None:
        stmt = (
            update(Driver)
            .where(Driver.id == driver_id)
            .values(is_active=is_active, updated_at=utc_now())
        )
        self.session.execute(stmt)

    def record_completed_ride(
        self, driver_id: str, distance_km: float, minutes: int, earnings: Decimal
    ) -> None:
        """Increment cumulative totals in place, never read-modify-write."""
        stmt = (
            update(Driver)
            .where(Driver.id == driver_id)
            .values(
                total_rides=Driver.total_rides + 1,
                total_distance=Driver.total_distance + distance_km,
                total_time=Driver.total_time + minutes,
                total_earnings=Driver.total_earnings + to_money(earnings),
                updated_at=utc_now(),
            )
        )
        self.session.execute(stmt)

    def update_rating(self, driver_id: str, rating: float) -> None:
        stmt = (
            update(Driver)
            .where(Driver.id == driver_id)
            .values(rating=rating, updated_at=utc_now())
        )
        self.session.execute(stmt)

    def _to_domain(self, driver: Driver) -> DriverDomain:
        return DriverDomain(
            id=driver.id,
            name=driver.name,
            status=DriverStatus(driver.status),
            is_active=driver.is_active,
            vehicle_id=driver.vehicle_id,
            vehicle_type=VehicleType(driver.vehicle_type) if driver.vehicle_type else None,
            rating=driver.rating,
            total_rides=driver.total_rides,
            total_distance=driver.total_distance,
            total_time=driver.total_time,
            total_earnings=to_money(driver.total_earnings),
        )
