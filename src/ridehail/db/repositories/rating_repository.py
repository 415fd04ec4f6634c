"""Driver rating repository."""

from uuid import uuid4

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from ..schema import DriverRating


class RatingRepository:
    def __init__(self, session: Session):
        self.session = session

    def create(
        self, ride_id: str, driver_id: str, user_id: str, rating: int, comment: str | None = None
    ) -> str:
        row = DriverRating(
            id=str(uuid4()),
            ride_id=ride_id,
            driver_id=driver_id,
            user_id=user_id,
            rating=rating,
            comment=comment,
        )
        self.session.add(row)
        self.session.flush()
        return row.id

    def exists_for_ride(self, ride_id: str) -> bool:
        stmt = select(func.count()).select_from(DriverRating).where(DriverRating.ride_id == ride_id)
        return (self.session.execute(stmt).scalar() or 0) > 0

    def average_for_driver(self, driver_id: str) -> float | None:
        stmt = select(func.avg(DriverRating.rating)).where(DriverRating.driver_id == driver_id)
        value = self.session.execute(stmt).scalar()
        return round(float(value), 2) if value is not None else None
