"""Ride state machine model."""

from datetime import datetime
from decimal import Decimal
from enum import Enum

from pydantic import BaseModel, Field

from ridehail.core.exceptions import InvalidTransitionError
from ridehail.fare import FareBreakdown
from ridehail.geo.coordinates import Coordinate


class RideStatus(str, Enum):
    ACCEPTED = "ACCEPTED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"


class SettlementStatus(str, Enum):
    PENDING = "PENDING"
    SETTLED = "SETTLED"
    NEEDS_RECONCILIATION = "NEEDS_RECONCILIATION"


VALID_TRANSITIONS: dict[RideStatus, set[RideStatus]] = {
    RideStatus.ACCEPTED: {RideStatus.IN_PROGRESS},
    RideStatus.IN_PROGRESS: {RideStatus.COMPLETED},
    RideStatus.COMPLETED: set(),
}


def check_transition(ride_id: str, current: RideStatus, new: RideStatus) -> None:
    if new not in VALID_TRANSITIONS[current]:
        raise InvalidTransitionError(
            f"Invalid transition from {current.value} to {new.value}",
            {"ride_id": ride_id, "status": current.value, "attempted": new.value},
        )


class Ride(BaseModel):
    """An accepted trip, linked 1:1 to the request that spawned it."""

    id: str
    request_id: str
    user_id: str
    driver_id: str
    vehicle_id: str | None = None
    vehicle_type: str
    pickup: str
    destination: str
    pickup_location: Coordinate
    destination_location: Coordinate
    distance: float = Field(ge=0)
    fare: FareBreakdown
    total_fare: Decimal
    status: RideStatus = RideStatus.ACCEPTED
    accepted_at: datetime
    pickup_time: datetime | None = None
    drop_time: datetime | None = None
    duration_minutes: int | None = None
    settlement_status: SettlementStatus = SettlementStatus.PENDING
