"""Ride request state machine model."""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field

from ridehail.core.exceptions import InvalidTransitionError, RequestAlreadyFinalizedError
from ridehail.fare import FareBreakdown
from ridehail.geo.coordinates import Coordinate


class RideRequestStatus(str, Enum):
    """Ride request lifecycle states."""

    PENDING = "PENDING"
    ACCEPTED = "ACCEPTED"
    REJECTED = "REJECTED"
    TIMED_OUT = "TIMED_OUT"
    CANCELLED = "CANCELLED"

    @property
    def is_terminal(self) -> bool:
        return self != RideRequestStatus.PENDING


VALID_TRANSITIONS: dict[RideRequestStatus, set[RideRequestStatus]] = {
    RideRequestStatus.PENDING: {
        RideRequestStatus.ACCEPTED,
        RideRequestStatus.REJECTED,
        RideRequestStatus.CANCELLED,
        RideRequestStatus.TIMED_OUT,
    },
    RideRequestStatus.ACCEPTED: set(),
    RideRequestStatus.REJECTED: set(),
    RideRequestStatus.TIMED_OUT: set(),
    RideRequestStatus.CANCELLED: set(),
}


def check_transition(request_id: str, current: RideRequestStatus, new: RideRequestStatus) -> None:
    """Raise unless current -> new is allowed."""
    if current.is_terminal:
        raise RequestAlreadyFinalizedError(
            f"Ride request {request_id} already finalized as {current.value}",
            {"request_id": request_id, "status": current.value, "attempted": new.value},
        )
    if new not in VALID_TRANSITIONS[current]:
        raise InvalidTransitionError(
            f"Invalid transition from {current.value} to {new.value}",
            {"request_id": request_id},
        )


class RideRequest(BaseModel):
    """A rider's request to one driver, awaiting a response."""

    id: str
    user_id: str
    driver_id: str
    pickup: str
    destination: str
    pickup_location: Coordinate
    destination_location: Coordinate
    distance: float = Field(ge=0)
    vehicle_type: str
    fare: FareBreakdown
    status: RideRequestStatus = RideRequestStatus.PENDING
    created_at: datetime
    expires_at: datetime
    finalized_at: datetime | None = None
    ride_id: str | None = None

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at
