"""Driver availability and profile models."""

from decimal import Decimal
from enum import Enum

from pydantic import BaseModel, Field


class DriverStatus(str, Enum):
    AVAILABLE = "AVAILABLE"
    UNAVAILABLE = "UNAVAILABLE"


class VehicleType(str, Enum):
    ECONOMY = "ECONOMY"
    PREMIUM = "PREMIUM"
    LUXURY = "LUXURY"


class Driver(BaseModel):
    """Driver profile as seen by dispatch and settlement."""

    id: str
    name: str | None = None
    status: DriverStatus = DriverStatus.AVAILABLE
    is_active: bool = True
    vehicle_id: str | None = None
    vehicle_type: VehicleType | None = None
    rating: float = Field(default=5.0, ge=0.0, le=5.0)
    total_rides: int = Field(default=0, ge=0)
    total_distance: float = Field(default=0.0, ge=0.0)
    total_time: int = Field(default=0, ge=0)
    total_earnings: Decimal = Field(default=Decimal("0.00"), ge=0)

    @property
    def has_vehicle(self) -> bool:
        return self.vehicle_id is not None and self.vehicle_type is not None

    @property
    def is_dispatchable(self) -> bool:
        """Active, AVAILABLE and able to carry a rider. Location is checked by the index."""
        return self.is_active and self.status == DriverStatus.AVAILABLE and self.has_vehicle
