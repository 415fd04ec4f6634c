"""Repository layer for database CRUD operations."""

from .driver_repository import DriverRepository
from .payment_repository import PaymentRepository
from .rating_repository import RatingRepository
from .ride_repository import RideRepository
from .ride_request_repository import RideRequestRepository
from .wallet_repository import WalletRepository

__all__ = [
    "DriverRepository",
    "PaymentRepository",
    "RatingRepository",
    "RideRepository",
    "RideRequestRepository",
    "WalletRepository",
]
