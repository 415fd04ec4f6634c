"""Shared building blocks: error taxonomy and per-entity locking."""

from .exceptions import (
    ConflictError,
    DriverUnavailableError,
    InsufficientBalanceError,
    InvalidTransitionError,
    InvariantViolation,
    LedgerInvariantViolation,
    LocationUnresolvableError,
    NotFoundError,
    PaymentGatewayError,
    PickupTimeMissingError,
    RequestAlreadyFinalizedError,
    RideAlreadySettledError,
    RideHailError,
    UpstreamError,
    ValidationError,
    WeatherServiceError,
)
from .locks import KeyedLocks

__all__ = [
    "ConflictError",
    "DriverUnavailableError",
    "InsufficientBalanceError",
    "InvalidTransitionError",
    "InvariantViolation",
    "KeyedLocks",
    "LedgerInvariantViolation",
    "LocationUnresolvableError",
    "NotFoundError",
    "PaymentGatewayError",
    "PickupTimeMissingError",
    "RequestAlreadyFinalizedError",
    "RideAlreadySettledError",
    "RideHailError",
    "UpstreamError",
    "ValidationError",
    "WeatherServiceError",
]
