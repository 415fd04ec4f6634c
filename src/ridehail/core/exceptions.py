"""Standardized exception hierarchy for the ride-hail core."""

from typing import Any


class RideHailError(Exception):
    """Base exception for all ride-hail errors."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ValidationError(RideHailError):
    """Missing or malformed input, rejected before any state mutation."""

    pass


class NotFoundError(RideHailError):
    """Requested entity does not exist."""

    pass


class ConflictError(RideHailError):
    """Operation conflicts with the current state of an entity."""

    pass


class DriverUnavailableError(ConflictError):
    """Driver is not available for a new ride."""

    pass


class InvalidTransitionError(ConflictError):
    """Requested state transition is not allowed from the current state."""

    pass


class RequestAlreadyFinalizedError(InvalidTransitionError):
    """Ride request already left PENDING."""

    pass


class InsufficientBalanceError(ConflictError):
    """Wallet balance does not cover the requested debit."""

    pass


class RideAlreadySettledError(ConflictError):
    """Ride already has a settlement payment."""

    pass


class UpstreamError(RideHailError):
    """External oracle or gateway failed. Retried only by the caller."""

    pass


class LocationUnresolvableError(UpstreamError):
    """Address could not be turned into a coordinate or travel time."""

    pass


class WeatherServiceError(UpstreamError):
    """Weather oracle unreachable or returned an unusable payload."""

    pass


class PaymentGatewayError(UpstreamError):
    """Payment gateway unreachable or rejected the call."""

    pass


class InvariantViolation(RideHailError):
    """Internal consistency rule broken. Always fatal to the operation."""

    pass


class PickupTimeMissingError(InvariantViolation):
    """Ride completion attempted without a recorded pickup time."""

    pass


class LedgerInvariantViolation(InvariantViolation):
    """Ledger replay does not reproduce the stored wallet balance."""

    pass
