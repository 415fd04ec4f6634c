"""Catalog of user-facing notification texts."""

from decimal import Decimal

from pydantic import BaseModel

RIDE = "RIDE"
PAYMENT = "PAYMENT"
WALLET = "WALLET"


class NotificationMessage(BaseModel):
    title: str
    message: str
    category: str


def _amount(value: Decimal | float) -> str:
    return f"{Decimal(str(value)):.2f}"


def ride_requested(distance_km: float, fare: float, destination: str, pickup: str) -> NotificationMessage:
    return NotificationMessage(
        title="Ride Requested",
        message=(
            f"Your ride has been requested. Distance: {distance_km} km. "
            f"Fare: {_amount(fare)}. Destination: {destination}. Pickup: {pickup}."
        ),
        category=RIDE,
    )


def new_ride_request(rider_name: str, pickup: str) -> NotificationMessage:
    return NotificationMessage(
        title="New Ride Request",
        message=f"You have a new ride request from {rider_name} at {pickup}.",
        category=RIDE,
    )


def ride_accepted(driver_name: str) -> NotificationMessage:
    return NotificationMessage(
        title="Driver Assigned",
        message=f"Driver {driver_name} has accepted your ride",
        category=RIDE,
    )


def ride_rejected() -> NotificationMessage:
    return NotificationMessage(
        title="Driver Rejected",
        message="Driver rejected your request. Please try another time.",
        category=RIDE,
    )


def ride_cancelled() -> NotificationMessage:
    return NotificationMessage(
        title="Ride Canceled",
        message="The rider canceled this pickup.",
        category=RIDE,
    )


def ride_timed_out() -> NotificationMessage:
    return NotificationMessage(
        title="Driver is Busy",
        message="Driver is Busy. Please try another time.",
        category=RIDE,
    )


def ride_started(destination: str) -> NotificationMessage:
    return NotificationMessage(
        title="Ride Started", message=f"Enjoy your ride to {destination}.", category=RIDE
    )


def ride_completed(amount: Decimal | float) -> NotificationMessage:
    return NotificationMessage(
        title="Ride Completed",
        message=f"Your trip has ended. Fare: {_amount(amount)}.",
        category=RIDE,
    )


def rider_payment_success(amount: Decimal) -> NotificationMessage:
    return NotificationMessage(
        title="Payment Successful",
        message=f"Payment of {_amount(amount)} completed for ride.",
        category=PAYMENT,
    )


def driver_payment_success(amount: Decimal) -> NotificationMessage:
    return NotificationMessage(
        title="Payment Received",
        message=f"Your payment of {_amount(amount)} has been received.",
        category=PAYMENT,
    )


def payment_failed(amount: Decimal) -> NotificationMessage:
    return NotificationMessage(
        title="Payment Failed",
        message=f"We could not collect {_amount(amount)} for your ride. Please top up your wallet.",
        category=PAYMENT,
    )


def wallet_top_up_success(amount: Decimal) -> NotificationMessage:
    return NotificationMessage(
        title="Wallet Recharged", message=f"{_amount(amount)} added to your wallet.", category=WALLET
    )


def refund_issued(amount: Decimal) -> NotificationMessage:
    return NotificationMessage(
        title="Refund Issued", message=f"{_amount(amount)} has been refunded.", category=WALLET
    )
