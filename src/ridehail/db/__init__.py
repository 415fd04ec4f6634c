"""Database persistence module."""

from .database import create_db_engine, init_database
from .schema import Base, Driver, DriverRating, Payment, Ride, RideRequest, Wallet, WalletTransaction
from .transaction import transaction

__all__ = [
    "create_db_engine",
    "init_database",
    "Base",
    "Driver",
    "DriverRating",
    "Payment",
    "Ride",
    "RideRequest",
    "Wallet",
    "WalletTransaction",
    "transaction",
]
