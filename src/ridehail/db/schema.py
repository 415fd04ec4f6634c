"""SQLAlchemy ORM models for dispatch, rides and the wallet ledger."""

from datetime import datetime
from decimal import Decimal

from sqlalchemy import (
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from .utils import utc_now

MONEY = Numeric(12, 2, asdecimal=True)


class Base(DeclarativeBase):
    pass


class Driver(Base):
    __tablename__ = "drivers"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    name: Mapped[str | None] = mapped_column(String, nullable=True)
    status: Mapped[str] = mapped_column(String, nullable=False, default="AVAILABLE")
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    vehicle_id: Mapped[str | None] = mapped_column(String, nullable=True)
    vehicle_type: Mapped[str | None] = mapped_column(String, nullable=True)
    rating: Mapped[float] = mapped_column(Float, default=5.0)
    total_rides: Mapped[int] = mapped_column(Integer, default=0)
    total_distance: Mapped[float] = mapped_column(Float, default=0.0)
    total_time: Mapped[int] = mapped_column(Integer, default=0)
    total_earnings: Mapped[Decimal] = mapped_column(MONEY, default=Decimal("0.00"))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now
    )

    __table_args__ = (Index("idx_driver_status", "status"),)


class RideRequest(Base):
    __tablename__ = "ride_requests"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    user_id: Mapped[str] = mapped_column(String, nullable=False)
    driver_id: Mapped[str] = mapped_column(String, ForeignKey("drivers.id"), nullable=False)
    pickup: Mapped[str] = mapped_column(String, nullable=False)
    destination: Mapped[str] = mapped_column(String, nullable=False)
    pickup_lat: Mapped[float] = mapped_column(Float, nullable=False)
    pickup_lng: Mapped[float] = mapped_column(Float, nullable=False)
    destination_lat: Mapped[float] = mapped_column(Float, nullable=False)
    destination_lng: Mapped[float] = mapped_column(Float, nullable=False)
    distance: Mapped[float] = mapped_column(Float, nullable=False)
    vehicle_type: Mapped[str] = mapped_column(String, nullable=False)
    base_fare: Mapped[float] = mapped_column(Float, nullable=False)
    distance_fare: Mapped[float] = mapped_column(Float, nullable=False)
    time_surge: Mapped[float] = mapped_column(Float, nullable=False)
    weather_surge: Mapped[float] = mapped_column(Float, nullable=False)
    demand_surge: Mapped[float] = mapped_column(Float, nullable=False)
    # Comma-separated names of surge signals that fell back to 0
    degraded_signals: Mapped[str] = mapped_column(String, nullable=False, default="")
    total_fare: Mapped[float] = mapped_column(Float, nullable=False)
    status: Mapped[str] = mapped_column(String, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    finalized_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    ride_id: Mapped[str | None] = mapped_column(String, nullable=True)

    __table_args__ = (
        Index("idx_request_status", "status"),
        Index("idx_request_driver", "driver_id", "status"),
    )


class Ride(Base):
    __tablename__ = "rides"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    request_id: Mapped[str] = mapped_column(
        String, ForeignKey("ride_requests.id"), nullable=False, unique=True
    )
    user_id: Mapped[str] = mapped_column(String, nullable=False)
    driver_id: Mapped[str] = mapped_column(String, ForeignKey("drivers.id"), nullable=False)
    vehicle_id: Mapped[str | None] = mapped_column(String, nullable=True)
    vehicle_type: Mapped[str] = mapped_column(String, nullable=False)
    pickup: Mapped[str] = mapped_column(String, nullable=False)
    destination: Mapped[str] = mapped_column(String, nullable=False)
    pickup_lat: Mapped[float] = mapped_column(Float, nullable=False)
    pickup_lng: Mapped[float] = mapped_column(Float, nullable=False)
    destination_lat: Mapped[float] = mapped_column(Float, nullable=False)
    destination_lng: Mapped[float] = mapped_column(Float, nullable=False)
    distance: Mapped[float] = mapped_column(Float, nullable=False)
    base_fare: Mapped[float] = mapped_column(Float, nullable=False)
    distance_fare: Mapped[float] = mapped_column(Float, nullable=False)
    time_surge: Mapped[float] = mapped_column(Float, nullable=False)
    weather_surge: Mapped[float] = mapped_column(Float, nullable=False)
    demand_surge: Mapped[float] = mapped_column(Float, nullable=False)
    # Comma-separated names of surge signals that fell back to 0
    degraded_signals: Mapped[str] = mapped_column(String, nullable=False, default="")
    total_fare: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    status: Mapped[str] = mapped_column(String, nullable=False)
    accepted_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    pickup_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    drop_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    duration_minutes: Mapped[int | None] = mapped_column(Integer, nullable=True)
    settlement_status: Mapped[str] = mapped_column(String, nullable=False, default="PENDING")

    __table_args__ = (
        Index("idx_ride_driver", "driver_id"),
        Index("idx_ride_user", "user_id"),
        Index("idx_ride_settlement", "settlement_status"),
    )


class Wallet(Base):
    __tablename__ = "wallets"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    owner_id: Mapped[str] = mapped_column(String, nullable=False, unique=True)
    balance: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=Decimal("0.00"))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now
    )


class WalletTransaction(Base):
    """Append-only ledger entry. The integer key fixes creation order."""

    __tablename__ = "wallet_transactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    wallet_id: Mapped[str] = mapped_column(String, ForeignKey("wallets.id"), nullable=False)
    amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    transaction_type: Mapped[str] = mapped_column(String, nullable=False)
    balance_before: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    balance_after: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    reference_id: Mapped[str] = mapped_column(String, nullable=False)
    parent_payment_id: Mapped[str | None] = mapped_column(String, nullable=True)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)

    __table_args__ = (
        Index("idx_wallet_txn_wallet", "wallet_id", "id"),
        Index("idx_wallet_txn_payment", "parent_payment_id"),
    )


class Payment(Base):
    __tablename__ = "payments"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    user_id: Mapped[str] = mapped_column(String, nullable=False)
    ride_id: Mapped[str | None] = mapped_column(String, nullable=True, unique=True)
    kind: Mapped[str] = mapped_column(String, nullable=False)
    amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    status: Mapped[str] = mapped_column(String, nullable=False)
    gateway_reference: Mapped[str | None] = mapped_column(String, nullable=True, unique=True)
    commission_rate: Mapped[Decimal | None] = mapped_column(Numeric(5, 4), nullable=True)
    driver_id: Mapped[str | None] = mapped_column(String, nullable=True)
    driver_amount: Mapped[Decimal | None] = mapped_column(MONEY, nullable=True)
    platform_amount: Mapped[Decimal | None] = mapped_column(MONEY, nullable=True)
    refund_amount: Mapped[Decimal | None] = mapped_column(MONEY, nullable=True)
    failure_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now
    )

    __table_args__ = (Index("idx_payment_user", "user_id"),)


class DriverRating(Base):
    __tablename__ = "driver_ratings"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    ride_id: Mapped[str] = mapped_column(String, ForeignKey("rides.id"), nullable=False, unique=True)
    driver_id: Mapped[str] = mapped_column(String, ForeignKey("drivers.id"), nullable=False)
    user_id: Mapped[str] = mapped_column(String, nullable=False)
    rating: Mapped[int] = mapped_column(Integer, nullable=False)
    comment: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)

    __table_args__ = (Index("idx_rating_driver", "driver_id"),)
