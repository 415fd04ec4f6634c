"""Payment and wallet ledger models."""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Self

from pydantic import BaseModel, Field, model_validator

from ridehail.core.exceptions import InvalidTransitionError
from ridehail.db.utils import to_money


class PaymentStatus(str, Enum):
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    REFUNDED = "REFUNDED"


class PaymentKind(str, Enum):
    RIDE = "RIDE"
    TOP_UP = "TOP_UP"


class TransactionType(str, Enum):
    CREDIT = "CREDIT"
    DEBIT = "DEBIT"


VALID_TRANSITIONS: dict[PaymentStatus, set[PaymentStatus]] = {
    PaymentStatus.PENDING: {PaymentStatus.COMPLETED, PaymentStatus.FAILED},
    PaymentStatus.COMPLETED: {PaymentStatus.REFUNDED},
    PaymentStatus.FAILED: set(),
    PaymentStatus.REFUNDED: set(),
}


def check_transition(payment_id: str, current: PaymentStatus, new: PaymentStatus) -> None:
    if new not in VALID_TRANSITIONS[current]:
        raise InvalidTransitionError(
            f"Payment cannot move from {current.value} to {new.value}",
            {"payment_id": payment_id, "status": current.value, "attempted": new.value},
        )


class CommissionSplit(BaseModel):
    """Exact split of a ride fare between driver and platform.

    The driver share is rounded to cents and the platform takes the
    remainder, so the two parts always add up to the fare.
    """

    total: Decimal
    commission_rate: Decimal
    driver_amount: Decimal = Decimal("0.00")
    platform_amount: Decimal = Decimal("0.00")

    @model_validator(mode="after")
    def calculate_breakdown(self) -> Self:
        self.total = to_money(self.total)
        self.driver_amount = to_money(self.total * (Decimal("1") - self.commission_rate))
        self.platform_amount = self.total - self.driver_amount
        return self


class Payment(BaseModel):
    id: str
    user_id: str
    ride_id: str | None = None
    kind: PaymentKind
    amount: Decimal = Field(gt=0)
    status: PaymentStatus
    gateway_reference: str | None = None
    commission_rate: Decimal | None = None
    driver_id: str | None = None
    driver_amount: Decimal | None = None
    platform_amount: Decimal | None = None
    refund_amount: Decimal | None = None
    failure_reason: str | None = None
    created_at: datetime
    updated_at: datetime


class Wallet(BaseModel):
    id: str
    owner_id: str
    balance: Decimal = Field(ge=0)


class LedgerEntry(BaseModel):
    id: int
    wallet_id: str
    amount: Decimal
    transaction_type: TransactionType
    balance_before: Decimal
    balance_after: Decimal
    reference_id: str
    parent_payment_id: str | None = None
    description: str = ""
    created_at: datetime

    @property
    def signed_amount(self) -> Decimal:
        if self.transaction_type == TransactionType.CREDIT:
            return self.amount
        return -self.amount


class WalletStatement(BaseModel):
    wallet: Wallet
    entries: list[LedgerEntry]


class TopUpIntent(BaseModel):
    """Returned to the caller; the client_secret completes the card flow."""

    payment: Payment
    client_secret: str | None = None
