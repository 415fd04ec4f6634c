"""Wallet ledger: ride settlement, top-ups and refunds.

Every balance change is a WalletTransaction row written next to the balance
update, inside one SQLAlchemy transaction per operation. Wallet locks are
taken in sorted owner order before the transaction opens, so operations that
touch several wallets cannot deadlock each other.
"""

import logging
from collections.abc import Callable
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any
from uuid import uuid4

from pydantic import BaseModel
from sqlalchemy.orm import Session, sessionmaker

from ridehail.core.exceptions import (
    ConflictError,
    InsufficientBalanceError,
    InvalidTransitionError,
    LedgerInvariantViolation,
    NotFoundError,
    PaymentGatewayError,
    RideAlreadySettledError,
    ValidationError,
)
from ridehail.core.locks import KeyedLocks
from ridehail.db.repositories import PaymentRepository, RideRepository, WalletRepository
from ridehail.db.transaction import transaction
from ridehail.db.utils import to_money, utc_now
from ridehail.matching import notification_messages as messages
from ridehail.matching.notification_dispatch import NotificationDispatch
from ridehail.payment import (
    CommissionSplit,
    Payment,
    PaymentKind,
    PaymentStatus,
    TopUpIntent,
    TransactionType,
    WalletStatement,
    check_transition,
)
from ridehail.ride import RideStatus, SettlementStatus
from ridehail.settings import WalletSettings

from .payment_gateway import SUCCEEDED, PaymentGateway

logger = logging.getLogger(__name__)

INTENT_SUCCEEDED = "payment_intent.succeeded"
INTENT_FAILED = "payment_intent.payment_failed"


def _money_amount(amount: Any) -> Decimal:
    """Caller-supplied amount as cents; NaN, infinities and junk are a ValidationError."""
    try:
        value = to_money(amount)
    except (InvalidOperation, TypeError, ValueError) as e:
        raise ValidationError("Amount must be a finite number", {"amount": str(amount)}) from e
    if not value.is_finite():
        raise ValidationError("Amount must be a finite number", {"amount": str(amount)})
    return value


class GatewayEventObject(BaseModel):
    id: str
    last_payment_error: dict[str, Any] | None = None


class GatewayEventData(BaseModel):
    object: GatewayEventObject


class GatewayEvent(BaseModel):
    type: str
    data: GatewayEventData


class WalletLedger:
    def __init__(
        self,
        session_factory: sessionmaker[Any],
        wallet_locks: KeyedLocks,
        gateway: PaymentGateway,
        settings: WalletSettings,
        notifications: NotificationDispatch,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._session_factory = session_factory
        self._wallet_locks = wallet_locks
        self._gateway = gateway
        self._settings = settings
        self._notifications = notifications
        self._clock = clock

    @property
    def platform_owner_id(self) -> str:
        return self._settings.platform_owner_id

    @property
    def commission_rate(self) -> Decimal:
        return Decimal("1") - self._settings.driver_share

    # Ride settlement

    def settle_ride(self, driver_id: str, rider_id: str, ride_id: str) -> Payment:
        """Debit the rider and credit driver and platform, all or nothing.

        Raises InsufficientBalanceError with nothing written when the rider
        wallet is missing or short; the ride is then flagged
        NEEDS_RECONCILIATION in a separate transaction.
        """
        with self._session_factory() as session:
            ride = RideRepository(session).get(ride_id)
        if ride is None:
            raise NotFoundError(f"Ride {ride_id} not found", {"ride_id": ride_id})
        if ride.driver_id != driver_id or ride.user_id != rider_id:
            raise ValidationError(
                "Ride does not belong to this driver and rider", {"ride_id": ride_id}
            )
        if ride.status != RideStatus.COMPLETED:
            raise InvalidTransitionError(
                f"Ride {ride_id} is {ride.status.value}, only COMPLETED rides are settled",
                {"ride_id": ride_id},
            )

        owners = [rider_id, driver_id, self.platform_owner_id]
        try:
            with self._wallet_locks.hold_many(owners):
                with self._session_factory() as session, transaction(session):
                    payment = self._settle(session, ride_id, driver_id, rider_id, ride.total_fare)
        except InsufficientBalanceError:
            self.mark_needs_reconciliation(ride_id)
            raise

        logger.info(
            "Ride settled: %s debited, driver %s, platform %s",
            payment.amount,
            payment.driver_amount,
            payment.platform_amount,
            extra={"ride_id": ride_id, "payment_id": payment.id},
        )
        self._notifications.send(rider_id, messages.rider_payment_success(payment.amount))
        assert payment.driver_amount is not None
        self._notifications.send(driver_id, messages.driver_payment_success(payment.driver_amount))
        return payment

    def _settle(
        self, session: Session, ride_id: str, driver_id: str, rider_id: str, total: Decimal
    ) -> Payment:
        payments = PaymentRepository(session)
        wallets = WalletRepository(session)

        if payments.get_by_ride(ride_id) is not None:
            raise RideAlreadySettledError(f"Ride {ride_id} already settled", {"ride_id": ride_id})

        rider_wallet = wallets.get_by_owner(rider_id)
        if rider_wallet is None or rider_wallet.balance < total:
            raise InsufficientBalanceError(
                "Insufficient wallet balance to pay for ride",
                {
                    "ride_id": ride_id,
                    "balance": str(rider_wallet.balance if rider_wallet else Decimal("0.00")),
                    "fare": str(total),
                },
            )

        split = CommissionSplit(total=total, commission_rate=self.commission_rate)
        payment = payments.create(
            payment_id=str(uuid4()),
            user_id=rider_id,
            kind=PaymentKind.RIDE,
            amount=split.total,
            ride_id=ride_id,
            commission_rate=split.commission_rate,
            driver_id=driver_id,
            driver_amount=split.driver_amount,
            platform_amount=split.platform_amount,
        )

        wallets.post(
            rider_id, split.total, TransactionType.DEBIT, ride_id, payment.id,
            "Ride payment",
        )
        wallets.post(
            driver_id, split.driver_amount, TransactionType.CREDIT, ride_id, payment.id,
            "Ride earnings",
        )
        wallets.post(
            self.platform_owner_id, split.platform_amount, TransactionType.CREDIT, ride_id,
            payment.id, "Platform commission",
        )

        RideRepository(session).set_settlement_status(ride_id, SettlementStatus.SETTLED)
        return payments.transition(payment.id, PaymentStatus.COMPLETED)

    def mark_needs_reconciliation(self, ride_id: str) -> None:
        with self._session_factory() as session, transaction(session):
            RideRepository(session).set_settlement_status(
                ride_id, SettlementStatus.NEEDS_RECONCILIATION
            )
        logger.warning(
            "Ride left unpaid, needs manual reconciliation",
            extra={"ride_id": ride_id, "anomaly": "settlement_failed"},
        )

    # Top-ups

    def top_up(self, user_id: str, amount: Decimal) -> TopUpIntent:
        """Open a gateway intent and a PENDING payment. No money moves yet."""
        amount = _money_amount(amount)
        if amount <= 0 or amount >= self._settings.top_up_ceiling:
            raise ValidationError(
                f"Top-up amount must be between 0 and {self._settings.top_up_ceiling}",
                {"amount": str(amount)},
            )

        intent = self._gateway.create_intent(
            amount, self._settings.currency, {"user_id": user_id, "kind": PaymentKind.TOP_UP.value}
        )
        with self._session_factory() as session, transaction(session):
            payment = PaymentRepository(session).create(
                payment_id=str(uuid4()),
                user_id=user_id,
                kind=PaymentKind.TOP_UP,
                amount=amount,
                gateway_reference=intent.id,
            )
        logger.info("Top-up intent created", extra={"payment_id": payment.id, "wallet_id": user_id})
        return TopUpIntent(payment=payment, client_secret=intent.client_secret)

    def confirm_top_up(self, gateway_reference: str) -> Payment:
        """Credit the wallet once the gateway reports the intent succeeded.

        Confirming an already COMPLETED top-up returns it unchanged.
        """
        payment = self._payment_by_reference(gateway_reference)
        if payment.status == PaymentStatus.COMPLETED:
            return payment
        check_transition(payment.id, payment.status, PaymentStatus.COMPLETED)

        intent = self._gateway.retrieve_intent(gateway_reference)
        if intent.status != SUCCEEDED:
            raise ConflictError(
                f"Top-up not confirmed by gateway (status {intent.status})",
                {"payment_id": payment.id, "gateway_status": intent.status},
            )
        if intent.amount_decimal != payment.amount:
            raise PaymentGatewayError(
                "Gateway amount does not match the top-up",
                {"payment_id": payment.id, "gateway_amount": str(intent.amount_decimal)},
            )

        with self._wallet_locks.hold(payment.user_id):
            with self._session_factory() as session, transaction(session):
                payments = PaymentRepository(session)
                current = payments.get(payment.id)
                assert current is not None
                if current.status == PaymentStatus.COMPLETED:
                    return current
                confirmed = payments.transition(payment.id, PaymentStatus.COMPLETED)
                WalletRepository(session).post(
                    payment.user_id, payment.amount, TransactionType.CREDIT, gateway_reference,
                    payment.id, "Wallet top-up",
                )

        logger.info("Top-up confirmed", extra={"payment_id": payment.id})
        self._notifications.send(payment.user_id, messages.wallet_top_up_success(payment.amount))
        return confirmed

    def fail_top_up(self, gateway_reference: str, reason: str | None = None) -> Payment:
        payment = self._payment_by_reference(gateway_reference)
        if payment.status == PaymentStatus.FAILED:
            return payment
        with self._session_factory() as session, transaction(session):
            failed = PaymentRepository(session).transition(
                payment.id, PaymentStatus.FAILED, failure_reason=reason
            )
        logger.info("Top-up failed: %s", reason, extra={"payment_id": payment.id})
        return failed

    def handle_gateway_event(self, event: dict[str, Any]) -> Payment | None:
        """Apply a gateway webhook. Unknown event types are ignored."""
        parsed = GatewayEvent.model_validate(event)
        reference = parsed.data.object.id
        if parsed.type == INTENT_SUCCEEDED:
            return self.confirm_top_up(reference)
        if parsed.type == INTENT_FAILED:
            error = parsed.data.object.last_payment_error or {}
            return self.fail_top_up(reference, error.get("message"))
        logger.debug("Ignoring gateway event %s", parsed.type)
        return None

    # Refunds

    def refund(self, payment_id: str, amount: Decimal | None = None) -> Payment:
        """Refund all or part of a COMPLETED payment.

        Ride payments reverse the rider debit and take back the driver and
        platform credits pro rata to the split recorded on the payment. Top-up
        refunds go through the gateway first, then debit the wallet. Debits
        never push a wallet below zero; any shortfall is logged as an anomaly.
        """
        payment = self._payment(payment_id)
        owners = [payment.user_id]
        if payment.kind == PaymentKind.RIDE and payment.driver_id is not None:
            owners += [payment.driver_id, self.platform_owner_id]

        with self._wallet_locks.hold_many(owners):
            # Re-read under the lock so concurrent refunds see each other
            payment = self._payment(payment_id)
            check_transition(payment.id, payment.status, PaymentStatus.REFUNDED)

            refund_amount = _money_amount(amount) if amount is not None else payment.amount
            if refund_amount <= 0 or refund_amount > payment.amount:
                raise ValidationError(
                    "Refund amount must be positive and not exceed the payment",
                    {"payment_id": payment_id, "amount": str(refund_amount)},
                )

            if payment.kind == PaymentKind.TOP_UP:
                refunded = self._refund_top_up(payment, refund_amount)
            else:
                refunded = self._refund_ride(payment, refund_amount)

        logger.info("Payment refunded: %s", refund_amount, extra={"payment_id": payment.id})
        self._notifications.send(payment.user_id, messages.refund_issued(refund_amount))
        return refunded

    def _refund_top_up(self, payment: Payment, amount: Decimal) -> Payment:
        if payment.gateway_reference is None:
            raise InvalidTransitionError(
                "Top-up has no gateway reference to refund", {"payment_id": payment.id}
            )
        self._gateway.refund(payment.gateway_reference, amount)

        with self._session_factory() as session, transaction(session):
            refunded = PaymentRepository(session).transition(
                payment.id, PaymentStatus.REFUNDED, refund_amount=amount
            )
            self._debit_clamped(
                WalletRepository(session), payment.user_id, amount, payment.id, "Top-up refund"
            )
        return refunded

    def _refund_ride(self, payment: Payment, amount: Decimal) -> Payment:
        assert payment.driver_id is not None and payment.driver_amount is not None
        driver_part = to_money(payment.driver_amount * amount / payment.amount)
        platform_part = amount - driver_part
        reference = payment.ride_id or payment.id

        with self._session_factory() as session, transaction(session):
            refunded = PaymentRepository(session).transition(
                payment.id, PaymentStatus.REFUNDED, refund_amount=amount
            )
            wallets = WalletRepository(session)
            wallets.post(
                payment.user_id, amount, TransactionType.CREDIT, reference, payment.id,
                "Ride payment debit reversal",
            )
            self._debit_clamped(
                wallets, payment.driver_id, driver_part, payment.id, "Ride earnings reversal",
                reference,
            )
            self._debit_clamped(
                wallets, self.platform_owner_id, platform_part, payment.id,
                "Platform commission reversal", reference,
            )
        return refunded

    def _debit_clamped(
        self,
        wallets: WalletRepository,
        owner_id: str,
        amount: Decimal,
        payment_id: str,
        description: str,
        reference_id: str | None = None,
    ) -> Decimal:
        balance = wallets.get_or_create(owner_id).balance
        applied = min(amount, balance)
        if applied < amount:
            logger.warning(
                "Refund debit clamped at zero balance: wanted %s, took %s",
                amount,
                applied,
                extra={
                    "anomaly": "refund_clamped",
                    "wallet_id": owner_id,
                    "payment_id": payment_id,
                },
            )
        if applied > 0:
            wallets.post(
                owner_id, applied, TransactionType.DEBIT, reference_id or payment_id, payment_id,
                description,
            )
        return applied

    # Statements and audits

    def get_statement(self, owner_id: str, limit: int | None = None) -> WalletStatement:
        """Latest ledger entries, newest first. Creates the wallet on first access."""
        limit = limit or self._settings.statement_limit
        with self._wallet_locks.hold(owner_id):
            with self._session_factory() as session, transaction(session):
                wallets = WalletRepository(session)
                wallet = wallets.get_or_create(owner_id)
                entries = wallets.entries(owner_id, limit=limit, newest_first=True)
        return WalletStatement(wallet=wallet, entries=entries)

    def get_balance(self, owner_id: str) -> Decimal:
        with self._session_factory() as session:
            wallet = WalletRepository(session).get_by_owner(owner_id)
        return wallet.balance if wallet else Decimal("0.00")

    def replay_balance(self, owner_id: str) -> Decimal:
        """Rebuild the balance from the ledger, checking each entry's before/after."""
        with self._session_factory() as session:
            entries = WalletRepository(session).entries(owner_id)

        running = Decimal("0.00")
        for entry in entries:
            if entry.balance_before != running:
                raise LedgerInvariantViolation(
                    "Ledger entry does not continue the running balance",
                    {"wallet_owner": owner_id, "entry_id": entry.id},
                )
            running += entry.signed_amount
            if entry.balance_after != running:
                raise LedgerInvariantViolation(
                    "Ledger entry balance_after does not match its amount",
                    {"wallet_owner": owner_id, "entry_id": entry.id},
                )
        return running

    def verify_wallet(self, owner_id: str) -> Decimal:
        replayed = self.replay_balance(owner_id)
        stored = self.get_balance(owner_id)
        if replayed != stored:
            logger.error(
                "Wallet balance %s does not match ledger replay %s",
                stored,
                replayed,
                extra={"wallet_id": owner_id, "anomaly": "ledger_mismatch"},
            )
            raise LedgerInvariantViolation(
                "Wallet balance does not match ledger replay",
                {"wallet_owner": owner_id, "stored": str(stored), "replayed": str(replayed)},
            )
        return stored

    def get_payment(self, payment_id: str) -> Payment:
        return self._payment(payment_id)

    def _payment(self, payment_id: str) -> Payment:
        with self._session_factory() as session:
            payment = PaymentRepository(session).get(payment_id)
        if payment is None:
            raise NotFoundError(f"Payment {payment_id} not found", {"payment_id": payment_id})
        return payment

    def _payment_by_reference(self, gateway_reference: str) -> Payment:
        with self._session_factory() as session:
            payment = PaymentRepository(session).get_by_reference(gateway_reference)
        if payment is None:
            raise NotFoundError(
                f"No payment for gateway reference {gateway_reference}",
                {"gateway_reference": gateway_reference},
            )
        return payment
