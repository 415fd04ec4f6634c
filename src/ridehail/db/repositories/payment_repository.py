"""Payment repository."""

from decimal import Decimal
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from ridehail.core.exceptions import NotFoundError
from ridehail.payment import Payment as PaymentDomain
from ridehail.payment import PaymentKind, PaymentStatus, check_transition

from ..schema import Payment
from ..utils import ensure_utc, to_money, utc_now


def _money_or_none(value: Decimal | None) -> Decimal | None:
    return to_money(value) if value is not None else None


class PaymentRepository:
    def __init__(self, session: Session):
        self.session = session

    def create(
        self,
        payment_id: str,
        user_id: str,
        kind: PaymentKind,
        amount: Decimal,
        status: PaymentStatus = PaymentStatus.PENDING,
        ride_id: str | None = None,
        gateway_reference: str | None = None,
        **split: Any,
    ) -> PaymentDomain:
        now = utc_now()
        payment = Payment(
            id=payment_id,
            user_id=user_id,
            ride_id=ride_id,
            kind=kind.value,
            amount=to_money(amount),
            status=status.value,
            gateway_reference=gateway_reference,
            created_at=now,
            updated_at=now,
            **split,
        )
        self.session.add(payment)
        self.session.flush()
        return self._to_domain(payment)

    def get(self, payment_id: str) -> PaymentDomain | None:
        payment = self.session.get(Payment, payment_id)
        return self._to_domain(payment) if payment else None

    def get_by_reference(self, gateway_reference: str) -> PaymentDomain | None:
        stmt = select(Payment).where(Payment.gateway_reference == gateway_reference)
        payment = self.session.execute(stmt).scalar_one_or_none()
        return self._to_domain(payment) if payment else None

    def get_by_ride(self, ride_id: str) -> PaymentDomain | None:
        stmt = select(Payment).where(Payment.ride_id == ride_id)
        payment = self.session.execute(stmt).scalar_one_or_none()
        return self._to_domain(payment) if payment else None

    def transition(self, payment_id: str, status: PaymentStatus, **fields: Any) -> PaymentDomain:
        """Advance status, enforcing the forward-only payment lifecycle."""
        payment = self.session.get(Payment, payment_id)
        if payment is None:
            raise NotFoundError(f"Payment {payment_id} not found", {"payment_id": payment_id})
        check_transition(payment_id, PaymentStatus(payment.status), status)
        payment.status = status.value
        for name, value in fields.items():
            setattr(payment, name, value)
        payment.updated_at = utc_now()
        self.session.flush()
        return self._to_domain(payment)

    def _to_domain(self, payment: Payment) -> PaymentDomain:
        return PaymentDomain(
            id=payment.id,
            user_id=payment.user_id,
            ride_id=payment.ride_id,
            kind=PaymentKind(payment.kind),
            amount=to_money(payment.amount),
            status=PaymentStatus(payment.status),
            gateway_reference=payment.gateway_reference,
            commission_rate=payment.commission_rate,
            driver_id=payment.driver_id,
            driver_amount=_money_or_none(payment.driver_amount),
            platform_amount=_money_or_none(payment.platform_amount),
            refund_amount=_money_or_none(payment.refund_amount),
            failure_reason=payment.failure_reason,
            created_at=ensure_utc(payment.created_at),
            updated_at=ensure_utc(payment.updated_at),
        )
