"""Wallet repository: balances and the append-only ledger."""

from decimal import Decimal
from uuid import uuid4

from sqlalchemy import select
from sqlalchemy.orm import Session

from ridehail.core.exceptions import InsufficientBalanceError
from ridehail.payment import LedgerEntry, TransactionType
from ridehail.payment import Wallet as WalletDomain

from ..schema import Wallet, WalletTransaction
from ..utils import ensure_utc, to_money, utc_now


class WalletRepository:
    """Every balance change goes through ``post`` so the ledger and the
    stored balance can never drift apart."""

    def __init__(self, session: Session):
        self.session = session

    def get_by_owner(self, owner_id: str) -> WalletDomain | None:
        wallet = self._find(owner_id)
        return self._to_domain(wallet) if wallet else None

    def get_or_create(self, owner_id: str) -> WalletDomain:
        return self._to_domain(self._find_or_create(owner_id))

    def post(
        self,
        owner_id: str,
        amount: Decimal,
        transaction_type: TransactionType,
        reference_id: str,
        parent_payment_id: str | None = None,
        description: str = "",
    ) -> LedgerEntry:
        """Apply one entry to the owner's wallet, creating the wallet if needed."""
        wallet = self._find_or_create(owner_id)

        amount = to_money(amount)
        before = to_money(wallet.balance)
        if transaction_type == TransactionType.CREDIT:
            after = before + amount
        else:
            after = before - amount
            if after < 0:
                raise InsufficientBalanceError(
                    "Insufficient wallet balance",
                    {"owner_id": owner_id, "balance": str(before), "amount": str(amount)},
                )

        wallet.balance = after
        wallet.updated_at = utc_now()
        entry = WalletTransaction(
            wallet_id=wallet.id,
            amount=amount,
            transaction_type=transaction_type.value,
            balance_before=before,
            balance_after=after,
            reference_id=reference_id,
            parent_payment_id=parent_payment_id,
            description=description,
            created_at=utc_now(),
        )
        self.session.add(entry)
        self.session.flush()
        return self._entry_to_domain(entry)

    def entries(
        self, owner_id: str, limit: int | None = None, newest_first: bool = False
    ) -> list[LedgerEntry]:
        wallet = self._find(owner_id)
        if wallet is None:
            return []
        order = WalletTransaction.id.desc() if newest_first else WalletTransaction.id.asc()
        stmt = select(WalletTransaction).where(WalletTransaction.wallet_id == wallet.id).order_by(order)
        if limit is not None:
            stmt = stmt.limit(limit)
        return [self._entry_to_domain(e) for e in self.session.execute(stmt).scalars().all()]

    def _find(self, owner_id: str) -> Wallet | None:
        stmt = select(Wallet).where(Wallet.owner_id == owner_id)
        return self.session.execute(stmt).scalar_one_or_none()

    def _find_or_create(self, owner_id: str) -> Wallet:
        wallet = self._find(owner_id)
        if wallet is None:
            wallet = Wallet(id=str(uuid4()), owner_id=owner_id, balance=Decimal("0.00"))
            self.session.add(wallet)
            self.session.flush()
        return wallet

    def _to_domain(self, wallet: Wallet) -> WalletDomain:
        return WalletDomain(id=wallet.id, owner_id=wallet.owner_id, balance=to_money(wallet.balance))

    def _entry_to_domain(self, entry: WalletTransaction) -> LedgerEntry:
        return LedgerEntry(
            id=entry.id,
            wallet_id=entry.wallet_id,
            amount=to_money(entry.amount),
            transaction_type=TransactionType(entry.transaction_type),
            balance_before=to_money(entry.balance_before),
            balance_after=to_money(entry.balance_after),
            reference_id=entry.reference_id,
            parent_payment_id=entry.parent_payment_id,
            description=entry.description,
            created_at=ensure_utc(entry.created_at),
        )
