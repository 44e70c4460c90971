"""
Wallet Service - store credit balance and ledger.
Balance never goes negative; every movement writes a ledger row.
"""

import uuid
import logging
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.fsm.states import TransactionType
from app.models.audit_log import AdminAuditLog
from app.models.wallet import StoreCredit, StoreCreditTransaction

logger = logging.getLogger(__name__)


class WalletError(Exception):
    """Wallet operation rejected."""


class InsufficientCreditsError(WalletError):
    """Debit larger than the available balance."""


def _to_decimal(amount) -> Decimal:
    return Decimal(str(amount)).quantize(Decimal("0.01"))


class WalletService:
    """Service for store credit operations."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def _get_wallet(self, user_id: uuid.UUID) -> Optional[StoreCredit]:
        result = await self.db.execute(
            select(StoreCredit).where(StoreCredit.user_id == user_id)
        )
        return result.scalar_one_or_none()

    async def get_balance(self, user_id: uuid.UUID) -> Decimal:
        """Current balance, zero when the user has no wallet yet."""
        wallet = await self._get_wallet(user_id)
        if not wallet:
            return Decimal("0")
        return Decimal(wallet.balance)

    async def add_credits(
        self,
        user_id: uuid.UUID,
        amount,
        reference: Optional[str] = None,
        notes: Optional[str] = None,
        performed_by: Optional[str] = None,
    ) -> Decimal:
        """Credit the wallet, creating it on first use. Returns the new balance."""
        amount = _to_decimal(amount)
        if amount <= 0:
            raise WalletError("Credit amount must be positive")

        wallet = await self._get_wallet(user_id)
        if wallet is None:
            wallet = StoreCredit(user_id=user_id, balance=amount)
            self.db.add(wallet)
        else:
            wallet.balance = Decimal(wallet.balance) + amount

        self.db.add(StoreCreditTransaction(
            user_id=user_id,
            type=TransactionType.CREDIT.value,
            amount=amount,
            reference=reference,
            notes=notes,
        ))

        if performed_by:
            self._audit("store_credit_added", user_id, performed_by, amount, reference, notes, wallet.balance)

        await self.db.flush()
        logger.info(f"Added {amount} credits for user {user_id} (ref={reference})")
        return Decimal(wallet.balance)

    async def deduct_credits(
        self,
        user_id: uuid.UUID,
        amount,
        reference: Optional[str] = None,
        notes: Optional[str] = None,
        performed_by: Optional[str] = None,
    ) -> Decimal:
        """
        Debit the wallet. Raises InsufficientCreditsError if the balance
        cannot cover the amount.

        The balance check and the update are a single conditional UPDATE so
        two concurrent debits cannot both pass it.
        """
        amount = _to_decimal(amount)
        if amount <= 0:
            raise WalletError("Debit amount must be positive")

        result = await self.db.execute(
            update(StoreCredit)
            .where(
                StoreCredit.user_id == user_id,
                StoreCredit.balance >= amount,
            )
            .values(balance=StoreCredit.balance - amount)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            wallet = await self._get_wallet(user_id)
            if wallet is None:
                raise InsufficientCreditsError("Insufficient credits: Wallet does not exist")
            raise InsufficientCreditsError(
                f"Insufficient credits. Available: {wallet.balance}, Requested: {amount}"
            )

        self.db.add(StoreCreditTransaction(
            user_id=user_id,
            type=TransactionType.DEBIT.value,
            amount=amount,
            reference=reference,
            notes=notes,
        ))
        await self.db.flush()

        wallet = await self._get_wallet(user_id)
        await self.db.refresh(wallet)
        new_balance = Decimal(wallet.balance)

        if performed_by:
            self._audit("store_credit_deducted", user_id, performed_by, amount, reference, notes, new_balance)
            await self.db.flush()

        logger.info(f"Deducted {amount} credits for user {user_id} (ref={reference})")
        return new_balance

    async def get_transactions(
        self,
        user_id: uuid.UUID,
        limit: int = 50,
    ) -> List[StoreCreditTransaction]:
        """Most recent ledger rows first."""
        result = await self.db.execute(
            select(StoreCreditTransaction)
            .where(StoreCreditTransaction.user_id == user_id)
            .order_by(StoreCreditTransaction.created_at.desc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def has_debit_for_reference(self, user_id: uuid.UUID, reference: str) -> bool:
        """True if a debit referencing this order already exists."""
        result = await self.db.execute(
            select(StoreCreditTransaction.id).where(
                StoreCreditTransaction.user_id == user_id,
                StoreCreditTransaction.type == TransactionType.DEBIT.value,
                StoreCreditTransaction.reference == reference,
            ).limit(1)
        )
        return result.scalar_one_or_none() is not None

    def _audit(
        self,
        action: str,
        user_id: uuid.UUID,
        performed_by: str,
        amount: Decimal,
        reference: Optional[str],
        notes: Optional[str],
        new_balance: Decimal,
    ) -> None:
        self.db.add(AdminAuditLog(
            action=action,
            target_resource="store_credits",
            target_id=str(user_id),
            performed_by=performed_by,
            details={
                "amount": str(amount),
                "reference": reference,
                "notes": notes,
                "new_balance": str(new_balance),
            },
        ))
