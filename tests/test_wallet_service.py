"""
Tests for WalletService.
"""

from decimal import Decimal

import pytest
from sqlalchemy import select

from app.fsm.states import TransactionType
from app.models.audit_log import AdminAuditLog
from app.services.wallet_service import InsufficientCreditsError, WalletError, WalletService
from tests.helpers import create_wallet


@pytest.mark.asyncio
async def test_balance_without_wallet(db, user):
    assert await WalletService(db).get_balance(user.id) == Decimal("0")


@pytest.mark.asyncio
async def test_add_credits_creates_wallet(db, user):
    service = WalletService(db)

    balance = await service.add_credits(user.id, 250, reference="refund_1", performed_by="ops")
    await db.commit()

    assert balance == Decimal("250.00")
    transactions = await service.get_transactions(user.id)
    assert len(transactions) == 1
    assert transactions[0].type == TransactionType.CREDIT.value

    result = await db.execute(select(AdminAuditLog).where(AdminAuditLog.action == "store_credit_added"))
    assert result.scalar_one().performed_by == "ops"


@pytest.mark.asyncio
async def test_deduct_credits(db, user):
    await create_wallet(db, user, 300)
    service = WalletService(db)

    balance = await service.deduct_credits(user.id, Decimal("120.50"), reference="order-1")
    await db.commit()

    assert balance == Decimal("179.50")
    assert await service.has_debit_for_reference(user.id, "order-1")
    assert not await service.has_debit_for_reference(user.id, "order-2")


@pytest.mark.asyncio
async def test_deduct_more_than_balance(db, user):
    await create_wallet(db, user, 50)
    service = WalletService(db)

    with pytest.raises(InsufficientCreditsError):
        await service.deduct_credits(user.id, 80)
    await db.rollback()

    assert await service.get_balance(user.id) == Decimal("50.00")
    assert await service.get_transactions(user.id) == []


@pytest.mark.asyncio
async def test_deduct_without_wallet(db, user):
    with pytest.raises(InsufficientCreditsError, match="Wallet does not exist"):
        await WalletService(db).deduct_credits(user.id, 10)


@pytest.mark.asyncio
@pytest.mark.parametrize("amount", [0, -5])
async def test_non_positive_amounts_rejected(db, user, amount):
    service = WalletService(db)
    with pytest.raises(WalletError):
        await service.add_credits(user.id, amount)
    with pytest.raises(WalletError):
        await service.deduct_credits(user.id, amount)
