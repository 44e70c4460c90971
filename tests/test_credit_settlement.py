"""
Tests for store credit settlement on paid orders.
"""

from decimal import Decimal
from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from app.fsm.states import PaymentStatus, TransactionType
from app.models.audit_log import AdminAuditLog
from app.models.wallet import StoreCreditTransaction
from app.services.credit_settlement import CreditSettlement
from app.services.wallet_service import WalletService
from tests.helpers import create_order, create_wallet, payment_event, signed_webhook

WEBHOOK_URL = "/api/payments/webhook"


async def _debits(db, user):
    result = await db.execute(
        select(StoreCreditTransaction).where(
            StoreCreditTransaction.user_id == user.id,
            StoreCreditTransaction.type == TransactionType.DEBIT.value,
        )
    )
    return result.scalars().all()


async def _deliver(client, payload):
    body, headers = signed_webhook(payload)
    return await client.post(WEBHOOK_URL, content=body, headers=headers)


@pytest.mark.asyncio
async def test_credits_deducted_once_on_capture(client, db, user, variant):
    await create_wallet(db, user, 500)
    order = await create_order(db, variant=variant, user=user, credits_applied=Decimal("100"))

    response = await _deliver(client, payment_event())
    assert response.status_code == 200

    debits = await _debits(db, user)
    assert len(debits) == 1
    assert debits[0].amount == Decimal("100.00")
    assert debits[0].reference == str(order.id)
    assert await WalletService(db).get_balance(user.id) == Decimal("400.00")

    await db.refresh(order)
    state = order.provider_state
    assert state.credits_deducted_at is not None
    assert state.credits_locked is False


@pytest.mark.asyncio
async def test_replayed_capture_does_not_deduct_again(client, db, user, variant):
    await create_wallet(db, user, 500)
    await create_order(db, variant=variant, user=user, credits_applied=Decimal("100"))

    await _deliver(client, payment_event(event_id="evt_001"))
    await _deliver(client, payment_event(event_id="evt_001"))
    await _deliver(client, payment_event(event_id="evt_002"))

    assert len(await _debits(db, user)) == 1
    assert await WalletService(db).get_balance(user.id) == Decimal("400.00")


@pytest.mark.asyncio
async def test_deduction_failure_after_capture_keeps_order_paid(client, db, user, variant):
    await create_wallet(db, user, 50)
    order = await create_order(db, variant=variant, user=user, credits_applied=Decimal("100"))

    response = await _deliver(client, payment_event())

    assert response.status_code == 200
    assert response.json()["success"] is True

    await db.refresh(order)
    assert order.payment_status == PaymentStatus.PAID.value
    assert order.provider_state.credits_deducted_at is None

    assert await _debits(db, user) == []
    assert await WalletService(db).get_balance(user.id) == Decimal("50.00")

    result = await db.execute(
        select(AdminAuditLog).where(AdminAuditLog.action == "credit_deduction_failed")
    )
    audit = result.scalar_one()
    assert audit.details["credits_applied"] == "100"
    assert audit.details["requires_manual_intervention"] is True
    assert audit.target_id == str(order.id)


@pytest.mark.asyncio
async def test_database_error_during_deduction_is_audited(client, db, user, variant):
    await create_wallet(db, user, 500)
    order = await create_order(db, variant=variant, user=user, credits_applied=Decimal("100"))
    deadlock = OperationalError("UPDATE store_credits", {}, Exception("deadlock detected"))

    with patch.object(WalletService, "deduct_credits", AsyncMock(side_effect=deadlock)):
        response = await _deliver(client, payment_event())

    assert response.status_code == 200
    await db.refresh(order)
    assert order.payment_status == PaymentStatus.PAID.value
    assert order.provider_state.credits_deducted_at is None
    assert await WalletService(db).get_balance(user.id) == Decimal("500.00")

    result = await db.execute(
        select(AdminAuditLog).where(AdminAuditLog.action == "credit_deduction_failed")
    )
    audit = result.scalar_one()
    assert audit.target_id == str(order.id)
    assert "deadlock detected" in audit.details["error"]
    assert audit.details["requires_manual_intervention"] is True
    assert audit.details["credits_applied"] == "100"


@pytest.mark.asyncio
async def test_settle_skips_orders_without_credits(db, user, variant):
    order = await create_order(db, variant=variant, user=user)

    result = await CreditSettlement(db).settle(order)

    assert result.success
    assert result.skipped == "no_credits"
    assert not result.deducted


@pytest.mark.asyncio
async def test_settle_skips_guest_orders(db, variant):
    order = await create_order(db, variant=variant, credits_applied=Decimal("20"))

    result = await CreditSettlement(db).settle(order)

    assert result.success
    assert result.skipped == "no_user"


@pytest.mark.asyncio
async def test_settle_before_capture_reports_without_audit(db, user, variant):
    await create_wallet(db, user, 10)
    order = await create_order(db, variant=variant, user=user, razorpay_order_id=None, credits_applied=Decimal("30"))

    result = await CreditSettlement(db).settle(order, after_capture=False)

    assert not result.success
    assert "Insufficient credits" in result.error

    audits = await db.execute(select(AdminAuditLog))
    assert audits.scalars().all() == []


@pytest.mark.asyncio
async def test_settle_is_idempotent(db, user, variant):
    await create_wallet(db, user, 200)
    order = await create_order(db, variant=variant, user=user, credits_applied=Decimal("75"))
    settlement = CreditSettlement(db)

    first = await settlement.settle(order)
    second = await settlement.settle(order)

    assert first.deducted
    assert second.skipped == "already_deducted"
    assert len(await _debits(db, user)) == 1
    assert await WalletService(db).get_balance(user.id) == Decimal("125.00")
