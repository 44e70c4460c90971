"""
Tests for webhook delivery keys and the idempotency guard.
"""

import hashlib

import pytest

from app.fsm.states import PAYMENT_PROVIDER, PaymentLogStatus, PaymentStatus
from app.models.payment import PaymentLog
from app.services.idempotency import IdempotencyGuard, build_idempotency_key
from tests.helpers import create_order


class TestBuildIdempotencyKey:
    """Tests for delivery key derivation."""

    def test_header_event_id(self):
        assert build_idempotency_key(b"{}", "sig", event_id="evt_1") == "razorpay_webhook_evt_1"

    def test_envelope_event_id(self):
        key = build_idempotency_key(b"{}", "sig", payload={"event_id": "evt_2"})
        assert key == "razorpay_webhook_evt_2"

    def test_header_wins_over_envelope(self):
        key = build_idempotency_key(b"{}", "sig", event_id="evt_h", payload={"event_id": "evt_b"})
        assert key == "razorpay_webhook_evt_h"

    def test_hash_of_body_and_signature(self):
        expected = hashlib.sha256(b'{"a":1}' + b"sig").hexdigest()[:32]
        assert build_idempotency_key(b'{"a":1}', "sig") == f"razorpay_webhook_{expected}"

    def test_hash_changes_with_signature(self):
        assert build_idempotency_key(b"{}", "sig1") != build_idempotency_key(b"{}", "sig2")

    def test_hash_is_stable(self):
        assert build_idempotency_key(b"{}", "sig") == build_idempotency_key("{}", "sig")


class TestIdempotencyGuard:
    """Tests for IdempotencyGuard against the database."""

    @pytest.mark.asyncio
    async def test_unseen_key(self, db):
        assert not await IdempotencyGuard(db).is_processed("razorpay_webhook_new")

    @pytest.mark.asyncio
    async def test_committed_key(self, db):
        db.add(PaymentLog(
            provider=PAYMENT_PROVIDER,
            status=PaymentLogStatus.PAID.value,
            idempotency_key="razorpay_webhook_evt_9",
            provider_response={},
        ))
        await db.commit()

        assert await IdempotencyGuard(db).is_processed("razorpay_webhook_evt_9")

    @pytest.mark.asyncio
    async def test_commit_reports_duplicate_key(self, db):
        guard = IdempotencyGuard(db)
        db.add(PaymentLog(
            provider=PAYMENT_PROVIDER,
            status=PaymentLogStatus.PAID.value,
            idempotency_key="razorpay_webhook_evt_dup",
            provider_response={},
        ))
        assert await guard.commit("razorpay_webhook_evt_dup")

        db.add(PaymentLog(
            provider=PAYMENT_PROVIDER,
            status=PaymentLogStatus.DUPLICATE.value,
            idempotency_key="razorpay_webhook_evt_dup",
            provider_response={},
        ))
        assert not await guard.commit("razorpay_webhook_evt_dup")

    @pytest.mark.asyncio
    async def test_rows_without_key_never_collide(self, db):
        guard = IdempotencyGuard(db)
        for _ in range(2):
            db.add(PaymentLog(
                provider=PAYMENT_PROVIDER,
                status=PaymentLogStatus.PENDING.value,
                provider_response={"event": "retry_reuse"},
            ))
            assert await guard.commit()

    @pytest.mark.asyncio
    async def test_terminal_state_recorded(self, db):
        order = await create_order(
            db,
            payment_status=PaymentStatus.PAID.value,
            razorpay_payment_id="pay_1",
        )

        assert IdempotencyGuard.terminal_state_recorded(order, "pay_1", PaymentStatus.PAID)
        assert not IdempotencyGuard.terminal_state_recorded(order, "pay_2", PaymentStatus.PAID)
        assert not IdempotencyGuard.terminal_state_recorded(order, "pay_1", PaymentStatus.FAILED)
