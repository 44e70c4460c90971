"""
Tests for the Razorpay webhook endpoint.
"""

import json

import pytest
from sqlalchemy import select

from app.config import FulfillmentConfig, settings
from app.fsm.states import PaymentLogStatus, PaymentStatus, OrderStatus, ShipmentStatus
from app.models.payment import PaymentLog
from app.services.shiprocket_service import ShiprocketError
from tests.helpers import create_order, payment_event, signed_webhook

WEBHOOK_URL = "/api/payments/webhook"


async def _payment_logs(db, status=None):
    query = select(PaymentLog)
    if status:
        query = query.where(PaymentLog.status == status.value)
    result = await db.execute(query)
    return result.scalars().all()


async def _deliver(client, payload, headers=None):
    body, signed_headers = signed_webhook(payload)
    return await client.post(WEBHOOK_URL, content=body, headers={**signed_headers, **(headers or {})})


@pytest.mark.asyncio
async def test_captured_payment_marks_order_paid(client, db, variant, email_dispatch):
    """A captured payment pays the order and runs fulfillment."""
    order = await create_order(db, variant=variant, quantity=2)

    response = await _deliver(client, payment_event())

    assert response.status_code == 200
    assert response.json() == {
        "success": True,
        "message": "Webhook processed successfully",
        "idempotency_key": "razorpay_webhook_evt_001",
    }

    await db.refresh(order)
    assert order.payment_status == PaymentStatus.PAID.value
    assert order.order_status == OrderStatus.PAID.value
    assert order.payment_method == "upi"
    assert order.paid_at is not None

    state = order.provider_state
    assert state.razorpay_payment_id == "pay_TEST456"
    assert state.webhook_event == "payment.captured"
    assert state.idempotency_key == "razorpay_webhook_evt_001"
    assert state.stock_decremented_at is not None

    await db.refresh(variant)
    assert variant.stock == 8
    assert float(order.internal_shipping_cost) == 85.0

    paid_logs = await _payment_logs(db, PaymentLogStatus.PAID)
    assert len(paid_logs) == 1
    assert paid_logs[0].order_id == order.id
    assert paid_logs[0].idempotency_key == "razorpay_webhook_evt_001"
    assert paid_logs[0].provider_response["amount"] == 259800
    assert len(paid_logs[0].provider_response["payload_snippet"]) <= 500

    email_dispatch.assert_called_once_with(order.id)


@pytest.mark.asyncio
async def test_redelivered_webhook_is_applied_once(client, db, variant, email_dispatch):
    """Same event twice: one paid log, one stock decrement, one email."""
    order = await create_order(db, variant=variant, quantity=2)
    payload = payment_event()

    first = await _deliver(client, payload)
    second = await _deliver(client, payload)

    assert first.status_code == 200
    assert second.status_code == 200
    assert second.json()["message"] == "Webhook already processed"

    assert len(await _payment_logs(db, PaymentLogStatus.PAID)) == 1
    assert len(await _payment_logs(db)) == 1

    await db.refresh(variant)
    assert variant.stock == 8
    assert email_dispatch.call_count == 1

    await db.refresh(order)
    assert order.payment_status == PaymentStatus.PAID.value


@pytest.mark.asyncio
async def test_redelivery_without_event_id_is_detected(client, db, variant):
    """Without an event id the key falls back to a hash of body and signature."""
    await create_order(db, variant=variant)
    payload = payment_event(event_id=None)

    await _deliver(client, payload)
    second = await _deliver(client, payload)

    assert second.json()["message"] == "Webhook already processed"
    assert second.json()["idempotency_key"].startswith("razorpay_webhook_")
    assert len(await _payment_logs(db, PaymentLogStatus.PAID)) == 1


@pytest.mark.asyncio
async def test_event_id_header_takes_precedence(client, db, variant):
    await create_order(db, variant=variant)

    response = await _deliver(
        client,
        payment_event(event_id="evt_body"),
        headers={"X-Razorpay-Event-Id": "evt_header"},
    )

    assert response.json()["idempotency_key"] == "razorpay_webhook_evt_header"


@pytest.mark.asyncio
async def test_same_payment_new_delivery_logged_as_duplicate(client, db, variant):
    """authorized then captured for the same payment: second is a duplicate."""
    await create_order(db, variant=variant, quantity=2)

    await _deliver(client, payment_event(event="payment.authorized", event_id="evt_001"))
    response = await _deliver(client, payment_event(event="payment.captured", event_id="evt_002"))

    assert response.status_code == 200
    assert response.json()["message"] == "Payment already recorded - duplicate webhook ignored"

    duplicates = await _payment_logs(db, PaymentLogStatus.DUPLICATE)
    assert len(duplicates) == 1
    assert duplicates[0].provider_response["note"] == "duplicate_webhook_ignored"

    await db.refresh(variant)
    assert variant.stock == 8


@pytest.mark.asyncio
async def test_invalid_signature_rejected(client, db, variant):
    """A bad signature never touches the order."""
    order = await create_order(db, variant=variant)
    body = json.dumps(payment_event()).encode("utf-8")

    response = await client.post(
        WEBHOOK_URL,
        content=body,
        headers={"X-Razorpay-Signature": "0" * 64, "Content-Type": "application/json"},
    )

    assert response.status_code == 400
    assert response.json() == {"error": "Invalid webhook signature"}

    await db.refresh(order)
    assert order.payment_status == PaymentStatus.PENDING.value
    assert await _payment_logs(db) == []


@pytest.mark.asyncio
async def test_signature_over_different_body_rejected(client, db, variant):
    order = await create_order(db, variant=variant)
    _, headers = signed_webhook(payment_event(amount=100))
    tampered = json.dumps(payment_event(amount=259800)).encode("utf-8")

    response = await client.post(WEBHOOK_URL, content=tampered, headers=headers)

    assert response.status_code == 400
    await db.refresh(order)
    assert order.payment_status == PaymentStatus.PENDING.value


@pytest.mark.asyncio
async def test_missing_signature_rejected(client):
    response = await client.post(WEBHOOK_URL, content=json.dumps(payment_event()))

    assert response.status_code == 400
    assert response.json() == {"error": "Missing signature header"}


@pytest.mark.asyncio
async def test_payload_without_payment_entity_rejected(client):
    response = await _deliver(client, {"event": "payment.captured", "payload": {}})

    assert response.status_code == 400
    assert response.json() == {"error": "Invalid webhook payload"}


@pytest.mark.asyncio
async def test_unknown_order_logs_incident(client, db):
    """No matching order: 200 with success false and one incident row."""
    response = await _deliver(client, payment_event(razorpay_order_id="order_MISSING"))

    assert response.status_code == 200
    assert response.json() == {
        "success": False,
        "message": "Order not found - incident logged for manual review",
    }

    incidents = await _payment_logs(db, PaymentLogStatus.INCIDENT)
    assert len(incidents) == 1
    assert incidents[0].order_id is None
    assert incidents[0].provider_response["razorpay_order_id"] == "order_MISSING"
    assert incidents[0].provider_response["incident"] == "order_not_found"


@pytest.mark.asyncio
async def test_order_found_through_notes_after_regeneration(client, db, variant):
    """A payment on a superseded gateway order still finds its order."""
    order = await create_order(db, variant=variant, razorpay_order_id="order_NEW")

    response = await _deliver(
        client,
        payment_event(razorpay_order_id="order_OLD", notes={"order_id": str(order.id)}),
    )

    assert response.json()["message"] == "Webhook processed successfully"
    await db.refresh(order)
    assert order.payment_status == PaymentStatus.PAID.value
    assert order.razorpay_order_id == "order_NEW"


@pytest.mark.asyncio
async def test_payment_failed_records_attempt(client, db, variant):
    order = await create_order(db, variant=variant)

    response = await _deliver(
        client,
        payment_event(
            event="payment.failed",
            error_code="BAD_REQUEST_ERROR",
            error_description="Payment declined by bank",
        ),
    )

    assert response.status_code == 200
    await db.refresh(order)
    assert order.payment_status == PaymentStatus.FAILED.value
    state = order.provider_state
    assert state.payment_attempts == 1
    assert state.failure_reason == "Payment declined by bank"

    failed = await _payment_logs(db, PaymentLogStatus.FAILED)
    assert len(failed) == 1
    assert failed[0].provider_response["payment_attempts"] == 1

    await db.refresh(variant)
    assert variant.stock == 10


@pytest.mark.asyncio
async def test_failed_order_can_still_be_paid(client, db, variant):
    order = await create_order(db, variant=variant)

    await _deliver(client, payment_event(event="payment.failed", payment_id="pay_A", event_id="evt_1"))
    await _deliver(client, payment_event(event="payment.captured", payment_id="pay_B", event_id="evt_2"))

    await db.refresh(order)
    assert order.payment_status == PaymentStatus.PAID.value
    assert order.provider_state.payment_attempts == 1
    assert order.provider_state.failure_reason is None


@pytest.mark.asyncio
async def test_failure_after_paid_does_not_revert(client, db, variant):
    order = await create_order(db, variant=variant, payment_status=PaymentStatus.PAID.value)

    response = await _deliver(client, payment_event(event="payment.failed", payment_id="pay_OTHER"))

    assert response.status_code == 200
    await db.refresh(order)
    assert order.payment_status == PaymentStatus.PAID.value
    assert len(await _payment_logs(db, PaymentLogStatus.DUPLICATE)) == 1


@pytest.mark.asyncio
async def test_refund_processed(client, db, variant):
    order = await create_order(db, variant=variant, payment_status=PaymentStatus.PAID.value)
    payload = payment_event(event="refund.processed")
    payload["payload"]["refund"] = {
        "entity": {"id": "rfnd_001", "amount": 129900, "status": "processed"},
    }

    response = await _deliver(client, payload)

    assert response.status_code == 200
    await db.refresh(order)
    assert order.payment_status == PaymentStatus.REFUNDED.value
    state = order.provider_state
    assert state.refund_id == "rfnd_001"
    assert state.refund_amount == 129900
    assert len(await _payment_logs(db, PaymentLogStatus.REFUNDED)) == 1


@pytest.mark.asyncio
async def test_unhandled_event_logged_as_unknown(client, db, variant):
    order = await create_order(db, variant=variant)

    response = await _deliver(client, payment_event(event="payment.dispute.created"))

    assert response.json()["message"] == "Webhook processed successfully"
    await db.refresh(order)
    assert order.payment_status == PaymentStatus.PENDING.value
    assert len(await _payment_logs(db, PaymentLogStatus.UNKNOWN)) == 1


@pytest.mark.asyncio
async def test_shipment_crash_leaves_order_paid(client, db, variant, shiprocket_api, fulfillment_config):
    """A shipment failure after capture never reverts paid or fails the webhook."""
    from app.main import app

    app.state.fulfillment_config = FulfillmentConfig(
        shipment_creation_enabled=True,
        max_pickup_retries=2,
        pending_order_ttl_minutes=30,
    )
    shiprocket_api.create_order.side_effect = RuntimeError("Shiprocket unreachable")
    order = await create_order(db, variant=variant, quantity=2)

    response = await _deliver(client, payment_event())

    assert response.status_code == 200
    assert response.json()["success"] is True
    await db.refresh(order)
    assert order.payment_status == PaymentStatus.PAID.value
    assert order.shiprocket_shipment_id is None

    await db.refresh(variant)
    assert variant.stock == 8


@pytest.mark.asyncio
async def test_shipment_api_error_marks_shipment_failed(client, db, variant, shiprocket_api):
    from app.main import app

    app.state.fulfillment_config = FulfillmentConfig(
        shipment_creation_enabled=True,
        max_pickup_retries=2,
        pending_order_ttl_minutes=30,
    )
    shiprocket_api.create_order.side_effect = ShiprocketError("Shiprocket API error: 422", status_code=422)
    order = await create_order(db, variant=variant)

    response = await _deliver(client, payment_event())

    assert response.status_code == 200
    await db.refresh(order)
    assert order.payment_status == PaymentStatus.PAID.value
    assert order.shipment_status == ShipmentStatus.FAILED.value
    assert "422" in order.order_metadata.shipment_error


@pytest.mark.asyncio
async def test_shipment_booked_when_enabled(client, db, variant, shiprocket_api):
    from app.main import app

    app.state.fulfillment_config = FulfillmentConfig(
        shipment_creation_enabled=True,
        max_pickup_retries=2,
        pending_order_ttl_minutes=30,
    )
    order = await create_order(db, variant=variant)

    await _deliver(client, payment_event())

    await db.refresh(order)
    assert order.shipment_status == ShipmentStatus.BOOKED.value
    assert order.shiprocket_shipment_id == "9001"
    shiprocket_api.create_order.assert_awaited_once()


@pytest.mark.asyncio
async def test_missing_secrets_return_500(client, db, variant, monkeypatch):
    order = await create_order(db, variant=variant)
    body, headers = signed_webhook(payment_event())
    monkeypatch.setattr(settings, "razorpay_webhook_secret", None)
    monkeypatch.setattr(settings, "razorpay_key_secret", "")

    response = await client.post(WEBHOOK_URL, content=body, headers=headers)

    assert response.status_code == 500
    assert response.json()["error"] == "Signature verification failed"
    await db.refresh(order)
    assert order.payment_status == PaymentStatus.PENDING.value
    assert await _payment_logs(db) == []
