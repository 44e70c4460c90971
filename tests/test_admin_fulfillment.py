"""
Tests for the admin fulfillment endpoints.
"""

import uuid

import pytest

from app.config import FulfillmentConfig
from app.fsm.states import PaymentStatus, ShipmentStatus
from app.main import app
from tests.helpers import create_order, payment_event, signed_webhook

ADMIN_HEADERS = {"X-Admin-Key": "admin-test-key"}


@pytest.mark.asyncio
async def test_admin_key_required(client):
    response = await client.get("/admin/payments/incidents")
    assert response.status_code == 401
    assert response.json() == {"error": "Missing Admin Key"}

    response = await client.get("/admin/payments/incidents", headers={"X-Admin-Key": "wrong"})
    assert response.status_code == 401
    assert response.json() == {"error": "Invalid Admin Key"}


@pytest.mark.asyncio
async def test_rerun_fulfillment_reports_steps(client, db, variant):
    order = await create_order(db, variant=variant, quantity=3, payment_status=PaymentStatus.PAID.value)

    response = await client.post(f"/admin/orders/{order.id}/fulfillment", headers=ADMIN_HEADERS)

    assert response.status_code == 200
    data = response.json()
    assert data["success"] is True
    steps = {step["name"]: step for step in data["report"]["steps"]}
    assert steps["decrement_stock"]["success"] is True
    assert steps["calculate_shipping_cost"]["detail"]["shipping_cost"] == 85.0
    assert steps["trigger_shipment"]["skipped"] is True

    await db.refresh(variant)
    assert variant.stock == 7


@pytest.mark.asyncio
async def test_rerun_never_decrements_twice(client, db, variant):
    order = await create_order(db, variant=variant, quantity=3, payment_status=PaymentStatus.PAID.value)

    await client.post(f"/admin/orders/{order.id}/fulfillment", headers=ADMIN_HEADERS)
    response = await client.post(
        f"/admin/orders/{order.id}/fulfillment",
        json={"steps": ["decrement_stock"]},
        headers=ADMIN_HEADERS,
    )

    step = response.json()["report"]["steps"][0]
    assert step["skipped"] is True
    assert step["detail"]["reason"] == "already_decremented"
    await db.refresh(variant)
    assert variant.stock == 7


@pytest.mark.asyncio
async def test_rerun_unknown_step(client, db, variant):
    order = await create_order(db, variant=variant, payment_status=PaymentStatus.PAID.value)

    response = await client.post(
        f"/admin/orders/{order.id}/fulfillment",
        json={"steps": ["gift_wrap"]},
        headers=ADMIN_HEADERS,
    )

    assert response.status_code == 400
    assert response.json() == {"error": "Unknown steps: gift_wrap"}


@pytest.mark.asyncio
async def test_rerun_for_unpaid_order(client, db, variant):
    order = await create_order(db, variant=variant)

    response = await client.post(f"/admin/orders/{order.id}/fulfillment", headers=ADMIN_HEADERS)

    data = response.json()
    assert data["success"] is False
    assert all(step["skipped"] for step in data["report"]["steps"])


@pytest.mark.asyncio
async def test_shipment_retry_disabled(client, db, variant):
    order = await create_order(db, variant=variant, payment_status=PaymentStatus.PAID.value)

    response = await client.post(f"/admin/orders/{order.id}/shipment", headers=ADMIN_HEADERS)

    assert response.status_code == 409
    assert "manual fulfillment" in response.json()["error"]


@pytest.mark.asyncio
async def test_shipment_retry_books_shipment(client, db, variant, shiprocket_api):
    order = await create_order(db, variant=variant, payment_status=PaymentStatus.PAID.value)
    app.state.fulfillment_config = FulfillmentConfig(shipment_creation_enabled=True)

    response = await client.post(f"/admin/orders/{order.id}/shipment", headers=ADMIN_HEADERS)

    assert response.status_code == 200
    assert response.json()["shipment_id"] == "9001"
    await db.refresh(order)
    assert order.shipment_status == ShipmentStatus.BOOKED.value

    # Booked shipments are not created again
    second = await client.post(f"/admin/orders/{order.id}/shipment", headers=ADMIN_HEADERS)
    assert second.json()["already_exists"] is True
    shiprocket_api.create_order.assert_awaited_once()


@pytest.mark.asyncio
async def test_incidents_listed(client, db):
    body, headers = signed_webhook(payment_event(razorpay_order_id="order_GHOST", event_id="evt_ghost"))
    await client.post("/api/payments/webhook", content=body, headers=headers)

    response = await client.get("/admin/payments/incidents", headers=ADMIN_HEADERS)

    data = response.json()
    assert data["count"] == 1
    incident = data["incidents"][0]
    assert incident["idempotency_key"] == "razorpay_webhook_evt_ghost"
    assert incident["details"]["razorpay_order_id"] == "order_GHOST"


@pytest.mark.asyncio
async def test_rerun_unknown_order(client):
    response = await client.post(f"/admin/orders/{uuid.uuid4()}/fulfillment", headers=ADMIN_HEADERS)

    assert response.status_code == 200
    assert response.json()["report"]["steps"][0]["error"] == "Order not found"
