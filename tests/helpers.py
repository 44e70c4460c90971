"""
Builders for rows and webhook deliveries shared by the tests.
"""

import json
import uuid
from datetime import timedelta
from decimal import Decimal
from typing import Optional

from app.config import settings
from app.fsm.states import PaymentStatus, OrderStatus
from app.models import Order, OrderItem, ProductVariant, StoreCredit, User
from app.models.order import utcnow
from app.models.order_state import AddressSnapshot, OrderMetadata, PaymentProviderState
from app.services.signature import sign_payload


async def create_wallet(db, user: User, balance) -> StoreCredit:
    wallet = StoreCredit(user_id=user.id, balance=Decimal(str(balance)))
    db.add(wallet)
    await db.commit()
    return wallet


async def create_order(
    db,
    variant: Optional[ProductVariant] = None,
    user: Optional[User] = None,
    quantity: int = 2,
    razorpay_order_id: Optional[str] = "order_TEST123",
    payment_status: str = PaymentStatus.PENDING.value,
    credits_applied=Decimal("0"),
    pincode: str = "560001",
    **state_fields,
) -> Order:
    """Pending checkout order as CheckoutService would leave it."""
    price = Decimal(variant.price) if variant else Decimal("500.00")
    items = []
    if variant is not None:
        items.append(OrderItem(
            product_uid=variant.product_uid,
            variant_id=variant.id,
            sku=variant.sku,
            name="Silk Kurta",
            quantity=quantity,
            price=price,
            subtotal=price * quantity,
        ))

    subtotal = price * quantity
    order = Order(
        order_number=f"ZYN-20261018-{uuid.uuid4().int % 10000:04d}",
        user_id=user.id if user else None,
        payment_status=payment_status,
        order_status=OrderStatus.PAID.value if payment_status == PaymentStatus.PAID.value else OrderStatus.CREATED.value,
        subtotal=subtotal,
        total_amount=max(Decimal("0"), subtotal - Decimal(credits_applied)),
        items=items,
    )
    order.order_metadata = OrderMetadata(
        customer_name="Asha Rao",
        email="asha@example.com",
        phone="9876543210",
        address_snapshot=AddressSnapshot(
            recipient_name="Asha Rao",
            phone="9876543210",
            address_line_1="12 MG Road",
            city="Bengaluru",
            state="Karnataka",
            pincode=pincode,
        ),
    )
    order.provider_state = PaymentProviderState(
        razorpay_order_id=razorpay_order_id,
        pending_expires_at=utcnow() + timedelta(minutes=30),
        credits_applied=Decimal(credits_applied),
        credits_locked=Decimal(credits_applied) > 0,
        **state_fields,
    )
    db.add(order)
    await db.commit()
    return order


def payment_event(
    event: str = "payment.captured",
    razorpay_order_id: str = "order_TEST123",
    payment_id: str = "pay_TEST456",
    event_id: Optional[str] = "evt_001",
    amount: int = 259800,
    **entity_fields,
) -> dict:
    entity = {
        "id": payment_id,
        "order_id": razorpay_order_id,
        "amount": amount,
        "currency": "INR",
        "status": "captured" if event == "payment.captured" else "failed",
        "method": "upi",
        "notes": {},
        **entity_fields,
    }
    payload = {
        "entity": "event",
        "event": event,
        "payload": {"payment": {"entity": entity}},
    }
    if event_id:
        payload["event_id"] = event_id
    return payload


def signed_webhook(payload: dict, secret: Optional[str] = None):
    """Raw body and headers exactly as Razorpay would deliver them."""
    body = json.dumps(payload).encode("utf-8")
    signature = sign_payload(body, secret or settings.webhook_secret)
    return body, {"X-Razorpay-Signature": signature, "Content-Type": "application/json"}
