"""
Shipment Service - books a Shiprocket shipment for a paid order.

Idempotent: an order that already has a shipment id in any state other
than FAILED is returned as `already_exists` without calling Shiprocket.
"""

import uuid
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import httpx
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import FulfillmentConfig, settings
from app.fsm.states import OrderStatus, ShipmentStatus
from app.models.address import Address
from app.models.audit_log import AdminAuditLog
from app.models.order import Order, OrderItem, utcnow
from app.models.order_state import AddressSnapshot
from app.services.shiprocket_service import ShiprocketService, ShiprocketError

logger = logging.getLogger(__name__)


class ShipmentDisabledError(RuntimeError):
    """Shipment creation is switched off; the order needs manual fulfillment."""


@dataclass
class ShipmentResult:
    success: bool
    shipment_id: Optional[str] = None
    courier_name: Optional[str] = None
    already_exists: bool = False
    error: Optional[str] = None

    def as_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "shipment_id": self.shipment_id,
            "courier_name": self.courier_name,
            "already_exists": self.already_exists,
            "error": self.error,
        }


def _split_name(full_name: Optional[str]) -> Dict[str, str]:
    words = (full_name or "Customer").split()
    if not words:
        return {"first": "Customer", "last": "."}
    return {"first": words[0], "last": " ".join(words[1:]) or "."}


def _digits(value: Optional[str]) -> str:
    return "".join(ch for ch in str(value or "") if ch.isdigit())


def address_from_row(row: Address) -> AddressSnapshot:
    return AddressSnapshot(
        recipient_name=row.full_name,
        phone=row.phone,
        address_line_1=row.line1,
        address_line_2=row.line2,
        city=row.city,
        state=row.state,
        pincode=row.pincode,
        country=row.country or "India",
    )


def chargeable_weight(weight: float, length: float, breadth: float, height: float) -> float:
    """Max of physical and volumetric weight (L x B x H / 5000, in cm)."""
    return round(max(weight, (length * breadth * height) / 5000), 2)


def build_shipment_payload(
    order: Order,
    items: List[OrderItem],
    shipping: AddressSnapshot,
    billing: Optional[AddressSnapshot] = None,
) -> Dict[str, Any]:
    """Shiprocket adhoc order payload. Always prepaid; we only ship after payment."""
    meta = order.order_metadata
    email = (meta.email or "").strip()
    if "@" not in email:
        raise ValueError("MISSING_EMAIL")

    bill = billing or shipping
    bill_name = _split_name(meta.customer_name or bill.recipient_name)

    sub_total = sum(int(item.price) * item.quantity for item in items)
    payload: Dict[str, Any] = {
        "order_id": order.order_number,
        "order_date": order.created_at.isoformat(),
        "pickup_location": settings.shiprocket_pickup_location,
        "billing_customer_name": bill_name["first"],
        "billing_last_name": bill_name["last"],
        "billing_address": (bill.address_line_1 or "").strip(),
        "billing_address_2": (bill.address_line_2 or "").strip() or None,
        "billing_city": (bill.city or "").strip(),
        "billing_pincode": _digits(bill.pincode),
        "billing_state": (bill.state or "").strip(),
        "billing_country": (bill.country or "India").strip(),
        "billing_email": email,
        "billing_phone": _digits(bill.phone or meta.phone)[-10:],
        "shipping_is_billing": billing is None,
        "payment_method": "Prepaid",
        "sub_total": sub_total,
        "length": settings.default_shipment_length,
        "breadth": settings.default_shipment_breadth,
        "height": settings.default_shipment_height,
        "weight": chargeable_weight(
            settings.default_shipment_weight,
            settings.default_shipment_length,
            settings.default_shipment_breadth,
            settings.default_shipment_height,
        ),
        "order_items": [
            {
                "name": (item.name or "Product").strip(),
                "sku": (item.sku or f"SKU-{str(item.id)[:8]}").strip(),
                "units": item.quantity,
                "selling_price": int(item.price),
            }
            for item in items
        ],
    }

    if billing is not None:
        ship_name = _split_name(shipping.recipient_name or meta.customer_name)
        payload.update({
            "shipping_customer_name": ship_name["first"],
            "shipping_last_name": ship_name["last"],
            "shipping_address": (shipping.address_line_1 or "").strip(),
            "shipping_address_2": (shipping.address_line_2 or "").strip() or None,
            "shipping_city": (shipping.city or "").strip(),
            "shipping_pincode": _digits(shipping.pincode),
            "shipping_state": (shipping.state or "").strip(),
            "shipping_country": (shipping.country or "India").strip(),
            "shipping_email": email,
            "shipping_phone": _digits(shipping.phone or meta.phone)[-10:],
        })

    return {k: v for k, v in payload.items() if v is not None}


class ShipmentService:
    """Creates Shiprocket shipments for paid orders."""

    def __init__(
        self,
        db: AsyncSession,
        config: Optional[FulfillmentConfig] = None,
        shiprocket: Optional[ShiprocketService] = None,
    ):
        self.db = db
        self.config = config or FulfillmentConfig.from_settings()
        self.shiprocket = shiprocket or ShiprocketService(max_retries=self.config.max_pickup_retries)

    async def _get_address(self, address_id: Optional[uuid.UUID]) -> Optional[AddressSnapshot]:
        if not address_id:
            return None
        result = await self.db.execute(select(Address).where(Address.id == address_id))
        row = result.scalar_one_or_none()
        return address_from_row(row) if row else None

    async def create_shipment_for_paid_order(self, order_id: uuid.UUID) -> ShipmentResult:
        """
        Book a shipment. Refuses unpaid orders.

        Raises ShipmentDisabledError when shipment creation is switched off;
        all Shiprocket failures are recorded on the order and returned.
        """
        result = await self.db.execute(select(Order).where(Order.id == order_id))
        order = result.scalar_one_or_none()
        if not order:
            logger.error(f"Shipment requested for unknown order {order_id}")
            return ShipmentResult(success=False, error="Order not found")

        if not order.is_paid or order.order_status != OrderStatus.PAID.value:
            logger.warning(
                f"Order {order.order_number} not paid "
                f"({order.order_status}/{order.payment_status}), skipping shipment"
            )
            return ShipmentResult(
                success=False,
                error=f"Order status is {order.order_status}/{order.payment_status}, not paid",
            )

        if not self.config.shipment_creation_enabled:
            logger.error(f"Shiprocket disabled, order {order.order_number} needs manual fulfillment")
            raise ShipmentDisabledError("Shiprocket disabled: paid order requires manual fulfillment")

        if order.shiprocket_shipment_id and order.shipment_status != ShipmentStatus.FAILED.value:
            logger.info(f"Shipment already exists for order {order.order_number}: {order.shiprocket_shipment_id}")
            return ShipmentResult(
                success=True,
                shipment_id=order.shiprocket_shipment_id,
                courier_name=order.courier_name,
                already_exists=True,
            )

        shipping = await self._get_address(order.shipping_address_id)
        if shipping is None:
            shipping = order.order_metadata.address_snapshot
        if shipping is None:
            return await self._mark_failed(order, "Shipping address missing")

        billing = None
        if order.billing_address_id and order.billing_address_id != order.shipping_address_id:
            billing = await self._get_address(order.billing_address_id)

        if not order.items:
            return await self._mark_failed(order, "Order has no items")

        try:
            payload = build_shipment_payload(order, list(order.items), shipping, billing)
            logger.info(f"Creating Shiprocket order for {order.order_number}")
            response = await self.shiprocket.create_order(payload)
        except (ShiprocketError, httpx.HTTPError, ValueError) as e:
            return await self._mark_failed(order, str(e) or "Shipment creation failed")

        shipment_id = response.get("shipment_id")
        if not shipment_id:
            return await self._mark_failed(order, f"Shiprocket returned no shipment id: {response}")

        return await self._mark_booked(order, response)

    async def _mark_booked(self, order: Order, response: Dict[str, Any]) -> ShipmentResult:
        shipment_id = str(response["shipment_id"])
        courier_name = response.get("courier_name")

        meta = order.order_metadata
        meta.shipping = {
            **meta.shipping,
            "shipment_id": response.get("shipment_id"),
            "awb_code": response.get("awb_code"),
            "courier": courier_name,
            "courier_company_id": response.get("courier_company_id"),
            "tracking_url": response.get("tracking_url"),
            "expected_delivery": response.get("expected_delivery_date"),
            "updated_at": utcnow().isoformat(),
        }
        meta.shipment_error = None
        meta.shipment_failed_at = None
        order.order_metadata = meta

        order.shiprocket_shipment_id = shipment_id
        order.shipment_status = ShipmentStatus.BOOKED.value
        order.courier_name = courier_name

        self.db.add(AdminAuditLog(
            action="shipment_created",
            target_resource="orders",
            target_id=str(order.id),
            details={
                "order_number": order.order_number,
                "shipment_id": shipment_id,
                "courier_name": courier_name,
                "awb_code": response.get("awb_code"),
            },
        ))
        await self.db.commit()

        logger.info(f"Shipment {shipment_id} booked for order {order.order_number}")
        return ShipmentResult(success=True, shipment_id=shipment_id, courier_name=courier_name)

    async def _mark_failed(self, order: Order, error: str) -> ShipmentResult:
        logger.error(f"Shipment creation failed for order {order.order_number}: {error}")

        meta = order.order_metadata
        meta.shipment_error = error
        meta.shipment_failed_at = utcnow()
        order.order_metadata = meta
        order.shipment_status = ShipmentStatus.FAILED.value

        self.db.add(AdminAuditLog(
            action="shipment_creation_failed",
            target_resource="orders",
            target_id=str(order.id),
            details={
                "order_number": order.order_number,
                "error": error,
                "requires_attention": True,
            },
        ))
        await self.db.commit()
        return ShipmentResult(success=False, error=error)
