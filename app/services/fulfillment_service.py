"""
Post-payment fulfillment chain.

Runs after an order has been committed as paid:
1. decrement_stock - floor at zero, warn on oversell, per-item errors recorded
2. calculate_shipping_cost - internal courier cost, zero on any failure
3. trigger_shipment - only when shipment creation is enabled

Each step commits its own work. A failing step is rolled back alone and
reported; the paid state committed before the chain is never touched.
"""

import uuid
import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import select, update, case, func
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import FulfillmentConfig
from app.models.address import Address
from app.models.audit_log import AdminAuditLog
from app.models.order import Order, utcnow
from app.models.product import ProductVariant
from app.services.shiprocket_service import ShiprocketService, normalize_pincode
from app.services.shipment_service import ShipmentService

logger = logging.getLogger(__name__)

DECREMENT_STOCK = "decrement_stock"
CALCULATE_SHIPPING_COST = "calculate_shipping_cost"
TRIGGER_SHIPMENT = "trigger_shipment"

STEPS = (DECREMENT_STOCK, CALCULATE_SHIPPING_COST, TRIGGER_SHIPMENT)


@dataclass
class StepResult:
    name: str
    success: bool
    skipped: bool = False
    detail: Dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None

    def as_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "success": self.success,
            "skipped": self.skipped,
            "detail": self.detail,
            "error": self.error,
        }


@dataclass
class FulfillmentReport:
    order_id: uuid.UUID
    steps: List[StepResult] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return all(step.success for step in self.steps)

    def step(self, name: str) -> Optional[StepResult]:
        for result in self.steps:
            if result.name == name:
                return result
        return None

    def as_dict(self) -> Dict[str, Any]:
        return {
            "order_id": str(self.order_id),
            "ok": self.ok,
            "steps": [step.as_dict() for step in self.steps],
        }


class FulfillmentChain:
    """Independently supervised side effects of a confirmed payment."""

    def __init__(
        self,
        db: AsyncSession,
        config: FulfillmentConfig,
        shiprocket: Optional[ShiprocketService] = None,
        shipments: Optional[ShipmentService] = None,
    ):
        self.db = db
        self.config = config
        self.shiprocket = shiprocket or ShiprocketService(max_retries=config.max_pickup_retries)
        self.shipments = shipments or ShipmentService(db, config=config, shiprocket=self.shiprocket)

    async def _load(self, order_id: uuid.UUID) -> Optional[Order]:
        result = await self.db.execute(
            select(Order)
            .where(Order.id == order_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def run(
        self,
        order_id: uuid.UUID,
        steps: Optional[Iterable[str]] = None,
    ) -> FulfillmentReport:
        """Run the selected steps (all by default) in order and report on each."""
        selected = [name for name in STEPS if steps is None or name in set(steps)]
        report = FulfillmentReport(order_id=order_id)

        order = await self._load(order_id)
        if order is None or not order.is_paid:
            reason = "Order not found" if order is None else f"Order is {order.payment_status}, not paid"
            logger.warning(f"Fulfillment skipped for order {order_id}: {reason}")
            report.steps = [StepResult(name, success=False, skipped=True, error=reason) for name in selected]
            return report

        for name in selected:
            handler = getattr(self, f"_{name}")
            try:
                result = await handler(order_id)
            except Exception as e:
                await self.db.rollback()
                logger.error(f"Fulfillment step {name} failed for order {order_id}: {e}", exc_info=True)
                result = StepResult(name, success=False, error=str(e) or e.__class__.__name__)
            report.steps.append(result)

        log = logger.info if report.ok else logger.warning
        log(
            f"Fulfillment for order {order_id} finished (ok={report.ok})",
            extra={"fulfillment_report": report.as_dict()},
        )
        return report

    async def _resolve_variant(
        self,
        variant_id: Optional[uuid.UUID],
        sku: Optional[str],
    ) -> Optional[ProductVariant]:
        if variant_id:
            result = await self.db.execute(select(ProductVariant).where(ProductVariant.id == variant_id))
            variant = result.scalar_one_or_none()
            if variant:
                return variant
        if sku:
            result = await self.db.execute(select(ProductVariant).where(ProductVariant.sku == sku))
            return result.scalar_one_or_none()
        return None

    async def _decrement_stock(self, order_id: uuid.UUID) -> StepResult:
        order = await self._load(order_id)
        state = order.provider_state
        if state.stock_decremented_at:
            return StepResult(
                DECREMENT_STOCK,
                success=True,
                skipped=True,
                detail={"reason": "already_decremented", "at": state.stock_decremented_at.isoformat()},
            )

        # Plain values; a rollback below would expire the ORM rows
        items = [(item.id, item.sku, item.variant_id, item.quantity) for item in order.items]
        if not items:
            logger.error(f"No order items found for order {order_id}")
            return StepResult(DECREMENT_STOCK, success=False, error="No order items found")

        errors: List[str] = []
        oversold: List[str] = []
        decremented = 0
        done = set(state.stock_decremented_items)

        for item_id, sku, variant_id, quantity in items:
            if str(item_id) in done:
                continue
            try:
                variant = await self._resolve_variant(variant_id, sku)
                if variant is None:
                    message = f"Variant not found for item {sku or item_id}"
                    logger.warning(message)
                    errors.append(message)
                    continue

                current = variant.stock or 0
                if current < quantity:
                    logger.warning(
                        f"Insufficient stock for {variant.sku}: requested {quantity}, available {current}",
                        extra={"order_id": str(order_id), "variant_id": str(variant.id)},
                    )
                    oversold.append(variant.sku)

                stock = func.coalesce(ProductVariant.stock, 0)
                await self.db.execute(
                    update(ProductVariant)
                    .where(ProductVariant.id == variant.id)
                    .values(
                        stock=case((stock >= quantity, stock - quantity), else_=0),
                        updated_at=utcnow(),
                    )
                    .execution_options(synchronize_session="fetch")
                )
                order = await self._load(order_id)
                state = order.provider_state
                state.stock_decremented_items.append(str(item_id))
                order.provider_state = state
                await self.db.commit()
                decremented += 1
                logger.info(f"Stock for {variant.sku}: {current} -> {max(0, current - quantity)}")
            except Exception as e:
                await self.db.rollback()
                message = f"Error processing item {sku or item_id}: {e}"
                logger.error(message)
                errors.append(message)

        order = await self._load(order_id)
        state = order.provider_state
        state.stock_decremented_at = utcnow()
        order.provider_state = state

        if errors:
            self.db.add(AdminAuditLog(
                action="stock_decrement_failed",
                target_resource="orders",
                target_id=str(order_id),
                details={
                    "order_number": order.order_number,
                    "errors": errors,
                    "requires_attention": True,
                },
            ))
        await self.db.commit()

        return StepResult(
            DECREMENT_STOCK,
            success=not errors,
            detail={"decremented": decremented, "total_items": len(items), "oversold": oversold},
            error="; ".join(errors) or None,
        )

    async def _shipping_pincode(self, order: Order) -> Optional[str]:
        raw = None
        if order.shipping_address_id:
            result = await self.db.execute(
                select(Address.pincode).where(Address.id == order.shipping_address_id)
            )
            raw = result.scalar_one_or_none()
        if not raw:
            snapshot = order.order_metadata.address_snapshot
            raw = snapshot.pincode if snapshot else None
        return normalize_pincode(raw)

    async def _calculate_shipping_cost(self, order_id: uuid.UUID) -> StepResult:
        order = await self._load(order_id)
        pincode = await self._shipping_pincode(order)

        error = None
        rate = None
        if not pincode:
            error = "No valid shipping pincode"
        else:
            try:
                rate = await self.shiprocket.calculate_shipping_rate(pincode)
            except Exception as e:
                logger.error(f"Shipping rate lookup raised for order {order_id}: {e}", exc_info=True)
                rate = None
                error = str(e) or e.__class__.__name__
            else:
                if not rate.success:
                    error = rate.error or "Rate calculation failed"

        if error:
            logger.warning(f"Shipping cost for order {order_id} defaulted to 0: {error}")
            if order.internal_shipping_cost is None:
                order.internal_shipping_cost = Decimal("0")
                await self.db.commit()
            return StepResult(
                CALCULATE_SHIPPING_COST,
                success=False,
                detail={"shipping_cost": 0, "pincode": pincode},
                error=error,
            )

        cost = Decimal(str(rate.shipping_cost)).quantize(Decimal("0.01"))
        meta = order.order_metadata
        meta.shipping_cost_calculated = cost
        meta.shipping_cost_courier = rate.courier_name
        meta.shipping_cost_calculated_at = utcnow()
        order.order_metadata = meta
        order.internal_shipping_cost = cost
        await self.db.commit()

        logger.info(f"Internal shipping cost for order {order_id}: {cost} via {rate.courier_name}")
        return StepResult(
            CALCULATE_SHIPPING_COST,
            success=True,
            detail={"shipping_cost": float(cost), "courier": rate.courier_name, "pincode": pincode},
        )

    async def _trigger_shipment(self, order_id: uuid.UUID) -> StepResult:
        if not self.config.shipment_creation_enabled:
            logger.info(f"Shipment creation disabled, skipping order {order_id}")
            return StepResult(
                TRIGGER_SHIPMENT,
                success=True,
                skipped=True,
                detail={"reason": "shipment_creation_disabled"},
            )

        result = await self.shipments.create_shipment_for_paid_order(order_id)
        return StepResult(
            TRIGGER_SHIPMENT,
            success=result.success,
            detail=result.as_dict(),
            error=result.error,
        )
