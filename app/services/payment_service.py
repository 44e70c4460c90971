"""
Payment Service - Razorpay payment confirmation and order state transitions.

Two entry points move an order to paid:
- apply_webhook_event: verified, non-duplicate gateway deliveries
- verify_client_payment: the checkout widget's signed confirmation

Both claim the paid transition with a conditional UPDATE, so only one of
them (and only once) goes on to settle credits and run the fulfillment
chain.
"""

import json
import uuid
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import FulfillmentConfig
from app.fsm.states import (
    PAYMENT_PROVIDER,
    OrderStatus,
    PaymentLogStatus,
    PaymentStatus,
    WebhookEvent,
)
from app.models.order import Order, utcnow
from app.models.order_state import PaymentProviderState
from app.models.payment import PaymentLog
from app.services.credit_settlement import CreditSettlement, SettlementResult
from app.services.fulfillment_service import FulfillmentChain, FulfillmentReport
from app.services.idempotency import IdempotencyGuard
from app.services.signature import verify_payment_signature
from app.workers.order_emails import queue_order_confirmation

logger = logging.getLogger(__name__)

PAYLOAD_SNIPPET_LENGTH = 500
PAYABLE_STATUSES = (PaymentStatus.PENDING.value, PaymentStatus.FAILED.value)


class PaymentError(Exception):
    """Request rejected; carries the HTTP status and client-facing message."""

    def __init__(self, message: str, status_code: int = 400, details: Optional[Any] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.details = details


@dataclass
class PaymentOutcome:
    """Response body plus what happened after the paid transition, if anything."""

    body: Dict[str, Any]
    order_id: Optional[uuid.UUID] = None
    settlement: Optional[SettlementResult] = None
    report: Optional[FulfillmentReport] = None
    extra: Dict[str, Any] = field(default_factory=dict)


def payload_snippet(payload: Dict[str, Any]) -> str:
    return json.dumps(payload, default=str)[:PAYLOAD_SNIPPET_LENGTH]


class PaymentService:
    """Service for applying Razorpay payment events to orders."""

    def __init__(
        self,
        db: AsyncSession,
        config: Optional[FulfillmentConfig] = None,
        chain: Optional[FulfillmentChain] = None,
        settlement: Optional[CreditSettlement] = None,
    ):
        self.db = db
        self.config = config or FulfillmentConfig.from_settings()
        self.guard = IdempotencyGuard(db)
        self.chain = chain or FulfillmentChain(db, self.config)
        self.settlement = settlement or CreditSettlement(db)

    # ------------------------------------------------------------------
    # Lookups and logging
    # ------------------------------------------------------------------

    async def get_order(self, order_id: uuid.UUID) -> Optional[Order]:
        result = await self.db.execute(select(Order).where(Order.id == order_id))
        return result.scalar_one_or_none()

    async def find_order_by_gateway_id(
        self,
        razorpay_order_id: Optional[str],
        notes: Optional[Dict[str, Any]] = None,
    ) -> Optional[Order]:
        """
        Order for a Razorpay order id. Falls back to the `order_id` note we
        attach to every gateway order, which still resolves payments made
        against a gateway order that was since regenerated.
        """
        if razorpay_order_id:
            result = await self.db.execute(
                select(Order)
                .where(Order.razorpay_order_id == razorpay_order_id)
                .order_by(Order.created_at.desc())
                .limit(1)
            )
            order = result.scalar_one_or_none()
            if order:
                return order

        noted_id = (notes or {}).get("order_id") if isinstance(notes, dict) else None
        if noted_id:
            try:
                return await self.get_order(uuid.UUID(str(noted_id)))
            except ValueError:
                logger.warning(f"Ignoring malformed order_id note: {noted_id}")
        return None

    def _log(
        self,
        order_id: Optional[uuid.UUID],
        status: PaymentLogStatus,
        idempotency_key: Optional[str],
        provider_response: Dict[str, Any],
    ) -> PaymentLog:
        entry = PaymentLog(
            order_id=order_id,
            provider=PAYMENT_PROVIDER,
            status=status.value,
            idempotency_key=idempotency_key,
            provider_response={
                **provider_response,
                "idempotency_key": idempotency_key,
                "processed_at": utcnow().isoformat(),
            },
        )
        self.db.add(entry)
        return entry

    async def _claim_paid(
        self,
        order: Order,
        state: PaymentProviderState,
        payment_method: Optional[str],
    ) -> bool:
        """
        Move a pending/failed order to paid. False if another request got
        there first.
        """
        paid_at = utcnow()
        result = await self.db.execute(
            update(Order)
            .where(
                Order.id == order.id,
                Order.payment_status.in_(PAYABLE_STATUSES),
            )
            .values(
                payment_status=PaymentStatus.PAID.value,
                order_status=OrderStatus.PAID.value,
                payment_method=payment_method,
                paid_at=paid_at,
                payment_provider_response=state.to_raw(),
                razorpay_order_id=state.razorpay_order_id,
                updated_at=paid_at,
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def _after_paid(self, order: Order) -> PaymentOutcome:
        """Credit settlement, fulfillment chain and confirmation email."""
        order_id = order.id
        await self.db.refresh(order)
        outcome = PaymentOutcome(body={}, order_id=order_id)

        try:
            outcome.settlement = await self.settlement.settle(order, after_capture=True)
        except Exception as e:
            await self.db.rollback()
            logger.error(f"Credit settlement crashed for order {order_id}: {e}", exc_info=True)

        try:
            outcome.report = await self.chain.run(order_id)
        except Exception as e:
            await self.db.rollback()
            logger.error(f"Fulfillment chain crashed for order {order_id}: {e}", exc_info=True)

        if not queue_order_confirmation(order_id):
            logger.warning(f"Confirmation email not queued for order {order_id}")

        return outcome

    # ------------------------------------------------------------------
    # Webhook
    # ------------------------------------------------------------------

    async def apply_webhook_event(
        self,
        payload: Dict[str, Any],
        idempotency_key: str,
        signature: Optional[str] = None,
    ) -> PaymentOutcome:
        """
        Apply one verified webhook delivery.

        The payload must already carry `event` and `payload.payment.entity`.
        """
        event_name = payload["event"]
        payment = payload["payload"]["payment"]["entity"]
        razorpay_order_id = payment.get("order_id")
        razorpay_payment_id = payment.get("id")

        if await self.guard.is_processed(idempotency_key):
            logger.info(f"Webhook {idempotency_key} already processed")
            return self._already_processed(idempotency_key)

        order = await self.find_order_by_gateway_id(razorpay_order_id, payment.get("notes"))
        if order is None:
            return await self._record_incident(payload, event_name, payment, idempotency_key)

        event = WebhookEvent.parse(event_name)
        if event is not None and event.marks_paid:
            return await self._apply_captured(order, payload, event, payment, idempotency_key, signature)
        if event == WebhookEvent.PAYMENT_FAILED:
            return await self._apply_failed(order, payload, event, payment, idempotency_key)
        if event == WebhookEvent.REFUND_PROCESSED:
            return await self._apply_refund(order, payload, event, payment, idempotency_key)

        logger.info(f"Unhandled webhook event {event_name} for order {order.order_number}")
        self._log(order.id, PaymentLogStatus.UNKNOWN, idempotency_key, {
            "event": event_name,
            "payment_id": razorpay_payment_id,
            "order_id": razorpay_order_id,
            "payload_snippet": payload_snippet(payload),
        })
        if not await self.guard.commit(idempotency_key):
            return self._already_processed(idempotency_key)
        return self._processed(idempotency_key, order.id)

    def _already_processed(self, idempotency_key: str) -> PaymentOutcome:
        return PaymentOutcome(body={
            "success": True,
            "message": "Webhook already processed",
            "idempotency_key": idempotency_key,
        })

    def _processed(self, idempotency_key: str, order_id: uuid.UUID) -> PaymentOutcome:
        return PaymentOutcome(
            body={
                "success": True,
                "message": "Webhook processed successfully",
                "idempotency_key": idempotency_key,
            },
            order_id=order_id,
        )

    async def _record_incident(
        self,
        payload: Dict[str, Any],
        event_name: str,
        payment: Dict[str, Any],
        idempotency_key: str,
    ) -> PaymentOutcome:
        logger.error(
            f"Order not found for Razorpay order {payment.get('order_id')}, logging incident",
            extra={"razorpay_payment_id": payment.get("id"), "event": event_name},
        )
        self._log(None, PaymentLogStatus.INCIDENT, idempotency_key, {
            "event": event_name,
            "razorpay_order_id": payment.get("order_id"),
            "razorpay_payment_id": payment.get("id"),
            "incident": "order_not_found",
            "payload_snippet": payload_snippet(payload),
        })
        if not await self.guard.commit(idempotency_key):
            return self._already_processed(idempotency_key)
        return PaymentOutcome(body={
            "success": False,
            "message": "Order not found - incident logged for manual review",
        })

    async def _apply_captured(
        self,
        order: Order,
        payload: Dict[str, Any],
        event: WebhookEvent,
        payment: Dict[str, Any],
        idempotency_key: str,
        signature: Optional[str],
    ) -> PaymentOutcome:
        razorpay_payment_id = payment.get("id")

        if self.guard.terminal_state_recorded(order, razorpay_payment_id, PaymentStatus.PAID):
            return await self._record_duplicate(
                order, event, razorpay_payment_id, idempotency_key,
                "duplicate_webhook_ignored",
                "Payment already recorded - duplicate webhook ignored",
            )

        if order.payment_status not in PAYABLE_STATUSES:
            logger.error(
                f"Capture {razorpay_payment_id} for order {order.order_number} "
                f"which is already {order.payment_status}; needs manual review"
            )
            return await self._record_duplicate(
                order, event, razorpay_payment_id, idempotency_key,
                f"order_already_{order.payment_status}",
                "Payment already recorded - duplicate webhook ignored",
            )

        now = utcnow()
        payment_method = payment.get("method") or payment.get("method_type")
        state = order.provider_state
        state.razorpay_payment_id = razorpay_payment_id
        state.razorpay_signature = (signature or "")[:50] or None
        state.webhook_received_at = now
        state.webhook_event = event.value
        state.payment_method = payment_method
        state.idempotency_key = idempotency_key
        state.failure_reason = None

        if not await self._claim_paid(order, state, payment_method):
            await self.db.rollback()
            await self.db.refresh(order)
            return await self._record_duplicate(
                order, event, razorpay_payment_id, idempotency_key,
                "paid_concurrently",
                "Payment already recorded - duplicate webhook ignored",
            )

        self._log(order.id, PaymentLogStatus.PAID, idempotency_key, {
            "event": event.value,
            "payment_id": razorpay_payment_id,
            "order_id": payment.get("order_id"),
            "amount": payment.get("amount"),
            "currency": payment.get("currency"),
            "status": payment.get("status"),
            "payload_snippet": payload_snippet(payload),
        })
        if not await self.guard.commit(idempotency_key):
            return self._already_processed(idempotency_key)

        logger.info(
            f"Order {order.order_number} paid via webhook ({razorpay_payment_id}, {payment_method})"
        )

        outcome = await self._after_paid(order)
        outcome.body = self._processed(idempotency_key, order.id).body
        return outcome

    async def _record_duplicate(
        self,
        order: Order,
        event: WebhookEvent,
        razorpay_payment_id: Optional[str],
        idempotency_key: str,
        note: str,
        message: str,
    ) -> PaymentOutcome:
        self._log(order.id, PaymentLogStatus.DUPLICATE, idempotency_key, {
            "event": event.value,
            "razorpay_payment_id": razorpay_payment_id,
            "note": note,
        })
        if not await self.guard.commit(idempotency_key):
            return self._already_processed(idempotency_key)
        logger.info(f"Duplicate {event.value} for order {order.order_number}: {note}")
        return PaymentOutcome(body={"success": True, "message": message}, order_id=order.id)

    async def _apply_failed(
        self,
        order: Order,
        payload: Dict[str, Any],
        event: WebhookEvent,
        payment: Dict[str, Any],
        idempotency_key: str,
    ) -> PaymentOutcome:
        razorpay_payment_id = payment.get("id")

        if self.guard.terminal_state_recorded(order, razorpay_payment_id, PaymentStatus.FAILED):
            return await self._record_duplicate(
                order, event, razorpay_payment_id, idempotency_key,
                "duplicate_failure_ignored",
                "Payment failure already recorded - duplicate webhook ignored",
            )

        if order.is_paid:
            # A failed attempt reported after another attempt captured
            return await self._record_duplicate(
                order, event, razorpay_payment_id, idempotency_key,
                "failure_after_paid_ignored",
                "Order already paid - failure event ignored",
            )

        state = order.provider_state
        state.payment_attempts += 1
        state.razorpay_payment_id = razorpay_payment_id
        state.webhook_received_at = utcnow()
        state.webhook_event = event.value
        state.idempotency_key = idempotency_key
        state.failure_reason = (
            payment.get("error_description") or payment.get("error_code") or "Payment failed"
        )
        order.provider_state = state
        order.payment_status = PaymentStatus.FAILED.value

        self._log(order.id, PaymentLogStatus.FAILED, idempotency_key, {
            "event": event.value,
            "payment_id": razorpay_payment_id,
            "order_id": payment.get("order_id"),
            "error": payment.get("error_description"),
            "payment_attempts": state.payment_attempts,
            "payload_snippet": payload_snippet(payload),
        })
        if not await self.guard.commit(idempotency_key):
            return self._already_processed(idempotency_key)

        logger.info(
            f"Payment failed for order {order.order_number}: {state.failure_reason} "
            f"(attempt {state.payment_attempts})"
        )
        return self._processed(idempotency_key, order.id)

    async def _apply_refund(
        self,
        order: Order,
        payload: Dict[str, Any],
        event: WebhookEvent,
        payment: Dict[str, Any],
        idempotency_key: str,
    ) -> PaymentOutcome:
        refund = (payload["payload"].get("refund") or {}).get("entity") or payment

        state = order.provider_state
        state.refund_id = refund.get("id")
        state.refund_amount = refund.get("amount")
        state.refund_status = refund.get("status")
        state.webhook_received_at = utcnow()
        state.webhook_event = event.value
        state.idempotency_key = idempotency_key
        order.provider_state = state
        order.payment_status = PaymentStatus.REFUNDED.value

        self._log(order.id, PaymentLogStatus.REFUNDED, idempotency_key, {
            "event": event.value,
            "refund_id": state.refund_id,
            "refund_amount": state.refund_amount,
            "status": state.refund_status,
            "payload_snippet": payload_snippet(payload),
        })
        if not await self.guard.commit(idempotency_key):
            return self._already_processed(idempotency_key)

        logger.info(f"Order {order.order_number} refunded ({state.refund_id}, {state.refund_amount})")
        return self._processed(idempotency_key, order.id)

    # ------------------------------------------------------------------
    # Client-side verification
    # ------------------------------------------------------------------

    async def verify_client_payment(
        self,
        razorpay_order_id: str,
        razorpay_payment_id: Optional[str] = None,
        razorpay_signature: Optional[str] = None,
    ) -> PaymentOutcome:
        """
        Confirm a payment reported by the checkout widget.
        Raises PaymentError for bad signatures and unknown orders.
        """
        if not razorpay_payment_id or not razorpay_signature:
            raise PaymentError("Payment details required for Razorpay verification")

        if not verify_payment_signature(razorpay_order_id, razorpay_payment_id, razorpay_signature):
            logger.warning(f"Invalid payment signature for Razorpay order {razorpay_order_id}")
            raise PaymentError("Invalid payment signature")

        order = await self.find_order_by_gateway_id(razorpay_order_id)
        if order is None:
            raise PaymentError("Order not found", status_code=404)

        if order.is_paid:
            return PaymentOutcome(
                body={"success": True, "message": "Payment already verified"},
                order_id=order.id,
            )
        if order.payment_status not in PAYABLE_STATUSES:
            raise PaymentError("Order not found", status_code=404)

        now = utcnow()
        state = order.provider_state
        state.razorpay_payment_id = razorpay_payment_id
        state.razorpay_signature = razorpay_signature[:50]
        state.verified_at = now
        state.failure_reason = None

        if not await self._claim_paid(order, state, state.payment_method):
            await self.db.rollback()
            return PaymentOutcome(
                body={"success": True, "message": "Payment already verified"},
                order_id=order.id,
            )

        self._log(order.id, PaymentLogStatus.PAID, f"razorpay_verify_{razorpay_payment_id}", {
            "event": "client_verification",
            "payment_id": razorpay_payment_id,
            "order_id": razorpay_order_id,
        })
        if not await self.guard.commit():
            return PaymentOutcome(
                body={"success": True, "message": "Payment already verified"},
                order_id=order.id,
            )

        logger.info(f"Order {order.order_number} paid via client verification ({razorpay_payment_id})")

        outcome = await self._after_paid(order)
        outcome.body = {"success": True, "message": "Payment verified successfully"}
        return outcome

    async def confirm_credits_only_order(
        self,
        order_id: uuid.UUID,
        user_id: Optional[uuid.UUID] = None,
    ) -> PaymentOutcome:
        """
        Confirm an order fully covered by store credit.

        No gateway capture happened, so a failed deduction rejects the
        confirmation and the order stays pending.
        """
        order = await self.get_order(order_id)
        if order is None or (user_id is not None and order.user_id != user_id):
            raise PaymentError("Order not found", status_code=404)

        if order.is_paid:
            return PaymentOutcome(body={"success": True, "message": "Order already paid"}, order_id=order.id)

        state = order.provider_state
        if state.credits_applied <= 0:
            raise PaymentError("No credits applied to this order")
        if state.razorpay_order_id:
            raise PaymentError("Order requires a gateway payment")

        settlement = await self.settlement.settle(order, after_capture=False)
        if not settlement.success:
            logger.warning(f"Credits-only order {order.order_number} rejected: {settlement.error}")
            raise PaymentError(f"Failed to deduct credits: {settlement.error}")

        state = order.provider_state
        if not await self._claim_paid(order, state, "store_credit"):
            await self.db.rollback()
            return PaymentOutcome(body={"success": True, "message": "Order already paid"}, order_id=order.id)

        self._log(order.id, PaymentLogStatus.PAID, f"credits_only_{order.id}", {
            "event": "credits_only",
            "credits_applied": str(state.credits_applied),
        })
        if not await self.guard.commit():
            return PaymentOutcome(body={"success": True, "message": "Order already paid"}, order_id=order.id)

        logger.info(f"Order {order.order_number} paid with store credit ({state.credits_applied})")

        outcome = await self._after_paid(order)
        outcome.settlement = settlement
        outcome.body = {"success": True, "message": "Order paid with credits successfully"}
        return outcome
