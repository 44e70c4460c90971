"""
Idempotency Guard - deduplicates Razorpay webhook deliveries.

The key of every processed delivery is stored on the PaymentLog row written
for it. A unique (provider, idempotency_key) constraint turns a concurrent
redelivery that slips past `is_processed` into an IntegrityError at commit.
"""

import hashlib
import logging
from typing import Any, Dict, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.fsm.states import PAYMENT_PROVIDER, PaymentStatus, OrderStatus
from app.models.order import Order
from app.models.payment import PaymentLog

logger = logging.getLogger(__name__)

KEY_PREFIX = "razorpay_webhook_"


def build_idempotency_key(
    raw_body: bytes,
    signature: str,
    event_id: Optional[str] = None,
    payload: Optional[Dict[str, Any]] = None,
) -> str:
    """
    Derive the delivery key.

    Razorpay's event id (X-Razorpay-Event-Id header or `event_id` in the
    envelope) is used when present. Otherwise the key is a hash over the raw
    body plus the delivered signature.
    """
    if not event_id and payload:
        event_id = payload.get("event_id")
    if event_id:
        return f"{KEY_PREFIX}{event_id}"

    if isinstance(raw_body, str):
        raw_body = raw_body.encode("utf-8")
    digest = hashlib.sha256(raw_body + (signature or "").encode("utf-8")).hexdigest()
    return f"{KEY_PREFIX}{digest[:32]}"


class IdempotencyGuard:
    """Checks for deliveries and terminal states that were already recorded."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def is_processed(self, idempotency_key: str) -> bool:
        """True if a committed PaymentLog row already carries this key."""
        result = await self.db.execute(
            select(PaymentLog.id).where(
                PaymentLog.provider == PAYMENT_PROVIDER,
                PaymentLog.idempotency_key == idempotency_key,
            ).limit(1)
        )
        return result.scalar_one_or_none() is not None

    @staticmethod
    def terminal_state_recorded(
        order: Order,
        razorpay_payment_id: Optional[str],
        status: PaymentStatus,
    ) -> bool:
        """
        Same terminal state already reported for the same payment,
        possibly under a different delivery key.
        """
        if order.payment_status != status.value:
            return False
        if status == PaymentStatus.PAID and order.order_status != OrderStatus.PAID.value:
            return False
        return order.provider_state.razorpay_payment_id == razorpay_payment_id

    async def commit(self, idempotency_key: Optional[str] = None) -> bool:
        """
        Commit the pending transition and its PaymentLog row together.

        Returns False (after rolling back) when another delivery with the
        same key committed first.
        """
        try:
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            logger.info(f"Concurrent delivery already committed {idempotency_key}")
            return False
        return True
