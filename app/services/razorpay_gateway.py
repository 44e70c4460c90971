"""
Razorpay gateway - order creation through the official SDK.
The SDK is synchronous, so calls run in a worker thread.
"""

import asyncio
import logging
from typing import Any, Dict, Optional

import razorpay

from app.config import settings

logger = logging.getLogger(__name__)


class GatewayOrderError(Exception):
    """Razorpay refused or failed to create an order."""


class RazorpayGateway:
    """Thin async wrapper around razorpay.Client."""

    def __init__(self, client: Optional[razorpay.Client] = None):
        if client is None:
            if not settings.razorpay_key_id or not settings.razorpay_key_secret:
                raise GatewayOrderError(
                    "Razorpay credentials missing: RAZORPAY_KEY_ID and RAZORPAY_KEY_SECRET must be set"
                )
            client = razorpay.Client(
                auth=(settings.razorpay_key_id, settings.razorpay_key_secret)
            )
        self.client = client

    @property
    def key_id(self) -> str:
        return settings.razorpay_key_id

    async def create_order(
        self,
        amount_paise: int,
        receipt: str,
        currency: str = "INR",
        notes: Optional[Dict[str, str]] = None,
    ) -> Dict[str, Any]:
        """Create a gateway order for `amount_paise`. Returns the Razorpay order entity."""
        payload = {
            "amount": amount_paise,
            "currency": currency,
            "receipt": receipt,
            "notes": notes or {},
        }
        try:
            order = await asyncio.to_thread(self.client.order.create, payload)
        except Exception as e:
            logger.error(f"Razorpay order creation failed for {receipt}: {e}")
            raise GatewayOrderError(f"Razorpay order creation failed: {e}") from e

        if not order or not order.get("id"):
            raise GatewayOrderError("Razorpay order creation failed: no order id returned")

        logger.info(f"Razorpay order {order['id']} created for {receipt} ({amount_paise} paise)")
        return order
