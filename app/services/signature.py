"""
Razorpay signature verification.

Webhook deliveries are signed over the raw request body; checkout
confirmations posted by the browser are signed over "order_id|payment_id".
Both use HMAC-SHA256 hex digests.
"""

import hmac
import hashlib
import logging
from typing import Optional

from app.config import settings

logger = logging.getLogger(__name__)


class SignatureConfigurationError(RuntimeError):
    """No secret is configured, so no signature can be checked."""


def _hmac_hex(secret: str, message: bytes) -> str:
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()


def _matches(expected: str, claimed: Optional[str]) -> bool:
    if not claimed:
        return False
    return hmac.compare_digest(
        expected.encode("utf-8"),
        claimed.strip().encode("utf-8", errors="replace"),
    )


def verify_webhook_signature(
    raw_body: bytes,
    signature: Optional[str],
    secret: Optional[str] = None,
) -> bool:
    """
    Verify the X-Razorpay-Signature header against the raw body.

    Uses RAZORPAY_WEBHOOK_SECRET, falling back to RAZORPAY_KEY_SECRET.
    Raises SignatureConfigurationError when neither is set.
    """
    secret = secret or settings.webhook_secret
    if not secret:
        raise SignatureConfigurationError(
            "RAZORPAY_WEBHOOK_SECRET or RAZORPAY_KEY_SECRET is not configured"
        )

    if isinstance(raw_body, str):
        raw_body = raw_body.encode("utf-8")

    return _matches(_hmac_hex(secret, raw_body), signature)


def verify_payment_signature(
    razorpay_order_id: str,
    razorpay_payment_id: str,
    signature: Optional[str],
    secret: Optional[str] = None,
) -> bool:
    """Verify the signature returned to the checkout widget after payment."""
    secret = secret or settings.razorpay_key_secret
    if not secret:
        raise SignatureConfigurationError("RAZORPAY_KEY_SECRET is not configured")

    message = f"{razorpay_order_id}|{razorpay_payment_id}".encode("utf-8")
    return _matches(_hmac_hex(secret, message), signature)


def sign_payload(raw_body: bytes, secret: str) -> str:
    """Compute the signature Razorpay would send for a body (used by tooling and tests)."""
    return _hmac_hex(secret, raw_body)
