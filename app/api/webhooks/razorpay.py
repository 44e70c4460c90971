"""
Razorpay Webhook Handler.
Verifies signatures and applies payment events to orders.
"""

import json
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Request
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_fulfillment_config
from app.config import FulfillmentConfig
from app.database import get_db
from app.services.idempotency import build_idempotency_key
from app.services.payment_service import PaymentService
from app.services.signature import SignatureConfigurationError, verify_webhook_signature

router = APIRouter()
logger = logging.getLogger(__name__)


def _has_payment_entity(payload) -> bool:
    if not isinstance(payload, dict) or not payload.get("event"):
        return False
    entity = ((payload.get("payload") or {}).get("payment") or {}).get("entity")
    return isinstance(entity, dict)


@router.post("/webhook")
async def razorpay_webhook(
    request: Request,
    x_razorpay_signature: Optional[str] = Header(None, alias="X-Razorpay-Signature"),
    x_razorpay_event_id: Optional[str] = Header(None, alias="X-Razorpay-Event-Id"),
    config: FulfillmentConfig = Depends(get_fulfillment_config),
    db: AsyncSession = Depends(get_db),
):
    """
    Handle Razorpay webhook events.

    Key events:
    - payment.captured / payment.authorized: order paid, fulfillment runs
    - payment.failed: attempt recorded, order stays payable
    - refund.processed: order refunded
    """
    # Raw bytes; the signature covers the exact body Razorpay sent
    body = await request.body()

    if not x_razorpay_signature:
        logger.warning("Razorpay webhook without signature header")
        raise HTTPException(status_code=400, detail="Missing signature header")

    try:
        valid = verify_webhook_signature(body, x_razorpay_signature)
    except SignatureConfigurationError as e:
        logger.error(f"Webhook signature verification unavailable: {e}")
        return JSONResponse(
            status_code=500,
            content={"error": "Signature verification failed", "details": str(e)},
        )

    if not valid:
        logger.error("Invalid Razorpay webhook signature")
        raise HTTPException(status_code=400, detail="Invalid webhook signature")

    try:
        payload = json.loads(body)
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid webhook payload")

    if not _has_payment_entity(payload):
        raise HTTPException(status_code=400, detail="Invalid webhook payload")

    idempotency_key = build_idempotency_key(
        body,
        x_razorpay_signature,
        event_id=x_razorpay_event_id,
        payload=payload,
    )
    logger.info(f"Razorpay webhook received: {payload['event']} ({idempotency_key})")

    service = PaymentService(db, config=config)
    outcome = await service.apply_webhook_event(payload, idempotency_key, signature=x_razorpay_signature)
    return outcome.body
