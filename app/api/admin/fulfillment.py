"""
Admin Fulfillment Endpoints.
Manual re-runs of the post-payment chain, shipment retries and
payment incident review.
"""

import uuid
import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_admin_user, get_fulfillment_config
from app.config import FulfillmentConfig
from app.database import get_db
from app.fsm.states import PaymentLogStatus
from app.models.payment import PaymentLog
from app.services.fulfillment_service import STEPS, FulfillmentChain
from app.services.shipment_service import ShipmentDisabledError, ShipmentService

router = APIRouter()
logger = logging.getLogger(__name__)


class RerunFulfillmentRequest(BaseModel):
    """Steps to run; all of them when omitted."""
    steps: Optional[List[str]] = None


@router.post("/orders/{order_id}/fulfillment")
async def rerun_fulfillment(
    order_id: uuid.UUID,
    request: Optional[RerunFulfillmentRequest] = None,
    config: FulfillmentConfig = Depends(get_fulfillment_config),
    db: AsyncSession = Depends(get_db),
    _: str = Depends(get_admin_user),
):
    """
    Re-run fulfillment steps for a paid order.

    Stock is never decremented twice; the step reports itself as skipped
    once the order's watermark is set.
    """
    steps = request.steps if request else None
    unknown = [name for name in steps or [] if name not in STEPS]
    if unknown:
        raise HTTPException(status_code=400, detail=f"Unknown steps: {', '.join(unknown)}")

    chain = FulfillmentChain(db, config)
    report = await chain.run(order_id, steps=steps)
    logger.info(f"Admin re-ran fulfillment for order {order_id}: ok={report.ok}")
    return {"success": report.ok, "report": report.as_dict()}


@router.post("/orders/{order_id}/shipment")
async def retry_shipment(
    order_id: uuid.UUID,
    config: FulfillmentConfig = Depends(get_fulfillment_config),
    db: AsyncSession = Depends(get_db),
    _: str = Depends(get_admin_user),
):
    """Create the Shiprocket shipment for a paid order (manual retry path)."""
    service = ShipmentService(db, config=config)
    try:
        result = await service.create_shipment_for_paid_order(order_id)
    except ShipmentDisabledError as e:
        raise HTTPException(status_code=409, detail=str(e))

    return {"success": result.success, **result.as_dict()}


@router.get("/payments/incidents")
async def list_payment_incidents(
    limit: int = Query(50, ge=1, le=500),
    db: AsyncSession = Depends(get_db),
    _: str = Depends(get_admin_user),
):
    """Webhooks whose order could not be located, newest first."""
    result = await db.execute(
        select(PaymentLog)
        .where(PaymentLog.status == PaymentLogStatus.INCIDENT.value)
        .order_by(PaymentLog.created_at.desc())
        .limit(limit)
    )
    incidents = result.scalars().all()

    return {
        "success": True,
        "count": len(incidents),
        "incidents": [
            {
                "id": str(log.id),
                "idempotency_key": log.idempotency_key,
                "created_at": log.created_at.isoformat(),
                "details": log.provider_response,
            }
            for log in incidents
        ],
    }
