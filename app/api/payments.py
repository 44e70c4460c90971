"""
Customer payment API.
Checkout order creation, client-side verification, retry and status.
"""

import uuid
import logging
from decimal import Decimal
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_current_user, get_fulfillment_config, get_optional_user
from app.config import FulfillmentConfig
from app.database import get_db
from app.models.user import User
from app.services.checkout_service import (
    CartLine,
    CheckoutError,
    CheckoutService,
    CustomerInfo,
    ShippingAddress,
)
from app.services.payment_service import PaymentError, PaymentService
from app.services.signature import SignatureConfigurationError

router = APIRouter()
logger = logging.getLogger(__name__)


class CartItemRequest(BaseModel):
    sku: str = Field(..., min_length=1)
    quantity: int = Field(..., ge=1)


class CustomerRequest(BaseModel):
    name: str = Field(..., min_length=1)
    email: str = Field(..., pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
    phone: str = Field(..., min_length=10)


class AddressRequest(BaseModel):
    line1: str = Field(..., min_length=1)
    line2: Optional[str] = None
    city: str = Field(..., min_length=1)
    state: str = Field(..., min_length=1)
    pincode: str = Field(..., min_length=6)
    country: str = "India"


class EstimatedDelivery(BaseModel):
    min_days: int
    max_days: int


class CreateOrderRequest(BaseModel):
    items: List[CartItemRequest] = Field(..., min_length=1)
    customer: CustomerRequest
    address: AddressRequest
    shipping_fee: Optional[float] = Field(None, ge=0)
    estimated_delivery: Optional[EstimatedDelivery] = None
    credits_applied: Optional[float] = Field(None, ge=0)


class VerifyPaymentRequest(BaseModel):
    razorpay_order_id: str
    razorpay_payment_id: Optional[str] = None
    razorpay_signature: Optional[str] = None
    credits_only: bool = False
    order_id: Optional[uuid.UUID] = None


def _error_response(message: str, status_code: int, details=None) -> JSONResponse:
    content = {"error": message}
    if details is not None:
        content["details"] = details
    return JSONResponse(status_code=status_code, content=content)


@router.post("/create-order")
async def create_order(
    data: CreateOrderRequest,
    user: User = Depends(get_current_user),
    config: FulfillmentConfig = Depends(get_fulfillment_config),
    db: AsyncSession = Depends(get_db),
):
    """Create a pending order and, unless credits cover it, a Razorpay order."""
    service = CheckoutService(db, config=config)
    try:
        return await service.create_order(
            user=user,
            items=[CartLine(sku=item.sku, quantity=item.quantity) for item in data.items],
            customer=CustomerInfo(**data.customer.model_dump()),
            address=ShippingAddress(**data.address.model_dump()),
            shipping_fee=Decimal(str(data.shipping_fee or 0)),
            estimated_delivery=data.estimated_delivery.model_dump() if data.estimated_delivery else None,
            credits_applied=Decimal(str(data.credits_applied or 0)),
        )
    except CheckoutError as e:
        return _error_response(e.message, e.status_code, e.details)


@router.post("/verify")
async def verify_payment(
    data: VerifyPaymentRequest,
    user: Optional[User] = Depends(get_optional_user),
    config: FulfillmentConfig = Depends(get_fulfillment_config),
    db: AsyncSession = Depends(get_db),
):
    """
    Confirm a payment from the checkout widget.

    Credits-only orders have no gateway payment and are confirmed by
    their owner with `credits_only: true` and the database `order_id`.
    """
    service = PaymentService(db, config=config)
    try:
        if data.credits_only:
            if user is None:
                raise HTTPException(status_code=401, detail="Unauthorized")
            if data.order_id is None:
                return _error_response("order_id is required for credits-only orders", 400)
            outcome = await service.confirm_credits_only_order(data.order_id, user_id=user.id)
        else:
            outcome = await service.verify_client_payment(
                data.razorpay_order_id,
                data.razorpay_payment_id,
                data.razorpay_signature,
            )
    except PaymentError as e:
        return _error_response(e.message, e.status_code, e.details)
    except SignatureConfigurationError as e:
        logger.error(f"Payment signature verification unavailable: {e}")
        return _error_response("Signature verification failed", 500, str(e))

    return outcome.body


@router.get("/retry")
async def retry_payment(
    user: User = Depends(get_current_user),
    config: FulfillmentConfig = Depends(get_fulfillment_config),
    db: AsyncSession = Depends(get_db),
):
    """Reuse or regenerate the Razorpay order for the latest pending order."""
    service = CheckoutService(db, config=config)
    try:
        return await service.retry_pending_order(user)
    except CheckoutError as e:
        return _error_response(e.message, e.status_code, e.details)


@router.get("/status")
async def payment_status(
    order_id: Optional[uuid.UUID] = None,
    order_number: Optional[str] = None,
    user: User = Depends(get_current_user),
    config: FulfillmentConfig = Depends(get_fulfillment_config),
    db: AsyncSession = Depends(get_db),
):
    """Payment status of an order (most recent when neither id is given)."""
    service = CheckoutService(db, config=config)
    try:
        return await service.payment_status(user, order_id=order_id, order_number=order_number)
    except CheckoutError as e:
        return _error_response(e.message, e.status_code, e.details)
