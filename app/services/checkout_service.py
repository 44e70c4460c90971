"""
Checkout Service - creates pending orders and their Razorpay orders,
regenerates expired gateway orders and reports payment status.
"""

import random
import uuid
import logging
from dataclasses import dataclass
from datetime import timedelta
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import FulfillmentConfig, settings
from app.fsm.states import PAYMENT_PROVIDER, PaymentLogStatus, PaymentStatus
from app.models.order import Order, OrderItem, utcnow
from app.models.order_state import AddressSnapshot, OrderMetadata, PaymentProviderState
from app.models.payment import PaymentLog
from app.models.product import Product, ProductVariant
from app.models.user import User
from app.services.razorpay_gateway import GatewayOrderError, RazorpayGateway
from app.services.shiprocket_service import ShiprocketService
from app.services.wallet_service import WalletService

logger = logging.getLogger(__name__)

MIN_GATEWAY_AMOUNT_PAISE = 100
CREDITS_ONLY = "credits_only"
STATUS_LOG_LIMIT = 5


class CheckoutError(Exception):
    """Checkout request rejected; nothing has been committed."""

    def __init__(self, message: str, details: Optional[Any] = None, status_code: int = 400):
        super().__init__(message)
        self.message = message
        self.details = details
        self.status_code = status_code


@dataclass
class CartLine:
    sku: str
    quantity: int


@dataclass
class CustomerInfo:
    name: str
    email: str
    phone: str


@dataclass
class ShippingAddress:
    line1: str
    city: str
    state: str
    pincode: str
    line2: Optional[str] = None
    country: str = "India"


def generate_order_number() -> str:
    """ZYN-YYYYMMDD-NNNN"""
    return f"ZYN-{utcnow().strftime('%Y%m%d')}-{random.randint(0, 9999):04d}"


ORDER_NUMBER_ATTEMPTS = 5


def to_paise(amount: Decimal) -> int:
    return int((Decimal(amount) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


class CheckoutService:
    """Service for turning a cart into a pending, payable order."""

    def __init__(
        self,
        db: AsyncSession,
        config: Optional[FulfillmentConfig] = None,
        gateway: Optional[RazorpayGateway] = None,
        shiprocket: Optional[ShiprocketService] = None,
        wallet: Optional[WalletService] = None,
    ):
        self.db = db
        self.config = config or FulfillmentConfig.from_settings()
        self._gateway = gateway
        self.shiprocket = shiprocket or ShiprocketService(max_retries=self.config.max_pickup_retries)
        self.wallet = wallet or WalletService(db)

    @property
    def gateway(self) -> RazorpayGateway:
        # Built lazily so credits-only checkouts never need the SDK client
        if self._gateway is None:
            self._gateway = RazorpayGateway()
        return self._gateway

    async def _unused_order_number(self) -> str:
        """Redraw the daily random suffix while it collides with an existing order."""
        for _ in range(ORDER_NUMBER_ATTEMPTS):
            candidate = generate_order_number()
            result = await self.db.execute(
                select(Order.id).where(Order.order_number == candidate)
            )
            if result.scalar_one_or_none() is None:
                return candidate
            logger.warning(f"Order number {candidate} already taken, drawing another")
        raise CheckoutError("Could not allocate an order number", status_code=503)

    async def _price_line(self, line: CartLine) -> OrderItem:
        result = await self.db.execute(
            select(ProductVariant).where(ProductVariant.sku == line.sku)
        )
        variant = result.scalar_one_or_none()
        if variant is None or not variant.active:
            raise CheckoutError(f"Variant with SKU {line.sku} not found")

        if variant.stock is None or variant.stock < line.quantity:
            raise CheckoutError(f"Insufficient stock for SKU {line.sku}")

        price = variant.price
        name = None
        product_result = await self.db.execute(
            select(Product).where(Product.uid == variant.product_uid)
        )
        product = product_result.scalar_one_or_none()
        if product is not None:
            name = product.name
            if price is None or price <= 0:
                price = product.price

        if price is None or price <= 0:
            raise CheckoutError(f"No valid price found for SKU {line.sku}")

        price = Decimal(price)
        return OrderItem(
            product_uid=variant.product_uid,
            variant_id=variant.id,
            sku=variant.sku,
            name=name,
            quantity=line.quantity,
            price=price,
            subtotal=price * line.quantity,
        )

    async def create_order(
        self,
        user: Optional[User],
        items: List[CartLine],
        customer: CustomerInfo,
        address: ShippingAddress,
        shipping_fee: Decimal = Decimal("0"),
        estimated_delivery: Optional[Dict[str, int]] = None,
        credits_applied: Decimal = Decimal("0"),
    ) -> Dict[str, Any]:
        """
        Validate the cart and create a pending order.

        A Razorpay order is created when anything is left to pay after
        credits; otherwise the order is confirmed later as credits-only.
        """
        if not items:
            raise CheckoutError("Cart is empty")

        order_items = [await self._price_line(line) for line in items]
        subtotal = sum((item.subtotal for item in order_items), Decimal("0"))
        shipping_fee = Decimal(shipping_fee or 0)
        credits = Decimal(credits_applied or 0)

        final_total = max(Decimal("0"), subtotal + shipping_fee - credits)
        needs_gateway = final_total > 0
        amount_paise = to_paise(final_total) if needs_gateway else 0

        if needs_gateway and amount_paise < MIN_GATEWAY_AMOUNT_PAISE:
            raise CheckoutError("Minimum order amount after credits is ₹1.00")

        if credits > 0:
            if user is None:
                raise CheckoutError("Sign in to use store credit")
            balance = await self.wallet.get_balance(user.id)
            if balance < credits:
                raise CheckoutError(f"Insufficient credits. Available: ₹{balance}")

        serviceability = await self.shiprocket.check_serviceability(address.pincode)
        if not serviceability.serviceable:
            raise CheckoutError(
                "Shipping not available to this pincode",
                details=serviceability.reason or "Pincode not serviceable",
            )

        now = utcnow()
        order_number = await self._unused_order_number()
        metadata = OrderMetadata(
            customer_name=customer.name,
            email=customer.email,
            phone=customer.phone,
            address_snapshot=AddressSnapshot(
                recipient_name=customer.name,
                phone=customer.phone,
                address_line_1=address.line1,
                address_line_2=address.line2,
                city=address.city,
                state=address.state,
                pincode=address.pincode,
                country=address.country,
                snapshot_taken_at=now,
            ),
            shipping={
                "estimated_delivery": estimated_delivery,
                "serviceability_checked": True,
                "available_couriers": serviceability.available_couriers,
            },
        )
        state = PaymentProviderState(
            payment_attempts=0,
            pending_expires_at=now + timedelta(minutes=self.config.pending_order_ttl_minutes),
            credits_applied=credits,
            credits_locked=credits > 0,
        )

        order = Order(
            order_number=order_number,
            user_id=user.id if user else None,
            payment_provider=PAYMENT_PROVIDER,
            payment_status=PaymentStatus.PENDING.value,
            currency=settings.currency,
            subtotal=subtotal,
            shipping_fee=shipping_fee,
            total_amount=final_total,
            items=order_items,
        )
        order.order_metadata = metadata
        self.db.add(order)
        await self.db.flush()

        razorpay_order_id = None
        if needs_gateway:
            try:
                gateway_order = await self.gateway.create_order(
                    amount_paise,
                    receipt=order_number,
                    currency=settings.currency,
                    notes={
                        "order_number": order_number,
                        "customer_email": customer.email,
                        "order_id": str(order.id),
                    },
                )
            except GatewayOrderError as e:
                # Discards the uncommitted order and its items
                await self.db.rollback()
                logger.error(f"Razorpay order creation failed for {order_number}: {e}")
                raise CheckoutError("Failed to create Razorpay order", details=str(e), status_code=500)
            razorpay_order_id = gateway_order["id"]

        state.razorpay_order_id = razorpay_order_id
        order.provider_state = state
        await self.db.commit()

        logger.info(
            f"Created order {order_number} ({final_total} {settings.currency}, "
            f"credits={credits}, gateway={razorpay_order_id or CREDITS_ONLY})"
        )

        return {
            "success": True,
            "order_id": razorpay_order_id or CREDITS_ONLY,
            "db_order_id": str(order.id),
            "order_number": order_number,
            "amount": amount_paise,
            "currency": settings.currency,
            "key_id": self.gateway.key_id if needs_gateway else None,
            "credits_applied": float(credits),
            "credits_only": not needs_gateway,
        }

    async def _latest_pending_order(self, user: User) -> Optional[Order]:
        result = await self.db.execute(
            select(Order)
            .where(
                Order.user_id == user.id,
                Order.payment_status == PaymentStatus.PENDING.value,
            )
            .order_by(Order.created_at.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def retry_pending_order(self, user: User) -> Dict[str, Any]:
        """
        Resume payment for the user's latest pending order.

        The existing Razorpay order is reused until it expires; after that a
        new one is created for the same order.
        """
        order = await self._latest_pending_order(user)
        if order is None:
            return {
                "success": True,
                "has_pending_order": False,
                "message": "No pending order found - call create-order to start",
            }

        state = order.provider_state
        now = utcnow()
        expires_at = state.pending_expires_at
        amount_paise = to_paise(order.total_amount)

        if state.razorpay_order_id and expires_at and expires_at > now:
            self.db.add(PaymentLog(
                order_id=order.id,
                provider=PAYMENT_PROVIDER,
                status=PaymentLogStatus.PENDING.value,
                provider_response={
                    "event": "retry_reuse",
                    "razorpay_order_id": state.razorpay_order_id,
                    "pending_expires_at": expires_at.isoformat(),
                },
            ))
            await self.db.commit()
            logger.info(f"Reusing Razorpay order {state.razorpay_order_id} for {order.order_number}")
            return {
                "success": True,
                "has_pending_order": True,
                "reuse_order": True,
                "regenerated": False,
                "order_id": str(order.id),
                "order_number": order.order_number,
                "razorpay_order_id": state.razorpay_order_id,
                "amount": amount_paise,
                "currency": order.currency,
                "key_id": self.gateway.key_id,
                "pending_expires_at": expires_at.isoformat(),
            }

        if amount_paise < MIN_GATEWAY_AMOUNT_PAISE:
            raise CheckoutError("Order does not require a gateway payment")

        attempt = state.payment_attempts + 1
        try:
            gateway_order = await self.gateway.create_order(
                amount_paise,
                receipt=order.order_number,
                currency=order.currency,
                notes={
                    "order_id": str(order.id),
                    "order_number": order.order_number,
                    "payment_attempt": str(attempt),
                },
            )
        except GatewayOrderError as e:
            logger.error(f"Failed to regenerate Razorpay order for {order.order_number}: {e}")
            raise CheckoutError("Failed to regenerate payment order", details=str(e), status_code=500)
        new_gateway_id = gateway_order["id"]

        new_expires_at = now + timedelta(minutes=self.config.pending_order_ttl_minutes)
        previous = state.razorpay_order_id
        state.previous_razorpay_order_id = previous
        state.razorpay_order_id = new_gateway_id
        state.pending_expires_at = new_expires_at
        state.payment_attempts = attempt
        state.regenerated_at = now
        order.provider_state = state

        self.db.add(PaymentLog(
            order_id=order.id,
            provider=PAYMENT_PROVIDER,
            status=PaymentLogStatus.PENDING.value,
            provider_response={
                "event": "razorpay_order_regenerated",
                "previous_razorpay_order_id": previous,
                "new_razorpay_order_id": new_gateway_id,
                "payment_attempt": attempt,
            },
        ))
        await self.db.commit()

        logger.info(
            f"Regenerated Razorpay order for {order.order_number}: {previous} -> {new_gateway_id}"
        )
        return {
            "success": True,
            "has_pending_order": True,
            "reuse_order": False,
            "regenerated": True,
            "order_id": str(order.id),
            "order_number": order.order_number,
            "razorpay_order_id": new_gateway_id,
            "amount": amount_paise,
            "currency": order.currency,
            "key_id": self.gateway.key_id,
            "pending_expires_at": new_expires_at.isoformat(),
            "payment_attempts": attempt,
        }

    async def payment_status(
        self,
        user: User,
        order_id: Optional[uuid.UUID] = None,
        order_number: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Payment state of one of the user's orders (latest by default)."""
        query = select(Order).where(Order.user_id == user.id)
        if order_id:
            query = query.where(Order.id == order_id)
        elif order_number:
            query = query.where(Order.order_number == order_number)
        result = await self.db.execute(query.order_by(Order.created_at.desc()).limit(1))
        order = result.scalar_one_or_none()
        if order is None:
            raise CheckoutError("Order not found", status_code=404)

        logs_result = await self.db.execute(
            select(PaymentLog)
            .where(PaymentLog.order_id == order.id)
            .order_by(PaymentLog.created_at.desc())
            .limit(STATUS_LOG_LIMIT)
        )
        state = order.provider_state

        return {
            "success": True,
            "order_id": str(order.id),
            "order_number": order.order_number,
            "payment_status": order.payment_status,
            "can_retry": order.payment_status in (PaymentStatus.PENDING.value, PaymentStatus.FAILED.value),
            "pending_expires_at": state.pending_expires_at.isoformat() if state.pending_expires_at else None,
            "payment_attempts": state.payment_attempts,
            "razorpay_order_id": state.razorpay_order_id,
            "razorpay_payment_id": state.razorpay_payment_id,
            "created_at": order.created_at.isoformat(),
            "updated_at": order.updated_at.isoformat(),
            "audit_logs": [
                {
                    "id": str(log.id),
                    "status": log.status,
                    "created_at": log.created_at.isoformat(),
                    "details": log.provider_response,
                }
                for log in logs_result.scalars().all()
            ],
        }
