"""Order models - orders placed at checkout and their line items."""

import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy import String, DateTime, ForeignKey, Numeric, Integer, JSON, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.database import Base
from app.fsm.states import PaymentStatus, OrderStatus, PAYMENT_PROVIDER
from app.models.order_state import PaymentProviderState, OrderMetadata


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Order(Base):
    """
    Order placed at checkout.
    Created PENDING with a locked metadata snapshot; only the payment core
    moves payment_status afterwards. Never deleted once exposed to a customer.
    """

    __tablename__ = "orders"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )

    # Human readable, e.g. ZYN-20261018-0042
    order_number: Mapped[str] = mapped_column(
        String(40),
        unique=True,
        nullable=False,
        index=True,
    )

    user_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid,
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )

    shipping_address_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid,
        ForeignKey("addresses.id", ondelete="SET NULL"),
        nullable=True,
    )

    billing_address_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid,
        ForeignKey("addresses.id", ondelete="SET NULL"),
        nullable=True,
    )

    # Payment
    payment_provider: Mapped[str] = mapped_column(
        String(20),
        default=PAYMENT_PROVIDER,
        nullable=False,
    )

    # Webhook / verify lookup key (mirrors provider state)
    razorpay_order_id: Mapped[Optional[str]] = mapped_column(
        String(64),
        nullable=True,
        index=True,
    )

    payment_status: Mapped[str] = mapped_column(
        String(20),
        default=PaymentStatus.PENDING.value,
        nullable=False,
    )

    order_status: Mapped[str] = mapped_column(
        String(20),
        default=OrderStatus.CREATED.value,
        nullable=False,
    )

    payment_method: Mapped[Optional[str]] = mapped_column(
        String(30),
        nullable=True,
    )

    paid_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    # Amounts
    currency: Mapped[str] = mapped_column(String(3), default="INR", nullable=False)
    subtotal: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0"), nullable=False)
    shipping_fee: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0"), nullable=False)
    tax_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0"), nullable=False)
    discount_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0"), nullable=False)
    total_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0"), nullable=False)

    # What we pay the courier (not charged to the customer)
    internal_shipping_cost: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(12, 2),
        nullable=True,
    )

    # Shipment
    shiprocket_shipment_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    shipment_status: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    courier_name: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    # JSON state, accessed through provider_state / order_metadata
    payment_provider_response: Mapped[Optional[Dict[str, Any]]] = mapped_column(
        JSON,
        nullable=True,
    )

    meta: Mapped[Optional[Dict[str, Any]]] = mapped_column(
        "metadata",
        JSON,
        nullable=True,
    )

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False,
    )

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        onupdate=utcnow,
        nullable=False,
    )

    items: Mapped[List["OrderItem"]] = relationship(
        back_populates="order",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return f"<Order {self.order_number} {self.payment_status}>"

    @property
    def provider_state(self) -> PaymentProviderState:
        return PaymentProviderState.from_raw(self.payment_provider_response)

    @provider_state.setter
    def provider_state(self, state: PaymentProviderState) -> None:
        # Assign a fresh dict so the JSON column is flagged dirty
        self.payment_provider_response = state.to_raw()
        self.razorpay_order_id = state.razorpay_order_id

    @property
    def order_metadata(self) -> OrderMetadata:
        return OrderMetadata.from_raw(self.meta)

    @order_metadata.setter
    def order_metadata(self, value: OrderMetadata) -> None:
        self.meta = value.to_raw()

    @property
    def is_paid(self) -> bool:
        return self.payment_status == PaymentStatus.PAID.value


class OrderItem(Base):
    """Line item with the price locked at checkout."""

    __tablename__ = "order_items"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )

    order_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    product_uid: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    variant_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid,
        ForeignKey("product_variants.id", ondelete="RESTRICT"),
        nullable=True,
    )

    sku: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    quantity: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    subtotal: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False,
    )

    order: Mapped[Order] = relationship(back_populates="items")

    def __repr__(self) -> str:
        return f"<OrderItem {self.sku} x{self.quantity}>"
