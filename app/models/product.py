"""Catalog models - only the columns checkout and stock decrement touch."""

import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from sqlalchemy import String, DateTime, ForeignKey, Numeric, Integer, Boolean, Uuid
from sqlalchemy.orm import Mapped, mapped_column


from app.database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Product(Base):
    """Master product row. Its price is the fallback for variants without one."""

    __tablename__ = "products"

    uid: Mapped[str] = mapped_column(String(64), primary_key=True)

    name: Mapped[str] = mapped_column(String(255), nullable=False)

    price: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        default=Decimal("0"),
        nullable=False,
    )

    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    def __repr__(self) -> str:
        return f"<Product {self.uid}>"


class ProductVariant(Base):
    """One row per color + size + SKU, carrying stock."""

    __tablename__ = "product_variants"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )

    product_uid: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("products.uid", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    sku: Mapped[str] = mapped_column(
        String(100),
        unique=True,
        nullable=False,
    )

    stock: Mapped[Optional[int]] = mapped_column(Integer, default=0, nullable=True)

    # Variant-level override; falls back to Product.price
    price: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2), nullable=True)

    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=_utcnow,
        onupdate=_utcnow,
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<ProductVariant {self.sku} stock={self.stock}>"
