"""Payment log model - append-only audit of every payment event."""

import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from sqlalchemy import String, DateTime, ForeignKey, JSON, Uuid, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base
from app.fsm.states import PAYMENT_PROVIDER


class PaymentLog(Base):
    """
    One row per processed payment event, including duplicates and incidents.
    (provider, idempotency_key) is unique so a redelivered webhook cannot be
    committed twice. Rows are never updated or deleted.
    """

    __tablename__ = "payment_logs"
    __table_args__ = (
        UniqueConstraint("provider", "idempotency_key", name="uq_payment_logs_provider_idempotency_key"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )

    # Null for incidents (order could not be located)
    order_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid,
        ForeignKey("orders.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )

    provider: Mapped[str] = mapped_column(
        String(20),
        default=PAYMENT_PROVIDER,
        nullable=False,
    )

    # PaymentLogStatus value
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        index=True,
    )

    # Null for retry bookkeeping rows
    idempotency_key: Mapped[Optional[str]] = mapped_column(
        String(100),
        nullable=True,
    )

    # Gateway identifiers and a truncated payload snippet
    provider_response: Mapped[Optional[Dict[str, Any]]] = mapped_column(
        JSON,
        nullable=True,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<PaymentLog {self.status} order={self.order_id}>"
