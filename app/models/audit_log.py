"""Admin audit log - operator-visible trail of events needing attention."""

import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from sqlalchemy import String, DateTime, JSON, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base


class AdminAuditLog(Base):
    """Audit row, e.g. a credit deduction that failed after capture."""

    __tablename__ = "admin_audit_logs"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )

    action: Mapped[str] = mapped_column(String(64), nullable=False, index=True)

    target_resource: Mapped[str] = mapped_column(String(64), nullable=False)

    target_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    # Null for system-generated rows
    performed_by: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    details: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSON, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<AdminAuditLog {self.action} {self.target_resource}:{self.target_id}>"
