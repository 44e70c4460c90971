"""
Credit Settlement - deducts store credit applied at checkout.

Runs at most once per order: a debit ledger row referencing the order id is
the watermark. After a gateway capture a failed deduction never reverts the
paid state; it is logged and written to the admin audit trail instead.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from app.models.audit_log import AdminAuditLog
from app.models.order import Order, utcnow
from app.services.wallet_service import WalletService, WalletError

logger = logging.getLogger(__name__)


@dataclass
class SettlementResult:
    success: bool
    amount: Decimal = Decimal("0")
    skipped: Optional[str] = None
    error: Optional[str] = None

    @property
    def deducted(self) -> bool:
        return self.success and self.skipped is None


class CreditSettlement:
    """Deducts `credits_applied` from the customer's wallet."""

    def __init__(self, db: AsyncSession, wallet: Optional[WalletService] = None):
        self.db = db
        self.wallet = wallet or WalletService(db)

    async def settle(self, order: Order, after_capture: bool = True) -> SettlementResult:
        """
        Deduct the order's applied credits and commit.

        With `after_capture` a failure is audit-logged for manual follow-up.
        Without it (credits-only orders) the caller decides what to do.
        """
        state = order.provider_state
        credits = Decimal(state.credits_applied or 0)
        order_id = order.id
        user_id = order.user_id
        reference = str(order_id)

        if credits <= 0:
            return SettlementResult(success=True, skipped="no_credits")
        if user_id is None:
            return SettlementResult(success=True, skipped="no_user")

        if await self.wallet.has_debit_for_reference(user_id, reference):
            logger.info(f"Credits already deducted for order {order.order_number}")
            return SettlementResult(success=True, amount=credits, skipped="already_deducted")

        try:
            await self.wallet.deduct_credits(
                user_id,
                credits,
                reference=reference,
                notes=f"Applied to order {order.order_number}",
            )
            state.credits_deducted_at = utcnow()
            state.credits_locked = False
            order.provider_state = state
            await self.db.commit()
        except WalletError as e:
            await self.db.rollback()
            await self.db.refresh(order)
            if after_capture:
                await self._record_failure(order, credits, str(e))
            return SettlementResult(success=False, amount=credits, error=str(e))
        except Exception as e:
            await self.db.rollback()
            logger.error(f"Credit deduction crashed for order {order_id}: {e}", exc_info=True)
            await self.db.refresh(order)
            error = str(e) or e.__class__.__name__
            if after_capture:
                await self._record_failure(order, credits, error)
            return SettlementResult(success=False, amount=credits, error=error)

        logger.info(f"Deducted {credits} credits for order {order.order_number}")
        return SettlementResult(success=True, amount=credits)

    async def _record_failure(self, order: Order, credits: Decimal, error: str) -> None:
        logger.error(
            f"Credit deduction failed after capture for order {order.order_number}: {error}",
            extra={
                "order_id": str(order.id),
                "user_id": str(order.user_id),
                "credits_applied": str(credits),
                "requires_manual_intervention": True,
            },
        )
        self.db.add(AdminAuditLog(
            action="credit_deduction_failed",
            target_resource="orders",
            target_id=str(order.id),
            performed_by=None,
            details={
                "order_number": order.order_number,
                "user_id": str(order.user_id),
                "credits_applied": str(credits),
                "error": error,
                "requires_manual_intervention": True,
            },
        ))
        await self.db.commit()
