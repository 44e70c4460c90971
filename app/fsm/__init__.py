"""FSM package for order lifecycle state."""

from app.fsm.states import PaymentStatus, OrderStatus, PaymentLogStatus, WebhookEvent

__all__ = ["PaymentStatus", "OrderStatus", "PaymentLogStatus", "WebhookEvent"]
