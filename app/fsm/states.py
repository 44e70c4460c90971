"""
Order lifecycle state definitions.
Payment, fulfillment, audit-log and ledger enums shared by models and services.
"""

from enum import Enum


class PaymentStatus(str, Enum):
    """
    Authoritative payment state of an order.
    Only the payment core moves an order out of PENDING.
    """

    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"


class OrderStatus(str, Enum):
    """
    Fulfillment-facing order state.
    Kept in lockstep with PaymentStatus on the paid transition.
    """

    CREATED = "created"
    PAID = "paid"
    CANCELLED = "cancelled"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    RETURNED = "returned"


class ShipmentStatus(str, Enum):
    """Shiprocket booking state stored on the order."""

    BOOKED = "BOOKED"
    FAILED = "FAILED"


class PaymentLogStatus(str, Enum):
    """Result recorded on every PaymentLog row."""

    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"
    DUPLICATE = "duplicate"
    INCIDENT = "incident"
    UNKNOWN = "unknown"


class WebhookEvent(str, Enum):
    """Razorpay webhook events the order state updater understands."""

    PAYMENT_CAPTURED = "payment.captured"
    PAYMENT_AUTHORIZED = "payment.authorized"
    PAYMENT_FAILED = "payment.failed"
    REFUND_PROCESSED = "refund.processed"

    @classmethod
    def parse(cls, value: str):
        """Return the matching event, or None for events we do not handle."""
        try:
            return cls(value)
        except ValueError:
            return None

    @property
    def marks_paid(self) -> bool:
        return self in (WebhookEvent.PAYMENT_CAPTURED, WebhookEvent.PAYMENT_AUTHORIZED)


class TransactionType(str, Enum):
    """Store credit ledger entry direction."""

    CREDIT = "credit"
    DEBIT = "debit"


PAYMENT_PROVIDER = "razorpay"
