"""
Typed views over the order's JSON columns.

`payment_provider_response` and `metadata` are stored as JSON, but services
only read and write them through these models. Rows written before the
schema was versioned are upgraded on read.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

PROVIDER_STATE_VERSION = 1


def _upgrade_provider_state_v0(raw: Dict[str, Any]) -> Dict[str, Any]:
    """Unversioned rows: counters stored loosely, no credit fields."""
    data = dict(raw)
    try:
        data["payment_attempts"] = int(data.get("payment_attempts") or 0)
    except (TypeError, ValueError):
        data["payment_attempts"] = 0
    data["credits_applied"] = data.get("credits_applied") or 0
    data["credits_locked"] = bool(data.get("credits_locked", False))
    if data.get("razorpay_signature"):
        data["razorpay_signature"] = str(data["razorpay_signature"])[:50]
    data["schema_version"] = 1
    return data


_PROVIDER_STATE_UPGRADES: Dict[int, Callable[[Dict[str, Any]], Dict[str, Any]]] = {
    0: _upgrade_provider_state_v0,
}


class PaymentProviderState(BaseModel):
    """Gateway identifiers, attempt counters and credit bookkeeping for an order."""

    model_config = ConfigDict(extra="allow")

    schema_version: int = PROVIDER_STATE_VERSION

    # Gateway identifiers
    razorpay_order_id: Optional[str] = None
    razorpay_payment_id: Optional[str] = None
    razorpay_signature: Optional[str] = None
    previous_razorpay_order_id: Optional[str] = None

    # Last processed webhook
    idempotency_key: Optional[str] = None
    webhook_event: Optional[str] = None
    webhook_received_at: Optional[datetime] = None
    verified_at: Optional[datetime] = None
    payment_method: Optional[str] = None

    # Attempts / expiry
    payment_attempts: int = 0
    pending_expires_at: Optional[datetime] = None
    regenerated_at: Optional[datetime] = None
    failure_reason: Optional[str] = None

    # Store credit
    credits_applied: Decimal = Decimal("0")
    credits_locked: bool = False
    credits_deducted_at: Optional[datetime] = None

    # Refunds
    refund_id: Optional[str] = None
    refund_amount: Optional[int] = None
    refund_status: Optional[str] = None

    # Fulfillment watermarks; item ids are recorded in the same commit as their stock update
    stock_decremented_at: Optional[datetime] = None
    stock_decremented_items: List[str] = Field(default_factory=list)

    @classmethod
    def from_raw(cls, raw: Optional[Dict[str, Any]]) -> "PaymentProviderState":
        data = dict(raw or {})
        version = int(data.get("schema_version") or 0) if data else PROVIDER_STATE_VERSION
        while version < PROVIDER_STATE_VERSION:
            data = _PROVIDER_STATE_UPGRADES[version](data)
            version = data["schema_version"]
        return cls.model_validate(data)

    def to_raw(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True)


class AddressSnapshot(BaseModel):
    """Shipping address as it was when the order was placed."""

    model_config = ConfigDict(extra="allow")

    recipient_name: Optional[str] = None
    phone: Optional[str] = None
    address_line_1: Optional[str] = None
    address_line_2: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    pincode: Optional[str] = None
    country: Optional[str] = "India"
    snapshot_taken_at: Optional[datetime] = None


class OrderMetadata(BaseModel):
    """Customer and shipping snapshot captured at checkout."""

    model_config = ConfigDict(extra="allow")

    customer_name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    address_snapshot: Optional[AddressSnapshot] = None
    shipping: Dict[str, Any] = {}

    # Written by the fulfillment chain
    shipping_cost_calculated: Optional[Decimal] = None
    shipping_cost_courier: Optional[str] = None
    shipping_cost_calculated_at: Optional[datetime] = None
    shipment_error: Optional[str] = None
    shipment_failed_at: Optional[datetime] = None

    @classmethod
    def from_raw(cls, raw: Optional[Dict[str, Any]]) -> "OrderMetadata":
        return cls.model_validate(raw or {})

    def to_raw(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True)
