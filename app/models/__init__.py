"""Models package for database models."""

from app.models.user import User
from app.models.address import Address
from app.models.product import Product, ProductVariant
from app.models.order import Order, OrderItem
from app.models.order_state import PaymentProviderState, OrderMetadata, AddressSnapshot
from app.models.payment import PaymentLog
from app.models.wallet import StoreCredit, StoreCreditTransaction
from app.models.audit_log import AdminAuditLog

__all__ = [
    "User",
    "Address",
    "Product",
    "ProductVariant",
    "Order",
    "OrderItem",
    "PaymentProviderState",
    "OrderMetadata",
    "AddressSnapshot",
    "PaymentLog",
    "StoreCredit",
    "StoreCreditTransaction",
    "AdminAuditLog",
]
