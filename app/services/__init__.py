"""Services package."""

from app.services.wallet_service import WalletService
from app.services.credit_settlement import CreditSettlement
from app.services.shiprocket_service import ShiprocketService
from app.services.shipment_service import ShipmentService
from app.services.fulfillment_service import FulfillmentChain
from app.services.payment_service import PaymentService
from app.services.checkout_service import CheckoutService
from app.services.email_service import EmailService

__all__ = [
    "WalletService",
    "CreditSettlement",
    "ShiprocketService",
    "ShipmentService",
    "FulfillmentChain",
    "PaymentService",
    "CheckoutService",
    "EmailService",
]
