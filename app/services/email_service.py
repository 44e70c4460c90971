"""
Email Service - transactional email via the Resend HTTP API.
Bodies are rendered from Jinja2 templates in app/templates/emails.
"""

import os
import uuid
import logging
from decimal import Decimal
from typing import Any, Dict, List, Optional

import httpx
from jinja2 import Environment, FileSystemLoader, select_autoescape
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.models.order import Order
from app.models.user import User

logger = logging.getLogger(__name__)

RESEND_API_URL = "https://api.resend.com/emails"

_templates_env = Environment(
    loader=FileSystemLoader(os.path.join(os.path.dirname(os.path.dirname(__file__)), "templates")),
    autoescape=select_autoescape(["html", "xml"]),
)


def render_template(template_path: str, context: Dict[str, Any]) -> str:
    return _templates_env.get_template(template_path).render(**context)


class EmailService:
    """Service for customer emails."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.api_key = settings.resend_api_key
        self.sender = f"{settings.resend_from_name} <{settings.resend_from_email}>"

    async def send_email(
        self,
        to: List[str],
        subject: str,
        html: str,
    ) -> Optional[str]:
        """
        Send one email.

        Returns the Resend message id on success, None on failure.
        """
        if not self.api_key:
            logger.warning(f"RESEND_API_KEY not set, skipping email '{subject}'")
            return None

        try:
            async with httpx.AsyncClient(timeout=30.0) as client:
                response = await client.post(
                    RESEND_API_URL,
                    json={"from": self.sender, "to": to, "subject": subject, "html": html},
                    headers={"Authorization": f"Bearer {self.api_key}"},
                )
                response.raise_for_status()
                return response.json().get("id")
        except httpx.HTTPError as e:
            logger.error(f"Resend API error for '{subject}': {e}")
            return None

    async def send_order_confirmation_email(self, order_id: uuid.UUID) -> bool:
        """Order confirmation for a paid order. Best effort; never raises on delivery failure."""
        result = await self.db.execute(select(Order).where(Order.id == order_id))
        order = result.scalar_one_or_none()
        if not order:
            logger.error(f"Confirmation email: order {order_id} not found")
            return False

        meta = order.order_metadata
        email = meta.email
        name = meta.customer_name
        if not email and order.user_id:
            user_result = await self.db.execute(select(User).where(User.id == order.user_id))
            user = user_result.scalar_one_or_none()
            if user:
                email = user.email
                name = name or user.full_name

        if not email:
            logger.error(f"Confirmation email: no recipient for order {order.order_number}")
            return False

        html = render_template(
            "emails/order_confirmation.html",
            {
                "order_number": order.order_number,
                "customer_name": name,
                "items": order.items,
                "subtotal": order.subtotal,
                "shipping_fee": order.shipping_fee,
                "credits_applied": Decimal(order.provider_state.credits_applied or 0),
                "total_amount": order.total_amount,
                "address": meta.address_snapshot,
                "order_url": f"{settings.site_url}/account/orders/{order.id}",
            },
        )

        message_id = await self.send_email(
            to=[email],
            subject=f"Order Confirmed - {order.order_number}",
            html=html,
        )
        if message_id:
            logger.info(f"Confirmation email sent for order {order.order_number} ({message_id})")
            return True
        return False
