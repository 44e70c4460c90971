"""
Order email worker.

Confirmation emails are sent out of band so a slow or failing mail
provider never delays the payment response.
"""

import uuid
import logging

from app.workers.celery_app import celery_app
from app.database import get_db_context

logger = logging.getLogger(__name__)


@celery_app.task(bind=True, max_retries=3)
def send_order_confirmation(self, order_id: str):
    """Send the order confirmation email for a paid order."""
    import asyncio

    async def run():
        async with get_db_context() as db:
            from app.services.email_service import EmailService

            service = EmailService(db)
            return await service.send_order_confirmation_email(uuid.UUID(order_id))

    try:
        sent = asyncio.run(run())
        logger.info(f"Confirmation email for order {order_id}: sent={sent}")
        return {"success": sent, "order_id": order_id}
    except Exception as e:
        logger.error(f"Confirmation email failed for order {order_id}: {e}")
        self.retry(exc=e, countdown=60)


def queue_order_confirmation(order_id: uuid.UUID) -> bool:
    """
    Dispatch the confirmation email task.
    Returns False if the broker is unreachable; the payment flow carries on.
    """
    try:
        send_order_confirmation.delay(str(order_id))
        return True
    except Exception as e:
        logger.error(f"Failed to queue confirmation email for order {order_id}: {e}")
        return False
