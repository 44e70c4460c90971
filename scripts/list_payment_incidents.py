"""
Print webhook deliveries whose order could not be located.
"""
import asyncio
import json
import os
import sys

sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from sqlalchemy import select

from app.database import get_db_context
from app.fsm.states import PaymentLogStatus
from app.models.payment import PaymentLog


async def list_incidents():
    async with get_db_context() as db:
        result = await db.execute(
            select(PaymentLog)
            .where(PaymentLog.status == PaymentLogStatus.INCIDENT.value)
            .order_by(PaymentLog.created_at.desc())
        )
        incidents = result.scalars().all()

        print(f"Found {len(incidents)} payment incidents")
        for log in incidents:
            details = log.provider_response or {}
            print(
                f"{log.created_at:%Y-%m-%d %H:%M} {details.get('event')} "
                f"order={details.get('razorpay_order_id')} payment={details.get('razorpay_payment_id')}"
            )
            print(f"    {json.dumps(details.get('payload_snippet'))}")


if __name__ == "__main__":
    asyncio.run(list_incidents())
