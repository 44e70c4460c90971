"""
Retry Shiprocket shipment creation for paid orders that have none.

Usage: python scripts/retry_failed_shipments.py [--limit 50] [--dry-run]
"""
import argparse
import asyncio
import os
import sys

sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from sqlalchemy import or_, select

from app.config import FulfillmentConfig
from app.database import get_db_context
from app.fsm.states import PaymentStatus, ShipmentStatus
from app.models.order import Order
from app.services.shipment_service import ShipmentDisabledError, ShipmentService


async def retry_failed_shipments(limit: int, dry_run: bool):
    config = FulfillmentConfig.from_settings()
    if not config.shipment_creation_enabled and not dry_run:
        print("Shiprocket is disabled (SHIPROCKET_ENABLED=false), nothing to do")
        return

    async with get_db_context() as db:
        result = await db.execute(
            select(Order.id, Order.order_number, Order.shipment_status)
            .where(
                Order.payment_status == PaymentStatus.PAID.value,
                or_(
                    Order.shipment_status.is_(None),
                    Order.shipment_status == ShipmentStatus.FAILED.value,
                ),
            )
            .order_by(Order.paid_at)
            .limit(limit)
        )
        pending = result.all()
        print(f"Found {len(pending)} paid orders without a shipment")

        service = ShipmentService(db, config=config)
        booked = 0
        for order_id, order_number, status in pending:
            if dry_run:
                print(f"  would retry {order_number} (status={status})")
                continue
            try:
                outcome = await service.create_shipment_for_paid_order(order_id)
            except ShipmentDisabledError as e:
                print(f"  stopped: {e}")
                break
            if outcome.success:
                booked += 1
                print(f"  {order_number}: booked {outcome.shipment_id}")
            else:
                print(f"  {order_number}: failed - {outcome.error}")

        if not dry_run:
            print(f"SUCCESS: {booked}/{len(pending)} shipments booked")


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--limit", type=int, default=50)
    parser.add_argument("--dry-run", action="store_true")
    args = parser.parse_args()
    asyncio.run(retry_failed_shipments(args.limit, args.dry_run))
