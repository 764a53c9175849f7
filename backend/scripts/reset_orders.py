"""
Delete ALL retail orders from the database, with their items, partial payments
and notification jobs. The inventory ledgers are left alone.

  PYTHONPATH=backend python backend/scripts/reset_orders.py
"""

from __future__ import annotations

import asyncio

from sqlalchemy import delete

from db.database import async_session_maker, NotificationJob, Order, OrderItem, PartialPayment


async def main() -> None:
    async with async_session_maker() as db:
        # Delete children first (FK)
        res_jobs = await db.execute(delete(NotificationJob))
        res_partial = await db.execute(delete(PartialPayment))
        res_items = await db.execute(delete(OrderItem))
        res_orders = await db.execute(delete(Order))
        await db.commit()

        counts = {
            "notification_jobs": res_jobs,
            "partial_payments": res_partial,
            "order_items": res_items,
            "orders": res_orders,
        }
        print(", ".join(f"{k}: {int(getattr(r, 'rowcount', 0) or 0)}" for k, r in counts.items()))


if __name__ == "__main__":
    asyncio.run(main())
