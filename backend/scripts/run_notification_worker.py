"""
Run the notification worker as its own process (set RUN_WORKER_IN_PROCESS=false
on the API when using this).

  PYTHONPATH=backend python backend/scripts/run_notification_worker.py
"""

from __future__ import annotations

import asyncio

import structlog

from core.logging import configure_logging
from db.database import async_session_maker, create_db_and_tables
from services.mailer import build_mailer
from services.worker import NotificationWorker


async def main() -> None:
    configure_logging()
    logger = structlog.get_logger("notification_worker")
    await create_db_and_tables()

    worker = NotificationWorker(async_session_maker, build_mailer())
    worker.start()
    try:
        await asyncio.Event().wait()
    finally:
        worker.stop()
        logger.info("Worker exiting")


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass
