"""
Notification worker.

Polls the notification_jobs table on an APScheduler interval, claims due jobs,
renders each order mail from a fresh read of the order and sends it. One job
failing never affects the others in the same batch.
"""

import asyncio
from typing import List, Optional, Tuple

import structlog
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from core.config import settings
from db.database import NotificationJob
from services.mailer import Mailer, PermanentDeliveryError
from services.order_mail import (
    load_order_snapshot,
    recipients_for,
    render_order_confirmation,
    render_order_update,
)
from services.queue import JobStatus, NotificationQueue

logger = structlog.get_logger(__name__)


class Undeliverable(Exception):
    """The job can never produce a mail (order gone, nobody to send to)."""


class NotificationWorker:
    def __init__(
        self,
        session_maker: async_sessionmaker,
        mailer: Mailer,
        concurrency: Optional[int] = None,
        send_timeout: Optional[float] = None,
        visibility_seconds: Optional[int] = None,
        poll_seconds: Optional[float] = None,
        currency_symbol: Optional[str] = None,
        signature: Optional[str] = None,
    ):
        self.session_maker = session_maker
        self.mailer = mailer
        self.concurrency = concurrency or settings.notify_concurrency
        self.send_timeout = send_timeout or settings.smtp_timeout * 3
        self.visibility_seconds = settings.notify_visibility_seconds if visibility_seconds is None else visibility_seconds
        self.poll_seconds = poll_seconds or settings.notify_poll_seconds
        self.currency_symbol = settings.mail_currency_symbol if currency_symbol is None else currency_symbol
        self.signature = settings.mail_signature if signature is None else signature
        self._semaphore = asyncio.Semaphore(self.concurrency)
        self._scheduler: Optional[AsyncIOScheduler] = None

    async def run_once(self) -> int:
        """Recover stale jobs, claim a batch and process it. Returns the batch size."""
        async with self.session_maker() as session:
            queue = NotificationQueue(session)
            await queue.recover_stale(self.visibility_seconds)
            jobs = await queue.claim(self.concurrency)

        if not jobs:
            return 0
        results = await asyncio.gather(*(self._guarded(job) for job in jobs), return_exceptions=True)
        for job, result in zip(jobs, results):
            if isinstance(result, Exception):
                logger.error("Notification job crashed", job_id=job.id, order_id=job.order_id, error=str(result))
        return len(jobs)

    async def _guarded(self, job: NotificationJob) -> None:
        async with self._semaphore:
            await self.process(job)

    async def _compose(self, session: AsyncSession, job: NotificationJob) -> Tuple[List[str], str, str]:
        snapshot = await load_order_snapshot(session, job.order_id)
        if snapshot is None:
            raise Undeliverable("Order not found")

        recipients = recipients_for(snapshot)
        if not recipients:
            raise Undeliverable("No recipients")

        if job.is_order_update_mail:
            subject, html = render_order_update(
                snapshot, job.previous_items or [], self.currency_symbol, self.signature
            )
        else:
            subject, html = render_order_confirmation(snapshot, self.currency_symbol, self.signature)
        return recipients, subject, html

    async def process(self, job: NotificationJob) -> None:
        log = logger.bind(job_id=job.id, order_id=job.order_id, attempt=job.attempts_made)
        async with self.session_maker() as session:
            queue = NotificationQueue(session)
            try:
                recipients, subject, html = await self._compose(session, job)
                message_id = await asyncio.wait_for(
                    self.mailer.send(recipients, subject, html), timeout=self.send_timeout
                )
            except Undeliverable as e:
                log.warning("Notification dropped", reason=str(e))
                await queue.fail(job.id, str(e), retry=False)
                return
            except PermanentDeliveryError as e:
                log.error("Notification rejected by mail server", error=str(e))
                await queue.fail(job.id, str(e), retry=False)
                return
            except Exception as e:
                await session.rollback()
                error = str(e) or type(e).__name__
                status = await queue.fail(job.id, error, retry=True)
                if status == JobStatus.FAILED:
                    log.error("Notification failed, retries exhausted", error=error)
                else:
                    log.warning("Notification attempt failed, will retry", error=error)
                return

            await queue.ack(job.id)
            log.info("Notification sent", message_id=message_id, recipients=len(recipients), update=job.is_order_update_mail)

    async def _tick(self) -> None:
        try:
            await self.run_once()
        except Exception:
            logger.exception("Notification worker tick failed")

    def start(self) -> None:
        if self._scheduler is not None:
            return
        self._scheduler = AsyncIOScheduler()
        self._scheduler.add_job(
            self._tick,
            "interval",
            seconds=self.poll_seconds,
            id="notification_worker",
            coalesce=True,
            max_instances=1,
            replace_existing=True,
        )
        self._scheduler.start()
        logger.info("Notification worker started", poll_seconds=self.poll_seconds, concurrency=self.concurrency)

    def stop(self) -> None:
        if self._scheduler is None:
            return
        self._scheduler.shutdown(wait=False)
        self._scheduler = None
        logger.info("Notification worker stopped")
