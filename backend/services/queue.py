"""
Durable notification queue backed by the notification_jobs table.

Jobs are inserted in the same transaction as the order mutation that caused
them, so a committed order always has its job and a rolled-back order never
does. Delivery is at-least-once: a job whose worker dies mid-send is reclaimed
after the visibility timeout and may be sent again.
"""

from datetime import datetime, timedelta
from typing import List, Optional

import structlog
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from core.config import settings
from core.errors import NotFoundError, ValidationError
from db.database import NotificationJob, utcnow
from schemas.notifications import JobStatus

logger = structlog.get_logger(__name__)


def backoff_delay(base_ms: int, attempts_made: int) -> timedelta:
    """Exponential backoff: base, 2*base, 4*base, ... after the 1st, 2nd, 3rd failed attempt."""
    return timedelta(milliseconds=base_ms * (2 ** max(attempts_made - 1, 0)))


class NotificationQueue:
    def __init__(
        self,
        session: AsyncSession,
        retry_attempts: Optional[int] = None,
        backoff_ms: Optional[int] = None,
    ):
        self.session = session
        self.retry_attempts = settings.notify_retry_attempts if retry_attempts is None else retry_attempts
        self.backoff_ms = settings.notify_backoff_ms if backoff_ms is None else backoff_ms

    def enqueue(
        self,
        order_id: int,
        is_order_update_mail: bool = False,
        previous_items: Optional[List[dict]] = None,
    ) -> NotificationJob:
        """Stage a job on the session; the caller's commit makes it durable."""
        job = NotificationJob(
            order_id=order_id,
            is_order_update_mail=is_order_update_mail,
            previous_items=previous_items,
            status=JobStatus.ENQUEUED.value,
            attempts_made=0,
            retry_attempts=self.retry_attempts,
            backoff_delay_ms=self.backoff_ms,
            run_at=utcnow(),
        )
        self.session.add(job)
        return job

    async def claim(self, limit: int, now: Optional[datetime] = None) -> List[NotificationJob]:
        """Move up to `limit` due jobs to IN_FLIGHT and return them."""
        now = now or utcnow()
        stmt = (
            select(NotificationJob)
            .where(
                NotificationJob.status == JobStatus.ENQUEUED.value,
                NotificationJob.run_at <= now,
            )
            .order_by(NotificationJob.run_at.asc(), NotificationJob.id.asc())
            .limit(limit)
        )
        if self._is_postgres():
            stmt = stmt.with_for_update(skip_locked=True)

        res = await self.session.execute(stmt)
        jobs = list(res.scalars().all())
        for job in jobs:
            job.status = JobStatus.IN_FLIGHT.value
            job.locked_at = now
            job.attempts_made = int(job.attempts_made or 0) + 1
        await self.session.commit()
        return jobs

    async def ack(self, job_id: int) -> None:
        job = await self.session.get(NotificationJob, job_id)
        if job is None:
            return
        job.status = JobStatus.SENT.value
        job.sent_at = utcnow()
        job.locked_at = None
        job.last_error = None
        await self.session.commit()

    async def fail(self, job_id: int, error: str, retry: bool = True) -> Optional[JobStatus]:
        """Record a failed attempt; reschedule with backoff while retries remain."""
        job = await self.session.get(NotificationJob, job_id)
        if job is None:
            return None

        job.last_error = (error or "")[:2000]
        job.locked_at = None
        attempts = int(job.attempts_made or 0)
        if retry and attempts <= int(job.retry_attempts or 0):
            job.status = JobStatus.ENQUEUED.value
            job.run_at = utcnow() + backoff_delay(int(job.backoff_delay_ms or 0), attempts)
        else:
            job.status = JobStatus.FAILED.value
        await self.session.commit()
        return JobStatus(job.status)

    async def recover_stale(self, visibility_seconds: int, now: Optional[datetime] = None) -> int:
        """Return IN_FLIGHT jobs abandoned by a dead worker to the queue (or fail them when out of retries)."""
        now = now or utcnow()
        cutoff = now - timedelta(seconds=visibility_seconds)
        stale = (
            NotificationJob.status == JobStatus.IN_FLIGHT.value,
            NotificationJob.locked_at < cutoff,
        )

        exhausted = await self.session.execute(
            update(NotificationJob)
            .where(*stale, NotificationJob.attempts_made > NotificationJob.retry_attempts)
            .values(status=JobStatus.FAILED.value, locked_at=None, last_error="Worker lost the job")
            .execution_options(synchronize_session=False)
        )
        requeued = await self.session.execute(
            update(NotificationJob)
            .where(*stale)
            .values(status=JobStatus.ENQUEUED.value, locked_at=None, run_at=now)
            .execution_options(synchronize_session=False)
        )
        await self.session.commit()

        count = int(exhausted.rowcount or 0) + int(requeued.rowcount or 0)
        if count:
            logger.warning("Recovered stale notification jobs", requeued=requeued.rowcount, failed=exhausted.rowcount)
        return count

    async def list_jobs(
        self,
        status: Optional[JobStatus] = None,
        order_id: Optional[int] = None,
        limit: int = 100,
    ) -> List[NotificationJob]:
        stmt = select(NotificationJob)
        if status is not None:
            stmt = stmt.where(NotificationJob.status == JobStatus(status).value)
        if order_id is not None:
            stmt = stmt.where(NotificationJob.order_id == order_id)
        res = await self.session.execute(stmt.order_by(NotificationJob.id.desc()).limit(limit))
        return list(res.scalars().all())

    async def dead_letters(self, limit: int = 100) -> List[NotificationJob]:
        return await self.list_jobs(status=JobStatus.FAILED, limit=limit)

    async def requeue(self, job_id: int) -> NotificationJob:
        """Give a FAILED job a fresh retry budget."""
        job = await self.session.get(NotificationJob, job_id)
        if job is None:
            raise NotFoundError("Notification job not found")
        if job.status != JobStatus.FAILED.value:
            raise ValidationError("Only failed jobs can be requeued")

        job.status = JobStatus.ENQUEUED.value
        job.attempts_made = 0
        job.run_at = utcnow()
        job.locked_at = None
        await self.session.commit()
        logger.info("Notification job requeued", job_id=job_id, order_id=job.order_id)
        return job

    def _is_postgres(self) -> bool:
        return self.session.get_bind().dialect.name == "postgresql"
