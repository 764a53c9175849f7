from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from db.database import get_async_session
from schemas.notifications import JobStatus, NotificationJobRead
from services.queue import NotificationQueue

router = APIRouter()


def get_notification_queue(db: AsyncSession = Depends(get_async_session)) -> NotificationQueue:
    return NotificationQueue(db)


@router.get("/jobs", response_model=List[NotificationJobRead])
async def list_jobs(
    status_filter: Optional[JobStatus] = Query(None, alias="status"),
    order_id: Optional[int] = None,
    limit: int = Query(100, ge=1, le=500),
    queue: NotificationQueue = Depends(get_notification_queue),
):
    jobs = await queue.list_jobs(status=status_filter, order_id=order_id, limit=limit)
    return [NotificationJobRead(**j.to_schema) for j in jobs]


@router.get("/jobs/failed", response_model=List[NotificationJobRead])
async def list_failed_jobs(
    limit: int = Query(100, ge=1, le=500),
    queue: NotificationQueue = Depends(get_notification_queue),
):
    return [NotificationJobRead(**j.to_schema) for j in await queue.dead_letters(limit=limit)]


@router.post("/jobs/{job_id}/requeue", response_model=NotificationJobRead)
async def requeue_job(job_id: int, queue: NotificationQueue = Depends(get_notification_queue)):
    job = await queue.requeue(job_id)
    return NotificationJobRead(**job.to_schema)
