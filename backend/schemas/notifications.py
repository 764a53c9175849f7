from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel


class JobStatus(str, Enum):
    ENQUEUED = "ENQUEUED"
    IN_FLIGHT = "IN_FLIGHT"
    SENT = "SENT"
    FAILED = "FAILED"


class NotificationJobRead(BaseModel):
    id: int
    order_id: int
    is_order_update_mail: bool
    status: JobStatus
    attempts_made: int
    retry_attempts: int
    run_at: datetime
    sent_at: Optional[datetime] = None
    last_error: Optional[str] = None
    created_at: datetime
