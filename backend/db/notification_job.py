from sqlalchemy import JSON, Boolean, Column, DateTime, ForeignKey, Integer, Text
from sqlalchemy.orm import relationship

from .database import Base, utcnow


class NotificationJob(Base):
    """Durable queue entry: "send one mail about order X".

    ENQUEUED -> IN_FLIGHT -> SENT
                          -> ENQUEUED (retry, run_at pushed back)
                          -> FAILED (retries exhausted or permanent error)
    """
    __tablename__ = "notification_jobs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    order_id = Column(Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    is_order_update_mail = Column(Boolean, nullable=False, default=False)

    # Item quantities before an edit: [{"product_id", "variant_id", "quantity"}]
    previous_items = Column(JSON, nullable=True)

    status = Column(Text, nullable=False, default="ENQUEUED", index=True)
    attempts_made = Column(Integer, nullable=False, default=0)
    retry_attempts = Column(Integer, nullable=False, default=1)
    backoff_delay_ms = Column(Integer, nullable=False, default=3000)

    run_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, index=True)
    locked_at = Column(DateTime(timezone=True), nullable=True)
    sent_at = Column(DateTime(timezone=True), nullable=True)
    last_error = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    order = relationship("Order")

    @property
    def to_schema(self):
        return {
            "id": self.id,
            "order_id": self.order_id,
            "is_order_update_mail": bool(self.is_order_update_mail),
            "status": self.status,
            "attempts_made": int(self.attempts_made or 0),
            "retry_attempts": int(self.retry_attempts or 0),
            "run_at": self.run_at,
            "sent_at": self.sent_at,
            "last_error": self.last_error,
            "created_at": self.created_at,
        }
