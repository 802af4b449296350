import uuid

from sqlalchemy import Column, DateTime, Index, Integer, Text, Uuid, text

from relay.database import Base
from relay.models.types import utcnow


class ScheduledJob(Base):
    __tablename__ = "scheduled_jobs"
    __table_args__ = (
        Index("ix_scheduled_jobs_status_scheduled_for", "status", "scheduled_for"),
        # At most one pending job per user; completed/failed rows coexist.
        Index(
            "uq_scheduled_jobs_user_pending",
            "user_id",
            unique=True,
            postgresql_where=text("status = 'pending'"),
            sqlite_where=text("status = 'pending'"),
        ),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Text, nullable=False, index=True)
    status = Column(Text, nullable=False, default="pending")  # pending, processing, completed, failed, skipped
    scheduled_for = Column(DateTime(timezone=True), nullable=False)
    content = Column(Text)
    attempts = Column(Integer, nullable=False, default=0)
    last_error = Column(Text)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": str(self.id),
            "user_id": self.user_id,
            "status": self.status,
            "scheduled_for": self.scheduled_for.isoformat() if self.scheduled_for else None,
            "content": self.content,
            "attempts": self.attempts,
            "last_error": self.last_error,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
