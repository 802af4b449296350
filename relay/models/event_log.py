import uuid

from sqlalchemy import Column, DateTime, Text, Uuid

from relay.database import Base
from relay.models.types import JSONType, utcnow


class EventLog(Base):
    __tablename__ = "event_logs"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    event_type = Column(Text, nullable=False, index=True)
    user_id = Column(Text, index=True)
    job_id = Column(Uuid)
    payload = Column(JSONType)
    error = Column(Text)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, index=True)

    def to_dict(self) -> dict:
        return {
            "id": str(self.id),
            "event_type": self.event_type,
            "user_id": self.user_id,
            "job_id": str(self.job_id) if self.job_id else None,
            "payload": self.payload,
            "error": self.error,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
