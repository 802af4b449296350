import uuid

from sqlalchemy import Column, DateTime, Text, Uuid

from relay.database import Base
from relay.models.types import utcnow


class ConfigEntry(Base):
    __tablename__ = "config"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    key = Column(Text, nullable=False, unique=True)
    value = Column(Text, nullable=False, default="")
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
