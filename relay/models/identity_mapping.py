import uuid

from sqlalchemy import Boolean, Column, DateTime, Text, Uuid, false

from relay.database import Base
from relay.models.types import utcnow


class IdentityMapping(Base):
    __tablename__ = "identity_mappings"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Text, nullable=False, unique=True)  # WhatsApp wa_id
    ai_conversation_id = Column(Text, index=True)
    ai_contact_id = Column(Text)
    display_name = Column(Text)
    blocked = Column(Boolean, nullable=False, default=False, server_default=false())
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
