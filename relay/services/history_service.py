from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from relay.config import settings
from relay.models import ConversationMessage
from relay.models.types import utcnow

USER_ROLE = "user"
ASSISTANT_ROLE = "assistant"


def save_message(
    db: Session,
    user_id: str,
    role: str,
    content: str,
    created_at: Optional[datetime] = None,
) -> ConversationMessage:
    """Save message to database."""
    message = ConversationMessage(
        user_id=user_id,
        role=role,
        content=content,
        created_at=created_at or utcnow(),
    )
    db.add(message)
    db.flush()
    return message


def save_exchange(db: Session, user_id: str, user_text: str, reply_text: str, created_at: Optional[datetime] = None) -> None:
    save_message(db, user_id, USER_ROLE, user_text, created_at)
    save_message(db, user_id, ASSISTANT_ROLE, reply_text, created_at)


def get_conversation_history(db: Session, user_id: str, limit: Optional[int] = None) -> list[dict]:
    """Get recent conversation history, oldest first."""
    limit = settings.chat_history_messages if limit is None else limit
    if limit <= 0:
        return []

    messages = (
        db.query(ConversationMessage)
        .filter(ConversationMessage.user_id == user_id)
        .order_by(ConversationMessage.created_at.desc(), ConversationMessage.id.desc())
        .limit(limit)
        .all()
    )

    history = []
    for msg in reversed(messages):
        role = ASSISTANT_ROLE if msg.role == ASSISTANT_ROLE else USER_ROLE
        history.append({"role": role, "content": msg.content})
    return history
