from enum import Enum
from typing import Any, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from relay.logging_config import get_logger
from relay.models import EventLog

logger = get_logger("event_log")


class EventType(str, Enum):
    WEBHOOK_RECEIVED = "webhook_received"
    WEBHOOK_SIGNATURE_INVALID = "webhook_signature_invalid"
    MESSAGE_RECEIVED = "message_received"
    STATUS_UPDATE = "status_update"
    MAPPING_CREATE_ERROR = "mapping_create_error"
    JOB_COMPLETED = "job_completed"
    JOB_FAILED = "job_failed"
    JOB_RETRY = "job_retry"
    JOB_SKIPPED_BLOCKED = "job_skipped_blocked"
    JOB_REQUEUED_STALE = "job_requeued_stale"
    JOB_MERGED = "job_merged"
    USER_BLOCKED = "user_blocked"
    USER_UNBLOCKED = "user_unblocked"


def log_event(
    db: Session,
    event_type: EventType | str,
    *,
    user_id: Optional[str] = None,
    job_id=None,
    payload: Optional[dict[str, Any]] = None,
    error: Optional[str] = None,
) -> bool:
    """Append an event row. Never raises; returns False if the write failed."""
    event_type_value = event_type.value if isinstance(event_type, EventType) else event_type
    try:
        db.add(
            EventLog(
                event_type=event_type_value,
                user_id=user_id,
                job_id=job_id,
                payload=payload,
                error=error,
            )
        )
        db.commit()
        return True
    except SQLAlchemyError as exc:
        db.rollback()
        logger.warning(
            "Event log write failed",
            extra={"context": {"event_type": event_type_value, "user_id": user_id, "error": str(exc)}},
        )
        return False


def list_events(
    db: Session,
    *,
    event_type: Optional[str] = None,
    user_id: Optional[str] = None,
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[EventLog], int]:
    query = db.query(EventLog)
    if event_type:
        query = query.filter(EventLog.event_type == event_type)
    if user_id:
        query = query.filter(EventLog.user_id == user_id)
    total = query.count()
    rows = query.order_by(EventLog.created_at.desc()).offset(offset).limit(limit).all()
    return rows, total
