from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from relay.config import settings
from relay.logging_config import get_logger
from relay.models import ScheduledJob
from relay.models.types import as_utc, utcnow
from relay.services.job_status import JobStatus

logger = get_logger("health_service")


def queue_health(db: Session, *, now: Optional[datetime] = None, stale_seconds: Optional[int] = None) -> dict:
    """Snapshot of the job queue for the admin health endpoint."""
    now = now or utcnow()
    stale_seconds = settings.stale_processing_seconds if stale_seconds is None else stale_seconds

    counts = {status.value: 0 for status in JobStatus}
    for status, count in db.query(ScheduledJob.status, func.count(ScheduledJob.id)).group_by(ScheduledJob.status):
        counts[status] = count

    oldest_due = (
        db.query(func.min(ScheduledJob.scheduled_for))
        .filter(
            ScheduledJob.status == JobStatus.PENDING.value,
            ScheduledJob.scheduled_for <= now,
        )
        .scalar()
    )
    lag_seconds = (now - as_utc(oldest_due)).total_seconds() if oldest_due else 0.0

    stale_processing = (
        db.query(func.count(ScheduledJob.id))
        .filter(
            ScheduledJob.status == JobStatus.PROCESSING.value,
            ScheduledJob.updated_at < now - timedelta(seconds=stale_seconds),
        )
        .scalar()
    ) or 0

    status = "ok"
    if stale_processing:
        status = "degraded"
        logger.warning(f"Queue has {stale_processing} stale processing jobs")

    return {
        "status": status,
        "jobs": counts,
        "oldest_pending_lag_seconds": round(max(lag_seconds, 0.0), 3),
        "stale_processing": stale_processing,
    }
