"""Debounced job queue for AI replies.

Inbound messages from one user are folded into a single pending job whose
`scheduled_for` slides forward with every new fragment, so the AI is queried
once the user has been quiet for the debounce window. A poller picks up due
jobs oldest-deadline-first and runs each through:

    pending -> processing -> completed
                          -> pending (retry, exponential backoff)
                          -> failed (attempts exhausted)
    pending -> skipped (user blocked, or merged into a retried job)

Every mutation is a conditional single-row update so that enqueue, poll and
the stale-processing reaper can interleave without breaking the
one-pending-job-per-user invariant (also backed by a partial unique index).
"""

import asyncio
from datetime import datetime, timedelta
from enum import Enum
from typing import Callable, Optional

from sqlalchemy import case, func, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from relay.config import settings
from relay.logging_config import get_logger, job_logger
from relay.models import ScheduledJob
from relay.models.types import as_utc, utcnow
from relay.services.adapters.base import AIQueryAdapter, OutboundChannel
from relay.services.alert_service import alert_job_failed
from relay.services.config_store import DEBOUNCE_MS, ConfigStore
from relay.services.event_log import EventType, log_event
from relay.services.history_service import get_conversation_history, save_exchange
from relay.services.identity_service import get_mapping, get_or_create_mapping, upsert_mapping
from relay.services.job_status import JobStatus, transition
from relay.services.retry_policy import RetryPolicy

logger = get_logger("job_queue")

BLOCKED_ERROR = "User is blocked"
EMPTY_CONTENT_ERROR = "No message content"
MAX_ERROR_LENGTH = 500


class JobValidationError(Exception):
    """Job cannot be processed as stored (e.g. no content)."""

    code = "validation_error"


class DeliveryError(Exception):
    """Outbound channel reported a failed send."""

    def __init__(self, message: str, code: Optional[str] = None):
        self.code = code or "delivery_error"
        super().__init__(message)


class JobOutcome(str, Enum):
    COMPLETED = "completed"
    SKIPPED = "skipped"
    RETRY_SCHEDULED = "retry_scheduled"
    FAILED = "failed"
    IGNORED = "ignored"


def _error_code(exc: Exception) -> str:
    return getattr(exc, "code", None) or exc.__class__.__name__


def _join_content(first: Optional[str], second: Optional[str]) -> str:
    return "\n".join(part for part in (first, second) if part)


class JobQueue:
    def __init__(
        self,
        ai: AIQueryAdapter,
        outbound: OutboundChannel,
        config: ConfigStore,
        *,
        retry_policy: Optional[RetryPolicy] = None,
        batch_size: Optional[int] = None,
        now: Callable[[], datetime] = utcnow,
        send_alerts: bool = True,
    ):
        self.ai = ai
        self.outbound = outbound
        self.config = config
        self.retry_policy = retry_policy or RetryPolicy.from_settings(settings)
        self.batch_size = batch_size or settings.job_batch_size
        self.now = now
        self.send_alerts = send_alerts

    def debounce_window(self) -> timedelta:
        debounce_ms = self.config.get_int(DEBOUNCE_MS, settings.debounce_ms)
        return timedelta(milliseconds=max(debounce_ms, 0))

    # === ENQUEUE ===

    def enqueue_or_debounce(self, db: Session, user_id: str, fragment: str):
        """Fold a message fragment into the user's pending job, or create one.

        Returns the job id, or None when persistence failed. Never raises.
        """
        try:
            return self._enqueue(db, user_id, fragment)
        except Exception as exc:
            db.rollback()
            logger.error(
                "Enqueue failed",
                extra={"context": {"user_id": user_id, "error": str(exc)}},
            )
            return None

    def _enqueue(self, db: Session, user_id: str, fragment: str):
        now = self.now()
        scheduled_for = now + self.debounce_window()

        job_id = self._append_to_pending(db, user_id, fragment, scheduled_for, now)
        if job_id is not None:
            db.commit()
            logger.info(
                "Job debounced",
                extra={"context": {"job_id": str(job_id), "user_id": user_id, "scheduled_for": scheduled_for.isoformat()}},
            )
            return job_id

        job = ScheduledJob(
            user_id=user_id,
            status=JobStatus.PENDING.value,
            scheduled_for=scheduled_for,
            content=fragment,
            attempts=0,
            created_at=now,
            updated_at=now,
        )
        db.add(job)
        try:
            db.commit()
        except IntegrityError:
            # Another writer created the pending job between our update and insert.
            db.rollback()
            job_id = self._append_to_pending(db, user_id, fragment, scheduled_for, now)
            if job_id is None:
                raise
            db.commit()
            return job_id

        logger.info(
            "Job created",
            extra={"context": {"job_id": str(job.id), "user_id": user_id, "scheduled_for": scheduled_for.isoformat()}},
        )
        return job.id

    def _append_to_pending(self, db: Session, user_id: str, fragment: str, scheduled_for: datetime, now: datetime):
        existing = func.coalesce(ScheduledJob.content, "")
        stmt = (
            update(ScheduledJob)
            .where(ScheduledJob.user_id == user_id, ScheduledJob.status == JobStatus.PENDING.value)
            .values(
                content=case((existing == "", fragment), else_=existing + "\n" + fragment),
                scheduled_for=scheduled_for,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        if db.execute(stmt).rowcount == 0:
            return None
        job = (
            db.query(ScheduledJob.id)
            .filter(ScheduledJob.user_id == user_id, ScheduledJob.status == JobStatus.PENDING.value)
            .first()
        )
        return job.id if job else None

    # === POLLING ===

    def select_ready_jobs(self, db: Session, limit: Optional[int] = None) -> list[ScheduledJob]:
        return (
            db.query(ScheduledJob)
            .filter(
                ScheduledJob.status == JobStatus.PENDING.value,
                ScheduledJob.scheduled_for <= self.now(),
            )
            .order_by(ScheduledJob.scheduled_for.asc())
            .limit(limit or self.batch_size)
            .all()
        )

    async def process_ready_jobs(self, db: Session) -> dict[str, int]:
        """Process due jobs one at a time; one job's failure never aborts the batch."""
        results = {"processed": 0, "errors": 0, "completed": 0, "skipped": 0, "retry_scheduled": 0, "failed": 0}
        try:
            jobs = self.select_ready_jobs(db)
        except SQLAlchemyError as exc:
            db.rollback()
            logger.error("Failed to select ready jobs", extra={"context": {"error": str(exc)}})
            results["errors"] = 1
            return results

        for job in jobs:
            job_id = job.id
            try:
                outcome = await self.process_job(db, job)
            except Exception as exc:
                db.rollback()
                logger.error(
                    "Job processing crashed",
                    extra={"context": {"job_id": str(job_id), "error": str(exc)}},
                )
                results["errors"] += 1
                continue

            if outcome is JobOutcome.IGNORED:
                continue
            results[outcome.value] += 1
            if outcome in (JobOutcome.COMPLETED, JobOutcome.SKIPPED):
                results["processed"] += 1
            else:
                results["errors"] += 1

        if jobs:
            logger.info("Ready jobs processed", extra={"context": {"selected": len(jobs), **results}})
        return results

    # === STATE MACHINE ===

    async def process_job(self, db: Session, job: ScheduledJob) -> JobOutcome:
        job_id, user_id = job.id, job.user_id
        log = job_logger("job_queue", job_id=job_id, user_id=user_id)

        if job.status != JobStatus.PENDING.value:
            return JobOutcome.IGNORED

        mapping = get_mapping(db, user_id)
        if mapping is not None and mapping.blocked:
            return self._skip_blocked(db, job_id, user_id)

        if not self._claim(db, job_id):
            log.info("Job no longer claimable")
            return JobOutcome.IGNORED

        # The claim committed and expired the instance: content is re-read,
        # including fragments appended up to the claim.
        try:
            reply_length, conversation_id, message_id = await self._deliver(db, job)
        except Exception as exc:
            db.rollback()
            log.warning("Job attempt failed", context={"error": str(exc), "error_code": _error_code(exc)})
            return await self._handle_failure(db, job_id, user_id, exc)

        now = self.now()
        self._set_status(db, job_id, JobStatus.PROCESSING, JobStatus.COMPLETED, now, last_error=None)
        db.commit()
        log_event(
            db,
            EventType.JOB_COMPLETED,
            user_id=user_id,
            job_id=job_id,
            payload={
                "response_length": reply_length,
                "conversation_id": conversation_id,
                "message_id": message_id,
            },
        )
        log.info("Job completed", context={"response_length": reply_length})
        return JobOutcome.COMPLETED

    def _claim(self, db: Session, job_id) -> bool:
        now = self.now()
        stmt = (
            update(ScheduledJob)
            .where(
                ScheduledJob.id == job_id,
                ScheduledJob.status == JobStatus.PENDING.value,
                ScheduledJob.scheduled_for <= now,
            )
            .values(status=transition(JobStatus.PENDING, JobStatus.PROCESSING).value, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        claimed = db.execute(stmt).rowcount == 1
        db.commit()
        return claimed

    def _set_status(self, db: Session, job_id, from_status: JobStatus, to_status: JobStatus, now: datetime, **values) -> bool:
        stmt = (
            update(ScheduledJob)
            .where(ScheduledJob.id == job_id, ScheduledJob.status == from_status.value)
            .values(status=transition(from_status, to_status).value, updated_at=now, **values)
            .execution_options(synchronize_session=False)
        )
        return db.execute(stmt).rowcount == 1

    def _skip_blocked(self, db: Session, job_id, user_id: str) -> JobOutcome:
        skipped = self._set_status(db, job_id, JobStatus.PENDING, JobStatus.SKIPPED, self.now(), last_error=BLOCKED_ERROR)
        db.commit()
        if not skipped:
            return JobOutcome.IGNORED
        log_event(db, EventType.JOB_SKIPPED_BLOCKED, user_id=user_id, job_id=job_id, error=BLOCKED_ERROR)
        logger.info("Job skipped for blocked user", extra={"context": {"job_id": str(job_id), "user_id": user_id}})
        return JobOutcome.SKIPPED

    async def _deliver(self, db: Session, job: ScheduledJob) -> tuple[int, Optional[str], Optional[str]]:
        user_id = job.user_id
        content = job.content or ""
        if not content:
            raise JobValidationError(EMPTY_CONTENT_ERROR)

        mapping = get_or_create_mapping(db, user_id)
        conversation_id = mapping.ai_conversation_id
        if not conversation_id:
            conversation_id = await self.ai.resolve_conversation_id(user_id)
            upsert_mapping(db, user_id, ai_conversation_id=conversation_id)

        history = get_conversation_history(db, user_id)
        reply = await self.ai.query(content, conversation_id, user_id, history=history)
        if reply.conversation_id and reply.conversation_id != conversation_id:
            conversation_id = reply.conversation_id
            upsert_mapping(db, user_id, ai_conversation_id=conversation_id)

        delivery = await self.outbound.send_text(user_id, reply.text)
        if not delivery.ok:
            raise DeliveryError(delivery.describe(), code=delivery.error_code)

        save_exchange(db, user_id, content, reply.text, created_at=self.now())
        return len(reply.text), conversation_id, delivery.value

    async def _handle_failure(self, db: Session, job_id, user_id: str, exc: Exception) -> JobOutcome:
        error = (str(exc) or exc.__class__.__name__)[:MAX_ERROR_LENGTH]
        error_code = _error_code(exc)
        job = db.get(ScheduledJob, job_id)
        attempts = (job.attempts or 0) + 1
        now = self.now()

        if self.retry_policy.is_exhausted(attempts):
            self._set_status(db, job_id, JobStatus.PROCESSING, JobStatus.FAILED, now, attempts=attempts, last_error=error)
            db.commit()
            log_event(
                db,
                EventType.JOB_FAILED,
                user_id=user_id,
                job_id=job_id,
                payload={"attempts": attempts, "error_code": error_code},
                error=error,
            )
            await self._alert_failed(job_id, user_id, attempts, error)
            return JobOutcome.FAILED

        delay = self.retry_policy.delay_for(attempts)
        retry_at = self._reschedule(db, job, attempts=attempts, last_error=error, scheduled_for=now + delay, now=now)
        log_event(
            db,
            EventType.JOB_RETRY,
            user_id=user_id,
            job_id=job_id,
            payload={
                "attempts": attempts,
                "retry_at": retry_at.isoformat(),
                "delay_seconds": delay.total_seconds(),
                "error_code": error_code,
            },
            error=error,
        )
        return JobOutcome.RETRY_SCHEDULED

    def _reschedule(self, db: Session, job: ScheduledJob, *, attempts: int, last_error: str, scheduled_for: datetime, now: datetime) -> datetime:
        """Put a processing job back to pending.

        A message that arrived while the job was processing has opened a new
        pending job for the user; it is folded into this one (earlier text
        first) so that only one pending job remains.
        """
        newer = (
            db.query(ScheduledJob)
            .filter(
                ScheduledJob.user_id == job.user_id,
                ScheduledJob.status == JobStatus.PENDING.value,
                ScheduledJob.id != job.id,
            )
            .with_for_update()
            .first()
        )
        content = job.content
        merged_id = None
        if newer is not None:
            merged_id = newer.id
            content = _join_content(job.content, newer.content)
            scheduled_for = max(scheduled_for, as_utc(newer.scheduled_for))
            newer.status = transition(JobStatus.PENDING, JobStatus.SKIPPED).value
            newer.last_error = f"Merged into job {job.id}"
            newer.updated_at = now
            db.flush()

        job.status = transition(JobStatus(job.status), JobStatus.PENDING).value
        job.content = content
        job.attempts = attempts
        job.last_error = last_error
        job.scheduled_for = scheduled_for
        job.updated_at = now
        db.commit()

        if merged_id is not None:
            log_event(
                db,
                EventType.JOB_MERGED,
                user_id=job.user_id,
                job_id=merged_id,
                payload={"merged_into": str(job.id)},
            )
        return scheduled_for

    async def _alert_failed(self, job_id, user_id: str, attempts: int, error: str) -> None:
        if not self.send_alerts:
            return
        try:
            await asyncio.to_thread(alert_job_failed, job_id, user_id, attempts, error)
        except Exception as exc:
            logger.warning("Failed job alert not sent", extra={"context": {"job_id": str(job_id), "error": str(exc)}})

    # === RECOVERY ===

    async def release_stale_processing(self, db: Session, stale_seconds: Optional[int] = None) -> dict[str, int]:
        """Recover jobs stuck in processing (worker crashed mid-job).

        The interrupted run counts as a failed attempt. A reply may already
        have been sent before the crash, so a requeued job can deliver twice.
        """
        stale_seconds = settings.stale_processing_seconds if stale_seconds is None else stale_seconds
        now = self.now()
        cutoff = now - timedelta(seconds=stale_seconds)
        stale_jobs = (
            db.query(ScheduledJob)
            .filter(ScheduledJob.status == JobStatus.PROCESSING.value, ScheduledJob.updated_at < cutoff)
            .order_by(ScheduledJob.updated_at.asc())
            .all()
        )

        released = {"released": 0, "failed": 0}
        for job in stale_jobs:
            job_id, user_id = job.id, job.user_id
            attempts = (job.attempts or 0) + 1
            error = f"Stale processing for more than {stale_seconds}s"
            if self.retry_policy.is_exhausted(attempts):
                self._set_status(db, job_id, JobStatus.PROCESSING, JobStatus.FAILED, now, attempts=attempts, last_error=error)
                db.commit()
                log_event(
                    db,
                    EventType.JOB_FAILED,
                    user_id=user_id,
                    job_id=job_id,
                    payload={"attempts": attempts, "error_code": "stale_processing"},
                    error=error,
                )
                await self._alert_failed(job_id, user_id, attempts, error)
                released["failed"] += 1
                continue

            self._reschedule(db, job, attempts=attempts, last_error=error, scheduled_for=now, now=now)
            log_event(
                db,
                EventType.JOB_REQUEUED_STALE,
                user_id=user_id,
                job_id=job_id,
                payload={"attempts": attempts, "stale_seconds": stale_seconds},
                error=error,
            )
            released["released"] += 1

        if stale_jobs:
            logger.warning("Stale processing jobs released", extra={"context": released})
        return released
