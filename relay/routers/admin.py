"""Admin API endpoints for operating the job queue."""

import time
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException
from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from relay.config import settings
from relay.database import get_db
from relay.dependencies import get_config_store, get_job_queue
from relay.logging_config import get_logger
from relay.models import IdentityMapping, ScheduledJob
from relay.services.config_store import ConfigStore
from relay.services.event_log import EventType, list_events, log_event
from relay.services.health_service import queue_health
from relay.services.identity_service import get_mapping, toggle_blocked
from relay.services.job_queue import JobQueue
from relay.services.job_status import JobStatus

logger = get_logger("admin")

router = APIRouter(prefix="/admin", tags=["admin"])

MAX_JOBS_PAGE = 50
MAX_LOGS_PAGE = 100


# === SCHEMAS ===


class ConfigUpdate(BaseModel):
    key: str
    value: str


class BlockStatus(BaseModel):
    user_id: str
    blocked: bool


def _require_admin_token(provided: Optional[str]) -> None:
    expected = settings.admin_token
    if not expected:
        raise HTTPException(status_code=500, detail="ADMIN_TOKEN not configured")
    if not provided or provided != expected:
        raise HTTPException(status_code=401, detail="Invalid admin token")


def _page(limit: int, offset: int, maximum: int) -> tuple[int, int]:
    return min(max(limit, 1), maximum), max(offset, 0)


# === JOBS ===


@router.get("/jobs")
async def list_jobs(
    status: Optional[str] = None,
    limit: int = 20,
    offset: int = 0,
    db: Session = Depends(get_db),
    x_admin_token: Optional[str] = Header(default=None, alias="X-Admin-Token"),
):
    _require_admin_token(x_admin_token)
    if status and status not in {s.value for s in JobStatus}:
        raise HTTPException(status_code=400, detail=f"Unknown job status '{status}'")
    limit, offset = _page(limit, offset, MAX_JOBS_PAGE)

    query = db.query(ScheduledJob)
    if status:
        query = query.filter(ScheduledJob.status == status)
    total = query.count()
    jobs = query.order_by(ScheduledJob.created_at.desc()).offset(offset).limit(limit).all()

    user_ids = {job.user_id for job in jobs}
    names = {}
    if user_ids:
        names = dict(
            db.query(IdentityMapping.user_id, IdentityMapping.display_name)
            .filter(IdentityMapping.user_id.in_(user_ids))
            .all()
        )

    return {
        "jobs": [{**job.to_dict(), "contact_name": names.get(job.user_id)} for job in jobs],
        "total": total,
        "limit": limit,
        "offset": offset,
    }


@router.post("/jobs/process")
async def process_jobs(
    db: Session = Depends(get_db),
    queue: JobQueue = Depends(get_job_queue),
    x_admin_token: Optional[str] = Header(default=None, alias="X-Admin-Token"),
):
    """Run one poll cycle now instead of waiting for the worker."""
    _require_admin_token(x_admin_token)
    started = time.monotonic()
    released = await queue.release_stale_processing(db)
    results = await queue.process_ready_jobs(db)
    if released["released"] or released["failed"]:
        results["released_stale"] = released["released"]
        results["failed_stale"] = released["failed"]
    results["duration_ms"] = int((time.monotonic() - started) * 1000)
    logger.info("Manual job processing", extra={"context": results})
    return {"success": True, **results}


# === EVENT LOG ===


@router.get("/logs")
async def get_logs(
    event_type: Optional[str] = None,
    user_id: Optional[str] = None,
    limit: int = 50,
    offset: int = 0,
    db: Session = Depends(get_db),
    x_admin_token: Optional[str] = Header(default=None, alias="X-Admin-Token"),
):
    _require_admin_token(x_admin_token)
    limit, offset = _page(limit, offset, MAX_LOGS_PAGE)
    rows, total = list_events(db, event_type=event_type, user_id=user_id, limit=limit, offset=offset)
    return {"logs": [row.to_dict() for row in rows], "total": total, "limit": limit, "offset": offset}


# === USERS ===


@router.get("/users/{user_id}/block", response_model=BlockStatus)
async def get_block_status(
    user_id: str,
    db: Session = Depends(get_db),
    x_admin_token: Optional[str] = Header(default=None, alias="X-Admin-Token"),
):
    _require_admin_token(x_admin_token)
    mapping = get_mapping(db, user_id)
    return BlockStatus(user_id=user_id, blocked=bool(mapping and mapping.blocked))


@router.post("/users/{user_id}/block", response_model=BlockStatus)
async def toggle_block_status(
    user_id: str,
    db: Session = Depends(get_db),
    x_admin_token: Optional[str] = Header(default=None, alias="X-Admin-Token"),
):
    """Flip the block flag; pending jobs of a blocked user are skipped."""
    _require_admin_token(x_admin_token)
    try:
        blocked = toggle_blocked(db, user_id)
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error("Failed to toggle block status", extra={"context": {"user_id": user_id, "error": str(exc)}})
        raise HTTPException(status_code=500, detail="Failed to toggle block status") from exc

    log_event(
        db,
        EventType.USER_BLOCKED if blocked else EventType.USER_UNBLOCKED,
        user_id=user_id,
        payload={"blocked": blocked},
    )
    logger.info(f"User {user_id} {'blocked' if blocked else 'unblocked'}")
    return BlockStatus(user_id=user_id, blocked=blocked)


# === CONFIG ===


@router.get("/config")
async def get_config(
    config: ConfigStore = Depends(get_config_store),
    x_admin_token: Optional[str] = Header(default=None, alias="X-Admin-Token"),
):
    """Stored config entries; credentials are masked."""
    _require_admin_token(x_admin_token)
    return {
        item["key"]: {"value": item["value"], "masked": item["masked"], "updated_at": item["updated_at"]}
        for item in config.items()
    }


@router.put("/config")
async def update_config(
    data: ConfigUpdate,
    config: ConfigStore = Depends(get_config_store),
    x_admin_token: Optional[str] = Header(default=None, alias="X-Admin-Token"),
):
    _require_admin_token(x_admin_token)
    try:
        config.put(data.key, data.value)
    except KeyError:
        raise HTTPException(status_code=400, detail="Invalid config key")
    except SQLAlchemyError as exc:
        logger.error("Config update failed", extra={"context": {"key": data.key, "error": str(exc)}})
        raise HTTPException(status_code=500, detail="Config update failed") from exc

    logger.info(f"Config updated: {data.key}")
    return {"success": True, "key": data.key}


# === HEALTH ===


@router.get("/health")
async def system_health(
    db: Session = Depends(get_db),
    x_admin_token: Optional[str] = Header(default=None, alias="X-Admin-Token"),
):
    """Job queue status counts and lag."""
    _require_admin_token(x_admin_token)
    return queue_health(db)
