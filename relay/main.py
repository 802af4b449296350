import asyncio
import os

from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text
from sqlalchemy.orm import Session

from relay.config import settings
from relay.database import get_db
from relay.logging_config import get_logger, setup_logging
from relay.routers import admin, alerts, webhook
from relay.worker import poll_forever

setup_logging(settings.log_level)

app = FastAPI(
    title="WhatsApp Chatbase Relay",
    description="Relays WhatsApp Cloud API messages to a Chatbase agent through a debounced job queue",
    version="0.1.0",
)

cors_env = os.environ.get("CORS_ALLOW_ORIGINS", "*")
cors_origins = [origin.strip() for origin in cors_env.split(",") if origin.strip()]
if not cors_origins:
    cors_origins = ["*"]

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(webhook.router)
app.include_router(admin.router)
app.include_router(alerts.router)

worker_logger = get_logger("worker")
_worker_task: asyncio.Task | None = None


def _is_worker_enabled() -> bool:
    if os.environ.get("PYTEST_CURRENT_TEST"):
        return False
    return settings.worker_enabled


@app.on_event("startup")
async def start_job_worker() -> None:
    global _worker_task
    if not _is_worker_enabled():
        return
    if _worker_task is None or _worker_task.done():
        _worker_task = asyncio.create_task(poll_forever(settings.worker_interval_seconds))


@app.on_event("shutdown")
async def stop_job_worker() -> None:
    global _worker_task
    if _worker_task is None:
        return
    _worker_task.cancel()
    try:
        await _worker_task
    except asyncio.CancelledError:
        pass
    _worker_task = None
    worker_logger.info("Job worker stopped")


@app.get("/health")
async def health():
    return {"status": "ok"}


@app.get("/db-check")
def db_check(db: Session = Depends(get_db)):
    db.execute(text("SELECT 1"))
    return {"status": "ok"}
