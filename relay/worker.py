"""Background poller for the job queue.

Runs inside the API process (started on FastAPI startup) or standalone:

    python -m relay.worker
"""

import asyncio
from typing import Callable, Optional

from sqlalchemy.orm import Session

from relay.config import settings
from relay.database import SessionLocal
from relay.dependencies import build_job_queue
from relay.logging_config import get_logger, setup_logging
from relay.services.job_queue import JobQueue

logger = get_logger("worker")


async def run_poll_cycle(
    queue: Optional[JobQueue] = None,
    session_factory: Callable[[], Session] = SessionLocal,
) -> dict:
    """Release stale processing jobs, then process one batch of due jobs."""
    queue = queue or build_job_queue()
    db = session_factory()
    try:
        released = await queue.release_stale_processing(db)
        results = await queue.process_ready_jobs(db)
    finally:
        db.close()

    if released["released"] or released["failed"]:
        results["released_stale"] = released["released"]
        results["failed_stale"] = released["failed"]
    return results


async def poll_forever(interval_seconds: Optional[float] = None, queue: Optional[JobQueue] = None) -> None:
    interval = max(interval_seconds or settings.worker_interval_seconds, 0.1)
    queue = queue or build_job_queue()
    logger.info("Job worker started", extra={"context": {"interval_seconds": interval}})
    while True:
        try:
            await asyncio.sleep(interval)
            results = await run_poll_cycle(queue)
            if results["processed"] or results["errors"]:
                logger.info("Job worker processed", extra={"context": results})
        except asyncio.CancelledError:
            break
        except Exception as exc:
            logger.error(
                "Job worker loop failed",
                extra={"context": {"error": str(exc)}},
            )


def main() -> None:
    setup_logging(settings.log_level)
    try:
        asyncio.run(poll_forever())
    except KeyboardInterrupt:
        logger.info("Job worker stopped")


if __name__ == "__main__":
    main()
