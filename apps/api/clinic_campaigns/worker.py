"""
Background worker for the campaign engine.

Usage:
    python -m clinic_campaigns.worker

Each tick drains queued jobs (campaign events, delivery receipts), runs the
scheduled and recurring campaign passes, then drains due pending actions.
Run any number of workers against the same database.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime

from clinic_campaigns.core.config import settings
from clinic_campaigns.core.structured_logging import build_log_context
from clinic_campaigns.db.session import SessionLocal
from clinic_campaigns.db.types import utcnow
from clinic_campaigns.jobs.registry import resolve_job_handler
from clinic_campaigns.services import job_service
from clinic_campaigns.services.action_processor import DrainResult
from clinic_campaigns.services.campaign_engine import CampaignEngine, build_campaign_engine

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger(__name__)

# Worker configuration
POLL_INTERVAL_SECONDS = settings.WORKER_POLL_INTERVAL
BATCH_SIZE = settings.WORKER_BATCH_SIZE


@dataclass
class TickResult:
    jobs_completed: int = 0
    jobs_failed: int = 0
    scheduled_fired: int = 0
    recurring_fired: int = 0
    drain: DrainResult | None = None


async def process_job(db, job, engine: CampaignEngine) -> None:
    """Process a single job based on its type."""
    logger.info("Processing job %s (type=%s, attempt=%s)", job.id, job.job_type, job.attempts)
    handler = resolve_job_handler(job.job_type)
    await handler(db, job, engine)


async def process_jobs(db, engine: CampaignEngine, limit: int = BATCH_SIZE) -> tuple[int, int]:
    completed = failed = 0
    jobs = job_service.claim_due_jobs(db, limit=limit)
    if jobs:
        logger.info("Claimed %d queued jobs", len(jobs))

    for job in jobs:
        try:
            await process_job(db, job, engine)
            job_service.complete_job(db, job)
            completed += 1
        except Exception as e:
            db.rollback()
            job_service.fail_job(db, job, str(e) or type(e).__name__)
            failed += 1
            logger.error("Job %s failed: %s", job.id, type(e).__name__)
    return completed, failed


async def run_tick(db, engine: CampaignEngine, now: datetime | None = None) -> TickResult:
    """One polling pass. Each stage is isolated from the others' failures."""
    now = now or utcnow()
    result = TickResult()

    try:
        result.jobs_completed, result.jobs_failed = await process_jobs(db, engine)
    except Exception:
        db.rollback()
        logger.exception("Error processing queued jobs")

    try:
        result.scheduled_fired = len(engine.run_scheduled(db, now=now))
    except Exception:
        db.rollback()
        logger.exception("Error running scheduled campaigns")

    try:
        result.recurring_fired = len(engine.run_recurring(db, now=now))
    except Exception:
        db.rollback()
        logger.exception("Error running recurring campaigns")

    try:
        result.drain = await engine.drain(db, now=now)
    except Exception:
        db.rollback()
        logger.exception("Error draining pending campaign actions")

    return result


async def worker_loop(engine: CampaignEngine | None = None) -> None:
    """Main worker loop - polls for and processes campaign work."""
    engine = engine or build_campaign_engine()
    logger.info(
        "Worker starting (poll interval: %ss, batch size: %s, sender: %s)",
        POLL_INTERVAL_SECONDS,
        BATCH_SIZE,
        engine.sender.key,
    )

    while True:
        with SessionLocal() as db:
            await run_tick(db, engine)
        await asyncio.sleep(POLL_INTERVAL_SECONDS)


def main() -> None:
    """Entry point for the worker."""
    try:
        asyncio.run(worker_loop())
    except KeyboardInterrupt:
        logger.info("Worker shutting down")
    except Exception:
        logger.exception("Worker crashed", extra=build_log_context(route="worker"))
        raise


if __name__ == "__main__":
    main()
