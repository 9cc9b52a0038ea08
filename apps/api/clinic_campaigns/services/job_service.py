"""Campaign work queue - queued business events and delivery receipts.

Jobs are claimed with a conditional status write so that any number of
workers can poll the same table; a job runs at most once per attempt.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from uuid import UUID

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from clinic_campaigns.db.enums import CampaignSendStatus, JobStatus, JobType
from clinic_campaigns.db.models import CampaignSend, Job
from clinic_campaigns.db.types import utcnow
from clinic_campaigns.schemas.events import CampaignEvent, DeliveryReceipt

logger = logging.getLogger(__name__)

RETRY_BACKOFF = timedelta(seconds=30)


def event_job_key(event: CampaignEvent) -> str | None:
    return f"campaign_event:{event.event_id}" if event.event_id else None


def receipt_job_key(receipt: DeliveryReceipt) -> str:
    return f"campaign_delivery:{receipt.message_id}"


def _enqueue(
    db: Session,
    tenant_id: UUID,
    job_type: JobType,
    payload: dict,
    idempotency_key: str | None,
    run_at: datetime | None = None,
) -> Job | None:
    job = Job(
        clinic_id=tenant_id,
        job_type=job_type.value,
        payload=payload,
        run_at=run_at or utcnow(),
        status=JobStatus.PENDING.value,
        idempotency_key=idempotency_key,
    )
    db.add(job)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        logger.info("%s job %s already queued", job_type.value, idempotency_key)
        return None
    db.refresh(job)
    return job


def enqueue_campaign_event(
    db: Session, event: CampaignEvent, run_at: datetime | None = None
) -> Job | None:
    """
    Queue a business event for routing by the worker.

    Returns None when an event with the same event_id is already queued.
    Events without an id are never deduplicated.
    """
    return _enqueue(
        db,
        tenant_id=event.tenant_id,
        job_type=JobType.CAMPAIGN_EVENT,
        payload=event.model_dump(mode="json"),
        idempotency_key=event_job_key(event),
        run_at=run_at,
    )


def enqueue_delivery_receipt(db: Session, receipt: DeliveryReceipt) -> Job | None:
    """
    Queue a delivery receipt against the tenant of the matching sent action.

    Returns None for a message id no sent action carries, or when the same
    receipt is already queued.
    """
    tenant_id = (
        db.query(CampaignSend.clinic_id)
        .filter(
            CampaignSend.message_id == receipt.message_id,
            CampaignSend.status == CampaignSendStatus.SENT.value,
        )
        .limit(1)
        .scalar()
    )
    if tenant_id is None:
        logger.info("Not queueing receipt for unknown message %s", receipt.message_id)
        return None
    return _enqueue(
        db,
        tenant_id=tenant_id,
        job_type=JobType.CAMPAIGN_DELIVERY_RECEIPT,
        payload=receipt.model_dump(mode="json"),
        idempotency_key=receipt_job_key(receipt),
    )


def claim_due_jobs(db: Session, limit: int = 10, now: datetime | None = None) -> list[Job]:
    """
    Claim pending jobs whose run_at has passed, oldest first.

    Each claim moves one job to RUNNING and counts the attempt. A job
    another worker claimed in between is left out.
    """
    now = now or utcnow()
    candidates = (
        db.query(Job)
        .filter(
            Job.status == JobStatus.PENDING.value,
            Job.run_at <= now,
        )
        .order_by(Job.run_at)
        .limit(limit)
        .all()
    )

    claimed: list[Job] = []
    for job in candidates:
        result = db.execute(
            update(Job)
            .where(Job.id == job.id, Job.status == JobStatus.PENDING.value)
            .values(status=JobStatus.RUNNING.value, attempts=Job.attempts + 1)
            .execution_options(synchronize_session=False)
        )
        db.commit()
        if result.rowcount == 1:
            db.refresh(job)
            claimed.append(job)
    return claimed


def complete_job(db: Session, job: Job, now: datetime | None = None) -> Job:
    job.status = JobStatus.COMPLETED.value
    job.completed_at = now or utcnow()
    job.last_error = None
    db.commit()
    db.refresh(job)
    return job


def fail_job(db: Session, job: Job, error: str, now: datetime | None = None) -> Job:
    """
    Record a failed attempt.

    The job goes back to pending with a linear backoff until max_attempts
    is used up, then stays FAILED.
    """
    job.last_error = error[:2000]
    if job.attempts < job.max_attempts:
        job.status = JobStatus.PENDING.value
        job.run_at = (now or utcnow()) + RETRY_BACKOFF * job.attempts
    else:
        job.status = JobStatus.FAILED.value
    db.commit()
    db.refresh(job)
    return job
