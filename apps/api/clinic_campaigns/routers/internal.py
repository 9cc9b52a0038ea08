"""
Internal endpoints for scheduled/cron operations and event ingest.

Protected by X-Internal-Secret header.
Call from external cron or from other services of the clinic platform.
"""
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from clinic_campaigns.core.deps import (
    get_campaign_engine,
    get_db,
    verify_internal_secret,
)
from clinic_campaigns.schemas.events import (
    BatchRunResponse,
    CampaignEvent,
    CampaignRunRead,
    DeliveryReceipt,
    DeliveryReceiptResponse,
    DrainResponse,
    EventDispatchResponse,
    ExecutionStartRead,
)
from clinic_campaigns.services import job_service
from clinic_campaigns.services.campaign_engine import CampaignEngine


router = APIRouter(
    prefix="/internal",
    tags=["internal"],
    dependencies=[Depends(verify_internal_secret)],
)


def _batch_response(results) -> BatchRunResponse:
    runs = [
        CampaignRunRead(
            campaign_id=r.campaign_id,
            fired=r.fired,
            started=r.started,
            in_flight=r.in_flight,
            reason=r.reason,
        )
        for r in results
    ]
    return BatchRunResponse(
        campaigns_checked=len(runs),
        campaigns_fired=sum(1 for r in runs if r.fired),
        recipients_started=sum(r.started for r in runs),
        runs=runs,
    )


@router.post("/scheduled/campaigns/run-scheduled", response_model=BatchRunResponse)
def run_scheduled_campaigns(
    db: Session = Depends(get_db),
    engine: CampaignEngine = Depends(get_campaign_engine),
):
    """Fire SCHEDULED campaigns whose fire-at has passed (each fires once)."""
    return _batch_response(engine.run_scheduled(db))


@router.post("/scheduled/campaigns/run-recurring", response_model=BatchRunResponse)
def run_recurring_campaigns(
    db: Session = Depends(get_db),
    engine: CampaignEngine = Depends(get_campaign_engine),
):
    """Fire RECURRING campaigns due now that have not run this period."""
    return _batch_response(engine.run_recurring(db))


@router.post("/scheduled/campaigns/drain", response_model=DrainResponse)
async def drain_pending_actions(
    limit: int | None = None,
    db: Session = Depends(get_db),
    engine: CampaignEngine = Depends(get_campaign_engine),
):
    """Execute due pending actions."""
    result = await engine.drain(db, limit=limit)
    return DrainResponse.model_validate(result)


@router.post("/campaign-events", response_model=EventDispatchResponse)
def ingest_campaign_event(
    event: CampaignEvent,
    queue: bool = False,
    db: Session = Depends(get_db),
    engine: CampaignEngine = Depends(get_campaign_engine),
):
    """
    Ingest a business event.

    With ?queue=true the event is handed to the worker; otherwise it is
    routed immediately and the started runs are returned.
    """
    if queue:
        job = engine.events.enqueue(db, event)
        return EventDispatchResponse(
            queued=job is not None,
            job_id=job.id if job else None,
            duplicate=job is None,
        )

    starts = engine.events.dispatch(db, event)
    return EventDispatchResponse(
        starts=[ExecutionStartRead.model_validate(start) for start in starts]
    )


@router.post("/campaign-deliveries", response_model=DeliveryReceiptResponse)
def record_campaign_delivery(
    receipt: DeliveryReceipt,
    queue: bool = False,
    db: Session = Depends(get_db),
    engine: CampaignEngine = Depends(get_campaign_engine),
):
    """
    Record a delivery receipt from the messaging gateway.

    With ?queue=true the receipt is handed to the worker instead.
    """
    if queue:
        job = job_service.enqueue_delivery_receipt(db, receipt)
        return DeliveryReceiptResponse(
            recorded=False,
            queued=job is not None,
            job_id=job.id if job else None,
        )

    recorded = engine.record_delivery(db, receipt.message_id, receipt.delivered_at)
    return DeliveryReceiptResponse(recorded=recorded)
