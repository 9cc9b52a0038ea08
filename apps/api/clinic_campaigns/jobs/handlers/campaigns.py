"""Campaign job handlers."""

from __future__ import annotations

import logging

from clinic_campaigns.schemas.events import CampaignEvent, DeliveryReceipt

logger = logging.getLogger(__name__)


async def process_campaign_event(db, job, engine) -> None:
    """
    Process a CAMPAIGN_EVENT job - route a queued business event.

    Payload: a serialized CampaignEvent (event_name, tenant_id,
    recipient_id, timestamp, payload, event_id).
    """
    event = CampaignEvent.model_validate(job.payload or {})
    starts = engine.events.dispatch(db, event)
    logger.info(
        "Campaign event %s (job %s) started %d run(s)",
        event.event_name,
        job.id,
        len(starts),
    )


async def process_delivery_receipt(db, job, engine) -> None:
    """
    Process a CAMPAIGN_DELIVERY_RECEIPT job.

    Payload:
        - message_id: external message id returned by the sender
        - delivered_at: optional ISO timestamp
    """
    receipt = DeliveryReceipt.model_validate(job.payload or {})
    if not engine.record_delivery(db, receipt.message_id, receipt.delivered_at):
        logger.info("Delivery receipt %s matched no pending delivery", receipt.message_id)
