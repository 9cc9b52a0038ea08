"""Trigger router - starts event-triggered campaigns for a business event."""

from __future__ import annotations

import logging
from datetime import datetime
from uuid import UUID

from pydantic import ValidationError
from sqlalchemy.orm import Session

from clinic_campaigns.core.structured_logging import build_log_context
from clinic_campaigns.db.enums import (
    CampaignSendOrigin,
    CampaignStatus,
    CampaignTriggerType,
)
from clinic_campaigns.db.models import Campaign
from clinic_campaigns.db.types import ensure_utc, utcnow
from clinic_campaigns.schemas.events import CampaignEvent
from clinic_campaigns.services.audience_service import AudienceEvaluator
from clinic_campaigns.services.campaign_context import ExecutionStart
from clinic_campaigns.services.campaign_graph import CampaignGraph
from clinic_campaigns.services.campaign_workflow import StartStatus, WorkflowStarter
from clinic_campaigns.services.recipient_directory import RecipientDirectory

logger = logging.getLogger(__name__)


def list_event_campaigns(db: Session, tenant_id: UUID, event_name: str) -> list[Campaign]:
    """Active, event-triggered campaigns of a tenant listening for ``event_name``."""
    return (
        db.query(Campaign)
        .filter(
            Campaign.clinic_id == tenant_id,
            Campaign.status == CampaignStatus.ACTIVE.value,
            Campaign.trigger_type == CampaignTriggerType.EVENT.value,
            Campaign.trigger_event == event_name,
            Campaign.deleted_at.is_(None),
        )
        .order_by(Campaign.created_at)
        .all()
    )


class TriggerRouter:
    def __init__(
        self,
        evaluator: AudienceEvaluator,
        starter: WorkflowStarter,
        directory: RecipientDirectory,
    ):
        self.evaluator = evaluator
        self.starter = starter
        self.directory = directory

    def route(
        self,
        db: Session,
        event: CampaignEvent,
        now: datetime | None = None,
    ) -> list[ExecutionStart]:
        """
        Start a run of every matching campaign for the event's recipient.

        Re-delivered events are absorbed by the one-pending-run rule.
        """
        campaigns = list_event_campaigns(db, event.tenant_id, event.event_name)
        if not campaigns:
            return []

        recipient = self.directory.get_recipient(db, event.tenant_id, event.recipient_id)
        if recipient is None:
            logger.info(
                "Event %s for unknown recipient, ignoring",
                event.event_name,
                extra=build_log_context(
                    tenant_id=event.tenant_id, recipient_id=event.recipient_id
                ),
            )
            return []

        now = ensure_utc(now) if now else utcnow()
        trigger_data = event.trigger_data()
        starts: list[ExecutionStart] = []
        for campaign in campaigns:
            campaign_id = campaign.id
            try:
                include, exclude = self.evaluator.criteria_for(campaign)
                outcome = self.starter.start(
                    db,
                    campaign,
                    CampaignGraph.from_campaign(campaign),
                    recipient,
                    include=include,
                    exclude=exclude,
                    trigger_data=trigger_data,
                    origin=CampaignSendOrigin.EVENT,
                    now=now,
                )
            except ValidationError as e:
                db.rollback()
                logger.warning(
                    "Campaign %s has invalid audience criteria: %s",
                    campaign_id,
                    e.errors()[0]["msg"],
                )
                continue
            except Exception:
                db.rollback()
                logger.exception(
                    "Failed to start campaign run for event %s",
                    event.event_name,
                    extra=build_log_context(
                        tenant_id=event.tenant_id,
                        campaign_id=campaign_id,
                        recipient_id=event.recipient_id,
                    ),
                )
                continue

            if outcome.status == StartStatus.STARTED and outcome.start:
                starts.append(outcome.start)

        if starts:
            logger.info(
                "Event %s started %d campaign run(s)",
                event.event_name,
                len(starts),
            )
        return starts
