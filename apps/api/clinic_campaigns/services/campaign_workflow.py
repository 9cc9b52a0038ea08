"""Starting a recipient's run and planning the next due step."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID

from sqlalchemy.orm import Session

from clinic_campaigns.core.exceptions import StepConfigError
from clinic_campaigns.core.structured_logging import build_log_context
from clinic_campaigns.db.enums import CampaignSendOrigin, CampaignStat
from clinic_campaigns.db.models import Campaign
from clinic_campaigns.schemas.campaign import AudienceCriteria, WaitStep
from clinic_campaigns.services.audience_service import AudienceEvaluator
from clinic_campaigns.services.campaign_context import ExecutionStart
from clinic_campaigns.services.campaign_graph import CampaignGraph
from clinic_campaigns.services.campaign_scheduler import CampaignScheduler
from clinic_campaigns.services.campaign_stats import CampaignStats
from clinic_campaigns.services.recipient_directory import RecipientProfile
from clinic_campaigns.services.wait_expressions import resolve_wait

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StepPlan:
    """The next executable step and when it is due (None ends the run)."""

    step_id: UUID | None
    due_at: datetime
    reason: str | None = None


def plan_step(
    graph: CampaignGraph,
    step_id: UUID | None,
    base: datetime,
    trigger_data: Mapping[str, Any],
    drop_unresolved: bool = False,
) -> StepPlan:
    """
    Fold WAIT steps into a due-at for the first non-WAIT step reached.

    Chained WAITs accumulate. An unresolvable WAIT expression fires
    immediately, or ends the run when ``drop_unresolved`` is set.
    Raises StepConfigError for missing steps or a WAIT cycle.
    """
    due_at = base
    current = step_id
    for _ in range(len(graph.rows) + 1):
        if current is None:
            return StepPlan(step_id=None, due_at=due_at)
        definition = graph.get(current)
        if not isinstance(definition, WaitStep):
            return StepPlan(step_id=current, due_at=due_at)

        resolution = resolve_wait(definition, trigger_data, due_at)
        if not resolution.resolved:
            if drop_unresolved:
                return StepPlan(step_id=None, due_at=due_at, reason=resolution.reason)
            logger.warning(
                "Wait step %s unresolved, firing immediately: %s",
                definition.id,
                resolution.reason,
            )
        due_at = resolution.due_at
        if definition.next_step_id is None:
            return StepPlan(step_id=None, due_at=due_at, reason="Wait step has no successor")
        current = definition.next_step_id

    raise StepConfigError(f"Wait steps form a cycle in campaign {graph.campaign_id}")


class StartStatus(str, Enum):
    STARTED = "started"
    NOT_ELIGIBLE = "not_eligible"
    IN_FLIGHT = "in_flight"
    INVALID = "invalid"


@dataclass(frozen=True)
class StartOutcome:
    status: StartStatus
    start: ExecutionStart | None = None
    reason: str | None = None


class WorkflowStarter:
    """
    Shared run-start path for event, scheduled and recurring triggers.

    The recipients counter moves once per successful first enqueue.
    """

    def __init__(
        self,
        evaluator: AudienceEvaluator,
        scheduler: CampaignScheduler,
        stats: CampaignStats,
        drop_unresolved_waits: bool = False,
    ):
        self.evaluator = evaluator
        self.scheduler = scheduler
        self.stats = stats
        self.drop_unresolved_waits = drop_unresolved_waits

    def start(
        self,
        db: Session,
        campaign: Campaign,
        graph: CampaignGraph,
        recipient: RecipientProfile,
        *,
        include: AudienceCriteria | None,
        exclude: AudienceCriteria | None,
        trigger_data: Mapping[str, Any],
        origin: CampaignSendOrigin,
        now: datetime,
    ) -> StartOutcome:
        log_context = build_log_context(
            tenant_id=campaign.clinic_id,
            campaign_id=campaign.id,
            recipient_id=recipient.id,
        )
        if graph.is_empty:
            logger.warning("Campaign has no steps, nothing to start", extra=log_context)
            return StartOutcome(StartStatus.INVALID, reason="Campaign has no steps")

        if not self.evaluator.matches(recipient, include, exclude):
            return StartOutcome(StartStatus.NOT_ELIGIBLE, reason="Recipient not in audience")

        if self.scheduler.has_pending(db, campaign.id, recipient.id):
            return StartOutcome(StartStatus.IN_FLIGHT, reason="Already in flight")

        try:
            plan = plan_step(
                graph,
                graph.first_step_id(),
                now,
                trigger_data,
                drop_unresolved=self.drop_unresolved_waits,
            )
        except StepConfigError as e:
            logger.warning("Cannot start campaign run: %s", e, extra=log_context)
            return StartOutcome(StartStatus.INVALID, reason=str(e))
        if plan.step_id is None:
            logger.info("Campaign run has no executable step: %s", plan.reason, extra=log_context)
            return StartOutcome(StartStatus.INVALID, reason=plan.reason)

        action = self.scheduler.enqueue(
            db,
            tenant_id=campaign.clinic_id,
            campaign_id=campaign.id,
            step_id=plan.step_id,
            patient_id=recipient.id,
            due_at=plan.due_at,
            origin=origin,
            trigger_data=trigger_data,
        )
        if action is None:
            return StartOutcome(StartStatus.IN_FLIGHT, reason="Already in flight")

        self.stats.increment(db, campaign.id, CampaignStat.RECIPIENTS)
        return StartOutcome(
            StartStatus.STARTED,
            start=ExecutionStart(
                campaign_id=campaign.id,
                recipient_id=recipient.id,
                action_id=action.id,
                step_id=action.step_id,
                due_at=action.scheduled_at,
            ),
        )
