"""Pending-action processor - drains due actions and advances each run."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID

from sqlalchemy.orm import Session

from clinic_campaigns.core.config import settings
from clinic_campaigns.core.exceptions import StepConfigError
from clinic_campaigns.core.structured_logging import build_log_context
from clinic_campaigns.db.enums import CampaignSendOrigin, CampaignStat, CampaignStatus
from clinic_campaigns.db.models import Campaign, CampaignSend
from clinic_campaigns.db.types import ensure_utc, utcnow
from clinic_campaigns.services.campaign_context import (
    ExecutionContext,
    StepOutcome,
    StepResult,
)
from clinic_campaigns.services.campaign_graph import CampaignGraph
from clinic_campaigns.services.campaign_scheduler import CampaignScheduler
from clinic_campaigns.services.campaign_stats import CampaignStats
from clinic_campaigns.services.campaign_workflow import plan_step
from clinic_campaigns.services.recipient_directory import RecipientDirectory
from clinic_campaigns.services.step_interpreter import StepInterpreter

logger = logging.getLogger(__name__)

# COMPLETED scheduled campaigns still finish runs already in flight.
RUNNABLE_CAMPAIGN_STATUSES = (CampaignStatus.ACTIVE.value, CampaignStatus.COMPLETED.value)
CAMPAIGN_INACTIVE_REASON = "Campaign no longer active"


@dataclass
class DrainResult:
    processed: int = 0
    sent: int = 0
    failed: int = 0
    skipped: int = 0
    cancelled: int = 0
    errors: int = 0


@dataclass(frozen=True)
class _DueAction:
    id: UUID
    tenant_id: UUID
    campaign_id: UUID
    step_id: UUID
    patient_id: UUID
    trigger_data: dict[str, Any]

    @classmethod
    def from_send(cls, send: CampaignSend) -> "_DueAction":
        return cls(
            id=send.id,
            tenant_id=send.clinic_id,
            campaign_id=send.campaign_id,
            step_id=send.step_id,
            patient_id=send.patient_id,
            trigger_data=dict(send.trigger_data or {}),
        )


class _Handled(str, Enum):
    SENT = "sent"
    ADVANCED = "advanced"
    FAILED = "failed"
    SKIPPED = "skipped"
    CANCELLED = "cancelled"
    DUPLICATE = "duplicate"


class PendingActionProcessor:
    """
    Claim -> interpret -> resolve loop body.

    No locks are taken; an action claimed by two workers is executed at
    least once, and only the first terminal write counts.
    """

    def __init__(
        self,
        scheduler: CampaignScheduler,
        interpreter: StepInterpreter,
        stats: CampaignStats,
        directory: RecipientDirectory,
        drop_unresolved_waits: bool = False,
    ):
        self.scheduler = scheduler
        self.interpreter = interpreter
        self.stats = stats
        self.directory = directory
        self.drop_unresolved_waits = drop_unresolved_waits

    async def drain(
        self,
        db: Session,
        limit: int | None = None,
        now: datetime | None = None,
    ) -> DrainResult:
        now = ensure_utc(now) if now else utcnow()
        limit = limit or settings.CAMPAIGN_DRAIN_BATCH_SIZE
        due = [_DueAction.from_send(send) for send in self.scheduler.claim_due(db, now, limit)]

        result = DrainResult()
        for action in due:
            try:
                handled = await self._process(db, action, now)
            except Exception:
                db.rollback()
                result.errors += 1
                logger.exception(
                    "Failed to process pending action",
                    extra=build_log_context(
                        tenant_id=action.tenant_id,
                        campaign_id=action.campaign_id,
                        recipient_id=action.patient_id,
                        action_id=action.id,
                        step_id=action.step_id,
                    ),
                )
                continue

            if handled == _Handled.DUPLICATE:
                continue
            result.processed += 1
            match handled:
                case _Handled.SENT:
                    result.sent += 1
                case _Handled.FAILED:
                    result.failed += 1
                case _Handled.SKIPPED:
                    result.skipped += 1
                case _Handled.CANCELLED:
                    result.cancelled += 1

        if due:
            logger.info(
                "Drained %d pending actions: %d sent, %d failed, %d skipped, %d cancelled",
                result.processed,
                result.sent,
                result.failed,
                result.skipped,
                result.cancelled,
            )
        return result

    async def _process(self, db: Session, action: _DueAction, now: datetime) -> _Handled:
        campaign = db.get(Campaign, action.campaign_id)
        if (
            campaign is None
            or campaign.deleted_at is not None
            or campaign.status not in RUNNABLE_CAMPAIGN_STATUSES
        ):
            if self.scheduler.cancel(db, action.id, CAMPAIGN_INACTIVE_REASON):
                return _Handled.CANCELLED
            return _Handled.DUPLICATE

        recipient = self.directory.get_recipient(db, action.tenant_id, action.patient_id)
        if recipient is None:
            return self._resolve_skipped(db, action, "Recipient not found", now)

        graph = CampaignGraph.from_campaign(campaign)
        try:
            step = graph.get(action.step_id)
        except StepConfigError as e:
            return self._resolve_skipped(db, action, str(e), now)

        context = ExecutionContext(
            campaign_id=action.campaign_id,
            tenant_id=action.tenant_id,
            recipient_id=action.patient_id,
            step_id=action.step_id,
            trigger_data=action.trigger_data,
            action_id=action.id,
            variables_loader=lambda: self.directory.build_variables(
                db, recipient, action.trigger_data
            ),
        )
        step_result = await self.interpreter.execute(db, step, context, recipient)

        if not self.scheduler.resolve(db, action.id, step_result, now):
            logger.info(
                "Pending action already resolved by another worker",
                extra=build_log_context(action_id=action.id, campaign_id=action.campaign_id),
            )
            return _Handled.DUPLICATE

        match step_result.outcome:
            case StepOutcome.FAILED:
                self.stats.increment(db, action.campaign_id, CampaignStat.FAILED)
                logger.warning(
                    "Campaign step failed: %s",
                    step_result.error_code,
                    extra=build_log_context(action_id=action.id, campaign_id=action.campaign_id),
                )
                return _Handled.FAILED
            case StepOutcome.SKIPPED:
                logger.info(
                    "Campaign step skipped: %s",
                    step_result.skip_reason,
                    extra=build_log_context(action_id=action.id, campaign_id=action.campaign_id),
                )
                return _Handled.SKIPPED

        if step_result.dispatched:
            self.stats.increment(db, action.campaign_id, CampaignStat.SENT)
        self._schedule_successor(db, graph, action, step_result, now)
        return _Handled.SENT if step_result.dispatched else _Handled.ADVANCED

    def _resolve_skipped(
        self, db: Session, action: _DueAction, reason: str, now: datetime
    ) -> _Handled:
        if self.scheduler.resolve(db, action.id, StepResult.skipped(reason), now):
            logger.info(
                "Campaign step skipped: %s",
                reason,
                extra=build_log_context(action_id=action.id, campaign_id=action.campaign_id),
            )
            return _Handled.SKIPPED
        return _Handled.DUPLICATE

    def _schedule_successor(
        self,
        db: Session,
        graph: CampaignGraph,
        action: _DueAction,
        step_result: StepResult,
        now: datetime,
    ) -> None:
        if step_result.advance_to is None:
            return
        log_context = build_log_context(
            campaign_id=action.campaign_id,
            recipient_id=action.patient_id,
            action_id=action.id,
        )
        try:
            plan = plan_step(
                graph,
                step_result.advance_to,
                now,
                action.trigger_data,
                drop_unresolved=self.drop_unresolved_waits,
            )
        except StepConfigError as e:
            logger.warning("Cannot schedule next campaign step: %s", e, extra=log_context)
            return
        if plan.step_id is None:
            if plan.reason:
                logger.info("Campaign run ended: %s", plan.reason, extra=log_context)
            return

        successor = self.scheduler.enqueue(
            db,
            tenant_id=action.tenant_id,
            campaign_id=action.campaign_id,
            step_id=plan.step_id,
            patient_id=action.patient_id,
            due_at=plan.due_at,
            origin=CampaignSendOrigin.WORKFLOW,
            trigger_data=action.trigger_data,
        )
        if successor is None:
            logger.info("Next campaign step refused, run already in flight", extra=log_context)
