"""Composition root for the campaign execution engine."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from sqlalchemy.orm import Session

from clinic_campaigns.core.config import settings
from clinic_campaigns.schemas.events import CampaignEvent
from clinic_campaigns.services.action_processor import DrainResult, PendingActionProcessor
from clinic_campaigns.services.audience_service import AudienceEvaluator
from clinic_campaigns.services.batch_runner import BatchRunner, CampaignRunResult
from clinic_campaigns.services.campaign_context import ExecutionStart
from clinic_campaigns.services.campaign_events import CampaignEventDispatcher
from clinic_campaigns.services.campaign_scheduler import CampaignScheduler
from clinic_campaigns.services.campaign_stats import CampaignStats
from clinic_campaigns.services.campaign_workflow import WorkflowStarter
from clinic_campaigns.services.message_sender import MessageSender, select_message_sender
from clinic_campaigns.services.recipient_directory import (
    RecipientDirectory,
    SqlRecipientDirectory,
)
from clinic_campaigns.services.step_interpreter import StepInterpreter
from clinic_campaigns.services.trigger_router import TriggerRouter


@dataclass(frozen=True)
class CampaignEngine:
    """
    One independent engine instance.

    Every collaborator is passed in; nothing is module-global, so several
    engines (or one per test) can coexist in a process.
    """

    directory: RecipientDirectory
    sender: MessageSender
    evaluator: AudienceEvaluator
    scheduler: CampaignScheduler
    stats: CampaignStats
    interpreter: StepInterpreter
    router: TriggerRouter
    events: CampaignEventDispatcher
    batch_runner: BatchRunner
    processor: PendingActionProcessor

    def route(self, db: Session, event: CampaignEvent, now: datetime | None = None) -> list[ExecutionStart]:
        return self.router.route(db, event, now=now)

    def run_scheduled(self, db: Session, now: datetime | None = None) -> list[CampaignRunResult]:
        return self.batch_runner.run_scheduled(db, now=now)

    def run_recurring(self, db: Session, now: datetime | None = None) -> list[CampaignRunResult]:
        return self.batch_runner.run_recurring(db, now=now)

    async def drain(
        self,
        db: Session,
        limit: int | None = None,
        now: datetime | None = None,
    ) -> DrainResult:
        return await self.processor.drain(db, limit=limit, now=now)

    def record_delivery(
        self,
        db: Session,
        message_id: str,
        delivered_at: datetime | None = None,
    ) -> bool:
        return self.stats.record_delivery(db, message_id, delivered_at)


def build_campaign_engine(
    *,
    sender: MessageSender | None = None,
    directory: RecipientDirectory | None = None,
    drop_unresolved_waits: bool | None = None,
    audience_limit: int | None = None,
    tolerance_minutes: int | None = None,
) -> CampaignEngine:
    """Wire an engine; unspecified collaborators come from settings."""
    directory = directory or SqlRecipientDirectory()
    sender = sender or select_message_sender()
    if drop_unresolved_waits is None:
        drop_unresolved_waits = settings.wait_fallback_drops

    evaluator = AudienceEvaluator()
    scheduler = CampaignScheduler()
    stats = CampaignStats()
    starter = WorkflowStarter(
        evaluator, scheduler, stats, drop_unresolved_waits=drop_unresolved_waits
    )
    interpreter = StepInterpreter(directory, sender)
    router = TriggerRouter(evaluator, starter, directory)

    return CampaignEngine(
        directory=directory,
        sender=sender,
        evaluator=evaluator,
        scheduler=scheduler,
        stats=stats,
        interpreter=interpreter,
        router=router,
        events=CampaignEventDispatcher(router),
        batch_runner=BatchRunner(
            evaluator,
            scheduler,
            starter,
            directory,
            audience_limit=audience_limit,
            tolerance_minutes=tolerance_minutes,
        ),
        processor=PendingActionProcessor(
            scheduler,
            interpreter,
            stats,
            directory,
            drop_unresolved_waits=drop_unresolved_waits,
        ),
    )
