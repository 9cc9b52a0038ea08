"""Batch runner - fires SCHEDULED and RECURRING campaigns for their audience."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, tzinfo
from uuid import UUID
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import ValidationError
from sqlalchemy import update
from sqlalchemy.orm import Session

from clinic_campaigns.core.config import settings
from clinic_campaigns.core.structured_logging import build_log_context
from clinic_campaigns.db.enums import (
    CampaignSendOrigin,
    CampaignStatus,
    CampaignTriggerType,
    RecurrenceFrequency,
)
from clinic_campaigns.db.models import Campaign
from clinic_campaigns.db.types import ensure_utc, utcnow
from clinic_campaigns.schemas.campaign import RecurrenceRule
from clinic_campaigns.services.audience_service import AudienceEvaluator
from clinic_campaigns.services.campaign_graph import CampaignGraph
from clinic_campaigns.services.campaign_scheduler import CampaignScheduler
from clinic_campaigns.services.campaign_workflow import StartStatus, WorkflowStarter
from clinic_campaigns.services.recipient_directory import RecipientDirectory

logger = logging.getLogger(__name__)


# =============================================================================
# Recurrence rules
# =============================================================================


def _js_weekday(day: date) -> int:
    """0 = Sunday .. 6 = Saturday."""
    return (day.weekday() + 1) % 7


def _day_matches(rule: RecurrenceRule, day: date) -> bool:
    match rule.frequency:
        case RecurrenceFrequency.DAILY:
            return True
        case RecurrenceFrequency.WEEKLY:
            if rule.days is None:
                return True
            days = {d % 7 for d in rule.days}
            return _js_weekday(day) in days
        case RecurrenceFrequency.MONTHLY:
            if rule.days is None:
                return True
            return day.day in rule.days
    return False


def should_run_recurring(
    rule: RecurrenceRule,
    now: datetime,
    tz: tzinfo,
    tolerance: timedelta,
) -> bool:
    """
    True when ``now`` falls within ``tolerance`` of an occurrence of the rule.

    Occurrences are evaluated in the tenant's local time; neighbouring days
    are checked so a window spanning midnight still matches.
    """
    local_now = now.astimezone(tz)
    for offset in (-1, 0, 1):
        day = local_now.date() + timedelta(days=offset)
        if not _day_matches(rule, day):
            continue
        occurrence = datetime.combine(day, time(rule.hour, rule.minute), tzinfo=tz)
        if abs(local_now - occurrence) <= tolerance:
            return True
    return False


def is_same_period(
    frequency: RecurrenceFrequency,
    first: datetime,
    second: datetime,
    tz: tzinfo,
) -> bool:
    """Calendar comparison: same day, same ISO week, or same month and year."""
    a = first.astimezone(tz).date()
    b = second.astimezone(tz).date()
    match frequency:
        case RecurrenceFrequency.DAILY:
            return a == b
        case RecurrenceFrequency.WEEKLY:
            return a.isocalendar()[:2] == b.isocalendar()[:2]
        case RecurrenceFrequency.MONTHLY:
            return (a.year, a.month) == (b.year, b.month)
    return False


# =============================================================================
# Runner
# =============================================================================


@dataclass
class CampaignRunResult:
    campaign_id: UUID
    fired: bool
    started: int = 0
    in_flight: int = 0
    not_eligible: int = 0
    invalid: int = 0
    errors: int = 0
    reason: str | None = None


class BatchRunner:
    def __init__(
        self,
        evaluator: AudienceEvaluator,
        scheduler: CampaignScheduler,
        starter: WorkflowStarter,
        directory: RecipientDirectory,
        audience_limit: int | None = None,
        tolerance_minutes: int | None = None,
    ):
        self.evaluator = evaluator
        self.scheduler = scheduler
        self.starter = starter
        self.directory = directory
        self.audience_limit = audience_limit or settings.CAMPAIGN_AUDIENCE_BATCH_LIMIT
        self.tolerance = timedelta(
            minutes=(
                tolerance_minutes
                if tolerance_minutes is not None
                else settings.CAMPAIGN_RECURRING_TOLERANCE_MINUTES
            )
        )

    # -------------------------------------------------------------------------
    # SCHEDULED
    # -------------------------------------------------------------------------

    def run_scheduled(self, db: Session, now: datetime | None = None) -> list[CampaignRunResult]:
        """
        Fire every ACTIVE scheduled campaign whose fire-at has passed.

        The ACTIVE -> COMPLETED transition is claimed before the audience
        pass, so only one runner ever fires a given campaign.
        """
        now = ensure_utc(now) if now else utcnow()
        campaign_ids = [
            row.id
            for row in db.query(Campaign.id)
            .filter(
                Campaign.status == CampaignStatus.ACTIVE.value,
                Campaign.trigger_type == CampaignTriggerType.SCHEDULED.value,
                Campaign.trigger_schedule.is_not(None),
                Campaign.trigger_schedule <= now,
                Campaign.deleted_at.is_(None),
            )
            .order_by(Campaign.trigger_schedule)
            .all()
        ]
        logger.info("Found %d scheduled campaigns to process", len(campaign_ids))

        results = []
        for campaign_id in campaign_ids:
            if not self._claim_scheduled(db, campaign_id, now):
                logger.info("Scheduled campaign %s already claimed", campaign_id)
                continue
            results.append(
                self._fire(db, campaign_id, origin=CampaignSendOrigin.SCHEDULED, now=now)
            )
        return results

    def _claim_scheduled(self, db: Session, campaign_id: UUID, now: datetime) -> bool:
        result = db.execute(
            update(Campaign)
            .where(
                Campaign.id == campaign_id,
                Campaign.status == CampaignStatus.ACTIVE.value,
            )
            .values(
                status=CampaignStatus.COMPLETED.value,
                completed_at=now,
                last_run_at=now,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        db.commit()
        return result.rowcount == 1

    # -------------------------------------------------------------------------
    # RECURRING
    # -------------------------------------------------------------------------

    def run_recurring(self, db: Session, now: datetime | None = None) -> list[CampaignRunResult]:
        """Fire ACTIVE recurring campaigns that are due and have not run this period."""
        now = ensure_utc(now) if now else utcnow()
        campaigns = (
            db.query(Campaign)
            .filter(
                Campaign.status == CampaignStatus.ACTIVE.value,
                Campaign.trigger_type == CampaignTriggerType.RECURRING.value,
                Campaign.deleted_at.is_(None),
            )
            .order_by(Campaign.created_at)
            .all()
        )
        logger.info("Checking %d recurring campaigns", len(campaigns))

        due: list[tuple[UUID, datetime | None]] = []
        for campaign in campaigns:
            if not campaign.trigger_recurrence:
                continue
            try:
                rule = RecurrenceRule.model_validate(campaign.trigger_recurrence)
            except ValidationError as e:
                logger.warning(
                    "Campaign %s has invalid recurrence: %s",
                    campaign.id,
                    e.errors()[0]["msg"],
                )
                continue

            tz = self._tenant_timezone(db, campaign.clinic_id)
            if not should_run_recurring(rule, now, tz, self.tolerance):
                continue

            last_run = self._last_run(db, campaign)
            if last_run and is_same_period(rule.frequency, last_run, now, tz):
                continue
            due.append((campaign.id, campaign.last_run_at))

        results = []
        for campaign_id, previous_run_at in due:
            if not self._claim_recurring(db, campaign_id, previous_run_at, now):
                logger.info("Recurring campaign %s already claimed for this period", campaign_id)
                continue
            logger.info("Running recurring campaign %s", campaign_id)
            results.append(
                self._fire(db, campaign_id, origin=CampaignSendOrigin.RECURRING, now=now)
            )
        return results

    def _last_run(self, db: Session, campaign: Campaign) -> datetime | None:
        """Recorded last run, falling back to the newest run-start action."""
        if campaign.last_run_at is not None:
            return campaign.last_run_at
        return self.scheduler.last_run_start_at(db, campaign.id)

    def _claim_recurring(
        self,
        db: Session,
        campaign_id: UUID,
        previous_run_at: datetime | None,
        now: datetime,
    ) -> bool:
        if previous_run_at is None:
            last_run_filter = Campaign.last_run_at.is_(None)
        else:
            last_run_filter = Campaign.last_run_at == previous_run_at
        result = db.execute(
            update(Campaign)
            .where(
                Campaign.id == campaign_id,
                Campaign.status == CampaignStatus.ACTIVE.value,
                last_run_filter,
            )
            .values(last_run_at=now, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        db.commit()
        return result.rowcount == 1

    def _tenant_timezone(self, db: Session, tenant_id: UUID) -> tzinfo:
        tenant = self.directory.get_tenant(db, tenant_id)
        tz_name = (tenant.timezone if tenant else None) or settings.DEFAULT_TIMEZONE
        try:
            return ZoneInfo(tz_name)
        except (ZoneInfoNotFoundError, ValueError):
            logger.warning("Unknown timezone %r for tenant %s, using UTC", tz_name, tenant_id)
            return ZoneInfo("UTC")

    # -------------------------------------------------------------------------
    # Audience pass
    # -------------------------------------------------------------------------

    def _fire(
        self,
        db: Session,
        campaign_id: UUID,
        *,
        origin: CampaignSendOrigin,
        now: datetime,
    ) -> CampaignRunResult:
        campaign = db.get(Campaign, campaign_id)
        result = CampaignRunResult(campaign_id=campaign_id, fired=True)
        try:
            include, exclude = self.evaluator.criteria_for(campaign)
        except ValidationError as e:
            logger.warning(
                "Campaign %s has invalid audience criteria: %s",
                campaign_id,
                e.errors()[0]["msg"],
            )
            result.reason = "Invalid audience criteria"
            return result

        graph = CampaignGraph.from_campaign(campaign)
        if graph.is_empty:
            logger.warning(
                "Campaign has no steps, skipping audience pass",
                extra=build_log_context(tenant_id=campaign.clinic_id, campaign_id=campaign_id),
            )
            result.reason = "Campaign has no steps"
            return result

        tenant_id = campaign.clinic_id
        audience = self.directory.list_audience(
            db, tenant_id, include, exclude, limit=self.audience_limit
        )
        if len(audience) >= self.audience_limit:
            logger.warning(
                "Campaign %s audience capped at %d recipients",
                campaign_id,
                self.audience_limit,
            )

        trigger_data = {"run": {"origin": origin.value, "fired_at": now.isoformat()}}
        for recipient in audience:
            try:
                outcome = self.starter.start(
                    db,
                    campaign,
                    graph,
                    recipient,
                    include=include,
                    exclude=exclude,
                    trigger_data=trigger_data,
                    origin=origin,
                    now=now,
                )
            except Exception:
                db.rollback()
                result.errors += 1
                logger.exception(
                    "Failed to start campaign run",
                    extra=build_log_context(
                        tenant_id=tenant_id,
                        campaign_id=campaign_id,
                        recipient_id=recipient.id,
                    ),
                )
                continue

            match outcome.status:
                case StartStatus.STARTED:
                    result.started += 1
                case StartStatus.IN_FLIGHT:
                    result.in_flight += 1
                case StartStatus.NOT_ELIGIBLE:
                    result.not_eligible += 1
                case StartStatus.INVALID:
                    result.invalid += 1

        logger.info(
            "Campaign %s audience pass: %d started, %d already in flight",
            campaign_id,
            result.started,
            result.in_flight,
        )
        return result
