"""Scheduler - persistence of pending campaign actions (sends)."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic_core import to_jsonable_python
from sqlalchemy import func, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from clinic_campaigns.core.structured_logging import build_log_context
from clinic_campaigns.db.enums import CampaignSendOrigin, CampaignSendStatus
from clinic_campaigns.db.models import CampaignSend
from clinic_campaigns.db.types import ensure_utc, utcnow
from clinic_campaigns.services.campaign_context import StepOutcome, StepResult

logger = logging.getLogger(__name__)

RUN_START_ORIGINS = (
    CampaignSendOrigin.EVENT.value,
    CampaignSendOrigin.SCHEDULED.value,
    CampaignSendOrigin.RECURRING.value,
)


class CampaignScheduler:
    """
    Pending-action store.

    At most one PENDING row may exist per (campaign, patient); a second
    enqueue for the same pair is refused and returns None. Terminal status
    writes only apply to rows that are still PENDING, so resolving the same
    action twice is a no-op.
    """

    def has_pending(self, db: Session, campaign_id: UUID, patient_id: UUID) -> bool:
        return (
            db.query(CampaignSend.id)
            .filter(
                CampaignSend.campaign_id == campaign_id,
                CampaignSend.patient_id == patient_id,
                CampaignSend.status == CampaignSendStatus.PENDING.value,
            )
            .first()
            is not None
        )

    def enqueue(
        self,
        db: Session,
        *,
        tenant_id: UUID,
        campaign_id: UUID,
        step_id: UUID,
        patient_id: UUID,
        due_at: datetime,
        origin: CampaignSendOrigin = CampaignSendOrigin.WORKFLOW,
        trigger_data: Mapping[str, Any] | None = None,
    ) -> CampaignSend | None:
        """Insert a PENDING action; None when the pair is already in flight."""
        if self.has_pending(db, campaign_id, patient_id):
            return None

        send = CampaignSend(
            clinic_id=tenant_id,
            campaign_id=campaign_id,
            step_id=step_id,
            patient_id=patient_id,
            status=CampaignSendStatus.PENDING.value,
            origin=origin.value,
            scheduled_at=ensure_utc(due_at),
            trigger_data=to_jsonable_python(dict(trigger_data or {})),
        )
        db.add(send)
        try:
            db.commit()
        except IntegrityError:
            db.rollback()
            logger.info(
                "Pending action already in flight",
                extra=build_log_context(campaign_id=campaign_id, recipient_id=patient_id),
            )
            return None
        db.refresh(send)
        return send

    def claim_due(self, db: Session, now: datetime | None = None, limit: int = 100) -> list[CampaignSend]:
        """
        Pending actions due at or before ``now``, oldest due first.

        Does not lock rows; concurrent claimers are reconciled by resolve().
        """
        now = now or utcnow()
        return (
            db.query(CampaignSend)
            .filter(
                CampaignSend.status == CampaignSendStatus.PENDING.value,
                CampaignSend.scheduled_at <= now,
            )
            .order_by(CampaignSend.scheduled_at, CampaignSend.created_at)
            .limit(limit)
            .all()
        )

    def _transition(self, db: Session, action_id: UUID, values: dict[str, Any]) -> bool:
        result = db.execute(
            update(CampaignSend)
            .where(
                CampaignSend.id == action_id,
                CampaignSend.status == CampaignSendStatus.PENDING.value,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        db.commit()
        return result.rowcount == 1

    def resolve(
        self,
        db: Session,
        action_id: UUID,
        result: StepResult,
        now: datetime | None = None,
    ) -> bool:
        """Write the terminal status for a step result; False if already resolved."""
        now = now or utcnow()
        match result.outcome:
            case StepOutcome.SENT:
                values = {
                    "status": CampaignSendStatus.SENT.value,
                    "sent_at": now,
                    "message_id": result.external_message_id,
                }
            case StepOutcome.FAILED:
                values = {
                    "status": CampaignSendStatus.FAILED.value,
                    "failed_at": now,
                    "error_code": result.error_code,
                    "error_message": result.error_message,
                }
            case StepOutcome.SKIPPED:
                values = {
                    "status": CampaignSendStatus.SKIPPED.value,
                    "skip_reason": result.skip_reason,
                }
        return self._transition(db, action_id, values)

    def cancel(self, db: Session, action_id: UUID, reason: str) -> bool:
        return self._transition(
            db,
            action_id,
            {"status": CampaignSendStatus.CANCELLED.value, "skip_reason": reason},
        )

    def last_run_start_at(self, db: Session, campaign_id: UUID) -> datetime | None:
        """Creation time of the most recent run-start action for a campaign."""
        return (
            db.query(func.max(CampaignSend.created_at))
            .filter(
                CampaignSend.campaign_id == campaign_id,
                CampaignSend.origin.in_(RUN_START_ORIGINS),
            )
            .scalar()
        )
