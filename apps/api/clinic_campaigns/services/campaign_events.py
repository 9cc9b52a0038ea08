"""Business event ingestion for event-triggered campaigns."""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy.orm import Session

from clinic_campaigns.db.enums import BusinessEvent
from clinic_campaigns.db.models import Job
from clinic_campaigns.db.types import utcnow
from clinic_campaigns.schemas.events import CampaignEvent
from clinic_campaigns.services import job_service
from clinic_campaigns.services.campaign_context import ExecutionStart
from clinic_campaigns.services.trigger_router import TriggerRouter


class CampaignEventDispatcher:
    """
    Two ways in for the same routing logic.

    dispatch() routes now and returns the runs it started; enqueue() puts
    the event on the job queue for the worker and returns immediately.
    """

    def __init__(self, router: TriggerRouter):
        self.router = router

    def dispatch(
        self,
        db: Session,
        event: CampaignEvent,
        now: datetime | None = None,
    ) -> list[ExecutionStart]:
        return self.router.route(db, event, now=now)

    def enqueue(self, db: Session, event: CampaignEvent) -> Job | None:
        """Queue the event; None when an event with the same id is already queued."""
        return job_service.enqueue_campaign_event(db, event)


# =============================================================================
# Event constructors
# =============================================================================


def build_event(
    event: BusinessEvent | str,
    tenant_id: UUID,
    recipient_id: UUID,
    data: dict[str, Any] | None = None,
    *,
    event_id: str | None = None,
    timestamp: datetime | None = None,
) -> CampaignEvent:
    name = event.value if isinstance(event, BusinessEvent) else event
    return CampaignEvent(
        event_name=name,
        tenant_id=tenant_id,
        recipient_id=recipient_id,
        timestamp=timestamp or utcnow(),
        payload={k: v for k, v in (data or {}).items() if v is not None},
        event_id=event_id,
    )


def appointment_booked(
    tenant_id: UUID,
    recipient_id: UUID,
    *,
    appointment_id: str,
    appointment_date: datetime,
    appointment_type: str | None = None,
    provider_id: str | None = None,
) -> CampaignEvent:
    return build_event(
        BusinessEvent.APPOINTMENT_BOOKED,
        tenant_id,
        recipient_id,
        {
            "appointmentId": appointment_id,
            "appointmentDate": appointment_date,
            "appointmentType": appointment_type,
            "providerId": provider_id,
        },
    )


def appointment_confirmed(
    tenant_id: UUID, recipient_id: UUID, *, appointment_id: str, appointment_date: datetime
) -> CampaignEvent:
    return build_event(
        BusinessEvent.APPOINTMENT_CONFIRMED,
        tenant_id,
        recipient_id,
        {"appointmentId": appointment_id, "appointmentDate": appointment_date},
    )


def appointment_cancelled(
    tenant_id: UUID, recipient_id: UUID, *, appointment_id: str, reason: str | None = None
) -> CampaignEvent:
    return build_event(
        BusinessEvent.APPOINTMENT_CANCELLED,
        tenant_id,
        recipient_id,
        {"appointmentId": appointment_id, "reason": reason},
    )


def appointment_completed(
    tenant_id: UUID, recipient_id: UUID, *, appointment_id: str, notes: str | None = None
) -> CampaignEvent:
    return build_event(
        BusinessEvent.APPOINTMENT_COMPLETED,
        tenant_id,
        recipient_id,
        {"appointmentId": appointment_id, "notes": notes},
    )


def appointment_no_show(
    tenant_id: UUID, recipient_id: UUID, *, appointment_id: str, appointment_date: datetime
) -> CampaignEvent:
    return build_event(
        BusinessEvent.APPOINTMENT_NO_SHOW,
        tenant_id,
        recipient_id,
        {"appointmentId": appointment_id, "appointmentDate": appointment_date},
    )


def appointment_reminder(
    tenant_id: UUID, recipient_id: UUID, *, appointment_id: str, appointment_date: datetime
) -> CampaignEvent:
    return build_event(
        BusinessEvent.APPOINTMENT_REMINDER,
        tenant_id,
        recipient_id,
        {"appointmentId": appointment_id, "appointmentDate": appointment_date},
    )


def treatment_started(
    tenant_id: UUID, recipient_id: UUID, *, treatment_plan_id: str, treatment_type: str
) -> CampaignEvent:
    return build_event(
        BusinessEvent.TREATMENT_STARTED,
        tenant_id,
        recipient_id,
        {"treatmentPlanId": treatment_plan_id, "treatmentType": treatment_type},
    )


def treatment_phase_changed(
    tenant_id: UUID,
    recipient_id: UUID,
    *,
    treatment_plan_id: str,
    previous_phase: str,
    new_phase: str,
) -> CampaignEvent:
    return build_event(
        BusinessEvent.TREATMENT_PHASE_CHANGED,
        tenant_id,
        recipient_id,
        {
            "treatmentPlanId": treatment_plan_id,
            "previousPhase": previous_phase,
            "newPhase": new_phase,
        },
    )


def treatment_milestone_reached(
    tenant_id: UUID,
    recipient_id: UUID,
    *,
    treatment_plan_id: str,
    milestone: str,
    progress: float,
) -> CampaignEvent:
    return build_event(
        BusinessEvent.TREATMENT_MILESTONE_REACHED,
        tenant_id,
        recipient_id,
        {"treatmentPlanId": treatment_plan_id, "milestone": milestone, "progress": progress},
    )


def treatment_completed(
    tenant_id: UUID, recipient_id: UUID, *, treatment_plan_id: str, treatment_type: str
) -> CampaignEvent:
    return build_event(
        BusinessEvent.TREATMENT_COMPLETED,
        tenant_id,
        recipient_id,
        {"treatmentPlanId": treatment_plan_id, "treatmentType": treatment_type},
    )


def patient_created(
    tenant_id: UUID, recipient_id: UUID, *, source: str | None = None
) -> CampaignEvent:
    return build_event(BusinessEvent.PATIENT_CREATED, tenant_id, recipient_id, {"source": source})


def patient_activated(
    tenant_id: UUID, recipient_id: UUID, *, treatment_plan_id: str | None = None
) -> CampaignEvent:
    return build_event(
        BusinessEvent.PATIENT_ACTIVATED,
        tenant_id,
        recipient_id,
        {"treatmentPlanId": treatment_plan_id},
    )


def patient_birthday(
    tenant_id: UUID, recipient_id: UUID, *, age: int | None = None
) -> CampaignEvent:
    return build_event(BusinessEvent.PATIENT_BIRTHDAY, tenant_id, recipient_id, {"age": age})


def payment_due(
    tenant_id: UUID, recipient_id: UUID, *, invoice_id: str, amount: float, due_date: datetime
) -> CampaignEvent:
    return build_event(
        BusinessEvent.PAYMENT_DUE,
        tenant_id,
        recipient_id,
        {"invoiceId": invoice_id, "amount": amount, "dueDate": due_date},
    )


def payment_overdue(
    tenant_id: UUID, recipient_id: UUID, *, invoice_id: str, amount: float, days_overdue: int
) -> CampaignEvent:
    return build_event(
        BusinessEvent.PAYMENT_OVERDUE,
        tenant_id,
        recipient_id,
        {"invoiceId": invoice_id, "amount": amount, "daysOverdue": days_overdue},
    )


def payment_received(
    tenant_id: UUID,
    recipient_id: UUID,
    *,
    payment_id: str,
    amount: float,
    method: str | None = None,
) -> CampaignEvent:
    return build_event(
        BusinessEvent.PAYMENT_RECEIVED,
        tenant_id,
        recipient_id,
        {"paymentId": payment_id, "amount": amount, "method": method},
    )
