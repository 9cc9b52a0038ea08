"""SQLAlchemy ORM models for campaign definitions and pending actions."""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import (
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from clinic_campaigns.db.base import Base
from clinic_campaigns.db.enums import (
    DEFAULT_SEND_STATUS,
    CampaignSendOrigin,
    CampaignStatus,
)
from clinic_campaigns.db.types import JSONType, utcnow


class MessageTemplate(Base):
    """Per-channel message content referenced by SEND steps."""

    __tablename__ = "message_templates"
    __table_args__ = (
        Index("idx_message_templates_clinic", "clinic_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    clinic_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("clinics.id", ondelete="CASCADE"),
        nullable=False,
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)

    sms_body: Mapped[str | None] = mapped_column(Text, nullable=True)
    email_subject: Mapped[str | None] = mapped_column(String(500), nullable=True)
    email_body: Mapped[str | None] = mapped_column(Text, nullable=True)
    email_html_body: Mapped[str | None] = mapped_column(Text, nullable=True)
    push_title: Mapped[str | None] = mapped_column(String(200), nullable=True)
    push_body: Mapped[str | None] = mapped_column(Text, nullable=True)
    in_app_title: Mapped[str | None] = mapped_column(String(200), nullable=True)
    in_app_body: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)


class Campaign(Base):
    """
    Multi-step patient outreach campaign.

    Authored elsewhere; read-only to the engine except for the lifecycle
    transition of SCHEDULED campaigns, last_run_at and the running counters.
    """

    __tablename__ = "campaigns"
    __table_args__ = (
        Index("idx_campaigns_clinic_status", "clinic_id", "status"),
        Index("idx_campaigns_trigger", "status", "trigger_type", "trigger_event"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    clinic_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("clinics.id", ondelete="CASCADE"),
        nullable=False,
    )

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    status: Mapped[str] = mapped_column(
        String(20), default=CampaignStatus.DRAFT.value, nullable=False
    )  # 'draft' | 'active' | 'paused' | 'completed'

    # Trigger
    trigger_type: Mapped[str] = mapped_column(
        String(20), nullable=False
    )  # 'event' | 'scheduled' | 'recurring'
    trigger_event: Mapped[str | None] = mapped_column(String(100), nullable=True)
    trigger_schedule: Mapped[datetime | None] = mapped_column(nullable=True)
    trigger_recurrence: Mapped[dict | None] = mapped_column(
        JSONType, nullable=True
    )  # {frequency, time: "HH:MM", days: [...]}

    # Audience
    audience: Mapped[dict | None] = mapped_column(JSONType, nullable=True)
    exclude_criteria: Mapped[dict | None] = mapped_column(JSONType, nullable=True)

    # Counters (atomic increments only)
    total_recipients: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_sent: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_delivered: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_failed: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    last_run_at: Mapped[datetime | None] = mapped_column(nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    deleted_at: Mapped[datetime | None] = mapped_column(nullable=True)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(default=utcnow, onupdate=utcnow, nullable=False)

    steps: Mapped[list["CampaignStep"]] = relationship(
        back_populates="campaign",
        cascade="all, delete-orphan",
        order_by="CampaignStep.step_order",
    )


class CampaignStep(Base):
    """One node of a campaign graph (SEND / WAIT / CONDITION / BRANCH)."""

    __tablename__ = "campaign_steps"
    __table_args__ = (
        UniqueConstraint("campaign_id", "step_order", name="uq_campaign_step_order"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    campaign_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("campaigns.id", ondelete="CASCADE"),
        nullable=False,
    )
    step_order: Mapped[int] = mapped_column(Integer, nullable=False)
    name: Mapped[str] = mapped_column(String(200), default="", nullable=False)
    step_type: Mapped[str] = mapped_column(
        String(20), nullable=False
    )  # 'send' | 'wait' | 'condition' | 'branch'

    # SEND
    channel: Mapped[str | None] = mapped_column(String(20), nullable=True)
    template_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid,
        ForeignKey("message_templates.id", ondelete="SET NULL"),
        nullable=True,
    )

    # WAIT
    wait_duration: Mapped[int | None] = mapped_column(Integer, nullable=True)  # minutes
    wait_until: Mapped[str | None] = mapped_column(
        String(200), nullable=True
    )  # e.g. "2 days before appointmentDate"

    # CONDITION / BRANCH
    condition: Mapped[dict | None] = mapped_column(JSONType, nullable=True)
    branches: Mapped[list | None] = mapped_column(JSONType, nullable=True)

    next_step_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)

    campaign: Mapped["Campaign"] = relationship(back_populates="steps")
    template: Mapped["MessageTemplate | None"] = relationship()


class CampaignSend(Base):
    """
    Pending action: one scheduled step of one recipient's workflow instance.

    Rows are never deleted; they form the idempotency and audit ledger. At
    most one row per (campaign, patient) may be pending at any time.
    """

    __tablename__ = "campaign_sends"
    __table_args__ = (
        Index(
            "uq_campaign_sends_one_pending",
            "campaign_id",
            "patient_id",
            unique=True,
            postgresql_where=text("status = 'pending'"),
            sqlite_where=text("status = 'pending'"),
        ),
        Index("idx_campaign_sends_due", "status", "scheduled_at"),
        Index("idx_campaign_sends_campaign_created", "campaign_id", "created_at"),
        Index("idx_campaign_sends_message", "message_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    clinic_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("clinics.id", ondelete="CASCADE"),
        nullable=False,
    )
    campaign_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("campaigns.id", ondelete="CASCADE"),
        nullable=False,
    )
    step_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("campaign_steps.id", ondelete="CASCADE"),
        nullable=False,
    )
    patient_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("patients.id", ondelete="CASCADE"),
        nullable=False,
    )

    status: Mapped[str] = mapped_column(
        String(20), default=DEFAULT_SEND_STATUS.value, nullable=False
    )  # 'pending' | 'sent' | 'failed' | 'skipped' | 'cancelled'
    origin: Mapped[str] = mapped_column(
        String(20), default=CampaignSendOrigin.WORKFLOW.value, nullable=False
    )
    scheduled_at: Mapped[datetime] = mapped_column(nullable=False)

    # Trigger data captured when the workflow instance started
    trigger_data: Mapped[dict] = mapped_column(JSONType, default=dict, nullable=False)

    # Outcome
    sent_at: Mapped[datetime | None] = mapped_column(nullable=True)
    failed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    delivered_at: Mapped[datetime | None] = mapped_column(nullable=True)
    message_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    error_code: Mapped[str | None] = mapped_column(String(100), nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    skip_reason: Mapped[str | None] = mapped_column(String(255), nullable=True)

    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)

    campaign: Mapped["Campaign"] = relationship()
    step: Mapped["CampaignStep"] = relationship()
