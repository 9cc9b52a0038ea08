"""Schemas for business events, delivery receipts and engine run results."""
from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from clinic_campaigns.db.types import utcnow


# =============================================================================
# Inbound
# =============================================================================

class CampaignEvent(BaseModel):
    """A business event that may start event-triggered campaigns."""
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    event_name: str = Field(
        ..., min_length=1, max_length=100,
        validation_alias=AliasChoices("event_name", "eventName", "event"),
    )
    tenant_id: UUID = Field(
        ..., validation_alias=AliasChoices("tenant_id", "tenantId", "clinic_id", "clinicId")
    )
    recipient_id: UUID = Field(
        ..., validation_alias=AliasChoices("recipient_id", "recipientId", "patient_id", "patientId")
    )
    timestamp: datetime = Field(default_factory=utcnow)
    payload: dict[str, Any] = Field(
        default_factory=dict, validation_alias=AliasChoices("payload", "data")
    )
    event_id: str | None = Field(
        None, max_length=200, validation_alias=AliasChoices("event_id", "eventId")
    )

    def trigger_data(self) -> dict[str, Any]:
        """Trigger data bag captured for runs started by this event."""
        return dict(self.payload)


class DeliveryReceipt(BaseModel):
    """Delivery confirmation from the messaging gateway."""
    model_config = ConfigDict(populate_by_name=True)

    message_id: str = Field(
        ..., min_length=1, max_length=255,
        validation_alias=AliasChoices("message_id", "messageId", "external_id", "externalId"),
    )
    delivered_at: datetime | None = Field(
        None, validation_alias=AliasChoices("delivered_at", "deliveredAt")
    )


# =============================================================================
# Responses
# =============================================================================

class ExecutionStartRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    campaign_id: UUID
    recipient_id: UUID
    action_id: UUID
    step_id: UUID
    due_at: datetime


class EventDispatchResponse(BaseModel):
    """Result of ingesting one event (sync dispatch or queued)."""
    queued: bool = False
    job_id: UUID | None = None
    duplicate: bool = False
    starts: list[ExecutionStartRead] = Field(default_factory=list)


class CampaignRunRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    campaign_id: UUID
    fired: bool
    started: int = 0
    in_flight: int = 0
    reason: str | None = None


class BatchRunResponse(BaseModel):
    campaigns_checked: int
    campaigns_fired: int
    recipients_started: int
    runs: list[CampaignRunRead] = Field(default_factory=list)


class DrainResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    processed: int
    sent: int
    failed: int
    skipped: int
    cancelled: int
    errors: int


class DeliveryReceiptResponse(BaseModel):
    recorded: bool
    queued: bool = False
    job_id: UUID | None = None
