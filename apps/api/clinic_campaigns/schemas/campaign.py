"""Pydantic schemas for campaign definitions as the engine reads them."""

from __future__ import annotations

import re
from typing import Annotated, Any, Literal, Union
from uuid import UUID

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator

from clinic_campaigns.db.enums import (
    ConditionOperator,
    MessageChannel,
    RecurrenceFrequency,
)

_TIME_PATTERN = re.compile(r"^([01]?\d|2[0-3]):([0-5]\d)$")


# =============================================================================
# Step Predicates (CONDITION / BRANCH)
# =============================================================================


class StepPredicate(BaseModel):
    """A single predicate evaluated against the execution variable bag."""

    model_config = ConfigDict(frozen=True)

    field: str = Field(min_length=1)  # dot path, e.g. "patient.first_name"
    operator: ConditionOperator
    value: Any = None


class Branch(BaseModel):
    """One (predicate, target) pair of a BRANCH step."""

    model_config = ConfigDict(frozen=True)

    condition: StepPredicate
    next_step_id: UUID | None = Field(
        default=None, validation_alias=AliasChoices("next_step_id", "nextStepId")
    )


# =============================================================================
# Audience Predicates
# =============================================================================


class StatusInPredicate(BaseModel):
    """Recipient status is one of the listed statuses."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["status_in"] = "status_in"
    statuses: tuple[str, ...] = Field(min_length=1)

    @field_validator("statuses")
    @classmethod
    def normalize_statuses(cls, v: tuple[str, ...]) -> tuple[str, ...]:
        return tuple(s.strip().lower() for s in v if s and s.strip())


class HasChannelPredicate(BaseModel):
    """Recipient can be reached on the given channel."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["has_channel"] = "has_channel"
    channel: MessageChannel


class OptInPredicate(BaseModel):
    """Recipient marketing opt-in flag equals the expected value."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["opt_in"] = "opt_in"
    opted_in: bool = True


AudiencePredicate = Annotated[
    Union[StatusInPredicate, HasChannelPredicate, OptInPredicate],
    Field(discriminator="kind"),
]


class AudienceCriteria(BaseModel):
    """
    A closed set of typed audience predicates.

    Stored campaign JSON may use either the typed form
    ``{"predicates": [{"kind": "status_in", "statuses": ["active"]}]}`` or the
    flat authoring form ``{"patientStatus": ["ACTIVE"], "hasEmail": true,
    "hasPhone": true, "communicationOptIn": true}``.
    """

    model_config = ConfigDict(frozen=True)

    predicates: tuple[AudiencePredicate, ...] = ()

    @property
    def is_empty(self) -> bool:
        return not self.predicates

    @classmethod
    def from_json(cls, data: dict | None) -> "AudienceCriteria":
        if not data:
            return cls()
        if "predicates" in data:
            return cls.model_validate(data)

        predicates: list[Any] = []
        statuses = _first_present(data, "patientStatus", "patient_status", "statuses")
        if statuses:
            if isinstance(statuses, str):
                statuses = [statuses]
            predicates.append(StatusInPredicate(statuses=tuple(statuses)))
        if _first_present(data, "hasEmail", "has_email"):
            predicates.append(HasChannelPredicate(channel=MessageChannel.EMAIL))
        if _first_present(data, "hasPhone", "has_phone"):
            predicates.append(HasChannelPredicate(channel=MessageChannel.SMS))
        if _first_present(data, "hasPush", "has_push"):
            predicates.append(HasChannelPredicate(channel=MessageChannel.PUSH))
        if _first_present(data, "communicationOptIn", "communication_opt_in", "opt_in"):
            predicates.append(OptInPredicate(opted_in=True))
        return cls(predicates=tuple(predicates))


def _first_present(data: dict, *keys: str) -> Any:
    for key in keys:
        if key in data and data[key] is not None:
            return data[key]
    return None


# =============================================================================
# Recurrence
# =============================================================================


class RecurrenceRule(BaseModel):
    """
    Recurrence for RECURRING campaigns.

    days: weekdays for weekly (0 = Sunday .. 6 = Saturday, 7 also Sunday),
    days of month for monthly. None means every day of the period.
    """

    model_config = ConfigDict(frozen=True)

    frequency: RecurrenceFrequency
    time: str = "09:00"
    days: tuple[int, ...] | None = None

    @field_validator("time")
    @classmethod
    def validate_time(cls, v: str) -> str:
        if not _TIME_PATTERN.match(v.strip()):
            raise ValueError(f"Invalid time of day '{v}', expected HH:MM")
        return v.strip()

    @model_validator(mode="after")
    def validate_days(self) -> "RecurrenceRule":
        if self.days is None:
            return self
        if not self.days:
            raise ValueError("days must not be empty; omit it to run every day")
        if self.frequency == RecurrenceFrequency.WEEKLY:
            low, high = 0, 7
        elif self.frequency == RecurrenceFrequency.MONTHLY:
            low, high = 1, 31
        else:
            return self
        out_of_range = [d for d in self.days if not low <= d <= high]
        if out_of_range:
            raise ValueError(
                f"{self.frequency.value} days must be between {low} and {high}, got {out_of_range}"
            )
        return self

    @property
    def hour(self) -> int:
        return int(self.time.split(":")[0])

    @property
    def minute(self) -> int:
        return int(self.time.split(":")[1])


# =============================================================================
# Step Definitions (closed tagged union)
# =============================================================================


class _StepBase(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: UUID
    campaign_id: UUID
    position: int
    next_step_id: UUID | None = None


class SendStep(_StepBase):
    kind: Literal["send"] = "send"
    channel: str | None = None  # validated at execution time
    template_id: UUID | None = None


class WaitStep(_StepBase):
    kind: Literal["wait"] = "wait"
    duration_minutes: int | None = Field(default=None, ge=0)
    until_expression: str | None = None


class ConditionStep(_StepBase):
    kind: Literal["condition"] = "condition"
    condition: StepPredicate | None = None


class BranchStep(_StepBase):
    kind: Literal["branch"] = "branch"
    branches: tuple[Branch, ...] = ()


StepDefinition = Annotated[
    Union[SendStep, WaitStep, ConditionStep, BranchStep],
    Field(discriminator="kind"),
]
