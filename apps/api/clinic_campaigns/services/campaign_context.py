"""Per-recipient execution context and step results."""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from functools import cached_property
from types import MappingProxyType
from typing import Any
from uuid import UUID


class StepOutcome(str, Enum):
    SENT = "sent"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class ExecutionContext:
    """
    Ephemeral state for executing one step of one recipient's run.

    trigger_data is frozen when the run starts; variables are resolved on
    first use (recipient + tenant + trigger data merged).
    """

    campaign_id: UUID
    tenant_id: UUID
    recipient_id: UUID
    step_id: UUID
    trigger_data: Mapping[str, Any] = field(default_factory=dict)
    action_id: UUID | None = None
    variables_loader: Callable[[], Mapping[str, Any]] | None = field(
        default=None, repr=False, compare=False
    )

    def __post_init__(self) -> None:
        object.__setattr__(self, "trigger_data", MappingProxyType(dict(self.trigger_data)))

    @cached_property
    def variables(self) -> Mapping[str, Any]:
        if self.variables_loader is None:
            return self.trigger_data
        return MappingProxyType(dict(self.variables_loader()))

    @property
    def correlation_id(self) -> str:
        if self.action_id:
            return str(self.action_id)
        return f"{self.campaign_id}:{self.recipient_id}:{self.step_id}"


@dataclass(frozen=True)
class StepResult:
    """
    Outcome of executing one step.

    ``dispatched`` is True only when a message actually went out; control
    steps (CONDITION, BRANCH, WAIT) resolve as SENT without dispatching.
    """

    outcome: StepOutcome
    advance_to: UUID | None = None
    dispatched: bool = False
    external_message_id: str | None = None
    error_code: str | None = None
    error_message: str | None = None
    skip_reason: str | None = None

    @classmethod
    def advance(cls, advance_to: UUID | None) -> "StepResult":
        return cls(outcome=StepOutcome.SENT, advance_to=advance_to)

    @classmethod
    def skipped(cls, reason: str) -> "StepResult":
        return cls(outcome=StepOutcome.SKIPPED, skip_reason=reason)


@dataclass(frozen=True)
class ExecutionStart:
    """A run started for one recipient (first step enqueued)."""

    campaign_id: UUID
    recipient_id: UUID
    action_id: UUID
    step_id: UUID
    due_at: datetime
