"""Resolution of WAIT steps into due-at timestamps."""

from __future__ import annotations

import logging
import re
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from typing import Any

from clinic_campaigns.db.types import ensure_utc
from clinic_campaigns.schemas.campaign import WaitStep
from clinic_campaigns.services.campaign_conditions import MISSING, get_nested_value

logger = logging.getLogger(__name__)

# "2 days before appointmentDate", "30 minutes after payment.dueDate"
WAIT_EXPRESSION_PATTERN = re.compile(
    r"^\s*(\d+)\s+(day|hour|minute)s?\s+(before|after)\s+([\w.]+)\s*$",
    re.IGNORECASE,
)

_UNIT_DELTAS = {
    "day": timedelta(days=1),
    "hour": timedelta(hours=1),
    "minute": timedelta(minutes=1),
}


@dataclass(frozen=True)
class WaitExpression:
    amount: int
    unit: str
    direction: str
    field: str

    @property
    def offset(self) -> timedelta:
        delta = _UNIT_DELTAS[self.unit] * self.amount
        return -delta if self.direction == "before" else delta


@dataclass(frozen=True)
class WaitResolution:
    """Due-at for the step behind a WAIT; unresolved means the fallback applied."""

    due_at: datetime
    resolved: bool = True
    reason: str | None = None


def parse_wait_expression(expression: str) -> WaitExpression | None:
    match = WAIT_EXPRESSION_PATTERN.match(expression or "")
    if not match:
        return None
    amount, unit, direction, field = match.groups()
    return WaitExpression(
        amount=int(amount),
        unit=unit.lower(),
        direction=direction.lower(),
        field=field,
    )


def coerce_datetime(value: Any) -> datetime | None:
    """Interpret a trigger-data value as a UTC datetime."""
    if isinstance(value, datetime):
        return ensure_utc(value)
    if isinstance(value, date):
        return datetime.combine(value, time.min, tzinfo=timezone.utc)
    if isinstance(value, str) and value.strip():
        raw = value.strip()
        if raw.endswith("Z"):
            raw = raw[:-1] + "+00:00"
        try:
            return ensure_utc(datetime.fromisoformat(raw))
        except ValueError:
            return None
    return None


def resolve_wait(
    step: WaitStep,
    trigger_data: Mapping[str, Any],
    base: datetime,
) -> WaitResolution:
    """
    Compute when the successor of a WAIT step becomes due.

    A fixed duration is relative to ``base`` (the moment of scheduling). A
    relative expression is anchored on a trigger-data field; when the
    expression or the field cannot be interpreted the result is marked
    unresolved and falls back to ``base`` (fire immediately).
    """
    if step.duration_minutes:
        return WaitResolution(due_at=base + timedelta(minutes=step.duration_minutes))

    if not step.until_expression:
        return WaitResolution(due_at=base)

    expression = parse_wait_expression(step.until_expression)
    if expression is None:
        return WaitResolution(
            due_at=base,
            resolved=False,
            reason=f"Unparsable wait expression '{step.until_expression}'",
        )

    raw = get_nested_value(trigger_data, expression.field)
    anchor = None if raw is MISSING else coerce_datetime(raw)
    if anchor is None:
        return WaitResolution(
            due_at=base,
            resolved=False,
            reason=f"Trigger field '{expression.field}' missing or not a date",
        )

    return WaitResolution(due_at=anchor + expression.offset)
