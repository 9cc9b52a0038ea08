"""Read-only view of a campaign's step graph."""

from __future__ import annotations

from dataclasses import dataclass, field
from uuid import UUID

from pydantic import TypeAdapter, ValidationError

from clinic_campaigns.core.exceptions import StepConfigError
from clinic_campaigns.db.enums import CampaignStepType
from clinic_campaigns.db.models import Campaign, CampaignStep
from clinic_campaigns.schemas.campaign import StepDefinition

_step_adapter: TypeAdapter[StepDefinition] = TypeAdapter(StepDefinition)


def step_definition(row: CampaignStep, default_next: UUID | None) -> StepDefinition:
    """
    Convert a stored step row into its typed definition.

    ``default_next`` is used when the row has no explicit next step.
    Raises StepConfigError when the row cannot be interpreted.
    """
    base = {
        "id": row.id,
        "campaign_id": row.campaign_id,
        "position": row.step_order,
        "next_step_id": row.next_step_id or default_next,
    }
    try:
        kind = CampaignStepType(row.step_type)
    except ValueError:
        raise StepConfigError(f"Unknown step type '{row.step_type}'") from None

    match kind:
        case CampaignStepType.SEND:
            data = {**base, "kind": "send", "channel": row.channel, "template_id": row.template_id}
        case CampaignStepType.WAIT:
            data = {
                **base,
                "kind": "wait",
                "duration_minutes": row.wait_duration,
                "until_expression": row.wait_until,
            }
        case CampaignStepType.CONDITION:
            data = {**base, "kind": "condition", "condition": row.condition}
        case CampaignStepType.BRANCH:
            data = {**base, "kind": "branch", "branches": row.branches or ()}

    try:
        return _step_adapter.validate_python(data)
    except ValidationError as exc:
        raise StepConfigError(
            f"Invalid {kind.value} step configuration: {exc.errors()[0]['msg']}"
        ) from exc


@dataclass
class CampaignGraph:
    """
    Ordered steps of one campaign.

    Rows are converted on first access so that one malformed step only
    affects the recipients that reach it.

    A step without an explicit successor falls through to the next step by
    position in linear campaigns. Once a campaign contains a BRANCH, only
    WAIT steps fall through; any other step with no successor ends the run.
    """

    campaign_id: UUID
    rows: list[CampaignStep]
    _by_id: dict[UUID, CampaignStep] = field(init=False, repr=False)
    _defaults: dict[UUID, UUID | None] = field(init=False, repr=False)
    _cache: dict[UUID, StepDefinition] = field(init=False, repr=False, default_factory=dict)

    def __post_init__(self) -> None:
        self.rows = sorted(self.rows, key=lambda row: row.step_order)
        self._by_id = {row.id: row for row in self.rows}
        self._defaults = {}
        branched = any(row.step_type == CampaignStepType.BRANCH.value for row in self.rows)
        for index, row in enumerate(self.rows):
            following = self.rows[index + 1] if index + 1 < len(self.rows) else None
            falls_through = not branched or row.step_type == CampaignStepType.WAIT.value
            self._defaults[row.id] = following.id if following and falls_through else None

    @classmethod
    def from_campaign(cls, campaign: Campaign) -> "CampaignGraph":
        return cls(campaign_id=campaign.id, rows=list(campaign.steps))

    @property
    def is_empty(self) -> bool:
        return not self.rows

    def first_step_id(self) -> UUID | None:
        return self.rows[0].id if self.rows else None

    def has_step(self, step_id: UUID | None) -> bool:
        return step_id is not None and step_id in self._by_id

    def get(self, step_id: UUID) -> StepDefinition:
        if step_id in self._cache:
            return self._cache[step_id]
        row = self._by_id.get(step_id)
        if row is None:
            raise StepConfigError(f"Step {step_id} not found in campaign {self.campaign_id}")
        definition = step_definition(row, self._defaults[step_id])
        self._cache[step_id] = definition
        return definition
