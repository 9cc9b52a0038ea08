"""
Test configuration and fixtures.

Provides:
- Fresh SQLite database per test (schema created and dropped around it)
- Clinic / patient / template / campaign factories
- A recording message sender and an engine wired to it
- HTTPX AsyncClient bound to an app using that engine
"""
import os
import uuid
from datetime import datetime, timezone
from typing import AsyncGenerator, Generator

import pytest
from httpx import AsyncClient, ASGITransport
from sqlalchemy.orm import Session

# Tests always run against SQLite unless a dedicated test database is given
os.environ["DATABASE_URL"] = os.environ.get("TEST_DATABASE_URL", "sqlite://")
os.environ.setdefault("MESSAGING_GATEWAY_URL", "")

from clinic_campaigns.core.deps import get_db
from clinic_campaigns.db.base import Base
from clinic_campaigns.db.enums import (
    CampaignStatus,
    CampaignStepType,
    CampaignTriggerType,
    MessageChannel,
)
from clinic_campaigns.db.models import (
    Campaign,
    CampaignStep,
    Clinic,
    MessageTemplate,
    Patient,
)
from clinic_campaigns.db.session import SessionLocal, engine
from clinic_campaigns.main import create_app
from clinic_campaigns.services.campaign_engine import CampaignEngine, build_campaign_engine
from clinic_campaigns.services.message_sender import OutboundMessage, SendOutcome

T0 = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)  # a Monday


# =============================================================================
# Database Fixtures
# =============================================================================

@pytest.fixture(scope="function")
def db() -> Generator[Session, None, None]:
    """
    Creates a session over a freshly created schema.

    App code commits freely; the schema is dropped after the test.
    """
    Base.metadata.create_all(engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(engine)


@pytest.fixture(scope="function")
def clinic(db: Session) -> Clinic:
    """Create a test clinic (tenant)."""
    clinic = Clinic(
        id=uuid.uuid4(),
        name="Bright Smiles",
        phone="+15550000000",
        email="front-desk@brightsmiles.test",
        timezone="UTC",
    )
    db.add(clinic)
    db.commit()
    return clinic


@pytest.fixture(scope="function")
def make_patient(db: Session, clinic: Clinic):
    """Factory for patients of the test clinic."""

    def _make(**overrides) -> Patient:
        values = {
            "id": uuid.uuid4(),
            "clinic_id": clinic.id,
            "first_name": "Ada",
            "last_name": "Lovelace",
            "email": f"ada-{uuid.uuid4().hex[:8]}@example.test",
            "phone": "+15551234567",
            "status": "active",
            "marketing_opt_in": True,
        }
        values.update(overrides)
        patient = Patient(**values)
        db.add(patient)
        db.commit()
        return patient

    return _make


@pytest.fixture(scope="function")
def patient(make_patient) -> Patient:
    return make_patient()


@pytest.fixture(scope="function")
def make_template(db: Session, clinic: Clinic):
    """Factory for message templates (all channels filled unless overridden)."""

    def _make(**overrides) -> MessageTemplate:
        values = {
            "id": uuid.uuid4(),
            "clinic_id": clinic.id,
            "name": "Reminder",
            "sms_body": "Hi {{patient.first_name}}, see you soon at {{clinic.name}}.",
            "email_subject": "Your visit, {{patient.first_name}}",
            "email_body": "Hello {{patient.full_name}}",
            "push_title": "Reminder",
            "push_body": "See you soon",
            "in_app_title": "Reminder",
            "in_app_body": "See you soon",
        }
        values.update(overrides)
        template = MessageTemplate(**values)
        db.add(template)
        db.commit()
        return template

    return _make


@pytest.fixture(scope="function")
def template(make_template) -> MessageTemplate:
    return make_template()


@pytest.fixture(scope="function")
def make_campaign(db: Session, clinic: Clinic):
    """
    Factory for campaigns with steps.

    steps: list of dicts of CampaignStep columns; step_order follows list
    order unless given. Strings are accepted for step_type/channel.
    """

    def _make(
        steps: list[dict] | None = None,
        *,
        trigger_type: CampaignTriggerType = CampaignTriggerType.EVENT,
        trigger_event: str | None = "appointment.booked",
        status: CampaignStatus = CampaignStatus.ACTIVE,
        **overrides,
    ) -> Campaign:
        campaign = Campaign(
            id=uuid.uuid4(),
            clinic_id=clinic.id,
            name="Test Campaign",
            status=status.value,
            trigger_type=trigger_type.value,
            trigger_event=trigger_event if trigger_type == CampaignTriggerType.EVENT else None,
            **overrides,
        )
        db.add(campaign)
        db.flush()
        for index, step in enumerate(steps or []):
            values = {"id": uuid.uuid4(), "step_order": index + 1, **step}
            for key in ("step_type", "channel"):
                if hasattr(values.get(key), "value"):
                    values[key] = values[key].value
            db.add(CampaignStep(campaign_id=campaign.id, **values))
        db.commit()
        db.refresh(campaign)
        return campaign

    return _make


def send_step(template: MessageTemplate, channel: MessageChannel = MessageChannel.SMS, **extra) -> dict:
    return {
        "step_type": CampaignStepType.SEND,
        "channel": channel,
        "template_id": template.id,
        **extra,
    }


def wait_step(minutes: int | None = None, until: str | None = None, **extra) -> dict:
    return {
        "step_type": CampaignStepType.WAIT,
        "wait_duration": minutes,
        "wait_until": until,
        **extra,
    }


# =============================================================================
# Engine Fixtures
# =============================================================================

class RecordingSender:
    """Message sender double that records every message."""

    key = "recording"

    def __init__(self):
        self.messages: list[OutboundMessage] = []
        self.failure: SendOutcome | None = None

    async def send(self, message: OutboundMessage) -> SendOutcome:
        self.messages.append(message)
        if self.failure is not None:
            return self.failure
        return SendOutcome(success=True, external_id=f"msg-{len(self.messages)}")


@pytest.fixture(scope="function")
def sender() -> RecordingSender:
    return RecordingSender()


@pytest.fixture(scope="function")
def campaign_engine(sender: RecordingSender) -> CampaignEngine:
    return build_campaign_engine(sender=sender, drop_unresolved_waits=False)


# =============================================================================
# Client Fixtures
# =============================================================================

@pytest.fixture(scope="function")
async def client(db: Session, campaign_engine: CampaignEngine) -> AsyncGenerator[AsyncClient, None]:
    """AsyncClient for an app wired to the test engine and session."""
    app = create_app(campaign_engine)

    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test"
    ) as c:
        yield c

    app.dependency_overrides.clear()
