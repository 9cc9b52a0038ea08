"""Tests for event-triggered campaign starts."""
import uuid
from datetime import datetime, timedelta, timezone

from conftest import T0, send_step, wait_step
from clinic_campaigns.db.enums import CampaignStatus, CampaignTriggerType
from clinic_campaigns.db.models import CampaignSend
from clinic_campaigns.services.campaign_events import appointment_booked, build_event


def _booked(patient, **kwargs):
    return appointment_booked(
        patient.clinic_id,
        patient.id,
        appointment_id="apt-1",
        appointment_date=kwargs.pop("appointment_date", datetime(2026, 3, 10, 14, 0, tzinfo=timezone.utc)),
        **kwargs,
    )


def test_event_starts_matching_campaign(db, campaign_engine, make_campaign, template, patient):
    campaign = make_campaign([send_step(template)])

    starts = campaign_engine.route(db, _booked(patient), now=T0)

    assert len(starts) == 1
    start = starts[0]
    assert start.campaign_id == campaign.id
    assert start.recipient_id == patient.id
    assert start.step_id == campaign.steps[0].id
    assert start.due_at == T0

    send = db.get(CampaignSend, start.action_id)
    assert send.origin == "event"
    assert send.trigger_data["appointmentId"] == "apt-1"

    db.refresh(campaign)
    assert campaign.total_recipients == 1


def test_duplicate_event_does_not_double_count(db, campaign_engine, make_campaign, template, patient):
    campaign = make_campaign([send_step(template)])

    first = campaign_engine.route(db, _booked(patient), now=T0)
    second = campaign_engine.route(db, _booked(patient), now=T0 + timedelta(seconds=5))

    assert len(first) == 1
    assert second == []
    db.refresh(campaign)
    assert campaign.total_recipients == 1
    assert db.query(CampaignSend).count() == 1


def test_only_active_event_campaigns_for_the_event_are_started(
    db, campaign_engine, make_campaign, template, patient
):
    make_campaign([send_step(template)], status=CampaignStatus.PAUSED)
    make_campaign([send_step(template)], trigger_event="payment.due")
    make_campaign([send_step(template)], deleted_at=T0)
    make_campaign(
        [send_step(template)],
        trigger_type=CampaignTriggerType.SCHEDULED,
        trigger_schedule=T0,
    )
    listening = make_campaign([send_step(template)])

    starts = campaign_engine.route(db, _booked(patient), now=T0)

    assert [start.campaign_id for start in starts] == [listening.id]


def test_event_for_unknown_or_foreign_recipient_is_ignored(
    db, campaign_engine, make_campaign, template, patient
):
    make_campaign([send_step(template)])

    unknown = build_event("appointment.booked", patient.clinic_id, uuid.uuid4())
    foreign_tenant = build_event("appointment.booked", uuid.uuid4(), patient.id)

    assert campaign_engine.route(db, unknown, now=T0) == []
    assert campaign_engine.route(db, foreign_tenant, now=T0) == []
    assert db.query(CampaignSend).count() == 0


def test_recipient_outside_audience_is_not_started(db, campaign_engine, make_campaign, template, make_patient):
    make_campaign([send_step(template)], audience={"patientStatus": ["ARCHIVED"]})
    patient = make_patient(status="active")

    assert campaign_engine.route(db, _booked(patient), now=T0) == []


def test_invalid_audience_does_not_block_other_campaigns(
    db, campaign_engine, make_campaign, template, patient
):
    make_campaign([send_step(template)], audience={"predicates": [{"kind": "shoe_size"}]})
    healthy = make_campaign([send_step(template)])

    starts = campaign_engine.route(db, _booked(patient), now=T0)

    assert [start.campaign_id for start in starts] == [healthy.id]


def test_leading_waits_are_folded_into_first_due_at(db, campaign_engine, make_campaign, template, patient):
    campaign = make_campaign([wait_step(60), wait_step(30), send_step(template)])

    [start] = campaign_engine.route(db, _booked(patient), now=T0)

    assert start.step_id == campaign.steps[2].id
    assert start.due_at == T0 + timedelta(minutes=90)


def test_wait_until_is_anchored_on_event_data(db, campaign_engine, make_campaign, template, patient):
    make_campaign([wait_step(until="1 day before appointmentDate"), send_step(template)])
    appointment = datetime(2026, 3, 10, 14, 0, tzinfo=timezone.utc)

    [start] = campaign_engine.route(db, _booked(patient, appointment_date=appointment), now=T0)

    assert start.due_at == appointment - timedelta(days=1)


def test_unresolved_wait_fires_immediately(db, campaign_engine, make_campaign, template, patient):
    make_campaign([wait_step(until="2 days before appointmentDate"), send_step(template)])
    event = build_event("appointment.booked", patient.clinic_id, patient.id, {"appointmentId": "x"})

    [start] = campaign_engine.route(db, event, now=T0)

    assert start.due_at == T0


def test_unresolved_wait_can_drop_the_run(db, sender, make_campaign, template, patient):
    from clinic_campaigns.services.campaign_engine import build_campaign_engine

    engine = build_campaign_engine(sender=sender, drop_unresolved_waits=True)
    campaign = make_campaign([wait_step(until="2 days before appointmentDate"), send_step(template)])
    event = build_event("appointment.booked", patient.clinic_id, patient.id)

    assert engine.route(db, event, now=T0) == []
    db.refresh(campaign)
    assert campaign.total_recipients == 0


def test_campaign_without_steps_is_not_started(db, campaign_engine, make_campaign, patient):
    campaign = make_campaign([])

    assert campaign_engine.route(db, _booked(patient), now=T0) == []
    db.refresh(campaign)
    assert campaign.total_recipients == 0
