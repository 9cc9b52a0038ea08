"""Tests for draining due pending actions and advancing runs."""
import uuid
from datetime import timedelta

import pytest

from conftest import T0, send_step, wait_step
from clinic_campaigns.db.enums import (
    CampaignSendOrigin,
    CampaignSendStatus,
    CampaignStatus,
    CampaignStepType,
)
from clinic_campaigns.db.models import CampaignSend
from clinic_campaigns.services.campaign_context import StepResult
from clinic_campaigns.services.campaign_events import build_event
from clinic_campaigns.services.message_sender import SendOutcome


def _start(db, engine, patient, data=None):
    [start] = engine.route(
        db,
        build_event("appointment.booked", patient.clinic_id, patient.id, data),
        now=T0,
    )
    return start


def _sends(db, status=None):
    query = db.query(CampaignSend)
    if status:
        query = query.filter(CampaignSend.status == status.value)
    return query.order_by(CampaignSend.created_at).all()


def _condition(field, operator, value=None) -> dict:
    return {"field": field, "operator": operator, "value": value}


@pytest.mark.asyncio
async def test_send_then_wait_schedules_successor_after_delay(
    db, campaign_engine, sender, make_campaign, template, patient
):
    campaign = make_campaign([send_step(template), wait_step(120), send_step(template)])
    _start(db, campaign_engine, patient, {"appointmentId": "apt-1"})

    first = await campaign_engine.drain(db, now=T0)

    assert (first.processed, first.sent) == (1, 1)
    [successor] = _sends(db, CampaignSendStatus.PENDING)
    assert successor.step_id == campaign.steps[2].id
    assert successor.scheduled_at == T0 + timedelta(minutes=120)
    assert successor.origin == CampaignSendOrigin.WORKFLOW.value
    assert successor.trigger_data == {"appointmentId": "apt-1"}

    early = await campaign_engine.drain(db, now=T0 + timedelta(minutes=60))
    assert early.processed == 0

    later = await campaign_engine.drain(db, now=T0 + timedelta(minutes=120))
    assert later.sent == 1
    assert len(sender.messages) == 2
    assert _sends(db, CampaignSendStatus.PENDING) == []

    db.refresh(campaign)
    assert (campaign.total_recipients, campaign.total_sent, campaign.total_failed) == (1, 2, 0)


@pytest.mark.asyncio
async def test_paused_campaign_cancels_pending_actions(
    db, campaign_engine, sender, make_campaign, template, patient
):
    campaign = make_campaign([send_step(template)])
    start = _start(db, campaign_engine, patient)
    campaign.status = CampaignStatus.PAUSED.value
    db.commit()

    result = await campaign_engine.drain(db, now=T0)

    assert result.cancelled == 1
    send = db.get(CampaignSend, start.action_id)
    assert send.status == CampaignSendStatus.CANCELLED.value
    assert send.skip_reason == "Campaign no longer active"
    assert sender.messages == []


@pytest.mark.asyncio
async def test_deleted_campaign_cancels_pending_actions(
    db, campaign_engine, make_campaign, template, patient
):
    campaign = make_campaign([send_step(template)])
    _start(db, campaign_engine, patient)
    campaign.deleted_at = T0
    db.commit()

    result = await campaign_engine.drain(db, now=T0)

    assert result.cancelled == 1


@pytest.mark.asyncio
async def test_condition_without_successor_ends_run(
    db, campaign_engine, sender, make_campaign, template, patient
):
    campaign = make_campaign(
        [
            send_step(template),
            {
                "step_type": CampaignStepType.CONDITION,
                "condition": _condition("patient.status", "eq", "active"),
            },
        ]
    )
    _start(db, campaign_engine, patient)

    await campaign_engine.drain(db, now=T0)
    result = await campaign_engine.drain(db, now=T0)

    assert result.processed == 1
    assert result.sent == 0
    sends = _sends(db)
    assert [s.status for s in sends] == ["sent", "sent"]
    assert sends[1].step_id == campaign.steps[1].id
    assert sends[1].message_id is None
    db.refresh(campaign)
    assert campaign.total_sent == 1


@pytest.mark.asyncio
async def test_failed_condition_skips_and_stops(
    db, campaign_engine, sender, make_campaign, template, patient
):
    make_campaign(
        [
            {
                "step_type": CampaignStepType.CONDITION,
                "condition": _condition("appointmentType", "eq", "surgery"),
            },
            send_step(template),
        ]
    )
    _start(db, campaign_engine, patient, {"appointmentType": "cleaning"})

    result = await campaign_engine.drain(db, now=T0)

    assert result.skipped == 1
    [send] = _sends(db)
    assert send.status == CampaignSendStatus.SKIPPED.value
    assert send.skip_reason == "Condition not met"
    assert sender.messages == []


@pytest.mark.asyncio
async def test_branch_routes_to_first_true_target(
    db, campaign_engine, make_campaign, make_template, patient
):
    step_a, step_b, step_c = uuid.uuid4(), uuid.uuid4(), uuid.uuid4()
    template_a = make_template(name="A")
    template_b = make_template(name="B")
    template_c = make_template(name="C")
    make_campaign(
        [
            {
                "step_type": CampaignStepType.BRANCH,
                "next_step_id": step_c,
                "branches": [
                    {
                        "condition": _condition("appointmentType", "eq", "surgery"),
                        "next_step_id": str(step_a),
                    },
                    {
                        "condition": _condition("patient.status", "eq", "active"),
                        "next_step_id": str(step_b),
                    },
                ],
            },
            send_step(template_a, id=step_a),
            send_step(template_b, id=step_b),
            send_step(template_c, id=step_c),
        ]
    )
    _start(db, campaign_engine, patient, {"appointmentType": "cleaning"})

    await campaign_engine.drain(db, now=T0)

    [pending] = _sends(db, CampaignSendStatus.PENDING)
    assert pending.step_id == step_b


@pytest.mark.asyncio
async def test_send_failure_counts_and_ends_run(
    db, campaign_engine, sender, make_campaign, template, patient
):
    sender.failure = SendOutcome(success=False, error_code="30006", error_message="Landline")
    campaign = make_campaign([send_step(template), send_step(template)])
    _start(db, campaign_engine, patient)

    result = await campaign_engine.drain(db, now=T0)

    assert result.failed == 1
    [send] = _sends(db)
    assert (send.status, send.error_code, send.error_message) == ("failed", "30006", "Landline")
    db.refresh(campaign)
    assert (campaign.total_sent, campaign.total_failed) == (0, 1)


@pytest.mark.asyncio
async def test_recipient_removed_after_start_is_skipped(
    db, campaign_engine, make_campaign, template, patient
):
    make_campaign([send_step(template)])
    _start(db, campaign_engine, patient)
    patient.deleted_at = T0
    db.commit()

    result = await campaign_engine.drain(db, now=T0)

    assert result.skipped == 1
    assert _sends(db)[0].skip_reason == "Recipient not found"


@pytest.mark.asyncio
async def test_uninterpretable_step_is_skipped(db, campaign_engine, make_campaign, template, patient):
    campaign = make_campaign([send_step(template), {"step_type": "fax_blast"}])
    campaign_engine.scheduler.enqueue(
        db,
        tenant_id=campaign.clinic_id,
        campaign_id=campaign.id,
        step_id=campaign.steps[1].id,
        patient_id=patient.id,
        due_at=T0,
    )

    result = await campaign_engine.drain(db, now=T0)

    assert result.skipped == 1
    assert _sends(db)[0].skip_reason == "Unknown step type 'fax_blast'"


@pytest.mark.asyncio
async def test_action_resolved_elsewhere_is_not_counted_twice(
    db, campaign_engine, make_campaign, template, patient, monkeypatch
):
    campaign = make_campaign([send_step(template), send_step(template)])
    start = _start(db, campaign_engine, patient)
    interpreter = campaign_engine.processor.interpreter
    real_execute = interpreter.execute

    async def racing_execute(db, step, context, recipient):
        result = await real_execute(db, step, context, recipient)
        # another worker got there first
        campaign_engine.scheduler.resolve(db, start.action_id, StepResult.skipped("raced"), T0)
        return result

    monkeypatch.setattr(interpreter, "execute", racing_execute)

    result = await campaign_engine.drain(db, now=T0)

    assert result.processed == 0
    db.refresh(campaign)
    assert campaign.total_sent == 0
    assert [s.status for s in _sends(db)] == ["skipped"]


@pytest.mark.asyncio
async def test_unexpected_error_is_isolated_per_action(
    db, campaign_engine, sender, make_campaign, template, make_patient, monkeypatch
):
    make_campaign([send_step(template)])
    broken = make_patient()
    healthy = make_patient()
    _start(db, campaign_engine, broken)
    _start(db, campaign_engine, healthy)
    interpreter = campaign_engine.processor.interpreter
    real_execute = interpreter.execute

    async def flaky_execute(db, step, context, recipient):
        if recipient.id == broken.id:
            raise RuntimeError("unexpected")
        return await real_execute(db, step, context, recipient)

    monkeypatch.setattr(interpreter, "execute", flaky_execute)

    result = await campaign_engine.drain(db, now=T0)

    assert (result.errors, result.sent) == (1, 1)
    statuses = {s.patient_id: s.status for s in _sends(db)}
    assert statuses[broken.id] == CampaignSendStatus.PENDING.value
    assert statuses[healthy.id] == CampaignSendStatus.SENT.value


@pytest.mark.asyncio
async def test_drain_respects_limit(db, campaign_engine, make_campaign, template, make_patient):
    make_campaign([send_step(template)])
    for _ in range(3):
        _start(db, campaign_engine, make_patient())

    result = await campaign_engine.drain(db, limit=2, now=T0)

    assert result.processed == 2
    assert len(_sends(db, CampaignSendStatus.PENDING)) == 1


def _bodies(sender) -> list[str]:
    return [message.content.body for message in sender.messages]


async def _drain_all(db, engine, rounds=4):
    for _ in range(rounds):
        await engine.drain(db, now=T0)


@pytest.mark.asyncio
async def test_branch_target_without_successor_ends_run(
    db, campaign_engine, sender, make_campaign, make_template, patient
):
    step_a, step_b = uuid.uuid4(), uuid.uuid4()
    make_campaign(
        [
            {
                "step_type": CampaignStepType.BRANCH,
                "branches": [
                    {
                        "condition": _condition("patient.status", "eq", "active"),
                        "next_step_id": str(step_a),
                    },
                    {
                        "condition": _condition("patient.status", "eq", "inactive"),
                        "next_step_id": str(step_b),
                    },
                ],
            },
            send_step(make_template(sms_body="branch A"), id=step_a),
            send_step(make_template(sms_body="branch B"), id=step_b),
        ]
    )
    _start(db, campaign_engine, patient)

    await _drain_all(db, campaign_engine)

    assert _bodies(sender) == ["branch A"]
    assert _sends(db, CampaignSendStatus.PENDING) == []


@pytest.mark.asyncio
async def test_branch_without_match_or_default_ends_run(
    db, campaign_engine, sender, make_campaign, make_template, patient
):
    make_campaign(
        [
            {
                "step_type": CampaignStepType.BRANCH,
                "next_step_id": None,
                "branches": [
                    {
                        "condition": _condition("patient.status", "eq", "archived"),
                        "next_step_id": str(uuid.uuid4()),
                    },
                ],
            },
            send_step(make_template(sms_body="after branch")),
        ]
    )
    _start(db, campaign_engine, patient)

    await _drain_all(db, campaign_engine)

    assert sender.messages == []
    assert _sends(db, CampaignSendStatus.PENDING) == []


@pytest.mark.asyncio
async def test_wait_inside_branch_keeps_positional_successor(
    db, campaign_engine, sender, make_campaign, make_template, patient
):
    step_a, step_b = uuid.uuid4(), uuid.uuid4()
    make_campaign(
        [
            {
                "step_type": CampaignStepType.BRANCH,
                "next_step_id": step_b,
                "branches": [
                    {
                        "condition": _condition("patient.status", "eq", "active"),
                        "next_step_id": str(step_a),
                    },
                ],
            },
            wait_step(0, id=step_a),
            send_step(make_template(sms_body="after wait")),
            send_step(make_template(sms_body="default"), id=step_b),
        ]
    )
    _start(db, campaign_engine, patient)

    await _drain_all(db, campaign_engine)

    assert _bodies(sender) == ["after wait"]
