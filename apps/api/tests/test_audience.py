import uuid
from datetime import datetime, timezone

import pytest

from clinic_campaigns.db.enums import MessageChannel
from clinic_campaigns.schemas.campaign import (
    AudienceCriteria,
    HasChannelPredicate,
    OptInPredicate,
    StatusInPredicate,
)
from clinic_campaigns.services.audience_service import AudienceEvaluator, matches
from clinic_campaigns.services.recipient_directory import RecipientProfile, SqlRecipientDirectory


def _recipient(**overrides) -> RecipientProfile:
    values = {
        "id": uuid.uuid4(),
        "tenant_id": uuid.uuid4(),
        "first_name": "Grace",
        "last_name": "Hopper",
        "status": "active",
        "email": "grace@example.test",
        "phone": None,
        "opted_in": True,
    }
    values.update(overrides)
    return RecipientProfile(**values)


def test_empty_include_admits_everyone():
    assert matches(_recipient(), AudienceCriteria(), AudienceCriteria())
    assert matches(_recipient(), None, None)


def test_exclude_wins_over_include():
    include = AudienceCriteria(predicates=(StatusInPredicate(statuses=("active",)),))
    exclude = AudienceCriteria(predicates=(HasChannelPredicate(channel=MessageChannel.EMAIL),))

    assert not matches(_recipient(), include, exclude)


def test_include_predicates_are_anded_and_status_list_is_ored():
    include = AudienceCriteria(
        predicates=(
            StatusInPredicate(statuses=("ACTIVE", "inactive")),
            HasChannelPredicate(channel=MessageChannel.SMS),
        )
    )

    assert not matches(_recipient(), include, None)  # no phone
    assert matches(_recipient(phone="+15550001111"), include, None)
    assert matches(_recipient(phone="+15550001111", status="Inactive"), include, None)
    assert not matches(_recipient(phone="+15550001111", status="archived"), include, None)


def test_inconsistent_record_is_evaluated_field_by_field():
    # Opted out but active: each field stands alone
    recipient = _recipient(opted_in=False, status="active")
    status_only = AudienceCriteria(predicates=(StatusInPredicate(statuses=("active",)),))
    opt_in_only = AudienceCriteria(predicates=(OptInPredicate(opted_in=True),))

    assert matches(recipient, status_only, None)
    assert not matches(recipient, opt_in_only, None)


def test_flat_criteria_json_is_parsed_into_typed_predicates():
    criteria = AudienceCriteria.from_json(
        {"patientStatus": ["ACTIVE"], "hasEmail": True, "hasPhone": False, "communicationOptIn": True}
    )

    kinds = [p.kind for p in criteria.predicates]
    assert kinds == ["status_in", "has_channel", "opt_in"]
    assert criteria.predicates[0].statuses == ("active",)


def test_typed_criteria_json_round_trips_through_model():
    criteria = AudienceCriteria.from_json(
        {"predicates": [{"kind": "has_channel", "channel": "push"}]}
    )

    assert criteria.predicates == (HasChannelPredicate(channel=MessageChannel.PUSH),)
    assert AudienceCriteria.from_json(None).is_empty


def test_in_app_channel_requires_portal_account():
    include = AudienceCriteria(predicates=(HasChannelPredicate(channel=MessageChannel.IN_APP),))

    assert not matches(_recipient(), include, None)
    assert matches(_recipient(has_portal_account=True), include, None)


def test_evaluator_reads_campaign_criteria(make_campaign):
    campaign = make_campaign(
        audience={"patientStatus": ["active"]},
        exclude_criteria={"hasPhone": True},
    )

    include, exclude = AudienceEvaluator().criteria_for(campaign)

    assert include.predicates == (StatusInPredicate(statuses=("active",)),)
    assert exclude.predicates == (HasChannelPredicate(channel=MessageChannel.SMS),)


def test_directory_lists_audience_with_exclusions(db, clinic, make_patient):
    keep = make_patient(phone=None)
    make_patient(phone="+15550009999")  # excluded: has phone
    make_patient(status="archived", phone=None)  # not included
    make_patient(phone=None, deleted_at=datetime.now(timezone.utc))  # soft-deleted

    include = AudienceCriteria.from_json({"patientStatus": ["active"], "hasEmail": True})
    exclude = AudienceCriteria.from_json({"hasPhone": True})

    audience = SqlRecipientDirectory().list_audience(db, clinic.id, include, exclude, limit=100)

    assert [r.id for r in audience] == [keep.id]


def test_directory_audience_respects_limit(db, clinic, make_patient):
    for _ in range(5):
        make_patient()

    audience = SqlRecipientDirectory().list_audience(db, clinic.id, None, None, limit=3)

    assert len(audience) == 3


def test_trigger_data_cannot_replace_patient_or_clinic_variables(db, clinic, patient):
    directory = SqlRecipientDirectory()
    recipient = directory.get_recipient(db, clinic.id, patient.id)

    variables = directory.build_variables(
        db,
        recipient,
        {"patient": {"status": "archived"}, "clinic": "spoofed", "appointmentId": "apt-9"},
    )

    assert variables["patient"]["status"] == "active"
    assert variables["patient"]["first_name"] == "Ada"
    assert variables["clinic"]["name"] == "Bright Smiles"
    assert variables["appointmentId"] == "apt-9"


@pytest.mark.parametrize(
    "channel,field,value",
    [
        (MessageChannel.SMS, "phone", "+15550000001"),
        (MessageChannel.EMAIL, "email", "x@example.test"),
        (MessageChannel.PUSH, "push_token", "tok-1"),
    ],
)
def test_contact_for_channel(channel, field, value):
    recipient = _recipient(**{"email": None, field: value})

    assert recipient.contact_for(channel) == value
