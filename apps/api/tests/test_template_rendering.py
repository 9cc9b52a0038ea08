from types import SimpleNamespace

from clinic_campaigns.db.enums import MessageChannel
from clinic_campaigns.services.template_rendering import (
    channel_content,
    render_channel_content,
    render_text,
)


def _template(**overrides):
    values = {
        "sms_body": "Hi {{patient.first_name}}",
        "email_subject": "Visit at {{ clinic.name }}",
        "email_body": "Dear {{patient.full_name}}",
        "email_html_body": "<p>Dear {{patient.full_name}}</p>",
        "push_title": None,
        "push_body": "",
        "in_app_title": "Hello",
        "in_app_body": "{{unknown}} stays",
    }
    values.update(overrides)
    return SimpleNamespace(**values)


def test_render_text_substitutes_nested_and_flat_variables():
    variables = {"patient": {"first_name": "Ada"}, "appointmentDate": "2026-03-04"}

    assert render_text("Hi {{patient.first_name}} on {{appointmentDate}}", variables) == (
        "Hi Ada on 2026-03-04"
    )


def test_render_text_leaves_unknown_placeholders_and_blanks_none():
    assert render_text("{{missing}} / {{empty}}", {"empty": None}) == "{{missing}} / "
    assert render_text(None, {}) is None


def test_channel_content_selects_fields_per_channel():
    template = _template()

    assert channel_content(template, MessageChannel.SMS).body == "Hi {{patient.first_name}}"
    email = channel_content(template, MessageChannel.EMAIL)
    assert email.subject == "Visit at {{ clinic.name }}"
    assert email.html_body.startswith("<p>")
    assert channel_content(template, MessageChannel.PUSH).is_empty


def test_render_channel_content_renders_every_field():
    variables = {"patient": {"full_name": "Ada Lovelace"}, "clinic": {"name": "Bright Smiles"}}

    content = render_channel_content(_template(), MessageChannel.EMAIL, variables)

    assert content.subject == "Visit at Bright Smiles"
    assert content.body == "Dear Ada Lovelace"
    assert content.html_body == "<p>Dear Ada Lovelace</p>"
