"""Channel content selection and {{variable}} substitution for campaign templates."""

from __future__ import annotations

import re
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from clinic_campaigns.db.enums import MessageChannel
from clinic_campaigns.services.campaign_conditions import MISSING, get_nested_value

VARIABLE_PATTERN = re.compile(r"\{\{\s*([\w.]+)\s*\}\}")


@dataclass(frozen=True)
class ChannelContent:
    body: str | None
    subject: str | None = None
    html_body: str | None = None

    @property
    def is_empty(self) -> bool:
        return not (self.body and self.body.strip())


def render_text(text: str | None, variables: Mapping[str, Any]) -> str | None:
    """
    Replace {{name}} / {{patient.first_name}} placeholders.

    Unknown placeholders are left verbatim; None values render as "".
    """
    if text is None:
        return None

    def replace_var(match: re.Match) -> str:
        value = get_nested_value(variables, match.group(1))
        if value is MISSING:
            return match.group(0)
        if value is None:
            return ""
        return str(value)

    return VARIABLE_PATTERN.sub(replace_var, text)


def channel_content(template, channel: MessageChannel) -> ChannelContent:
    """Pick the template fields used by a channel."""
    match channel:
        case MessageChannel.SMS:
            return ChannelContent(body=template.sms_body)
        case MessageChannel.EMAIL:
            return ChannelContent(
                body=template.email_body,
                subject=template.email_subject or None,
                html_body=template.email_html_body or None,
            )
        case MessageChannel.PUSH:
            return ChannelContent(body=template.push_body, subject=template.push_title or None)
        case MessageChannel.IN_APP:
            return ChannelContent(body=template.in_app_body, subject=template.in_app_title or None)
    return ChannelContent(body=None)


def render_channel_content(
    template,
    channel: MessageChannel,
    variables: Mapping[str, Any],
) -> ChannelContent:
    content = channel_content(template, channel)
    return ChannelContent(
        body=render_text(content.body, variables),
        subject=render_text(content.subject, variables),
        html_body=render_text(content.html_body, variables),
    )
