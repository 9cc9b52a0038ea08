"""Tests for message sender implementations."""
import json
import uuid

import httpx
import pytest

from clinic_campaigns.db.enums import MessageChannel
from clinic_campaigns.services.message_sender import (
    DryRunMessageSender,
    GatewayMessageSender,
    OutboundMessage,
    select_message_sender,
)
from clinic_campaigns.services.template_rendering import ChannelContent


def _message(channel=MessageChannel.EMAIL) -> OutboundMessage:
    return OutboundMessage(
        tenant_id=uuid.uuid4(),
        recipient_id=uuid.uuid4(),
        channel=channel,
        address="ada@example.test",
        content=ChannelContent(body="Hello Ada", subject="Your visit"),
        correlation_id="action-1",
    )


def _gateway(handler) -> GatewayMessageSender:
    return GatewayMessageSender(
        base_url="https://gateway.test/",
        token="tok",
        transport=httpx.MockTransport(handler),
    )


@pytest.mark.asyncio
async def test_gateway_posts_rendered_message():
    captured = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["url"] = str(request.url)
        captured["auth"] = request.headers.get("Authorization")
        captured["body"] = json.loads(request.content)
        return httpx.Response(200, json={"success": True, "id": "gw-42"})

    outcome = await _gateway(handler).send(_message())

    assert outcome.success is True
    assert outcome.external_id == "gw-42"
    assert captured["url"] == "https://gateway.test/messages"
    assert captured["auth"] == "Bearer tok"
    assert captured["body"]["channel"] == "email"
    assert captured["body"]["to"] == "ada@example.test"
    assert captured["body"]["subject"] == "Your visit"
    assert captured["body"]["correlation_id"] == "action-1"


@pytest.mark.asyncio
async def test_gateway_rejection_keeps_error_code_and_message():
    def handler(request):
        return httpx.Response(
            422,
            json={"success": False, "error_code": "INVALID_NUMBER", "error_message": "Bad number"},
        )

    outcome = await _gateway(handler).send(_message(MessageChannel.SMS))

    assert outcome.success is False
    assert outcome.error_code == "INVALID_NUMBER"
    assert outcome.error_message == "Bad number"


@pytest.mark.asyncio
async def test_gateway_success_flag_false_is_failure():
    def handler(request):
        return httpx.Response(200, json={"success": False, "error": "quota exceeded"})

    outcome = await _gateway(handler).send(_message())

    assert outcome.success is False
    assert outcome.error_code == "HTTP_200"
    assert outcome.error_message == "quota exceeded"


@pytest.mark.asyncio
async def test_gateway_non_json_error_uses_status_code():
    def handler(request):
        return httpx.Response(503, text="upstream unavailable")

    outcome = await _gateway(handler).send(_message())

    assert outcome.success is False
    assert outcome.error_code == "HTTP_503"
    assert outcome.error_message == "upstream unavailable"


@pytest.mark.asyncio
async def test_gateway_timeout_and_transport_errors_do_not_raise():
    def timeout(request):
        raise httpx.ReadTimeout("read timed out", request=request)

    def refused(request):
        raise httpx.ConnectError("connection refused", request=request)

    timed_out = await _gateway(timeout).send(_message())
    unreachable = await _gateway(refused).send(_message())

    assert (timed_out.success, timed_out.error_code) == (False, "TIMEOUT")
    assert (unreachable.success, unreachable.error_code) == (False, "TRANSPORT_ERROR")


@pytest.mark.asyncio
async def test_dry_run_sender_always_succeeds():
    outcome = await DryRunMessageSender().send(_message())

    assert outcome.success is True
    assert outcome.external_id.startswith("dryrun-")


def test_select_message_sender_follows_settings(monkeypatch):
    from clinic_campaigns.core.config import settings

    monkeypatch.setattr(settings, "MESSAGING_GATEWAY_URL", "")
    assert isinstance(select_message_sender(), DryRunMessageSender)

    monkeypatch.setattr(settings, "MESSAGING_GATEWAY_URL", "https://gateway.test")
    sender = select_message_sender()
    assert isinstance(sender, GatewayMessageSender)
    assert sender.base_url == "https://gateway.test"
