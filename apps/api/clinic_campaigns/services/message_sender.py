"""Message sender interface + implementations."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Protocol
from uuid import UUID, uuid4

import httpx

from clinic_campaigns.core.config import settings
from clinic_campaigns.core.structured_logging import mask_address
from clinic_campaigns.db.enums import MessageChannel
from clinic_campaigns.services.template_rendering import ChannelContent

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OutboundMessage:
    tenant_id: UUID
    recipient_id: UUID
    channel: MessageChannel
    address: str
    content: ChannelContent
    correlation_id: str


@dataclass(frozen=True)
class SendOutcome:
    success: bool
    external_id: str | None = None
    error_code: str | None = None
    error_message: str | None = None


class MessageSender(Protocol):
    key: str

    async def send(self, message: OutboundMessage) -> SendOutcome:
        """Deliver a rendered message. Must not raise for transport failures."""


class DryRunMessageSender:
    """Logs messages instead of sending them (no gateway configured)."""

    key = "dry_run"

    async def send(self, message: OutboundMessage) -> SendOutcome:
        logger.info(
            "Dry-run %s message to %s (correlation=%s)",
            message.channel.value,
            mask_address(message.address),
            message.correlation_id,
        )
        return SendOutcome(success=True, external_id=f"dryrun-{uuid4()}")


class GatewayMessageSender:
    """Posts messages to the internal messaging gateway."""

    key = "gateway"

    def __init__(
        self,
        base_url: str,
        token: str = "",
        timeout: float = 15.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.timeout = timeout
        self.transport = transport

    def _payload(self, message: OutboundMessage) -> dict:
        return {
            "tenant_id": str(message.tenant_id),
            "recipient_id": str(message.recipient_id),
            "channel": message.channel.value,
            "to": message.address,
            "subject": message.content.subject,
            "body": message.content.body,
            "html_body": message.content.html_body,
            "correlation_id": message.correlation_id,
        }

    async def send(self, message: OutboundMessage) -> SendOutcome:
        headers = {"Content-Type": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.post(
                    f"{self.base_url}/messages",
                    headers=headers,
                    json=self._payload(message),
                )
        except httpx.TimeoutException as e:
            logger.warning("Messaging gateway timed out (correlation=%s)", message.correlation_id)
            return SendOutcome(success=False, error_code="TIMEOUT", error_message=str(e) or "timeout")
        except httpx.HTTPError as e:
            logger.warning(
                "Messaging gateway transport error (correlation=%s): %s",
                message.correlation_id,
                type(e).__name__,
            )
            return SendOutcome(success=False, error_code="TRANSPORT_ERROR", error_message=str(e))

        data: dict = {}
        try:
            body = response.json()
            if isinstance(body, dict):
                data = body
        except ValueError:
            pass

        if response.is_success and data.get("success", True):
            external_id = data.get("id") or data.get("message_id")
            return SendOutcome(success=True, external_id=str(external_id) if external_id else None)

        return SendOutcome(
            success=False,
            error_code=str(data.get("error_code") or f"HTTP_{response.status_code}"),
            error_message=data.get("error_message") or data.get("error") or response.text or None,
        )


def select_message_sender() -> MessageSender:
    """Gateway sender when configured, otherwise dry-run."""
    if settings.MESSAGING_GATEWAY_URL:
        return GatewayMessageSender(
            base_url=settings.MESSAGING_GATEWAY_URL,
            token=settings.MESSAGING_GATEWAY_TOKEN,
            timeout=settings.MESSAGING_GATEWAY_TIMEOUT_SECONDS,
        )
    return DryRunMessageSender()
