"""Structured logging helpers (PHI-safe)."""

from typing import Any


def build_log_context(
    *,
    tenant_id: str | None = None,
    campaign_id: str | None = None,
    recipient_id: str | None = None,
    action_id: str | None = None,
    step_id: str | None = None,
    route: str | None = None,
) -> dict[str, Any]:
    """Return a PHI-safe log context dict (identifiers only)."""
    context: dict[str, Any] = {}
    if tenant_id:
        context["tenant_id"] = str(tenant_id)
    if campaign_id:
        context["campaign_id"] = str(campaign_id)
    if recipient_id:
        context["recipient_id"] = str(recipient_id)
    if action_id:
        context["action_id"] = str(action_id)
    if step_id:
        context["step_id"] = str(step_id)
    if route:
        context["route"] = route
    return context


def mask_address(address: str | None) -> str:
    """Mask an email address or phone number for log output."""
    if not address:
        return ""
    if "@" in address:
        local, _, domain = address.partition("@")
        prefix = local[:3] if local else ""
        return f"{prefix}...@{domain}" if domain else f"{prefix}..."
    digits = "".join(ch for ch in address if ch.isdigit())
    return f"***{digits[-4:]}" if digits else "***"
