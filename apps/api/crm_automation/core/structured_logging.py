"""Structured logging helpers (token-safe)."""

from typing import Any


def build_log_context(
    *,
    automation_id: str | None = None,
    user_id: str | None = None,
    webhook_id: str | None = None,
    event: str | None = None,
    route: str | None = None,
) -> dict[str, Any]:
    """Return a log context dict containing only the provided fields."""
    context: dict[str, Any] = {}
    if automation_id:
        context["automation_id"] = str(automation_id)
    if user_id:
        context["user_id"] = str(user_id)
    if webhook_id:
        context["webhook_id"] = webhook_id
    if event:
        context["event"] = event
    if route:
        context["route"] = route
    return context


def mask_email(email: str | None) -> str:
    """Mask an email address for logs: 'sal...@bigcorp.com'."""
    if not email:
        return ""
    local, _, domain = email.partition("@")
    prefix = local[:3] if local else ""
    return f"{prefix}...@{domain}" if domain else f"{prefix}..."
