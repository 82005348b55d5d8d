"""Structured logging helpers (PII-safe)."""

from typing import Any


def build_log_context(
    *,
    org_id: str | None = None,
    quote_id: str | None = None,
    event_id: str | None = None,
    worker_id: str | None = None,
    run_id: int | None = None,
    route: str | None = None,
) -> dict[str, Any]:
    """Return a PII-safe log context dict."""
    context: dict[str, Any] = {}
    if org_id:
        context["org_id"] = str(org_id)
    if quote_id:
        context["quote_id"] = str(quote_id)
    if event_id:
        context["event_id"] = str(event_id)
    if worker_id:
        context["worker_id"] = worker_id
    if run_id is not None:
        context["run_id"] = run_id
    if route:
        context["route"] = route
    return context


def mask_email(email: str | None) -> str:
    """Mask an email for logs: keep the first 3 chars of the local part and the domain."""
    if not email:
        return ""
    local, _, domain = email.partition("@")
    prefix = local[:3] if local else ""
    return f"{prefix}...@{domain}" if domain else f"{prefix}..."
