"""Structured logging helpers (no transcript text or raw emails)."""

from typing import Any


def build_log_context(
    *,
    user_id: str | None = None,
    job_id: str | None = None,
    job_type: str | None = None,
    route: str | None = None,
    method: str | None = None,
) -> dict[str, Any]:
    """Return a log `extra` dict containing only identifiers."""
    context: dict[str, Any] = {}
    if user_id:
        context["user_id"] = user_id
    if job_id:
        context["job_id"] = job_id
    if job_type:
        context["job_type"] = job_type
    if route:
        context["route"] = route
    if method:
        context["method"] = method
    return context
