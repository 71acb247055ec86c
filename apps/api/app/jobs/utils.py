"""Shared helpers for worker job handlers."""

from __future__ import annotations

from urllib.parse import urlsplit

from app.services.audit_service import hash_email


def mask_email(email: str | None) -> str:
    if not email:
        return ""
    return hash_email(email)


def safe_url(url: str | None) -> str:
    """URL without query string or fragment (Zoom download tokens live there)."""
    if not url:
        return ""
    parts = urlsplit(url)
    return f"{parts.scheme}://{parts.netloc}{parts.path}"
