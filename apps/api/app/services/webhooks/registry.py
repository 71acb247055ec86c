"""Webhook handler registry."""

from __future__ import annotations

from app.services.webhooks.base import WebhookHandler
from app.services.webhooks.zoom import ZoomWebhookHandler

_HANDLERS: dict[str, WebhookHandler] = {
    "zoom": ZoomWebhookHandler(),
}


def get_handler(name: str) -> WebhookHandler:
    handler = _HANDLERS.get(name)
    if not handler:
        raise KeyError(f"Unknown webhook handler: {name}")
    return handler
