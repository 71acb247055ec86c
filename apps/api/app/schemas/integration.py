"""Integration connection schemas."""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel


class ConnectionRead(BaseModel):
    """Connection without credentials."""

    id: UUID
    provider: str
    status: str
    external_account_id: str | None
    account_label: str | None = None
    last_sync_at: datetime | None
    sync_frequency_minutes: int
    last_error: str | None
    token_expires_at: datetime | None = None
    created_at: datetime
    updated_at: datetime


class ConnectResponse(BaseModel):
    authorization_url: str
    state: str
