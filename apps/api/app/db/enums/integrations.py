"""Third-party integration enums."""

from enum import Enum


class IntegrationProvider(str, Enum):
    """OAuth providers a user can connect."""

    ZOOM = "zoom"
    SLACK = "slack"
    GITHUB = "github"
    GOOGLE = "google"

    @classmethod
    def has_value(cls, value: str) -> bool:
        return value in cls._value2member_map_


class ConnectionStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    ERROR = "error"


class ZapierTriggerType(str, Enum):
    """Events a Zapier webhook can subscribe to."""

    NEW_ANALYSIS = "new_analysis"
    TRANSCRIPT_UPLOADED = "transcript_uploaded"
    HEAT_LEVEL_CHANGED = "heat_level_changed"
    ACCOUNT_UPDATED = "account_updated"


class WebhookDeliveryStatus(str, Enum):
    PENDING = "pending"
    DELIVERED = "delivered"
    FAILED = "failed"


class ZapierScope(str, Enum):
    READ_ANALYSIS = "read:analysis"
    WEBHOOK_SUBSCRIBE = "webhook:subscribe"


class ZapierHealth(str, Enum):
    """Derived connection status shown on the Zapier settings page."""

    SETUP = "setup"
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    CONNECTED = "connected"
    ERROR = "error"
