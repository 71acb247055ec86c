"""Enum definitions for application constants."""

from app.db.enums.auth import RegistrationFailureReason, Role
from app.db.enums.gdpr import (
    DeletionStatus,
    ExportFormat,
    ExportStatus,
    GdprEventStatus,
    GdprEventType,
    RetentionStatus,
)
from app.db.enums.integrations import (
    ConnectionStatus,
    IntegrationProvider,
    WebhookDeliveryStatus,
    ZapierHealth,
    ZapierScope,
    ZapierTriggerType,
)
from app.db.enums.jobs import JobStatus, JobType
from app.db.enums.transcripts import (
    AIProviderName,
    AnalysisStrategy,
    HeatLevel,
    QualityFlagType,
    TranscriptSource,
    TranscriptStatus,
)

__all__ = [
    "AIProviderName",
    "AnalysisStrategy",
    "ConnectionStatus",
    "DeletionStatus",
    "ExportFormat",
    "ExportStatus",
    "GdprEventStatus",
    "GdprEventType",
    "HeatLevel",
    "IntegrationProvider",
    "JobStatus",
    "JobType",
    "QualityFlagType",
    "RegistrationFailureReason",
    "RetentionStatus",
    "Role",
    "TranscriptSource",
    "TranscriptStatus",
    "WebhookDeliveryStatus",
    "ZapierHealth",
    "ZapierScope",
    "ZapierTriggerType",
]
