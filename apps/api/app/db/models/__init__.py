"""SQLAlchemy ORM models."""

from app.db.models.auth import RegistrationFailure, User, UserInvite
from app.db.models.gdpr import (
    DataExportRequest,
    DeletionRequest,
    GdprAuditLog,
    UserConsent,
)
from app.db.models.integrations import (
    IntegrationConnection,
    OAuthState,
    ProcessedWebhookEvent,
)
from app.db.models.jobs import Job
from app.db.models.transcripts import (
    Account,
    AnalysisQualityFlag,
    ConversationAnalysis,
    Prompt,
    Transcript,
)
from app.db.models.zapier import (
    ZapierApiKey,
    ZapierConnectionVerification,
    ZapierWebhook,
    ZapierWebhookLog,
)

__all__ = [
    "Account",
    "AnalysisQualityFlag",
    "ConversationAnalysis",
    "DataExportRequest",
    "DeletionRequest",
    "GdprAuditLog",
    "IntegrationConnection",
    "Job",
    "OAuthState",
    "ProcessedWebhookEvent",
    "Prompt",
    "RegistrationFailure",
    "Transcript",
    "User",
    "UserConsent",
    "UserInvite",
    "ZapierApiKey",
    "ZapierConnectionVerification",
    "ZapierWebhook",
    "ZapierWebhookLog",
]
