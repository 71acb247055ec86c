"""Job-related enums."""

from enum import Enum


class JobType(str, Enum):
    """Types of background jobs."""

    TRANSCRIPT_ANALYSIS = "transcript_analysis"
    ZAPIER_WEBHOOK_DELIVERY = "zapier_webhook_delivery"
    SEND_EMAIL = "send_email"
    DATA_EXPORT = "data_export"
    ACCOUNT_DELETION = "account_deletion"
    ZOOM_TRANSCRIPT_IMPORT = "zoom_transcript_import"


class JobStatus(str, Enum):
    """Status of background jobs."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
