"""GDPR and data-subject-rights enums."""

from enum import Enum


class GdprEventType(str, Enum):
    """Event types recorded in the append-only GDPR audit log."""

    DATA_EXPORT = "data_export"
    DATA_DELETION = "data_deletion"
    CONSENT_UPDATED = "consent_updated"
    RETENTION_ACTION = "retention_action"


class GdprEventStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class ExportFormat(str, Enum):
    JSON = "json"
    CSV = "csv"
    XML = "xml"


class ExportStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    EXPIRED = "expired"


class DeletionStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    COMPLETED = "completed"
    FAILED = "failed"


class RetentionStatus(str, Enum):
    """Where a record sits relative to its retention deadline."""

    COMPLIANT = "compliant"
    UPCOMING = "upcoming"
    IMMEDIATE = "immediate"
