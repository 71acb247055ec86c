"""Transcript and analysis enums."""

from enum import Enum


class TranscriptStatus(str, Enum):
    """Lifecycle of an uploaded transcript."""

    UPLOADED = "uploaded"
    PROCESSING = "processing"
    COMPLETED = "completed"
    ERROR = "error"


class TranscriptSource(str, Enum):
    UPLOAD = "upload"
    PASTE = "paste"
    ZOOM = "zoom"


class HeatLevel(str, Enum):
    """Deal heat attached to an analysis."""

    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"


class AnalysisStrategy(str, Enum):
    """Chosen from meeting duration."""

    SINGLE_PASS = "single_pass"
    SMART_CHUNKING = "smart_chunking"
    HIERARCHICAL = "hierarchical"


class AIProviderName(str, Enum):
    """Stored on prompts and analyses (`claude` kept for existing rows)."""

    OPENAI = "openai"
    CLAUDE = "claude"


class QualityFlagType(str, Enum):
    """Reasons an analysis is queued for human review."""

    FABRICATED_QUOTES = "fabricated_quotes"
    MISSING_FIELDS = "missing_fields"
    SCHEMA_INVALID = "schema_invalid"
