"""Transcript file validation, security scanning and text extraction."""

from __future__ import annotations

import io
import logging
import re
import unicodedata
from dataclasses import dataclass, field
from pathlib import PurePath
from zipfile import BadZipFile

from docx import Document
from docx.opc.exceptions import PackageNotFoundError

logger = logging.getLogger(__name__)

MAX_FILE_SIZE_BYTES = 10 * 1024 * 1024  # 10MB
MAX_TRANSCRIPT_CHARS = 1_000_000
MAX_FILENAME_LENGTH = 255
DEFAULT_FILENAME = "transcript.txt"

DOCX_CONTENT_TYPE = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"

ALLOWED_EXTENSIONS: dict[str, str] = {
    ".txt": "text/plain",
    ".vtt": "text/vtt",
    ".docx": DOCX_CONTENT_TYPE,
}

BINARY_SIGNATURES: dict[str, bytes] = {
    "PNG": b"\x89PNG",
    "JPEG": b"\xff\xd8\xff",
    "GIF": b"GIF8",
    "PDF": b"%PDF",
    "EXE": b"MZ",
    "ELF": b"\x7fELF",
}
ZIP_SIGNATURES = (b"PK\x03\x04", b"PK\x05\x06", b"PK\x07\x08")

DANGEROUS_PATTERNS = [
    re.compile(r"<script[^>]*>", re.IGNORECASE),
    re.compile(r"javascript:", re.IGNORECASE),
    re.compile(r"vbscript:", re.IGNORECASE),
    re.compile(r"on\w+\s*=", re.IGNORECASE),
    re.compile(r"eval\s*\(", re.IGNORECASE),
    re.compile(r"document\.cookie", re.IGNORECASE),
    re.compile(r"window\.location", re.IGNORECASE),
    re.compile(r"setTimeout\s*\(", re.IGNORECASE),
    re.compile(r"setInterval\s*\(", re.IGNORECASE),
    re.compile(r"innerHTML", re.IGNORECASE),
    re.compile(r"outerHTML", re.IGNORECASE),
    re.compile(r"document\.write", re.IGNORECASE),
]
EXECUTABLE_EXTENSIONS = (".exe", ".bat", ".cmd", ".com", ".pif", ".scr", ".vbs", ".js")
SPECIAL_CHARS_RE = re.compile(r"[!@#$%^&*(){}\[\]<>/\\|]")
SPECIAL_CHAR_RATIO_LIMIT = 0.3
LONG_LINE_LIMIT = 10_000
SAFE_SCORE_THRESHOLD = 70

ILLEGAL_FILENAME_CHARS_RE = re.compile(r'[<>:"|?*\x00-\x1f\x7f]')
VTT_TIMING_RE = re.compile(r"^\d{1,2}:\d{2}(:\d{2})?[.,]\d{3}\s+-->\s+")
VTT_VOICE_RE = re.compile(r"^<v(?:\.[^\s>]+)?\s+([^>]+)>(.*?)(?:</v>)?$")


class TranscriptFileError(ValueError):
    """Upload rejected; status_code is what the API should return."""

    def __init__(self, message: str, status_code: int = 422):
        super().__init__(message)
        self.status_code = status_code


@dataclass
class SecurityThreat:
    type: str
    severity: str  # low, medium, high
    description: str
    pattern: str | None = None


@dataclass
class ContentScanResult:
    safe: bool
    security_score: int
    threats: list[SecurityThreat] = field(default_factory=list)

    @property
    def has_high_severity(self) -> bool:
        return any(t.severity == "high" for t in self.threats)


@dataclass
class ExtractedTranscript:
    filename: str
    content_type: str
    text: str
    warnings: list[str] = field(default_factory=list)


def sanitize_file_name(file_name: str | None) -> str:
    """Strip traversal, illegal characters and separators; cap length keeping the extension."""
    sanitized = (file_name or "").replace("..", "")
    sanitized = ILLEGAL_FILENAME_CHARS_RE.sub("", sanitized)
    sanitized = re.sub(r"[/\\]", "", sanitized)

    if len(sanitized) > MAX_FILENAME_LENGTH:
        dot = sanitized.rfind(".")
        extension = sanitized[dot:] if dot > 0 else ""
        sanitized = sanitized[: MAX_FILENAME_LENGTH - len(extension)] + extension

    if not sanitized.strip():
        return DEFAULT_FILENAME
    return sanitized


def get_extension(file_name: str) -> str:
    return PurePath(file_name).suffix.lower()


def check_file_signature(data: bytes, extension: str) -> str | None:
    """Return an error message when the leading bytes contradict the extension."""
    header = data[:16]
    if extension == ".docx":
        if not header.startswith(ZIP_SIGNATURES):
            return "File signature does not match DOCX format"
        return None

    for name, signature in BINARY_SIGNATURES.items():
        if header.startswith(signature):
            return f"File appears to be binary ({name}) but was uploaded as text"
    return None


def scan_content(content: str, file_name: str) -> ContentScanResult:
    """
    Heuristic scan for script injection and obfuscation.

    Starts at 100; the file is safe at 70 or above.
    """
    score = 100
    threats: list[SecurityThreat] = []

    for pattern in DANGEROUS_PATTERNS:
        if pattern.search(content):
            score -= 20
            threats.append(
                SecurityThreat(
                    type="suspicious_script",
                    severity="medium",
                    description="Potentially malicious script pattern detected",
                    pattern=pattern.pattern,
                )
            )

    # Only dotted segments count, so "call.comments.txt" is not ".com"
    name_segments = {f".{segment}" for segment in file_name.lower().split(".")[1:]}
    for ext in EXECUTABLE_EXTENSIONS:
        if ext in name_segments:
            score -= 50
            threats.append(
                SecurityThreat(
                    type="executable_pattern",
                    severity="high",
                    description=f"Filename contains executable extension: {ext}",
                )
            )

    if content:
        ratio = len(SPECIAL_CHARS_RE.findall(content)) / len(content)
        if ratio > SPECIAL_CHAR_RATIO_LIMIT:
            score -= 15
            threats.append(
                SecurityThreat(
                    type="high_special_char_ratio",
                    severity="low",
                    description="High ratio of special characters detected (possible obfuscation)",
                )
            )

    lines = content.split("\n")
    if len(lines) == 1 and len(lines[0]) > LONG_LINE_LIMIT:
        score -= 10
        threats.append(
            SecurityThreat(
                type="single_long_line",
                severity="low",
                description="File contains a single very long line (possible obfuscation)",
            )
        )

    return ContentScanResult(
        safe=score >= SAFE_SCORE_THRESHOLD,
        security_score=max(0, score),
        threats=threats,
    )


def extract_docx_text(data: bytes) -> str:
    try:
        document = Document(io.BytesIO(data))
    except (BadZipFile, PackageNotFoundError, KeyError, ValueError) as exc:
        raise TranscriptFileError("Could not read DOCX file") from exc
    return "\n".join(p.text for p in document.paragraphs).strip()


def vtt_to_text(content: str) -> str:
    """
    Flatten WebVTT captions into "Speaker: text" lines.

    Drops the header, cue numbers, timings and NOTE blocks; merges
    consecutive cues from the same speaker.
    """
    output: list[str] = []
    in_note = False
    for raw_line in content.splitlines():
        line = raw_line.strip()
        if not line:
            in_note = False
            continue
        if in_note:
            continue
        if line.startswith("WEBVTT"):
            continue
        if line.startswith("NOTE"):
            in_note = True
            continue
        if line.isdigit() or VTT_TIMING_RE.match(line):
            continue

        voice = VTT_VOICE_RE.match(line)
        if voice:
            line = f"{voice.group(1).strip()}: {voice.group(2).strip()}"

        speaker, sep, text = line.partition(": ")
        if (
            sep
            and output
            and output[-1].startswith(f"{speaker}: ")
        ):
            output[-1] = f"{output[-1]} {text}"
        else:
            output.append(line)
    return "\n".join(output)


def normalize_text(text: str) -> str:
    text = unicodedata.normalize("NFC", text.replace("\r\n", "\n").replace("\r", "\n"))
    return text.replace("\x00", "").strip()


def validate_transcript_text(text: str) -> None:
    if not text.strip():
        raise TranscriptFileError("Transcript is empty")
    if len(text) > MAX_TRANSCRIPT_CHARS:
        raise TranscriptFileError(
            f"Transcript exceeds {MAX_TRANSCRIPT_CHARS:,} characters", status_code=413
        )


def extract_transcript(file_name: str | None, data: bytes) -> ExtractedTranscript:
    """
    Validate an uploaded file and return its text.

    Raises TranscriptFileError for: unsupported type, size over 10MB,
    empty file, signature mismatch, dangerous content.
    """
    safe_name = sanitize_file_name(file_name)
    extension = get_extension(safe_name)
    if extension not in ALLOWED_EXTENSIONS:
        raise TranscriptFileError(
            "Unsupported file type. Only .txt, .docx, and .vtt files are allowed",
            status_code=415,
        )
    if len(data) > MAX_FILE_SIZE_BYTES:
        raise TranscriptFileError("File size exceeds 10MB limit", status_code=413)
    if not data:
        raise TranscriptFileError("File is empty")

    signature_error = check_file_signature(data, extension)
    if signature_error:
        raise TranscriptFileError(signature_error)

    if extension == ".docx":
        text = extract_docx_text(data)
    else:
        text = data.decode("utf-8", errors="replace").lstrip("\ufeff")
        if extension == ".vtt":
            text = vtt_to_text(text)
    text = normalize_text(text)
    validate_transcript_text(text)

    warnings: list[str] = []
    scan = scan_content(text, safe_name)
    if not scan.safe:
        if scan.has_high_severity:
            logger.warning(
                "Rejected transcript upload: score=%s threats=%s",
                scan.security_score,
                [t.type for t in scan.threats],
            )
            raise TranscriptFileError("File content contains potentially dangerous patterns")
        warnings.append("File content has suspicious characteristics")

    return ExtractedTranscript(
        filename=safe_name,
        content_type=ALLOWED_EXTENSIONS[extension],
        text=text,
        warnings=warnings,
    )
