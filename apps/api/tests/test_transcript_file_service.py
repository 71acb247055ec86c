"""Tests for transcript upload validation and extraction."""

import io

import pytest
from docx import Document

from app.services.transcript_file_service import (
    DOCX_CONTENT_TYPE,
    MAX_FILE_SIZE_BYTES,
    TranscriptFileError,
    extract_transcript,
    sanitize_file_name,
    scan_content,
    vtt_to_text,
)


def _docx_bytes(*paragraphs: str) -> bytes:
    document = Document()
    for text in paragraphs:
        document.add_paragraph(text)
    buffer = io.BytesIO()
    document.save(buffer)
    return buffer.getvalue()


def test_plain_text_upload():
    result = extract_transcript("call.txt", b"\xef\xbb\xbfRep: Hello\r\nBuyer: Hi\r\n")
    assert result.text == "Rep: Hello\nBuyer: Hi"
    assert result.content_type == "text/plain"
    assert result.warnings == []


def test_docx_upload_extracts_paragraphs():
    data = _docx_bytes("Rep: Thanks for joining", "Buyer: Happy to be here")
    result = extract_transcript("meeting.docx", data)
    assert result.content_type == DOCX_CONTENT_TYPE
    assert "Rep: Thanks for joining" in result.text
    assert "Buyer: Happy to be here" in result.text


def test_vtt_upload_flattens_cues():
    vtt = (
        "WEBVTT\n\n"
        "1\n00:00:01.000 --> 00:00:03.000\n<v Alice>Hello there</v>\n\n"
        "2\n00:00:03.500 --> 00:00:05.000\n<v Alice>How are you?</v>\n\n"
        "NOTE internal comment\nnot spoken\n\n"
        "3\n00:00:06.000 --> 00:00:07.000\nBob: Doing well\n"
    )
    result = extract_transcript("zoom.vtt", vtt.encode())
    assert result.text == "Alice: Hello there How are you?\nBob: Doing well"


def test_vtt_to_text_skips_header_and_timings():
    assert vtt_to_text("WEBVTT\n\n00:01.000 --> 00:02.000\nJust words") == "Just words"


@pytest.mark.parametrize("name", ["deck.pdf", "photo.png", "notes", "script.js"])
def test_unsupported_extension_is_415(name):
    with pytest.raises(TranscriptFileError) as exc:
        extract_transcript(name, b"hello")
    assert exc.value.status_code == 415


def test_oversized_file_is_413():
    with pytest.raises(TranscriptFileError) as exc:
        extract_transcript("big.txt", b"a" * (MAX_FILE_SIZE_BYTES + 1))
    assert exc.value.status_code == 413


def test_empty_file_is_rejected():
    with pytest.raises(TranscriptFileError) as exc:
        extract_transcript("empty.txt", b"")
    assert exc.value.status_code == 422

    with pytest.raises(TranscriptFileError):
        extract_transcript("blank.txt", b"   \n\n  ")


def test_binary_disguised_as_text_is_rejected():
    with pytest.raises(TranscriptFileError, match="binary"):
        extract_transcript("call.txt", b"%PDF-1.7 rest of file")


def test_docx_signature_must_be_zip():
    with pytest.raises(TranscriptFileError, match="DOCX"):
        extract_transcript("call.docx", b"plain text pretending")


def test_corrupt_docx_is_rejected():
    with pytest.raises(TranscriptFileError, match="Could not read"):
        extract_transcript("call.docx", b"PK\x03\x04" + b"\x00" * 64)


def test_executable_name_segment_is_rejected():
    with pytest.raises(TranscriptFileError, match="dangerous"):
        extract_transcript("invoice.exe.txt", b"Rep: hello")


def test_suspicious_content_only_warns():
    text = b"Rep: <script>alert(1)</script> and javascript:void(0)"
    result = extract_transcript("call.txt", text)
    assert result.warnings == ["File content has suspicious characteristics"]


def test_scan_content_scores():
    clean = scan_content("Rep: Let's talk about your renewal.", "call.txt")
    assert clean.safe
    assert clean.security_score == 100

    one_pattern = scan_content("see innerHTML", "call.txt")
    assert one_pattern.safe
    assert one_pattern.security_score == 80

    comments = scan_content("fine", "call.comments.txt")
    assert comments.threats == []


def test_sanitize_file_name():
    assert sanitize_file_name("../../etc/passwd.txt") == "etcpasswd.txt"
    assert sanitize_file_name('bad<>:"name.txt') == "badname.txt"
    assert sanitize_file_name("") == "transcript.txt"

    long_name = "a" * 300 + ".vtt"
    sanitized = sanitize_file_name(long_name)
    assert len(sanitized) == 255
    assert sanitized.endswith(".vtt")
