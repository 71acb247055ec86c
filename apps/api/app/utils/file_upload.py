"""Bounded reads for multipart transcript uploads."""

from __future__ import annotations

from os import SEEK_END

from fastapi import HTTPException, UploadFile
from starlette.concurrency import run_in_threadpool


MULTIPART_OVERHEAD_BYTES = 64 * 1024


def content_length_exceeds_limit(
    content_length_header: str | None,
    *,
    max_size_bytes: int,
    overhead_bytes: int = MULTIPART_OVERHEAD_BYTES,
) -> bool:
    """True when Content-Length alone proves the body is too large."""
    if not content_length_header:
        return False
    try:
        content_length = int(content_length_header)
    except (TypeError, ValueError):
        return False
    return content_length > (max_size_bytes + overhead_bytes)


async def get_upload_file_size(file: UploadFile) -> int:
    def _get_size() -> int:
        stream = file.file
        original_pos = stream.tell()
        try:
            stream.seek(0, SEEK_END)
            return stream.tell()
        finally:
            stream.seek(original_pos)

    return await run_in_threadpool(_get_size)


async def read_upload_bytes(file: UploadFile, *, max_size_bytes: int) -> bytes:
    """Read an upload fully, raising 413 past max_size_bytes."""
    size = await get_upload_file_size(file)
    if size > max_size_bytes:
        raise HTTPException(
            status_code=413,
            detail=f"File too large. Maximum size is {max_size_bytes // (1024 * 1024)}MB",
        )
    data = await file.read()
    if len(data) > max_size_bytes:
        raise HTTPException(
            status_code=413,
            detail=f"File too large. Maximum size is {max_size_bytes // (1024 * 1024)}MB",
        )
    return data
