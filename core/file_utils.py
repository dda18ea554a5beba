"""
Utilities for audio upload validation, storage keys and download file names.
"""
import os
import re
import time
import uuid
from typing import Optional, Tuple

from fastapi import UploadFile

from core.config import settings

READ_CHUNK_SIZE = 1024 * 1024


def validate_audio_type(mime_type: Optional[str]) -> bool:
    """
    Validate if the MIME type is an allowed audio type.

    Args:
        mime_type: Content type reported for the upload

    Returns:
        bool: True if the type is in the allow-list
    """
    return bool(mime_type) and mime_type.lower() in settings.allowed_audio_types


def validate_audio_size(file_size: int) -> bool:
    """
    Validate if the file size is within the upload limit.

    Args:
        file_size: Size of the file in bytes

    Returns:
        bool: True if file size is allowed
    """
    return 0 < file_size <= settings.max_upload_size_bytes


async def read_upload_limited(upload_file: UploadFile, max_bytes: int) -> Tuple[bytes, bool]:
    """
    Read an upload into memory, stopping once it exceeds ``max_bytes``.

    Returns:
        Tuple of (content read so far, whether the limit was exceeded)
    """
    chunks = []
    total = 0
    while True:
        chunk = await upload_file.read(READ_CHUNK_SIZE)
        if not chunk:
            break
        total += len(chunk)
        if total > max_bytes:
            return b"", True
        chunks.append(chunk)
    return b"".join(chunks), False


def build_storage_key(uid: str, filename: str) -> str:
    """Unique storage key ``<uid>/<ms timestamp>-<uuid>.<ext>`` for an upload."""
    extension = os.path.splitext(filename or "")[1].lstrip(".").lower() or "audio"
    timestamp = int(time.time() * 1000)
    return f"{uid}/{timestamp}-{uuid.uuid4()}.{extension}"


def count_words(text: str) -> int:
    """Number of whitespace-separated tokens."""
    return len(text.split())


def pdf_download_filename(title: str, template: str) -> str:
    """
    Build the study pack download name from the audio title.

    The extension is dropped, anything but letters, digits and spaces
    is removed, spaces become underscores and the result is cut to 50 chars.
    """
    base = os.path.splitext(title or "")[0]
    base = re.sub(r"[^a-zA-Z0-9\s]", "", base)
    base = re.sub(r"\s+", "_", base.strip())[:50] or "study_pack"
    return f"{base}_study_pack_{template}.pdf"
