"""
File helpers: name sanitising, upload checks and signed-URL downloads.
"""

import hashlib
import logging
import re
from typing import Optional, Sequence

from fastapi import UploadFile
from storage3.utils import StorageException

from hospital_portal.constants import MAX_FILE_SIZE_BYTES
from hospital_portal.errors import forbidden, internal_error, validation_failed
from hospital_portal.services.supabase_client import SupabaseClient

logger = logging.getLogger(__name__)

_WHITESPACE = re.compile(r"\s+")
_UNSAFE_CHARS = re.compile(r"[^a-zA-Z0-9._-]")
_DENIED_STATUSES = {401, 403}


def sanitize_file_name(value: str) -> str:
    """Make a user-supplied file name safe to embed in a storage path."""
    value = _WHITESPACE.sub("-", value.strip())
    return _UNSAFE_CHARS.sub("", value)[:255]


def sha256_hex(content: bytes) -> str:
    return hashlib.sha256(content).hexdigest()


async def read_upload(
    upload: Optional[UploadFile],
    allowed_types: Sequence[str],
    type_error: str,
) -> Optional[bytes]:
    """
    Read and check an uploaded file.

    Returns None when no file (or an empty one) was sent. Raises a 400 when
    the content type is not allowed or the file is over the size limit.
    """
    if upload is None or not upload.filename:
        return None

    content = await upload.read()
    if not content:
        return None

    if upload.content_type not in allowed_types:
        raise validation_failed(message=type_error)
    if len(content) > MAX_FILE_SIZE_BYTES:
        raise validation_failed(message="File size exceeds 25MB limit")
    return content


def storage_status(exc: Exception) -> Optional[int]:
    """HTTP status carried by a storage error, if any."""
    status = getattr(exc, "status", None)
    if status is None and exc.args and isinstance(exc.args[0], dict):
        status = exc.args[0].get("statusCode")
    try:
        return int(status)
    except (TypeError, ValueError):
        return None


async def fetch_signed_bytes(
    db: SupabaseClient, bucket: str, path: str, failure_message: str
) -> bytes:
    """
    Download an object through a short-lived signed URL.

    Storage denials (401/403) become 403; any other failure becomes a 500
    with ``failure_message``.
    """
    try:
        response = await db.fetch_signed_file(bucket, path)
    except StorageException as exc:
        if storage_status(exc) in _DENIED_STATUSES:
            raise forbidden()
        logger.error("Signing %s/%s failed: %s", bucket, path, exc)
        raise internal_error(failure_message)

    if response.status_code in _DENIED_STATUSES:
        raise forbidden()
    if response.status_code >= 400:
        logger.error("Fetching %s/%s returned %s", bucket, path, response.status_code)
        raise internal_error(failure_message)
    return response.content
