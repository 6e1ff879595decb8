"""
File storage helpers for uploads and generated exports.
"""

import hashlib
import logging
import os
from typing import Optional

from milestack.core.config import settings


logger = logging.getLogger(__name__)

PLACEHOLDER_TEXT = "[Text extraction is not available for {mime_type} files]"


def compute_hash(content: bytes) -> str:
    """SHA-256 hex digest of file content."""
    return hashlib.sha256(content).hexdigest()


def extract_text(content: bytes, mime_type: str) -> str:
    """
    Text used for analysis.

    Plain text is decoded; other formats get a placeholder.
    """
    if mime_type == "text/plain":
        return content.decode("utf-8", errors="replace")
    return PLACEHOLDER_TEXT.format(mime_type=mime_type)


def save_upload(user_id: int, file_hash: str, filename: str, content: bytes) -> str:
    """
    Store an uploaded file under ``UPLOAD_DIR/<user_id>/``.

    Returns:
        str: Path of the stored file
    """
    directory = os.path.join(settings.UPLOAD_DIR, str(user_id))
    os.makedirs(directory, exist_ok=True)

    safe_name = os.path.basename(filename or "upload").replace(" ", "_")
    path = os.path.join(directory, f"{file_hash[:16]}_{safe_name}")
    with open(path, "wb") as f:
        f.write(content)

    logger.info(f"Stored upload for user {user_id} at {path}")
    return path


def read_file(path: Optional[str]) -> Optional[bytes]:
    if not path or not os.path.exists(path):
        return None
    with open(path, "rb") as f:
        return f.read()


def delete_file(path: Optional[str]) -> bool:
    """Remove a stored file if it exists."""
    if not path or not os.path.exists(path):
        return False
    os.remove(path)
    logger.info(f"Deleted stored file {path}")
    return True


def export_path(user_id: int, filename: str) -> str:
    directory = os.path.join(settings.EXPORT_DIR, str(user_id))
    os.makedirs(directory, exist_ok=True)
    return os.path.join(directory, filename)
