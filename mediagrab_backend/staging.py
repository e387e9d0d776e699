from __future__ import annotations

import logging
import os
import re
import secrets
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Optional
from urllib.parse import urlsplit

from .config import EXTENSION_BY_CONTENT_TYPE
from .errors import FileTooLargeError
from .workspace import SessionDirectories

logger = logging.getLogger(__name__)

_SUGGESTED_EXT_RE = re.compile(r"\.([A-Za-z0-9]{1,5})$")


@dataclass(frozen=True)
class StagedFile:
    filename: str
    path: Path
    public_path: str
    size_bytes: int


def public_path_for(filename: str, session_id: Optional[str]) -> str:
    if session_id:
        return f"/api/downloads/{filename}?session={session_id}"
    return f"/api/downloads/{filename}"


def extension_from_content_type(content_type: Optional[str]) -> str:
    if not content_type:
        return ".bin"
    ct = content_type.split(";")[0].strip().lower()
    return EXTENSION_BY_CONTENT_TYPE.get(ct, ".bin")


def _extension_from_suggested_name(suggested_name: Optional[str]) -> Optional[str]:
    if not suggested_name:
        return None
    # Suggested names are often remote URLs; only look at the path.
    path = urlsplit(suggested_name).path if "://" in suggested_name else suggested_name
    match = _SUGGESTED_EXT_RE.search(path)
    if not match:
        return None
    return f".{match.group(1).lower()}"


def generate_filename(
    content_type: Optional[str],
    suggested_name: Optional[str] = None,
    now: Optional[float] = None,
) -> str:
    """``<epoch-ms>-<8 hex>.<ext>``; extension from the suggested name, else content type."""
    timestamp = int((time.time() if now is None else now) * 1000)
    token = secrets.token_hex(4)
    ext = _extension_from_suggested_name(suggested_name) or extension_from_content_type(content_type)
    return f"{timestamp}-{token}{ext}"


def stage_media(
    directories: SessionDirectories,
    session_id: Optional[str],
    data: bytes,
    content_type: Optional[str],
    suggested_name: Optional[str] = None,
    max_file_size: int = 500 * 1024 * 1024,
) -> StagedFile:
    """Write downloaded bytes into the session folder.

    Oversized payloads are rejected before anything touches the disk. The
    bytes land in a temp file first and are renamed into place, so a failed
    write never leaves a file under the final name.
    """
    if len(data) > max_file_size:
        raise FileTooLargeError(max_file_size)

    directories.ensure(session_id)
    filename = generate_filename(content_type, suggested_name)
    dest = directories.resolve(session_id, filename)
    tmp = dest.with_name(f".{filename}.part")

    try:
        tmp.write_bytes(data)
        os.replace(tmp, dest)
    except OSError as e:
        tmp.unlink(missing_ok=True)
        raise OSError(f"Failed to save file: {e}") from e

    logger.debug("[Stage] Wrote %d bytes to session %s as %s", len(data), session_id, filename)
    return StagedFile(
        filename=filename,
        path=dest,
        public_path=public_path_for(filename, session_id),
        size_bytes=len(data),
    )
