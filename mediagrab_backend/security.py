from __future__ import annotations

import re
import uuid
from pathlib import Path
from typing import Optional


_SESSION_ID_RE = re.compile(r"^[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}$")


def normalize_session_id(session_id: str) -> str:
    """Validate and normalize a session id.

    Session ids double as directory names and capability tokens, so only the
    canonical hyphenated UUID form is accepted.
    """
    if not isinstance(session_id, str):
        raise ValueError("Invalid session id")
    session_id = session_id.strip()
    if not _SESSION_ID_RE.match(session_id):
        raise ValueError("Invalid session id")
    return str(uuid.UUID(session_id))


def is_valid_session_id(session_id: Optional[str]) -> bool:
    try:
        normalize_session_id(session_id)  # type: ignore[arg-type]
    except ValueError:
        return False
    return True


def new_session_id() -> str:
    return str(uuid.uuid4())


def is_safe_basename(name: str) -> bool:
    """Allow only simple filenames (no directories, no parent references)."""
    if not isinstance(name, str) or not name or name.strip() != name:
        return False
    if ".." in name or "/" in name or "\\" in name or "\x00" in name:
        return False
    if name != Path(name).name:
        return False
    return True


def safe_join(base_dir: Path, *parts: str) -> Path:
    """Join paths and ensure the result stays within base_dir."""
    base_dir = base_dir.resolve()
    candidate = base_dir
    for part in parts:
        candidate = candidate / part
    resolved = candidate.resolve()
    if resolved == base_dir:
        return resolved
    if base_dir not in resolved.parents:
        raise ValueError("Path traversal attempt")
    return resolved
