from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, Optional

from .config import CONTENT_TYPE_BY_EXTENSION, DEFAULT_CONTENT_TYPE, VIDEO_EXTENSIONS
from .errors import NotFoundError, RangeNotSatisfiableError, ValidationError
from .security import is_safe_basename, is_valid_session_id
from .workspace import SessionDirectories

CHUNK_SIZE = 64 * 1024

_RANGE_RE = re.compile(r"^\s*bytes\s*=\s*(\d*)\s*-\s*(\d*)\s*$", re.IGNORECASE)


@dataclass(frozen=True)
class ByteRange:
    start: int
    end: int  # inclusive

    @property
    def length(self) -> int:
        return self.end - self.start + 1

    def content_range(self, total: int) -> str:
        return f"bytes {self.start}-{self.end}/{total}"


def content_type_for(filename: str) -> str:
    return CONTENT_TYPE_BY_EXTENSION.get(Path(filename).suffix.lower(), DEFAULT_CONTENT_TYPE)


def is_video_filename(filename: str) -> bool:
    return Path(filename).suffix.lower() in VIDEO_EXTENSIONS


def parse_range(header: Optional[str], total: int) -> Optional[ByteRange]:
    """Parse a single ``bytes=`` range against a file of ``total`` bytes.

    Returns None for a missing or malformed header (serve the whole file).
    Raises RangeNotSatisfiableError when the range is well formed but lies
    outside the file.
    """
    if not header:
        return None
    match = _RANGE_RE.match(header)
    if not match:
        return None
    first, last = match.group(1), match.group(2)

    if not first and not last:
        return None
    if not first:
        # Suffix form: the last N bytes.
        suffix = int(last)
        if suffix == 0 or total == 0:
            raise RangeNotSatisfiableError(total)
        return ByteRange(start=max(0, total - suffix), end=total - 1)

    start = int(first)
    end = int(last) if last else total - 1
    if last and end < start:
        return None
    if start >= total:
        raise RangeNotSatisfiableError(total)
    return ByteRange(start=start, end=min(end, total - 1))


def iter_file(path: Path, start: int = 0, length: Optional[int] = None, chunk_size: int = CHUNK_SIZE) -> Iterator[bytes]:
    with path.open("rb") as fh:
        fh.seek(start)
        remaining = length
        while remaining is None or remaining > 0:
            size = chunk_size if remaining is None else min(chunk_size, remaining)
            chunk = fh.read(size)
            if not chunk:
                break
            if remaining is not None:
                remaining -= len(chunk)
            yield chunk


def locate_download(directories: SessionDirectories, filename: str, session_id: Optional[str]) -> Path:
    """Validate a retrieval request and return the staged file's path.

    Filename and session id are checked before the filesystem is touched.
    """
    if not filename or not is_safe_basename(filename):
        raise ValidationError("Invalid filename")
    if session_id and not is_valid_session_id(session_id):
        raise ValidationError("Invalid session ID")

    path = directories.resolve(session_id or None, filename)
    if not path.is_file():
        raise NotFoundError("File not found")
    return path
