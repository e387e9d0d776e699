from __future__ import annotations

import asyncio
import logging
import shutil
import time
from pathlib import Path
from typing import TYPE_CHECKING, Optional

from .config import DEFAULT_BUCKET_NAME
from .errors import ValidationError
from .security import is_safe_basename, normalize_session_id, safe_join

if TYPE_CHECKING:
    from .session_store import SessionStore

logger = logging.getLogger(__name__)


def _now_epoch() -> float:
    return time.time()


class SessionDirectories:
    """Owns one isolated folder per session under a single root.

    A missing session id maps to the legacy shared ``default`` bucket.
    """

    def __init__(self, root: Path) -> None:
        self.root = Path(root).resolve()

    def path_for(self, session_id: Optional[str]) -> Path:
        if not session_id:
            return self.root / DEFAULT_BUCKET_NAME
        try:
            sid = normalize_session_id(session_id)
        except ValueError:
            raise ValidationError("Invalid session ID")
        return self.root / sid

    def exists(self, session_id: Optional[str]) -> bool:
        return self.path_for(session_id).is_dir()

    def ensure(self, session_id: Optional[str]) -> Path:
        path = self.path_for(session_id)
        path.mkdir(parents=True, exist_ok=True)
        return path

    def reset(self, session_id: Optional[str]) -> Path:
        """Leave an existing, empty folder for the session.

        Existing contents are removed but the folder itself is kept.
        """
        path = self.ensure(session_id)
        for child in path.iterdir():
            if child.is_dir() and not child.is_symlink():
                shutil.rmtree(child)
            else:
                child.unlink(missing_ok=True)
        return path

    def resolve(self, session_id: Optional[str], filename: str) -> Path:
        # Callers validate filenames already; check again and fail closed.
        if not is_safe_basename(filename):
            raise ValidationError("Invalid filename")
        try:
            return safe_join(self.path_for(session_id), filename)
        except ValueError:
            raise ValidationError("Invalid filename")

    def destroy(self, session_id: Optional[str]) -> None:
        path = self.path_for(session_id)
        if path.exists():
            shutil.rmtree(path, ignore_errors=True)

    def list_session_dirs(self) -> list[Path]:
        if not self.root.exists():
            return []
        return [child for child in self.root.iterdir() if child.is_dir()]


def cleanup_expired_sessions(
    directories: SessionDirectories,
    store: Optional["SessionStore"],
    ttl_seconds: float,
    now: Optional[float] = None,
) -> int:
    """Delete session folders whose last modification is older than the TTL.

    Errors on one folder are logged and the sweep moves on to the next.
    Returns the number of deleted folders.
    """
    current = _now_epoch() if now is None else now
    deleted = 0

    for child in directories.list_session_dirs():
        try:
            age = current - child.stat().st_mtime
            if age <= ttl_seconds:
                continue
            shutil.rmtree(child)
            if store is not None:
                store.unregister(child.name)
            deleted += 1
            logger.info("[Cleanup] Removed expired session: %s (age: %d minutes)", child.name, round(age / 60))
        except Exception:
            logger.exception("[Cleanup] Error processing session %s", child.name)

    if deleted:
        logger.info("[Cleanup] Cleaned up %d expired session(s)", deleted)
    return deleted


class SweepScheduler:
    """Runs expiry sweeps as detached tasks that requests never await.

    Each task catches and logs its own failures so nothing surfaces as an
    unhandled task exception.
    """

    def __init__(self, directories: SessionDirectories, store: Optional["SessionStore"], ttl_seconds: float) -> None:
        self.directories = directories
        self.store = store
        self.ttl_seconds = ttl_seconds
        self._tasks: set[asyncio.Task] = set()

    async def sweep(self) -> int:
        try:
            return await asyncio.to_thread(cleanup_expired_sessions, self.directories, self.store, self.ttl_seconds)
        except Exception:
            logger.exception("[Cleanup] Sweep failed")
            return 0

    def schedule(self) -> asyncio.Task:
        task = asyncio.create_task(self.sweep())
        # Hold a reference until done so the task is not garbage collected mid-run.
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def drain(self) -> None:
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
