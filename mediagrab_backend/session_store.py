"""Session metadata table and per-owner quota.

The table maps session id -> {"ip": owner, "createdAt": epoch seconds} and is
kept in a single JSON file outside every session folder, so quota and expiry
decisions survive restarts.

Known race: every mutation is a full read-modify-write of that file, so two
registrations interleaving across worker threads can lose one update. The
table is advisory (quota + cleanup), and a lost entry only means a session is
reclaimed by the TTL sweep instead of by quota eviction. Serializing mutations
(single writer, file lock) or swapping in an atomic key-value backend behind
``MetadataBackend`` would remove it without touching callers.
"""

from __future__ import annotations

import json
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Mapping, Optional

from .workspace import SessionDirectories

logger = logging.getLogger(__name__)

UNKNOWN_OWNER = "unknown"


@dataclass(frozen=True)
class SessionRecord:
    session_id: str
    owner: str
    created_at: float


class MetadataBackend(ABC):
    @abstractmethod
    def load(self) -> dict:
        ...

    @abstractmethod
    def save(self, table: dict) -> None:
        ...


class JsonFileMetadataBackend(MetadataBackend):
    def __init__(self, path: Path) -> None:
        self.path = Path(path)

    def load(self) -> dict:
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return {}
        except (OSError, ValueError):
            logger.warning("[SessionLimit] Unreadable session metadata at %s; starting empty", self.path)
            return {}
        return data if isinstance(data, dict) else {}

    def save(self, table: dict) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(table, indent=2, sort_keys=True), encoding="utf-8")


class SessionStore:
    def __init__(
        self,
        backend: MetadataBackend,
        directories: SessionDirectories,
        max_sessions_per_owner: int,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.backend = backend
        self.directories = directories
        self.max_sessions_per_owner = max_sessions_per_owner
        self._clock = clock

    def _persist(self, table: dict) -> None:
        try:
            self.backend.save(table)
        except Exception:
            # Metadata is advisory; never fail the request over it.
            logger.exception("[SessionLimit] Error saving metadata")

    def register(self, session_id: str, owner: str) -> None:
        table = self.backend.load()
        table[session_id] = {"ip": owner, "createdAt": self._clock()}
        self._persist(table)

    def unregister(self, session_id: str) -> None:
        table = self.backend.load()
        if table.pop(session_id, None) is not None:
            self._persist(table)

    def sessions_for_owner(self, owner: str) -> list[SessionRecord]:
        """Live sessions of one owner; entries without a folder are pruned."""
        table = self.backend.load()
        sessions: list[SessionRecord] = []
        pruned = False

        for session_id, info in list(table.items()):
            if not isinstance(info, dict) or info.get("ip") != owner:
                continue
            try:
                alive = self.directories.exists(session_id)
            except Exception:
                alive = False
            if not alive:
                del table[session_id]
                pruned = True
                continue
            sessions.append(
                SessionRecord(
                    session_id=session_id,
                    owner=owner,
                    created_at=float(info.get("createdAt", 0)),
                )
            )

        if pruned:
            self._persist(table)
        return sessions

    def enforce_quota(self, owner: str) -> list[str]:
        """Evict the owner's oldest sessions so a new one fits under the limit.

        Must finish before the new session is registered. Returns evicted ids.
        """
        sessions = self.sessions_for_owner(owner)
        if len(sessions) < self.max_sessions_per_owner:
            return []

        sessions.sort(key=lambda s: s.created_at)
        excess = len(sessions) - self.max_sessions_per_owner + 1
        evicted: list[str] = []
        for record in sessions[:excess]:
            try:
                self.directories.destroy(record.session_id)
                self.unregister(record.session_id)
                evicted.append(record.session_id)
                logger.info("[SessionLimit] Removed old session for %s: %s", owner, record.session_id)
            except Exception:
                logger.exception("[SessionLimit] Error removing session %s", record.session_id)
        return evicted


def owner_identity(headers: Mapping[str, str], peer_host: Optional[str] = None) -> str:
    """Best-effort client identity used to bucket sessions for quota.

    Clients that cannot be identified all share the ``unknown`` bucket.
    """
    forwarded = headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first

    real_ip = (headers.get("x-real-ip") or "").strip()
    if real_ip:
        return real_ip

    if peer_host and peer_host.strip():
        return peer_host.strip()
    return UNKNOWN_OWNER
