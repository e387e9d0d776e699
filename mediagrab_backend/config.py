from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path


def _env(name: str, default: str) -> str:
    raw = os.environ.get(f"MEDIAGRAB_{name}")
    if raw is None or not raw.strip():
        return default
    return raw.strip()


def _env_bool(name: str, default: bool) -> bool:
    return _env(name, "1" if default else "0").lower() in {"1", "true", "yes", "on"}


# Root directory for all session download folders.
# Default: project-local ./tmp/downloads. Override with MEDIAGRAB_DOWNLOADS_ROOT.
_root_raw = os.environ.get("MEDIAGRAB_DOWNLOADS_ROOT")
if _root_raw and _root_raw.strip():
    DOWNLOADS_ROOT = Path(_root_raw)
else:
    # mediagrab_backend/ -> project root
    DOWNLOADS_ROOT = Path(__file__).resolve().parent.parent / "tmp" / "downloads"
DOWNLOADS_ROOT = DOWNLOADS_ROOT.resolve()

# Session metadata table lives next to (not inside) the session folders.
SESSION_METADATA_FILENAME = ".sessions.json"

# Requests without a session id share this folder under the root.
DEFAULT_BUCKET_NAME = "default"

# How long a session folder may live after its last modification.
TTL_SECONDS = float(_env("TTL_SECONDS", "3600"))

# How often the server scans for expired sessions (in addition to per-request sweeps).
CLEANUP_INTERVAL_SECONDS = int(_env("CLEANUP_INTERVAL_SECONDS", "600"))

MAX_SESSIONS_PER_OWNER = int(_env("MAX_SESSIONS_PER_OWNER", "5"))
MAX_FILE_SIZE = int(_env("MAX_FILE_SIZE", str(500 * 1024 * 1024)))  # 500MB

# Provider retry policy: delay = INITIAL_RETRY_DELAY_SECONDS * 2**attempt, +/- RETRY_JITTER.
MAX_RETRIES = int(_env("MAX_RETRIES", "3"))
INITIAL_RETRY_DELAY_SECONDS = float(_env("INITIAL_RETRY_DELAY_SECONDS", "2.0"))
RETRY_JITTER = float(_env("RETRY_JITTER", "0.2"))

DOWNLOAD_TIMEOUT_SECONDS = float(_env("DOWNLOAD_TIMEOUT_SECONDS", "60"))
PROVIDER_TIMEOUT_SECONDS = float(_env("PROVIDER_TIMEOUT_SECONDS", "15"))

# Per-post cap for providers that declare one.
MAX_MEDIA_COUNT = int(_env("MAX_MEDIA_COUNT", "10"))

# Generic Open Graph fallback for hosts no dedicated provider owns.
ENABLE_OPENGRAPH = _env_bool("ENABLE_OPENGRAPH", False)

LOG_LEVEL = _env("LOG_LEVEL", "INFO").upper()

USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/122.0.0.0 Safari/537.36"
)

# Content-type -> extension for staged files.
EXTENSION_BY_CONTENT_TYPE = {
    "image/jpeg": ".jpg",
    "image/jpg": ".jpg",
    "image/png": ".png",
    "image/gif": ".gif",
    "image/webp": ".webp",
    "video/mp4": ".mp4",
    "video/quicktime": ".mov",
    "video/x-msvideo": ".avi",
    "video/webm": ".webm",
}

# Extension -> content-type for served files.
CONTENT_TYPE_BY_EXTENSION = {
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
    ".gif": "image/gif",
    ".webp": "image/webp",
    ".mp4": "video/mp4",
    ".mov": "video/quicktime",
    ".avi": "video/x-msvideo",
    ".webm": "video/webm",
    ".zip": "application/zip",
}

VIDEO_EXTENSIONS = {".mp4", ".mov", ".avi", ".webm"}

DEFAULT_CONTENT_TYPE = "application/octet-stream"


@dataclass(frozen=True)
class StagingConfig:
    """Runtime knobs shared by the store, sweeper, pipeline and server.

    Defaults come from the environment-derived constants above; tests build
    their own instance pointing at a temporary root.
    """

    downloads_root: Path = DOWNLOADS_ROOT
    ttl_seconds: float = TTL_SECONDS
    cleanup_interval_seconds: int = CLEANUP_INTERVAL_SECONDS
    max_sessions_per_owner: int = MAX_SESSIONS_PER_OWNER
    max_file_size: int = MAX_FILE_SIZE
    max_retries: int = MAX_RETRIES
    initial_retry_delay: float = INITIAL_RETRY_DELAY_SECONDS
    retry_jitter: float = RETRY_JITTER
    download_timeout: float = DOWNLOAD_TIMEOUT_SECONDS
    provider_timeout: float = PROVIDER_TIMEOUT_SECONDS
    max_media_count: int = MAX_MEDIA_COUNT
    enable_opengraph: bool = ENABLE_OPENGRAPH

    @property
    def metadata_path(self) -> Path:
        return self.downloads_root / SESSION_METADATA_FILENAME
