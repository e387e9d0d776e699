from __future__ import annotations

import logging
import os
import secrets
import time
import zipfile
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Optional
from urllib.parse import parse_qs, unquote, urlsplit

from .errors import NotFoundError, ValidationError
from .security import is_safe_basename, normalize_session_id
from .staging import public_path_for
from .workspace import SessionDirectories

logger = logging.getLogger(__name__)

_DOWNLOADS_PREFIX = "api/downloads/"


@dataclass(frozen=True)
class BundleAsset:
    reference: str
    display_name: Optional[str] = None


@dataclass(frozen=True)
class ResolvedAsset:
    path: Path
    arcname: str
    session_id: Optional[str]


@dataclass(frozen=True)
class BundleResult:
    filename: str
    path: Path
    session_id: Optional[str]
    zip_url: str
    entries: tuple[str, ...]


def parse_asset_reference(reference: str) -> tuple[str, Optional[str]]:
    """Split a staged-file reference into (filename, embedded session id).

    Accepted: ``/api/downloads/<filename>[?session=<id>]`` or a bare filename.
    """
    if not isinstance(reference, str) or not reference.strip():
        raise ValidationError("Missing download URL for asset")

    parts = urlsplit(reference.strip())
    path = parts.path.lstrip("/")
    if path.startswith(_DOWNLOADS_PREFIX):
        filename = unquote(path[len(_DOWNLOADS_PREFIX):])
    elif parts.scheme or parts.netloc or "/" in path:
        raise ValidationError("Invalid asset path")
    else:
        filename = unquote(path)

    if not is_safe_basename(filename):
        raise ValidationError("Invalid asset path")

    session_id: Optional[str] = None
    session_values = parse_qs(parts.query).get("session")
    if session_values and session_values[0]:
        try:
            session_id = normalize_session_id(session_values[0])
        except ValueError:
            raise ValidationError("Invalid session ID")
    return filename, session_id


def _display_name(requested: Optional[str], fallback: str) -> str:
    name = (requested or "").strip()
    if not name:
        return fallback
    # Archive entries are flat; keep only the last path component.
    name = name.replace("\\", "/").rsplit("/", 1)[-1].strip()
    if not name or name in (".", ".."):
        return fallback
    return name


def _dedupe(name: str, used: set[str]) -> str:
    if name not in used:
        return name
    stem, dot, ext = name.rpartition(".")
    if not dot or not stem:
        stem, ext = name, ""
    n = 1
    while True:
        candidate = f"{stem} ({n}).{ext}" if ext else f"{stem} ({n})"
        if candidate not in used:
            return candidate
        n += 1


def resolve_assets(
    directories: SessionDirectories,
    assets: Iterable[BundleAsset],
    session_id: Optional[str] = None,
) -> list[ResolvedAsset]:
    resolved: list[ResolvedAsset] = []
    used: set[str] = set()
    for asset in assets:
        filename, embedded_session = parse_asset_reference(asset.reference)
        target_session = session_id or embedded_session
        path = directories.resolve(target_session, filename)
        if not path.is_file():
            raise NotFoundError("Asset file not found")
        arcname = _dedupe(_display_name(asset.display_name, filename), used)
        used.add(arcname)
        resolved.append(ResolvedAsset(path=path, arcname=arcname, session_id=target_session))
    return resolved


def build_bundle(
    directories: SessionDirectories,
    assets: Iterable[BundleAsset],
    session_id: Optional[str] = None,
) -> BundleResult:
    """Zip previously staged files into the resolving session's folder.

    Files are streamed from disk at maximum compression into a temp file that
    is renamed into place only after the archive has been closed cleanly.
    """
    if session_id:
        try:
            session_id = normalize_session_id(session_id)
        except ValueError:
            raise ValidationError("Invalid session ID")

    assets = list(assets)
    if not assets:
        raise ValidationError("No assets provided")

    files = resolve_assets(directories, assets, session_id)
    final_session = files[0].session_id or session_id
    out_dir = directories.ensure(final_session)

    filename = f"{int(time.time() * 1000)}-{secrets.token_hex(4)}.zip"
    dest = directories.resolve(final_session, filename)
    tmp = out_dir / f".{filename}.part"

    try:
        with zipfile.ZipFile(tmp, mode="w", compression=zipfile.ZIP_DEFLATED, compresslevel=9) as zf:
            for item in files:
                zf.write(item.path, arcname=item.arcname)
        os.replace(tmp, dest)
    except BaseException:
        tmp.unlink(missing_ok=True)
        raise

    logger.info("[Bundle] Wrote %s with %d file(s) for session %s", filename, len(files), final_session)
    return BundleResult(
        filename=filename,
        path=dest,
        session_id=final_session,
        zip_url=public_path_for(filename, final_session),
        entries=tuple(item.arcname for item in files),
    )
