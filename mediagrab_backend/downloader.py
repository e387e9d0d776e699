from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Mapping, Optional

import httpx

from .errors import DownloadHTTPError, DownloadTimeoutError, FileTooLargeError

logger = logging.getLogger(__name__)

DEFAULT_CONTENT_TYPE_BY_KIND = {
    "image": "image/jpeg",
    "video": "video/mp4",
}


@dataclass(frozen=True)
class DownloadedMedia:
    """
    Bytes fetched for one remote asset.

    Attributes:
        url: Remote URL that was requested
        data: Response body
        content_type: Media type without parameters
    """
    url: str
    data: bytes
    content_type: str

    @property
    def size_bytes(self) -> int:
        return len(self.data)


def _content_type(response: httpx.Response, kind: str) -> str:
    header = response.headers.get("content-type")
    if header:
        ct = header.split(";")[0].strip().lower()
        if ct:
            return ct
    return DEFAULT_CONTENT_TYPE_BY_KIND.get(kind, "application/octet-stream")


async def _read_capped(response: httpx.Response, max_bytes: Optional[int]) -> bytes:
    declared = response.headers.get("content-length")
    if max_bytes is not None and declared and declared.isdigit() and int(declared) > max_bytes:
        raise FileTooLargeError(max_bytes)

    chunks: list[bytes] = []
    total = 0
    async for chunk in response.aiter_bytes():
        total += len(chunk)
        if max_bytes is not None and total > max_bytes:
            raise FileTooLargeError(max_bytes)
        chunks.append(chunk)
    return b"".join(chunks)


async def download_media(
    client: httpx.AsyncClient,
    url: str,
    kind: str,
    headers: Optional[Mapping[str, str]] = None,
    timeout_s: float = 60.0,
    max_bytes: Optional[int] = None,
) -> DownloadedMedia:
    """
    Fetch one remote asset with a hard overall timeout.

    The timeout covers the whole exchange, connect through last byte; when it
    trips the request is cancelled and DownloadTimeoutError is raised. No retry
    happens at this layer.

    Raises:
        DownloadTimeoutError: the download did not finish within timeout_s
        DownloadHTTPError: the server answered with a non-2xx status
        FileTooLargeError: the body exceeded max_bytes
    """

    async def _fetch() -> DownloadedMedia:
        # Overrides the client default; wait_for bounds the whole exchange.
        async with client.stream(
            "GET",
            url,
            headers=dict(headers or {}),
            follow_redirects=True,
            timeout=httpx.Timeout(timeout_s),
        ) as response:
            if not response.is_success:
                logger.warning("[Download] Failed: %s - %s", response.status_code, url)
                raise DownloadHTTPError(response.status_code)
            data = await _read_capped(response, max_bytes)
            return DownloadedMedia(url=url, data=data, content_type=_content_type(response, kind))

    logger.info("[Download] Fetching %s: %s", kind, url)
    try:
        result = await asyncio.wait_for(_fetch(), timeout=timeout_s)
    except (asyncio.TimeoutError, httpx.TimeoutException):
        logger.error("[Download] Timeout after %ss: %s", timeout_s, url)
        raise DownloadTimeoutError()

    logger.info("[Download] Success: %d bytes (%s)", result.size_bytes, result.content_type)
    return result
