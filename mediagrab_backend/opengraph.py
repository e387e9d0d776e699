from __future__ import annotations

import logging
from typing import Optional
from urllib.parse import urljoin

import httpx
from bs4 import BeautifulSoup
from bs4.element import Tag

from .errors import NoMediaFoundError, ProviderError, ProviderTimeoutError
from .providers import MediaProvider, RemoteMedia, is_public_host

logger = logging.getLogger(__name__)

_MAX_REDIRECTS = 5

# Meta properties that point at media, in the order they are collected.
_VIDEO_PROPERTIES = ("og:video:secure_url", "og:video:url", "og:video", "twitter:player:stream")
_IMAGE_PROPERTIES = ("og:image:secure_url", "og:image:url", "og:image", "twitter:image", "twitter:image:src")


def extract_media_from_html(html_text: str, base_url: str) -> list[RemoteMedia]:
    """Collect media URLs announced in Open Graph / Twitter card meta tags.

    Only standard page metadata is read; nothing site-specific. Duplicates are
    dropped and relative URLs are resolved against base_url.
    """
    raw = html_text or ""
    if "<meta" not in raw.lower():
        return []

    soup = BeautifulSoup(raw, "html.parser")
    found: dict[str, list[str]] = {}
    for meta in soup.find_all("meta"):
        if not isinstance(meta, Tag):
            continue
        key = str(meta.get("property") or meta.get("name") or "").strip().lower()
        content = str(meta.get("content") or "").strip()
        if key and content:
            found.setdefault(key, []).append(content)

    media: list[RemoteMedia] = []
    seen: set[str] = set()
    for kind, properties in (("video", _VIDEO_PROPERTIES), ("image", _IMAGE_PROPERTIES)):
        for prop in properties:
            for content in found.get(prop, []):
                absolute = urljoin(base_url, content)
                if absolute in seen or not is_public_host(absolute):
                    continue
                seen.add(absolute)
                media.append(RemoteMedia(remote_url=absolute, kind=kind))
    return media


class OpenGraphProvider(MediaProvider):
    """Fallback for public http(s) pages that advertise their media in meta tags.

    Loopback, private and link-local hosts are refused, including as redirect
    targets and as announced media URLs.
    """

    name = "opengraph"

    def __init__(self, client: httpx.AsyncClient, timeout_s: float = 15.0, max_media_count: Optional[int] = None) -> None:
        self.client = client
        self.timeout_s = timeout_s
        self.max_media_count = max_media_count

    def can_handle(self, url: str) -> bool:
        return is_public_host(url)

    async def _get_page(self, url: str) -> httpx.Response:
        current = url
        for _ in range(_MAX_REDIRECTS + 1):
            if not is_public_host(current):
                raise ProviderError("Refusing to load a page from a non-public address")
            response = await self.client.get(
                current,
                headers=self.download_headers("page"),
                timeout=self.timeout_s,
                follow_redirects=False,
            )
            location = response.headers.get("location")
            if not response.is_redirect or not location:
                return response
            current = urljoin(str(response.url), location)
        raise ProviderError("Too many redirects while loading page")

    async def fetch_media(self, url: str, session_id: Optional[str] = None) -> list[RemoteMedia]:
        try:
            response = await self._get_page(url)
        except httpx.TimeoutException:
            raise ProviderTimeoutError("Page request timeout")
        except httpx.HTTPError as e:
            raise ProviderError(f"Failed to load page: {e}")

        if response.status_code == 429:
            raise ProviderError("Page request hit a rate limit (429)")
        if not response.is_success:
            raise ProviderError(f"Failed to load page: {response.status_code}")

        media = extract_media_from_html(response.text, str(response.url))
        if not media:
            raise NoMediaFoundError("No media found on this page")
        logger.info("[Fetch] Open Graph tags on %s announced %d media", url, len(media))
        return media
