from __future__ import annotations

import ipaddress
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Iterable, Optional
from urllib.parse import urlsplit

from .config import USER_AGENT


@dataclass(frozen=True)
class RemoteMedia:
    remote_url: str
    kind: str  # "image" | "video"


class MediaProvider(ABC):
    """Turns a post URL into remote media locations.

    The pipeline only ever calls ``can_handle``, ``fetch_media`` and
    ``download_headers``; how a provider finds the media is its own business.
    """

    name: str = "unknown"
    # None means no per-post cap.
    max_media_count: Optional[int] = None
    referer: Optional[str] = None

    @abstractmethod
    def can_handle(self, url: str) -> bool:
        ...

    @abstractmethod
    async def fetch_media(self, url: str, session_id: Optional[str] = None) -> list[RemoteMedia]:
        ...

    def download_headers(self, kind: str) -> dict[str, str]:
        headers = {"User-Agent": USER_AGENT}
        if self.referer:
            headers["Referer"] = self.referer
        return headers


# Provider name -> hosts it owns. Order matters: first match wins.
PROVIDER_HOSTS: dict[str, tuple[str, ...]] = {
    "twitter": ("twitter.com", "x.com"),
    "instagram": ("instagram.com",),
    "xiaohongshu": ("xiaohongshu.com", "xhslink.com"),
}


def clean_url(url: str) -> str:
    """Drop query string and fragment."""
    if not url or not isinstance(url, str):
        return url
    return url.split("?")[0].split("#")[0].strip()


def _host(url: str) -> str:
    try:
        parts = urlsplit(url.strip())
    except ValueError:
        return ""
    if parts.scheme.lower() not in ("http", "https"):
        return ""
    return (parts.hostname or "").lower()


def host_matches(url: str, domains: Iterable[str]) -> bool:
    host = _host(url)
    if not host:
        return False
    return any(host == d or host.endswith(f".{d}") for d in domains)


def detect_provider(url: str) -> str:
    """Pure mapping from a URL to a provider name, or ``"unknown"``."""
    for name, domains in PROVIDER_HOSTS.items():
        if host_matches(url, domains):
            return name
    return "unknown"


def is_http_url(url: str) -> bool:
    return bool(_host(url))


_LOCAL_SUFFIXES = (".localhost", ".local", ".internal", ".localdomain")


def is_public_host(url: str) -> bool:
    """True for http(s) URLs whose host is not loopback, private, link-local or reserved.

    Literal addresses are checked directly; names are checked against local-only
    suffixes. Names are not resolved.
    """
    host = _host(url)
    if not host:
        return False
    if host == "localhost" or host.endswith(_LOCAL_SUFFIXES):
        return False
    try:
        address = ipaddress.ip_address(host)
    except ValueError:
        return "." in host
    return address.is_global


class ProviderRegistry:
    def __init__(self, providers: Iterable[MediaProvider] = ()) -> None:
        self._providers: list[MediaProvider] = list(providers)

    def find(self, url: str) -> Optional[MediaProvider]:
        """Provider named by ``detect_provider``, else the first generic one that accepts the URL."""
        detected = detect_provider(url)
        for provider in self._providers:
            if provider.name == detected and provider.can_handle(url):
                return provider
        for provider in self._providers:
            if provider.name not in PROVIDER_HOSTS and provider.can_handle(url):
                return provider
        return None
