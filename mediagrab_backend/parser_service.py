"""Providers backed by an external parser service.

The service receives ``POST {"url": ...}`` (optionally with a bearer key) and
answers ``{"ok": bool, "images": [{"url": ...}], "videos": [{"url": ...}],
"message": str}``. How it scrapes the post is outside this process.
"""

from __future__ import annotations

import logging
import os
from typing import Iterable, Mapping, Optional

import httpx

from .errors import (
    NoMediaFoundError,
    ProviderError,
    ProviderMisconfiguredError,
    ProviderTimeoutError,
    ProviderUnavailableError,
)
from .providers import MediaProvider, RemoteMedia, host_matches, is_http_url

logger = logging.getLogger(__name__)


class ParserServiceProvider(MediaProvider):
    def __init__(
        self,
        name: str,
        label: str,
        domains: Iterable[str],
        client: httpx.AsyncClient,
        endpoint: Optional[str] = None,
        api_key: Optional[str] = None,
        endpoint_env: Optional[str] = None,
        timeout_s: float = 15.0,
        max_media_count: Optional[int] = None,
        referer: Optional[str] = None,
        referers: Optional[Mapping[str, str]] = None,
    ) -> None:
        self.name = name
        self.label = label
        self.domains = tuple(domains)
        self.client = client
        self.endpoint = (endpoint or "").strip() or None
        self.api_key = api_key
        self.endpoint_env = endpoint_env or f"{name.upper()}_PARSER_ENDPOINT"
        self.timeout_s = timeout_s
        self.max_media_count = max_media_count
        self.referer = referer
        self.referers = dict(referers or {})

    @classmethod
    def from_env(cls, name: str, label: str, domains: Iterable[str], client: httpx.AsyncClient, **kwargs) -> "ParserServiceProvider":
        prefix = name.upper()
        return cls(
            name=name,
            label=label,
            domains=domains,
            client=client,
            endpoint=os.environ.get(f"{prefix}_PARSER_ENDPOINT"),
            api_key=os.environ.get(f"{prefix}_PARSER_KEY"),
            **kwargs,
        )

    def can_handle(self, url: str) -> bool:
        return host_matches(url, self.domains)

    def download_headers(self, kind: str) -> dict[str, str]:
        headers = super().download_headers(kind)
        referer = self.referers.get(kind)
        if referer:
            headers["Referer"] = referer
        return headers

    def _require_endpoint(self) -> str:
        if not self.endpoint:
            raise ProviderUnavailableError(
                f"{self.label} parser service is not configured. Please set {self.endpoint_env}."
            )
        if not is_http_url(self.endpoint):
            raise ProviderMisconfiguredError(
                f"{self.endpoint_env} must be an http(s) URL. Please check your environment variables."
            )
        return self.endpoint

    async def fetch_media(self, url: str, session_id: Optional[str] = None) -> list[RemoteMedia]:
        endpoint = self._require_endpoint()

        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        logger.info("[Fetch] Asking %s parser for %s", self.label, url)
        try:
            response = await self.client.post(endpoint, json={"url": url}, headers=headers, timeout=self.timeout_s)
        except httpx.TimeoutException:
            raise ProviderTimeoutError("Parser request timeout")
        except httpx.HTTPError as e:
            raise ProviderError(f"{self.label} parser error: {e}. Try again later.")

        status = response.status_code
        if status in (401, 403):
            raise ProviderMisconfiguredError(
                f"{self.label} parser service rejected our credentials ({status}). Please check {self.name.upper()}_PARSER_KEY."
            )
        if status == 429:
            raise ProviderError(f"{self.label} parser service rate limit reached (429)")
        if status >= 500:
            raise ProviderError(f"{self.label} parser service returned {status}. Try again later.")
        if not response.is_success:
            raise ProviderError(f"{self.label} parser service returned {status}")

        try:
            data = response.json()
        except ValueError:
            raise ProviderError(f"{self.label} parser returned an invalid response")
        if not isinstance(data, dict):
            raise ProviderError(f"{self.label} parser returned an invalid response")

        return self._media_from_payload(data)

    def _media_from_payload(self, data: dict) -> list[RemoteMedia]:
        images = data.get("images")
        videos = data.get("videos")
        if not data.get("ok") or (images is None and videos is None):
            message = data.get("message") or f"Failed to parse media from {self.label} post"
            if "no media found" in message.lower():
                raise NoMediaFoundError(message)
            raise ProviderError(f"{self.label} parser error: {message}")

        media: list[RemoteMedia] = []
        for kind, items in (("image", images), ("video", videos)):
            for item in items or []:
                remote_url = item.get("url") if isinstance(item, dict) else item
                if isinstance(remote_url, str) and remote_url.strip():
                    media.append(RemoteMedia(remote_url=remote_url.strip(), kind=kind))

        if not media:
            raise NoMediaFoundError(f"No media found in {self.label} post")
        return media
