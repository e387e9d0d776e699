"""Shared pytest fixtures for mediagrab tests."""

from __future__ import annotations

import itertools
from typing import AsyncGenerator, Optional

import httpx
import pytest
from httpx import ASGITransport, AsyncClient

from mediagrab_backend.config import StagingConfig
from mediagrab_backend.providers import MediaProvider, RemoteMedia
from mediagrab_backend.session_store import JsonFileMetadataBackend, SessionStore
from mediagrab_backend.workspace import SessionDirectories
from server import create_app

PHOTO_BYTES = b"\xff\xd8\xff\xe0" + b"p" * 252
CLIP_BYTES = bytes(range(256)) * 4  # 1024 bytes


class FakeProvider(MediaProvider):
    """Provider that replays scripted results; exceptions in the script are raised."""

    name = "fake"

    def __init__(self, *results, max_media_count: Optional[int] = None) -> None:
        self.results = list(results)
        self.calls = 0
        self.max_media_count = max_media_count

    def can_handle(self, url: str) -> bool:
        return url.startswith("https://fake.test/")

    async def fetch_media(self, url: str, session_id: Optional[str] = None) -> list[RemoteMedia]:
        self.calls += 1
        result = self.results.pop(0) if len(self.results) > 1 else self.results[0]
        if isinstance(result, BaseException):
            raise result
        return list(result)


def media_host_handler(request: httpx.Request) -> httpx.Response:
    path = request.url.path
    if path == "/photo.jpg":
        return httpx.Response(200, content=PHOTO_BYTES, headers={"Content-Type": "image/jpeg"})
    if path == "/clip.mp4":
        return httpx.Response(200, content=CLIP_BYTES, headers={"Content-Type": "video/mp4"})
    if path == "/untyped":
        return httpx.Response(200, content=b"raw")
    if path == "/slow":
        raise httpx.ReadTimeout("timed out", request=request)
    return httpx.Response(404, content=b"not found")


IMAGE_AND_VIDEO = [
    RemoteMedia(remote_url="https://media.test/photo.jpg", kind="image"),
    RemoteMedia(remote_url="https://media.test/clip.mp4", kind="video"),
]


@pytest.fixture
def config(tmp_path) -> StagingConfig:
    return StagingConfig(
        downloads_root=tmp_path / "downloads",
        ttl_seconds=3600,
        max_sessions_per_owner=5,
        max_file_size=64 * 1024,
        max_retries=3,
        initial_retry_delay=0.0,
        download_timeout=5.0,
        enable_opengraph=False,
    )


@pytest.fixture
def directories(config) -> SessionDirectories:
    config.downloads_root.mkdir(parents=True, exist_ok=True)
    return SessionDirectories(config.downloads_root)


@pytest.fixture
def store(config, directories) -> SessionStore:
    clock = itertools.count(1_000_000)
    return SessionStore(
        JsonFileMetadataBackend(config.metadata_path),
        directories,
        max_sessions_per_owner=config.max_sessions_per_owner,
        clock=lambda: float(next(clock)),
    )


@pytest.fixture
async def media_client() -> AsyncGenerator[httpx.AsyncClient, None]:
    async with httpx.AsyncClient(transport=httpx.MockTransport(media_host_handler)) as client:
        yield client


@pytest.fixture
def fake_provider() -> FakeProvider:
    return FakeProvider(IMAGE_AND_VIDEO)


@pytest.fixture
def app(config, fake_provider, media_client):
    config.downloads_root.mkdir(parents=True, exist_ok=True)
    return create_app(config, providers=[fake_provider], http_client=media_client)


@pytest.fixture
async def client(app) -> AsyncGenerator[AsyncClient, None]:
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    await app.state.sweeper.drain()
