from __future__ import annotations

import asyncio
import logging
import uuid
from typing import Awaitable, Callable, Optional

import httpx

from .config import StagingConfig
from .downloader import DownloadedMedia, download_media
from .errors import MediaDownloadError, NoMediaFoundError, TooManyMediaError
from .models import MediaAsset
from .providers import MediaProvider, RemoteMedia
from .retry import retry_with_backoff
from .staging import StagedFile, stage_media
from .workspace import SessionDirectories

logger = logging.getLogger(__name__)


class FetchPipeline:
    """Populate one session folder with the media behind a post URL.

    Usage:
        pipeline = FetchPipeline(directories, client, config)
        assets = await pipeline.run(provider, "https://x.com/a/status/1", session_id)

    All assets succeed or the whole call fails with MediaDownloadError naming
    the failing media kind.
    """

    def __init__(
        self,
        directories: SessionDirectories,
        client: httpx.AsyncClient,
        config: StagingConfig,
        sleep: Callable[[float], Awaitable[object]] = asyncio.sleep,
    ) -> None:
        self.directories = directories
        self.client = client
        self.config = config
        self._sleep = sleep

    async def list_media(self, provider: MediaProvider, url: str, session_id: Optional[str]) -> list[RemoteMedia]:
        media = await retry_with_backoff(
            lambda: provider.fetch_media(url, session_id),
            max_retries=self.config.max_retries,
            initial_delay=self.config.initial_retry_delay,
            jitter=self.config.retry_jitter,
            sleep=self._sleep,
            label=provider.name,
        )
        if not media:
            raise NoMediaFoundError("No media found in this post")
        limit = provider.max_media_count
        if limit is not None and len(media) > limit:
            raise TooManyMediaError(limit, len(media))
        return list(media)

    async def _stage(self, session_id: Optional[str], downloaded: DownloadedMedia, remote_url: str) -> StagedFile:
        task = asyncio.ensure_future(
            asyncio.to_thread(
                stage_media,
                self.directories,
                session_id,
                downloaded.data,
                downloaded.content_type,
                remote_url,
                self.config.max_file_size,
            )
        )
        try:
            return await asyncio.shield(task)
        except asyncio.CancelledError:
            # A started write always lands before cancellation propagates.
            await asyncio.gather(task, return_exceptions=True)
            raise

    async def fetch_one(self, provider: MediaProvider, item: RemoteMedia, session_id: Optional[str]) -> MediaAsset:
        try:
            downloaded = await download_media(
                self.client,
                item.remote_url,
                item.kind,
                headers=provider.download_headers(item.kind),
                timeout_s=self.config.download_timeout,
                max_bytes=self.config.max_file_size,
            )
            staged = await self._stage(session_id, downloaded, item.remote_url)
        except Exception as e:
            raise MediaDownloadError(item.kind, e) from e

        return MediaAsset(
            id=str(uuid.uuid4()),
            source_url=item.remote_url,
            download_url=staged.public_path,
            content_type=downloaded.content_type,
            filename=staged.filename,
            provider=provider.name,
            type=item.kind,
            session_id=session_id,
            size_bytes=staged.size_bytes,
        )

    async def run(self, provider: MediaProvider, url: str, session_id: Optional[str]) -> list[MediaAsset]:
        """Download every asset into the session, or none of them.

        The first failure cancels the remaining downloads and empties the
        session folder before the error propagates.
        """
        media = await self.list_media(provider, url, session_id)
        logger.info("[Fetch] %s returned %d media for session %s", provider.name, len(media), session_id)

        tasks = [asyncio.create_task(self.fetch_one(provider, item, session_id)) for item in media]
        try:
            return list(await asyncio.gather(*tasks))
        except BaseException:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            if session_id:
                try:
                    await asyncio.to_thread(self.directories.reset, session_id)
                    logger.info("[Fetch] Cleared partial downloads for session %s", session_id)
                except Exception:
                    logger.exception("[Fetch] Could not clear session %s", session_id)
            raise
