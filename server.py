from __future__ import annotations

import asyncio
import logging
import os
from contextlib import asynccontextmanager
from typing import Iterable, Optional

import httpx
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response, StreamingResponse

from mediagrab_backend.config import LOG_LEVEL, MAX_MEDIA_COUNT, StagingConfig
from mediagrab_backend.errors import MediaGrabError, RangeNotSatisfiableError, classify_failure
from mediagrab_backend.models import BundleRequest, MediaRequest
from mediagrab_backend.opengraph import OpenGraphProvider
from mediagrab_backend.parser_service import ParserServiceProvider
from mediagrab_backend.pipeline import FetchPipeline
from mediagrab_backend.providers import PROVIDER_HOSTS, MediaProvider, ProviderRegistry, clean_url
from mediagrab_backend.retrieval import content_type_for, is_video_filename, iter_file, locate_download, parse_range
from mediagrab_backend.security import new_session_id
from mediagrab_backend.session_store import JsonFileMetadataBackend, SessionStore, owner_identity
from mediagrab_backend.workspace import SessionDirectories, SweepScheduler
from mediagrab_backend.zip_utils import BundleAsset, build_bundle


logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger("mediagrab.server")

CACHE_HEADERS = {
    "Cache-Control": "public, max-age=3600",
    "X-Content-Type-Options": "nosniff",
}


def _error(status: int, message: str) -> JSONResponse:
    return JSONResponse({"ok": False, "message": message}, status_code=status)


def default_providers(config: StagingConfig, client: httpx.AsyncClient) -> list[MediaProvider]:
    providers: list[MediaProvider] = [
        ParserServiceProvider.from_env(
            "twitter",
            "Twitter",
            PROVIDER_HOSTS["twitter"],
            client,
            timeout_s=config.provider_timeout,
            max_media_count=config.max_media_count or MAX_MEDIA_COUNT,
            referer="https://x.com/",
        ),
        ParserServiceProvider.from_env(
            "instagram",
            "Instagram",
            PROVIDER_HOSTS["instagram"],
            client,
            timeout_s=config.provider_timeout,
            referer="https://www.instagram.com/",
        ),
        ParserServiceProvider.from_env(
            "xiaohongshu",
            "Xiaohongshu",
            PROVIDER_HOSTS["xiaohongshu"],
            client,
            timeout_s=config.provider_timeout,
            referer="https://www.xiaohongshu.com/",
            referers={"image": "https://xiaohongshu.day/"},
        ),
    ]
    if config.enable_opengraph:
        providers.append(OpenGraphProvider(client, timeout_s=config.provider_timeout))
    return providers


async def _cleanup_worker(sweeper: SweepScheduler, interval_seconds: int) -> None:
    # Periodic sweep on top of the per-request ones; sweep() logs its own failures.
    while True:
        await asyncio.sleep(max(30, interval_seconds))
        await sweeper.sweep()


def create_app(
    config: Optional[StagingConfig] = None,
    providers: Optional[Iterable[MediaProvider]] = None,
    http_client: Optional[httpx.AsyncClient] = None,
) -> FastAPI:
    config = config or StagingConfig()
    owns_client = http_client is None
    client = http_client or httpx.AsyncClient(follow_redirects=True)

    directories = SessionDirectories(config.downloads_root)
    store = SessionStore(
        JsonFileMetadataBackend(config.metadata_path),
        directories,
        max_sessions_per_owner=config.max_sessions_per_owner,
    )
    sweeper = SweepScheduler(directories, store, config.ttl_seconds)
    registry = ProviderRegistry(default_providers(config, client) if providers is None else providers)
    pipeline = FetchPipeline(directories, client, config)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Clear out anything that expired while we were down, then keep sweeping.
        config.downloads_root.mkdir(parents=True, exist_ok=True)
        await sweeper.sweep()

        task = asyncio.create_task(_cleanup_worker(sweeper, config.cleanup_interval_seconds))
        try:
            yield
        finally:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
            await sweeper.drain()
            if owns_client:
                await client.aclose()

    app = FastAPI(title="mediagrab", lifespan=lifespan)
    app.state.config = config
    app.state.directories = directories
    app.state.store = store
    app.state.sweeper = sweeper
    app.state.registry = registry
    app.state.pipeline = pipeline

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=False,
        allow_methods=["GET", "POST", "HEAD", "OPTIONS"],
        allow_headers=["*"],
        expose_headers=["Content-Range", "Content-Length", "Accept-Ranges", "Content-Disposition"],
    )

    @app.exception_handler(MediaGrabError)
    async def _handle_media_error(request: Request, exc: MediaGrabError) -> JSONResponse:
        return _error(exc.status_code, exc.message)

    @app.exception_handler(RequestValidationError)
    async def _handle_bad_request(request: Request, exc: RequestValidationError) -> JSONResponse:
        return _error(400, "Invalid request body")

    @app.exception_handler(Exception)
    async def _handle_unexpected(request: Request, exc: Exception) -> JSONResponse:
        logger.error("[API] Unhandled error on %s", request.url.path, exc_info=exc)
        return _error(500, "Internal server error")

    @app.get("/api/health")
    async def health() -> JSONResponse:
        return JSONResponse({"ok": True})

    @app.post("/api/media")
    async def submit_media(payload: MediaRequest, request: Request) -> JSONResponse:
        url = payload.url
        if not url or not url.strip():
            return _error(400, "Invalid URL provided")

        # Fire-and-forget; its outcome never affects this response.
        sweeper.schedule()

        cleaned = clean_url(url)
        logger.info("[API] Received URL: %s (cleaned: %s)", url, cleaned)
        provider = registry.find(cleaned)
        if provider is None:
            return _error(400, "Unsupported URL. Please provide a Twitter/X, Instagram or Xiaohongshu link.")
        logger.info("[API] Detected provider: %s", provider.name)

        owner = owner_identity(request.headers, request.client.host if request.client else None)
        await asyncio.to_thread(store.enforce_quota, owner)

        session_id = new_session_id()
        await asyncio.to_thread(store.register, session_id, owner)
        await asyncio.to_thread(directories.reset, session_id)

        try:
            assets = await pipeline.run(provider, cleaned, session_id)
        except Exception as e:
            logger.error("[API] Error fetching media for %s: %s", provider.name, e)
            status, message = classify_failure(e)
            return _error(status, message)

        logger.info("[API] Successfully fetched %d media assets into session %s", len(assets), session_id)
        return JSONResponse(
            {
                "ok": True,
                "assets": [asset.model_dump(by_alias=True) for asset in assets],
                "sessionId": session_id,
            }
        )

    @app.post("/api/download-all")
    async def download_all(payload: BundleRequest, request: Request) -> JSONResponse:
        session_id = payload.session_id or request.query_params.get("session") or None
        assets = [BundleAsset(reference=a.reference or "", display_name=a.display_name) for a in payload.assets]
        if not assets:
            return _error(400, "No assets provided")

        try:
            result = await asyncio.to_thread(build_bundle, directories, assets, session_id)
        except MediaGrabError:
            raise
        except Exception as e:
            logger.exception("[API] Download all error")
            return _error(500, str(e) or "Failed to create download archive")

        return JSONResponse({"ok": True, "zipUrl": result.zip_url, "sessionId": result.session_id})

    @app.get("/api/downloads/{filename}")
    async def get_download(filename: str, request: Request, session: Optional[str] = None) -> Response:
        """Serve one staged file.

        Videos honour a single ``Range`` header (206 + Content-Range) so
        browsers can seek; everything else is sent whole.
        """
        path = await asyncio.to_thread(locate_download, directories, filename, session)
        total = path.stat().st_size
        content_type = content_type_for(filename)
        video = is_video_filename(filename)

        range_header = request.headers.get("range")
        if range_header and video:
            try:
                byte_range = parse_range(range_header, total)
            except RangeNotSatisfiableError:
                return Response(
                    status_code=416,
                    headers={**CACHE_HEADERS, "Content-Range": f"bytes */{total}", "Accept-Ranges": "bytes"},
                )
            if byte_range is not None:
                headers = {
                    **CACHE_HEADERS,
                    "Content-Range": byte_range.content_range(total),
                    "Accept-Ranges": "bytes",
                    "Content-Length": str(byte_range.length),
                }
                return StreamingResponse(
                    iter_file(path, byte_range.start, byte_range.length),
                    status_code=206,
                    media_type=content_type,
                    headers=headers,
                )

        disposition = "inline" if video else "attachment"
        headers = {
            **CACHE_HEADERS,
            "Content-Disposition": f'{disposition}; filename="{filename}"',
            "Content-Length": str(total),
            "Accept-Ranges": "bytes" if video else "none",
        }
        return StreamingResponse(iter_file(path), media_type=content_type, headers=headers)

    return app


app = create_app()


if __name__ == "__main__":
    # Convenience: python server.py
    import uvicorn

    port = int(os.environ.get("PORT", "8010"))
    uvicorn.run("server:app", host="127.0.0.1", port=port, reload=False)
