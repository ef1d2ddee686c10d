"""FastAPI application exposing search, streaming and cache control.

Endpoints:
    GET  /search    ranked stream candidates for a title
    GET  /stream    the selected video file of a swarm, range-aware
    GET  /progress  download progress of a known swarm
    POST /purge     destroy all sessions and empty the cache
    GET  /health    liveness check
"""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass

import structlog
from fastapi import FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, Response

from src.config import Settings, settings as default_settings
from src.logger import request_context
from src.search.engine import TorrentSearchEngine
from src.search.models import SearchQuery
from src.streaming.engine import SwarmEngine, SwarmEngineError
from src.streaming.ranges import RangeNotSatisfiableError
from src.streaming.registry import SessionRegistry
from src.streaming.responder import StreamResponder
from src.streaming.retention import RetentionManager
from src.streaming.scheduler import PieceScheduler
from src.streaming.session import (
    MetadataTimeoutError,
    NoPlayableFileError,
    StreamError,
)

logger = structlog.get_logger(__name__)

TRUE_FLAGS = {"1", "true", "yes", "on"}


@dataclass
class Services:
    """Long-lived objects shared by all requests."""

    search_engine: TorrentSearchEngine
    swarm_engine: SwarmEngine
    registry: SessionRegistry
    retention: RetentionManager
    responder: StreamResponder


def build_services(
    config: Settings,
    search_engine: TorrentSearchEngine | None = None,
    swarm_engine: SwarmEngine | None = None,
) -> Services:
    if swarm_engine is None:
        # Imported here so the app can run against another engine without libtorrent
        from src.streaming.libtorrent_engine import LibtorrentEngine

        swarm_engine = LibtorrentEngine(
            listen_port=config.listen_port,
            max_connections=config.max_connections,
            extra_trackers=config.extra_trackers,
        )

    registry = SessionRegistry(
        swarm_engine,
        config.cache_dir,
        metadata_timeout=config.metadata_timeout,
    )
    retention = RetentionManager(
        registry,
        idle_timeout=config.idle_timeout_seconds,
        wipe_hour=config.wipe_hour,
        wipe_minute=config.wipe_minute,
        timezone=config.wipe_timezone,
    )
    registry.on_demote = retention.schedule_idle

    return Services(
        search_engine=search_engine or TorrentSearchEngine.from_settings(config),
        swarm_engine=swarm_engine,
        registry=registry,
        retention=retention,
        responder=StreamResponder(
            registry,
            PieceScheduler(),
            retention,
            ffmpeg_path=config.ffmpeg_path,
        ),
    )


def _flag_enabled(value: str | None) -> bool:
    return value is not None and value.strip().lower() in TRUE_FLAGS


def _error(status_code: int, message: str, headers: dict[str, str] | None = None) -> JSONResponse:
    return JSONResponse({"error": message}, status_code=status_code, headers=headers)


def create_app(
    config: Settings | None = None,
    search_engine: TorrentSearchEngine | None = None,
    swarm_engine: SwarmEngine | None = None,
) -> FastAPI:
    """Create the application with its services.

    Args:
        config: Settings to use (default: module settings)
        search_engine: Prebuilt search engine (default: built from settings)
        swarm_engine: Download engine (default: libtorrent)
    """
    config = config or default_settings
    config.cache_dir.mkdir(parents=True, exist_ok=True)
    services = build_services(config, search_engine=search_engine, swarm_engine=swarm_engine)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        services.retention.start()
        logger.info("server_started", cache_dir=str(config.cache_dir))
        try:
            yield
        finally:
            services.retention.stop()
            await services.swarm_engine.close()
            logger.info("server_stopped")

    app = FastAPI(title="Swarm Stream", lifespan=lifespan)
    app.state.services = services

    @app.middleware("http")
    async def bind_request(request: Request, call_next):
        with request_context(request.method, request.url.path):
            return await call_next(request)

    # =========================================================================
    # Error mapping
    # =========================================================================

    @app.exception_handler(RequestValidationError)
    async def validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
        errors = exc.errors()
        message = "; ".join(
            f"{'.'.join(str(p) for p in e.get('loc', ())[1:])}: {e.get('msg', 'invalid')}"
            for e in errors
        )
        return _error(400, message or "invalid parameters")

    @app.exception_handler(RangeNotSatisfiableError)
    async def range_error(request: Request, exc: RangeNotSatisfiableError) -> Response:
        logger.info("range_not_satisfiable", header=exc.header, size=exc.size)
        return Response(status_code=416, headers={"Content-Range": f"bytes */{exc.size}"})

    @app.exception_handler(NoPlayableFileError)
    async def no_playable_file(request: Request, exc: NoPlayableFileError) -> JSONResponse:
        return _error(404, "No playable video file in torrent")

    @app.exception_handler(MetadataTimeoutError)
    async def metadata_timeout(request: Request, exc: MetadataTimeoutError) -> JSONResponse:
        return _error(504, "Timed out waiting for torrent metadata")

    @app.exception_handler(SwarmEngineError)
    async def engine_error(request: Request, exc: SwarmEngineError) -> JSONResponse:
        logger.error("swarm_engine_error", error=str(exc))
        return _error(500, "Failed to add torrent")

    @app.exception_handler(StreamError)
    async def stream_error(request: Request, exc: StreamError) -> JSONResponse:
        logger.error("stream_error", error=str(exc))
        return _error(500, "Stream failed")

    @app.exception_handler(Exception)
    async def unhandled_error(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("unhandled_error", path=request.url.path)
        return _error(500, "Internal server error")

    # =========================================================================
    # Routes
    # =========================================================================

    @app.get("/search")
    async def search(
        title: str = Query(..., min_length=1),
        year: int | None = None,
        season: int | None = Query(None, ge=0),
        episode: int | None = Query(None, ge=0),
        limit: int | None = Query(None, ge=1, le=100),
    ) -> Response:
        title = title.strip()
        if not title:
            return _error(400, "title query param required")

        query = SearchQuery(title=title, year=year, season=season, episode=episode)
        try:
            candidates = await services.search_engine.search(query, limit=limit)
        except Exception:
            logger.exception("search_failed", title=title)
            return _error(500, "Failed to fetch torrents")
        return JSONResponse([c.to_api() for c in candidates])

    @app.get("/stream")
    async def stream(
        request: Request,
        locator: str | None = None,
        magnet: str | None = None,
        start: float = Query(0.0, ge=0),
        transcode: str | None = None,
    ) -> Response:
        locator = locator or magnet
        if not locator:
            return _error(400, "locator query param required")

        return await services.responder.respond(
            locator,
            range_header=request.headers.get("range"),
            user_agent=request.headers.get("user-agent"),
            start_seconds=start,
            transcode=_flag_enabled(transcode),
        )

    @app.get("/progress")
    async def progress(locator: str | None = None, magnet: str | None = None) -> Response:
        locator = locator or magnet
        if not locator:
            return _error(400, "locator query param required")

        session = services.registry.get(locator)
        if session is None:
            return _error(404, "Torrent not found")

        status = session.handle.status()
        file = session.selected_file
        return JSONResponse(
            {
                "progress": status.progress,
                "fileProgress": session.handle.file_progress(file.index) if file else None,
                "speed": status.download_rate,
                "peers": status.peers,
                "eta": status.eta,
            }
        )

    @app.post("/purge")
    async def purge() -> Response:
        try:
            await services.retention.purge()
        except Exception:
            logger.exception("purge_failed")
            return _error(500, "Failed to purge")
        return JSONResponse({"ok": True})

    @app.get("/health")
    async def health() -> dict:
        return {"status": "healthy", "sessions": len(services.registry.sessions())}

    return app
