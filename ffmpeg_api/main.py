import logging
import secrets
from contextlib import asynccontextmanager
from typing import AsyncGenerator

import httpx
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from starlette.exceptions import HTTPException

from ffmpeg_api.api import media, status
from ffmpeg_api.config import Settings, get_settings
from ffmpeg_api.exceptions import FfmpegApiError
from ffmpeg_api.middleware.guards import RequestGuards, error_response
from ffmpeg_api.services.dispatcher import Dispatcher
from ffmpeg_api.services.fetcher import RemoteFetcher
from ffmpeg_api.services.ffmpeg_runner import FFmpegRunner
from ffmpeg_api.services.rate_limiter import SlidingWindowRateLimiter
from ffmpeg_api.services.temp_storage import TempStorage

logger = logging.getLogger(__name__)


def check_auth_config(settings: Settings) -> None:
    """Refuse to start in strict mode without a key; warn in open mode."""
    if settings.api_key:
        return
    if settings.require_api_key:
        raise RuntimeError("REQUIRE_API_KEY is set but API_KEY is empty; refusing to start")
    logger.warning("No API_KEY configured - all endpoints are open")


def _validation_message(exc: RequestValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return "Request validation failed"
    first_error = errors[0]
    loc = " -> ".join(str(x) for x in first_error.get("loc", []) if x != "body")
    msg = first_error.get("msg", "Validation error")
    return f"{loc}: {msg}" if loc else msg


def create_app(
    settings: Settings | None = None,
    *,
    http_transport: httpx.AsyncBaseTransport | None = None,
) -> FastAPI:
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        # Startup
        check_auth_config(settings)
        http_client = httpx.AsyncClient(
            timeout=settings.fetch_timeout_s,
            follow_redirects=True,
            transport=http_transport,
        )
        runner = FFmpegRunner(
            max_concurrent=settings.max_concurrent_jobs,
            timeout_s=settings.ffmpeg_timeout_s,
            queue_timeout_s=settings.queue_timeout_s,
            chunk_size=settings.stream_chunk_size,
        )
        fetcher = RemoteFetcher(http_client, max_download_bytes=settings.max_download_mb * 1024 * 1024)
        app.state.http_client = http_client
        app.state.runner = runner
        app.state.dispatcher = Dispatcher(
            settings, TempStorage(settings.resolved_temp_dir), fetcher, runner
        )
        logger.info(
            f"{settings.app_name} {settings.app_version} ready: "
            f"max_concurrent_jobs={settings.max_concurrent_jobs}, "
            f"ffmpeg_timeout={settings.ffmpeg_timeout_s}s, fetch_timeout={settings.fetch_timeout_s}s, "
            f"temp_dir={settings.resolved_temp_dir}"
        )
        yield
        # Shutdown
        await http_client.aclose()

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.http_transport = http_transport
    app.state.probe_token = secrets.token_hex(16)

    limiter = SlidingWindowRateLimiter(settings.rate_limit_requests, settings.rate_limit_window_s)
    app.state.rate_limiter = limiter
    app.middleware("http")(RequestGuards(settings, limiter, app.state.probe_token))

    # CORS (added last so it wraps the guards and decorates their error responses)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(FfmpegApiError)
    async def api_error_handler(request: Request, exc: FfmpegApiError) -> Response:
        if exc.status_code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
        return error_response(exc)

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        """Body/query validation failures are client errors (400), not 422."""
        return JSONResponse(status_code=400, content={"error": _validation_message(exc)})

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": str(exc.detail)},
            headers=getattr(exc, "headers", None),
        )

    # Global exception handler to ensure errors return proper JSON
    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.exception(f"Unhandled exception: {exc}")
        return JSONResponse(status_code=500, content={"error": "Internal server error"})

    # Routers
    app.include_router(status.router, tags=["status"])
    app.include_router(media.router, tags=["media"])

    return app


app = create_app()
