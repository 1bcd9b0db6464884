"""Request guards applied before routing.

Order: path denylist -> body size -> API key -> rate limit.
Errors are rendered here directly because exception handlers do not see
exceptions raised from HTTP middleware.
"""

import hmac
import logging
import re
from typing import Awaitable, Callable

from fastapi import Request
from fastapi.responses import JSONResponse, PlainTextResponse, Response

from ffmpeg_api.config import Settings
from ffmpeg_api.exceptions import (
    AuthError,
    FfmpegApiError,
    ForbiddenPathError,
    PayloadTooLargeError,
    RateLimitError,
)
from ffmpeg_api.middleware.request_context import create_request_context
from ffmpeg_api.services.rate_limiter import SlidingWindowRateLimiter

logger = logging.getLogger(__name__)

# Reachable without an API key
PUBLIC_ROUTES = {("GET", "/"), ("GET", "/health")}
# Query values FastAPI parses as true for the `check` flag on GET /
_TRUTHY = {"1", "true", "yes", "on", "t", "y"}


def error_response(exc: FfmpegApiError) -> Response:
    """Render an API error the same way the exception handlers do."""
    if isinstance(exc, ForbiddenPathError):
        return PlainTextResponse(exc.message, status_code=exc.status_code)
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message}, headers=exc.headers())


def extract_api_key(request: Request) -> str:
    """Read the key from ``x-api-key`` or ``Authorization: Bearer``."""
    key = request.headers.get("x-api-key", "")
    if key:
        return key
    authorization = request.headers.get("authorization", "")
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() == "bearer":
        return token.strip()
    return ""


def client_key(request: Request) -> str:
    return request.client.host if request.client else "unknown"


class RequestGuards:
    """Callable HTTP middleware holding the compiled guard configuration."""

    def __init__(self, settings: Settings, limiter: SlidingWindowRateLimiter, probe_token: str):
        self.settings = settings
        self.limiter = limiter
        self.probe_token = probe_token
        self.blocked = [re.compile(p, re.IGNORECASE) for p in settings.blocked_path_patterns]
        self.max_body_bytes = settings.max_request_body_mb * 1024 * 1024

    def check_path(self, request: Request) -> None:
        path = request.url.path
        for pattern in self.blocked:
            if pattern.search(path):
                logger.warning(f"Blocked path {path} from {client_key(request)}")
                raise ForbiddenPathError()

    def check_body_size(self, request: Request) -> None:
        length = request.headers.get("content-length")
        if length and length.isdigit() and int(length) > self.max_body_bytes:
            raise PayloadTooLargeError(self.settings.max_request_body_mb)

    @staticmethod
    def is_public(request: Request) -> bool:
        """Status routes are public, except the self healthcheck, which spawns
        ffmpeg jobs under the service's own key."""
        if (request.method, request.url.path) not in PUBLIC_ROUTES:
            return False
        return request.query_params.get("check", "").strip().lower() not in _TRUTHY

    def check_api_key(self, request: Request) -> None:
        expected = self.settings.api_key
        if not expected:
            return
        if request.method == "OPTIONS" or self.is_public(request):
            return
        supplied = extract_api_key(request)
        if not supplied or not hmac.compare_digest(supplied.encode("utf-8"), expected.encode("utf-8")):
            raise AuthError()

    def check_rate_limit(self, request: Request, is_probe: bool) -> None:
        if is_probe or request.method == "OPTIONS":
            return
        allowed, retry_after = self.limiter.hit(client_key(request))
        if not allowed:
            logger.warning(f"Rate limit exceeded for {client_key(request)}")
            raise RateLimitError(retry_after)

    async def __call__(
        self, request: Request, call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:
        context = create_request_context(request, self.probe_token)
        request.state.context = context
        try:
            self.check_path(request)
            self.check_body_size(request)
            self.check_api_key(request)
            self.check_rate_limit(request, context.is_probe)
        except FfmpegApiError as exc:
            return error_response(exc)

        response = await call_next(request)
        response.headers["X-Request-ID"] = context.request_id
        return response
