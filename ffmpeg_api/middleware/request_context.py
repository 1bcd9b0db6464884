import hmac
from dataclasses import dataclass
from time import perf_counter
from uuid import uuid4

from fastapi import Request

from ffmpeg_api.services.healthcheck import PROBE_HEADER


@dataclass
class RequestContext:
    request_id: str
    start_time: float
    is_probe: bool = False

    @property
    def verbose(self) -> bool:
        """Healthcheck probes run quietly to keep their ffmpeg output out of the logs."""
        return not self.is_probe

    def elapsed_ms(self) -> int:
        return int((perf_counter() - self.start_time) * 1000)


def create_request_context(request: Request | None = None, probe_token: str = "") -> RequestContext:
    is_probe = False
    if request is not None and probe_token:
        supplied = request.headers.get(PROBE_HEADER, "")
        is_probe = bool(supplied) and hmac.compare_digest(supplied.encode("utf-8"), probe_token.encode("utf-8"))
    return RequestContext(
        request_id=uuid4().hex[:12],
        start_time=perf_counter(),
        is_probe=is_probe,
    )


def get_request_context(request: Request) -> RequestContext:
    """Context stored by the guards middleware, or a fresh one."""
    context = getattr(request.state, "context", None)
    if context is None:
        context = create_request_context(request, getattr(request.app.state, "probe_token", ""))
        request.state.context = context
    return context
