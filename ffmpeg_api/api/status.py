"""Service status and self healthcheck."""

import html
import logging
from typing import Literal

import httpx
from fastapi import APIRouter, Query, Request
from fastapi.responses import HTMLResponse

from ffmpeg_api.api.deps import AppSettings, RunnerDep
from ffmpeg_api.schemas.status import EndpointInfo, HealthcheckReport, ServiceStatus
from ffmpeg_api.services.healthcheck import HealthcheckOrchestrator
from ffmpeg_api.services.operations import OPERATIONS

router = APIRouter()
logger = logging.getLogger(__name__)


def render_report_html(status: ServiceStatus) -> str:
    """Render the status as a minimal HTML table."""
    rows = []
    for item in status.endpoints:
        if isinstance(item, EndpointInfo):
            cells = (item.endpoint, item.path, "available" if item.implemented else "not implemented")
        else:
            cells = (item.endpoint, str(item.status), item.message)
        rows.append("<tr>" + "".join(f"<td>{html.escape(c)}</td>" for c in cells) + "</tr>")

    title = html.escape(f"{status.service} {status.version}")
    return (
        "<!doctype html><html><head><meta charset='utf-8'>"
        f"<title>{title}</title></head><body>"
        f"<h1>{title}</h1><p>Status: {html.escape(status.status)} | "
        f"jobs: {status.active_jobs}/{status.max_concurrent_jobs}</p>"
        "<table border='1' cellpadding='4'><tbody>"
        + "".join(rows)
        + "</tbody></table></body></html>"
    )


async def run_healthcheck(
    request: Request, settings, mode: Literal["batched", "sequential"]
) -> HealthcheckReport:
    sample_bodies = {op.name: op.sample_body(settings) for op in OPERATIONS}
    async with httpx.AsyncClient(
        base_url=settings.probe_base_url,
        timeout=settings.healthcheck_timeout_s,
        transport=request.app.state.http_transport,
    ) as client:
        orchestrator = HealthcheckOrchestrator(
            client,
            OPERATIONS,
            sample_bodies,
            api_key=settings.api_key,
            probe_token=request.app.state.probe_token,
            batch_size=settings.healthcheck_batch_size,
            batch_delay_s=settings.healthcheck_batch_delay_s,
            probe_delay_s=settings.healthcheck_probe_delay_s,
        )
        return await orchestrator.run(mode)


@router.get("/", response_model=None)
async def service_status(
    request: Request,
    settings: AppSettings,
    runner: RunnerDep,
    check: bool = Query(default=False, description="Probe every endpoint"),
    mode: Literal["batched", "sequential"] | None = Query(default=None),
    format: Literal["json", "html"] = Query(default="json"),
) -> ServiceStatus | HTMLResponse:
    if check:
        report = await run_healthcheck(request, settings, mode or settings.healthcheck_mode)
        endpoints = report.results
        # Unimplemented operations always answer 501; they do not count as faults
        implemented = {op.name for op in OPERATIONS if op.implemented}
        faults = [r for r in report.results if r.category == "fault" and r.endpoint in implemented]
        overall = "degraded" if faults else "ok"
    else:
        endpoints = [
            EndpointInfo(endpoint=op.name, path=op.path, implemented=op.implemented)
            for op in OPERATIONS
        ]
        overall = "ok"

    status = ServiceStatus(
        service=settings.app_name,
        version=settings.app_version,
        status=overall,
        auth="api_key" if settings.api_key else "open",
        active_jobs=runner.active_jobs,
        max_concurrent_jobs=runner.max_concurrent,
        endpoints=endpoints,
    )
    if format == "html":
        return HTMLResponse(render_report_html(status))
    return status


@router.get("/health")
async def health_check(settings: AppSettings) -> dict[str, str]:
    return {"status": "healthy", "version": settings.app_version}
