from typing import Literal

from pydantic import BaseModel, Field

ProbeCategory = Literal["success", "expected-validation", "fault"]


class ProbeResult(BaseModel):
    endpoint: str
    status: int | Literal["offline"]
    category: ProbeCategory
    message: str
    elapsed_ms: int | None = None


class HealthcheckReport(BaseModel):
    mode: Literal["batched", "sequential"]
    results: list[ProbeResult] = Field(default_factory=list)


class EndpointInfo(BaseModel):
    endpoint: str
    path: str
    implemented: bool = True


class ServiceStatus(BaseModel):
    service: str
    version: str
    status: Literal["ok", "degraded"] = "ok"
    auth: Literal["api_key", "open"]
    active_jobs: int
    max_concurrent_jobs: int
    endpoints: list[EndpointInfo] | list[ProbeResult]
