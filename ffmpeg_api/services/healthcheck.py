"""Self-administered healthcheck.

Issues one synthetic request (a probe) per registered operation against this
same process and classifies each response. Probes run either one at a time
or in fixed-size batches, with a pause in between so the service is not
flooded with its own ffmpeg jobs.
"""

import asyncio
import logging
import time
from enum import Enum
from typing import Literal

import httpx

from ffmpeg_api.schemas.status import HealthcheckReport, ProbeResult
from ffmpeg_api.services.operations import Operation

logger = logging.getLogger(__name__)

PROBE_HEADER = "x-healthcheck-probe"

MESSAGES = {
    "success": "OK",
    "expected-validation": "Invalid request (probably missing input)",
    "fault": "Error",
    "offline": "No response",
}


class ProbeState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    DISPATCHING = "dispatching"
    AWAITING_RESPONSE = "awaiting_response"
    RECORDED = "recorded"
    DONE = "done"


def classify(endpoint: str, status: int | Literal["offline"]) -> ProbeResult:
    """Map an HTTP status (or a transport failure) to a report category."""
    if status == 200:
        return ProbeResult(endpoint=endpoint, status=status, category="success", message=MESSAGES["success"])
    if status == 400:
        return ProbeResult(
            endpoint=endpoint, status=status, category="expected-validation", message=MESSAGES["expected-validation"]
        )
    if status == "offline":
        return ProbeResult(endpoint=endpoint, status=status, category="fault", message=MESSAGES["offline"])
    return ProbeResult(endpoint=endpoint, status=status, category="fault", message=f"{MESSAGES['fault']} (HTTP {status})")


class HealthcheckOrchestrator:
    """Runs probes against the operation catalogue and builds a report."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        operations: list[Operation],
        sample_bodies: dict[str, dict],
        *,
        api_key: str = "",
        probe_token: str = "",
        batch_size: int = 4,
        batch_delay_s: float = 1.5,
        probe_delay_s: float = 0.5,
    ):
        self.client = client
        self.operations = operations
        self.sample_bodies = sample_bodies
        self.api_key = api_key
        self.probe_token = probe_token
        self.batch_size = max(1, batch_size)
        self.batch_delay_s = batch_delay_s
        self.probe_delay_s = probe_delay_s
        self.state = ProbeState.IDLE
        self.endpoint_states: dict[str, ProbeState] = {}

    def _set_state(self, endpoint: str, state: ProbeState) -> None:
        self.endpoint_states[endpoint] = state
        logger.debug(f"[healthcheck] {endpoint}: {state.value}")

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["x-api-key"] = self.api_key
        if self.probe_token:
            headers[PROBE_HEADER] = self.probe_token
        return headers

    async def probe(self, operation: Operation) -> ProbeResult:
        """Issue one synthetic request and classify the outcome."""
        self._set_state(operation.name, ProbeState.DISPATCHING)
        started = time.monotonic()
        body = self.sample_bodies.get(operation.name, {})
        try:
            request = self.client.build_request(
                "POST", operation.path, json=body, headers=self._headers()
            )
            self._set_state(operation.name, ProbeState.AWAITING_RESPONSE)
            response = await self.client.send(request)
            status: int | Literal["offline"] = response.status_code
        except httpx.HTTPError as e:
            logger.warning(f"[healthcheck] {operation.name} unreachable: {e}")
            status = "offline"

        result = classify(operation.name, status)
        result.elapsed_ms = int((time.monotonic() - started) * 1000)
        self._set_state(operation.name, ProbeState.RECORDED)
        return result

    async def run(self, mode: Literal["batched", "sequential"] = "batched") -> HealthcheckReport:
        """Probe every operation; results keep declaration order."""
        self.state = ProbeState.RUNNING
        self.endpoint_states = {op.name: ProbeState.IDLE for op in self.operations}
        results: list[ProbeResult] = []
        try:
            if mode == "sequential":
                for i, operation in enumerate(self.operations):
                    if i:
                        await asyncio.sleep(self.probe_delay_s)
                    results.append(await self.probe(operation))
            else:
                for start in range(0, len(self.operations), self.batch_size):
                    if start:
                        await asyncio.sleep(self.batch_delay_s)
                    batch = self.operations[start:start + self.batch_size]
                    # gather preserves argument order regardless of completion order
                    results.extend(await asyncio.gather(*(self.probe(op) for op in batch)))
        finally:
            self.state = ProbeState.DONE

        faults = sum(1 for r in results if r.category == "fault")
        logger.info(f"[healthcheck] {len(results)} probes ({mode}), {faults} faults")
        return HealthcheckReport(mode=mode, results=results)
