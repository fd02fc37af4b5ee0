"""
Ingestion transport: one HTTP call per record batch.

Three write paths against the ingestion service:
1. submit_run:        POST {api_url}/api/v1/runs        (create, or update with ended_at)
2. submit_step:       POST {api_url}/api/v1/steps
3. submit_candidates: POST {api_url}/api/v1/candidates  (one batch per step)

The transport knows nothing about degradation or queueing; it either
succeeds or raises IngestionError. XRayClient decides what a failure means.
"""

import json
from typing import Any, Dict, List, Optional

import httpx

from xray.config import XRayConfig
from xray.tracing.records import Candidate, Run, Step, candidates_payload
from xray.utils.logger import get_logger

logger = get_logger(__name__)

RUNS_PATH = "/api/v1/runs"
STEPS_PATH = "/api/v1/steps"
CANDIDATES_PATH = "/api/v1/candidates"


class IngestionError(Exception):
    """A submission to the X-Ray service failed (HTTP status or transport error)."""

    def __init__(self, kind: str, message: str, status_code: Optional[int] = None):
        super().__init__(f"{kind} submission failed: {message}")
        self.kind = kind
        self.status_code = status_code


def auth_headers(api_key: Optional[str]) -> Dict[str, str]:
    headers = {"Content-Type": "application/json"}
    if api_key:
        headers["Authorization"] = f"Bearer {api_key}"
    return headers


class IngestionTransport:
    """
    Stateless per call: each submit_* sends exactly one request.

    The underlying httpx.AsyncClient is created lazily and reused until
    aclose(). Pass http_transport to route requests elsewhere (tests use
    httpx.MockTransport).
    """

    def __init__(
        self,
        config: XRayConfig,
        http_transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.config = config
        self._http_transport = http_transport
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def configured(self) -> bool:
        return self.config.api_url is not None

    def _ensure_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.config.api_url or "",
                headers=auth_headers(self.config.api_key),
                timeout=self.config.request_timeout_s,
                transport=self._http_transport,
            )
            logger.debug(f"Initialized ingestion HTTP client for {self.config.api_url}")
        return self._client

    async def _post(self, kind: str, path: str, body: Dict[str, Any]) -> None:
        # default=str keeps arbitrary candidate content/metadata sendable
        try:
            content = json.dumps(body, default=str)
        except (TypeError, ValueError) as e:
            raise IngestionError(kind, f"payload not serializable: {e}") from e

        client = self._ensure_client()
        try:
            response = await client.post(path, content=content)
        except httpx.HTTPError as e:
            raise IngestionError(kind, f"{type(e).__name__}: {e}") from e
        if not response.is_success:
            raise IngestionError(
                kind,
                f"HTTP {response.status_code}: {response.reason_phrase}",
                status_code=response.status_code,
            )

    async def submit_run(self, run: Run) -> None:
        await self._post("run", RUNS_PATH, run.to_payload())
        logger.debug(f"Run submitted: {run.run_id} (ended={run.finished})")

    async def submit_step(self, step: Step) -> None:
        await self._post("step", STEPS_PATH, step.to_payload())
        logger.debug(f"Step submitted: {step.step_id} (position={step.position})")

    async def submit_candidates(self, step_id: str, candidates: List[Candidate]) -> None:
        await self._post("candidates", CANDIDATES_PATH, candidates_payload(step_id, candidates))
        logger.debug(f"Candidates submitted: {len(candidates)} for step {step_id}")

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
