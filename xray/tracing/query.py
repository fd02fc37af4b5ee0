"""
RunQuery: read side of the X-Ray service.

Reconstructs why a pipeline produced what it did, without touching the
backend's storage directly.

Usage:
    async with RunQuery(config) as q:
        detail = await q.get_run(run_id)          # run + steps in position order
        print(format_verbose_summary(detail.run, detail.steps))

        # Where do candidates disappear, across every pipeline?
        suspicious = await q.high_drop_steps(min_drop_ratio=0.95, step_type=StepType.FILTER)

        # What did the ranking step actually see?
        candidates = await q.step_candidates(suspicious[0].step_id)
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Union

import httpx

from xray.config import XRayConfig
from xray.tracing.records import Candidate, Environment, Run, Step, StepType
from xray.tracing.transport import IngestionError, auth_headers
from xray.utils.logger import get_logger

logger = get_logger(__name__)


@dataclass
class RunDetail:
    """A run with all its steps, sorted by position."""
    run: Run
    steps: List[Step] = field(default_factory=list)

    def step_named(self, step_name: str) -> Optional[Step]:
        for step in self.steps:
            if step.step_name == step_name:
                return step
        return None


@dataclass
class RunPage:
    runs: List[Run]
    total: int
    limit: int
    offset: int


def _params(**kwargs: Any) -> Dict[str, Any]:
    """Drop unset filters and stringify enums/datetimes for the query string."""
    params: Dict[str, Any] = {}
    for key, value in kwargs.items():
        if value is None:
            continue
        if isinstance(value, (StepType, Environment)):
            value = value.value
        elif isinstance(value, datetime):
            value = value.isoformat()
        params[key] = value
    return params


def _step_from_row(row: Dict[str, Any]) -> Step:
    return Step.from_payload(row)


class RunQuery:
    """
    Async query client for runs, steps and candidates.

    Errors raise IngestionError(kind="query"). The query client has no
    degraded mode: callers asked for data and should know it is missing.
    """

    def __init__(
        self,
        config: XRayConfig,
        http_transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        if config.api_url is None:
            raise ValueError("RunQuery requires config.api_url")
        self.config = config
        self._client = httpx.AsyncClient(
            base_url=config.api_url,
            headers=auth_headers(config.api_key),
            timeout=config.request_timeout_s,
            transport=http_transport,
        )

    async def __aenter__(self) -> "RunQuery":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Optional[Dict[str, Any]]:
        """GET and decode JSON. Returns None on 404."""
        try:
            response = await self._client.get(path, params=params)
        except httpx.HTTPError as e:
            raise IngestionError("query", f"{type(e).__name__}: {e}") from e
        if response.status_code == 404:
            logger.debug(f"Not found: {path}")
            return None
        if not response.is_success:
            raise IngestionError(
                "query",
                f"HTTP {response.status_code}: {response.reason_phrase}",
                status_code=response.status_code,
            )
        return response.json()

    async def get_run(self, run_id: str) -> Optional[RunDetail]:
        """Fetch a run and its steps. Returns None if the run does not exist."""
        body = await self._get(f"/api/v1/runs/{run_id}")
        if body is None:
            return None
        steps = sorted((_step_from_row(s) for s in body.get("steps") or []), key=lambda s: s.position)
        return RunDetail(run=Run.from_payload(body["run"]), steps=steps)

    async def list_runs(
        self,
        pipeline_name: Optional[str] = None,
        pipeline_version: Optional[str] = None,
        environment: Optional[Union[Environment, str]] = None,
        started_after: Optional[Union[datetime, str]] = None,
        started_before: Optional[Union[datetime, str]] = None,
        step_type: Optional[Union[StepType, str]] = None,
        min_drop_ratio: Optional[float] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> RunPage:
        """Filter runs, newest first. Step filters match runs having any such step."""
        body = await self._get(
            "/api/v1/runs",
            _params(
                pipeline_name=pipeline_name,
                pipeline_version=pipeline_version,
                environment=environment,
                started_after=started_after,
                started_before=started_before,
                step_type=step_type,
                min_drop_ratio=min_drop_ratio,
                limit=limit,
                offset=offset,
            ),
        ) or {}
        runs = [Run.from_payload(r) for r in body.get("runs") or []]
        return RunPage(
            runs=runs,
            total=int(body.get("total", len(runs))),
            limit=int(body.get("limit", limit)),
            offset=int(body.get("offset", offset)),
        )

    async def list_steps(
        self,
        run_id: Optional[str] = None,
        step_type: Optional[Union[StepType, str]] = None,
        step_name: Optional[str] = None,
        min_drop_ratio: Optional[float] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> List[Step]:
        body = await self._get(
            "/api/v1/steps",
            _params(
                run_id=run_id,
                step_type=step_type,
                step_name=step_name,
                min_drop_ratio=min_drop_ratio,
                limit=limit,
                offset=offset,
            ),
        ) or {}
        return [_step_from_row(s) for s in body.get("steps") or []]

    async def step_candidates(self, step_id: str) -> List[Candidate]:
        """
        Candidates persisted for a step.

        Empty when the step is unknown or was not captured at FULL level
        (the service answers 404 in both cases).
        """
        body = await self._get(f"/api/v1/steps/{step_id}/candidates")
        if body is None:
            return []
        return [Candidate.from_payload(c, step_id=step_id) for c in body.get("candidates") or []]

    async def high_drop_steps(
        self,
        min_drop_ratio: float = 0.9,
        step_type: Optional[Union[StepType, str]] = None,
        limit: int = 50,
    ) -> List[Step]:
        """Steps across all pipelines that eliminated at least min_drop_ratio of their input."""
        body = await self._get(
            "/api/v1/analytics/high-drop-steps",
            _params(min_drop_ratio=min_drop_ratio, step_type=step_type, limit=limit),
        ) or {}
        return [_step_from_row(s) for s in body.get("steps") or []]
