"""
Shared fixtures: an in-memory X-Ray service behind httpx.MockTransport.

FakeBackend enforces the same contract as the real ingestion service
(run must exist before its steps, unique position per run, candidates only
for FULL steps) and answers the query endpoints, so tests can go through
the real client and transport without a network.
"""

import json
import os
import re
from typing import Any, Dict, List, Optional, Set

import httpx
import pytest

from xray.config import XRayConfig
from xray.tracing.context import XRayClient
from xray.tracing.transport import IngestionTransport

API_URL = "http://xray.test"

RUNS = "/api/v1/runs"
STEPS = "/api/v1/steps"
CANDIDATES = "/api/v1/candidates"

STEP_TYPES = {"INPUT", "GENERATION", "RETRIEVAL", "FILTER", "RANKING", "EVALUATION", "SELECTION"}
CAPTURE_LEVELS = {"NONE", "SUMMARY", "FULL"}


class FakeBackend:
    """Callable handler for httpx.MockTransport."""

    def __init__(self):
        self.requests: List[httpx.Request] = []
        self.runs: Dict[str, Dict[str, Any]] = {}
        self.steps: Dict[str, Dict[str, Any]] = {}
        self.candidates: Dict[str, List[Dict[str, Any]]] = {}
        # Failure injection
        self.fail_status: Dict[str, int] = {}
        self.raise_on: Set[str] = set()

    # --- Inspection helpers ---

    def posted(self, path: str) -> List[Dict[str, Any]]:
        return [
            json.loads(r.content)
            for r in self.requests
            if r.method == "POST" and r.url.path == path
        ]

    def count(self, path: Optional[str] = None) -> int:
        if path is None:
            return len(self.requests)
        return sum(1 for r in self.requests if r.url.path == path)

    # --- Handler ---

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        if path in self.raise_on:
            raise httpx.ConnectError("connection refused", request=request)
        if path in self.fail_status:
            return httpx.Response(self.fail_status[path], json={"error": {"code": "INJECTED"}})

        if request.method == "POST":
            body = json.loads(request.content)
            if path == RUNS:
                return self._post_run(body)
            if path == STEPS:
                return self._post_step(body)
            if path == CANDIDATES:
                return self._post_candidates(body)
        elif request.method == "GET":
            return self._get(path, request.url.params)
        return httpx.Response(404)

    def _post_run(self, body):
        for key in ("run_id", "pipeline_name", "pipeline_version", "started_at"):
            if not body.get(key):
                return httpx.Response(400, json={"error": {"code": "INVALID_REQUEST"}})
        existing = self.runs.get(body["run_id"])
        if existing:
            existing["ended_at"] = body.get("ended_at")
            existing["metadata"] = body.get("metadata")
            return httpx.Response(200, json={"run_id": body["run_id"], "status": "updated"})
        self.runs[body["run_id"]] = dict(body)
        return httpx.Response(201, json={"run_id": body["run_id"], "status": "created"})

    def _post_step(self, body):
        if body.get("step_type") not in STEP_TYPES:
            return httpx.Response(400, json={"error": {"code": "INVALID_STEP_TYPE"}})
        if body.get("capture_level") not in CAPTURE_LEVELS:
            return httpx.Response(400, json={"error": {"code": "INVALID_CAPTURE_LEVEL"}})
        if body.get("run_id") not in self.runs:
            return httpx.Response(404, json={"error": {"code": "RUN_NOT_FOUND"}})
        for step in self.steps.values():
            if step["run_id"] == body["run_id"] and step["position"] == body["position"]:
                return httpx.Response(409, json={"error": {"code": "DUPLICATE_POSITION"}})
        self.steps[body["step_id"]] = dict(body)
        return httpx.Response(201, json={"step_id": body["step_id"], "status": "created"})

    def _post_candidates(self, body):
        step = self.steps.get(body.get("step_id"))
        if step is None:
            return httpx.Response(404, json={"error": {"code": "STEP_NOT_FOUND"}})
        if step["capture_level"] != "FULL":
            return httpx.Response(400, json={"error": {"code": "CANDIDATES_NOT_CAPTURED"}})
        self.candidates.setdefault(body["step_id"], []).extend(body.get("candidates") or [])
        return httpx.Response(201, json={"step_id": body["step_id"], "status": "created"})

    def _get(self, path, params):
        match = re.fullmatch(r"/api/v1/runs/([^/]+)", path)
        if match:
            run = self.runs.get(match.group(1))
            if run is None:
                return httpx.Response(404, json={"error": {"code": "RUN_NOT_FOUND"}})
            steps = sorted(
                (s for s in self.steps.values() if s["run_id"] == run["run_id"]),
                key=lambda s: s["position"],
            )
            return httpx.Response(200, json={"run": run, "steps": steps})

        if path == RUNS:
            runs = list(self.runs.values())
            if params.get("pipeline_name"):
                runs = [r for r in runs if r["pipeline_name"] == params["pipeline_name"]]
            if params.get("environment"):
                runs = [r for r in runs if r["environment"] == params["environment"]]
            limit = int(params.get("limit", 100))
            offset = int(params.get("offset", 0))
            page = runs[offset:offset + limit]
            return httpx.Response(200, json={"runs": page, "total": len(runs), "limit": limit, "offset": offset})

        match = re.fullmatch(r"/api/v1/steps/([^/]+)/candidates", path)
        if match:
            step = self.steps.get(match.group(1))
            if step is None or step["capture_level"] != "FULL":
                return httpx.Response(404, json={"error": {"code": "CANDIDATES_NOT_CAPTURED"}})
            candidates = self.candidates.get(step["step_id"], [])
            return httpx.Response(200, json={"step_id": step["step_id"], "candidates": candidates, "total": len(candidates)})

        if path == STEPS:
            steps = list(self.steps.values())
            if params.get("run_id"):
                steps = [s for s in steps if s["run_id"] == params["run_id"]]
            if params.get("step_type"):
                steps = [s for s in steps if s["step_type"] == params["step_type"]]
            if params.get("min_drop_ratio"):
                steps = [s for s in steps if s["drop_ratio"] >= float(params["min_drop_ratio"])]
            steps.sort(key=lambda s: (s["run_id"], s["position"]))
            return httpx.Response(200, json={"steps": steps, "total": len(steps)})

        if path == "/api/v1/analytics/high-drop-steps":
            threshold = float(params.get("min_drop_ratio", 0.9))
            steps = [s for s in self.steps.values() if s["drop_ratio"] >= threshold]
            if params.get("step_type"):
                steps = [s for s in steps if s["step_type"] == params["step_type"]]
            steps.sort(key=lambda s: s["drop_ratio"], reverse=True)
            return httpx.Response(200, json={"steps": steps[: int(params.get("limit", 50))]})

        return httpx.Response(404)


@pytest.fixture(autouse=True)
def _clean_xray_env(monkeypatch):
    """Keep XRAY_* variables from the developer's shell out of every test."""
    for key in list(os.environ):
        if key.startswith("XRAY_"):
            monkeypatch.delenv(key, raising=False)


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def make_client(backend):
    """Factory: make_client(enable_async_ingestion=False, ...) -> XRayClient wired to backend."""

    def _make(**overrides) -> XRayClient:
        settings = {"api_url": API_URL}
        settings.update(overrides)
        config = XRayConfig(**settings)
        transport = IngestionTransport(config, http_transport=httpx.MockTransport(backend))
        return XRayClient(config, transport=transport)

    return _make
