"""
Tests for xray/tracing/query.py: RunQuery against the in-memory service.

Runs are written through the real XRayClient first, then read back.
"""

import httpx
import pytest

from xray.config import XRayConfig
from xray.tracing.query import RunQuery, _params
from xray.tracing.records import Candidate, CaptureLevel, Environment, StepType
from xray.tracing.transport import IngestionError

from tests.conftest import API_URL


@pytest.fixture
def query(backend):
    return RunQuery(XRayConfig(api_url=API_URL), http_transport=httpx.MockTransport(backend))


async def _record_run(client, pipeline_name="search", environment="prod", filter_keep=2):
    async def pipeline():
        items = await client.step(StepType.INPUT, "fetch", lambda: list(range(10)))
        kept = await client.step(
            StepType.FILTER, "keep", lambda: items[:filter_keep],
            candidates=[Candidate(str(i)) for i in items],
        )
        await client.step(
            StepType.RANKING, "rank", lambda: list(reversed(kept)),
            capture_level=CaptureLevel.FULL,
            candidates=[Candidate(str(i), content={"score": i}) for i in kept],
        )
        return client.current_run()

    return await client.run(pipeline_name, "v1", pipeline, environment=environment)


# ============================================================================
# TestRunQuery
# ============================================================================

class TestRunQuery:
    def test_requires_api_url(self):
        with pytest.raises(ValueError):
            RunQuery(XRayConfig())

    @pytest.mark.asyncio
    async def test_get_run(self, make_client, query):
        ctx = await _record_run(make_client())

        detail = await query.get_run(ctx.run_id)
        assert detail.run.run_id == ctx.run_id
        assert detail.run.finished
        assert [s.position for s in detail.steps] == [0, 1, 2]
        assert [s.step_type for s in detail.steps] == [StepType.INPUT, StepType.FILTER, StepType.RANKING]

        keep = detail.step_named("keep")
        assert keep.candidates_in == 10
        assert keep.candidates_out == 2
        assert keep.drop_ratio == pytest.approx(0.8)
        assert detail.step_named("nope") is None

    @pytest.mark.asyncio
    async def test_get_missing_run_returns_none(self, query):
        assert await query.get_run("does-not-exist") is None

    @pytest.mark.asyncio
    async def test_list_runs_filters_and_pages(self, make_client, query):
        client = make_client()
        await _record_run(client, pipeline_name="search")
        await _record_run(client, pipeline_name="search", environment="dev")
        await _record_run(client, pipeline_name="recs")

        page = await query.list_runs(pipeline_name="search")
        assert page.total == 2
        assert {r.pipeline_name for r in page.runs} == {"search"}

        dev = await query.list_runs(environment=Environment.DEV)
        assert [r.environment for r in dev.runs] == [Environment.DEV]

        paged = await query.list_runs(limit=1, offset=1)
        assert len(paged.runs) == 1
        assert paged.total == 3
        assert (paged.limit, paged.offset) == (1, 1)

    @pytest.mark.asyncio
    async def test_list_steps(self, make_client, query):
        ctx = await _record_run(make_client())
        steps = await query.list_steps(run_id=ctx.run_id, step_type=StepType.FILTER)
        assert [s.step_name for s in steps] == ["keep"]

    @pytest.mark.asyncio
    async def test_step_candidates(self, make_client, query):
        ctx = await _record_run(make_client())
        rank = ctx.steps[2]
        candidates = await query.step_candidates(rank.step_id)
        assert [c.candidate_id for c in candidates] == ["0", "1"]
        assert all(c.step_id == rank.step_id for c in candidates)
        assert candidates[1].content == {"score": 1}

    @pytest.mark.asyncio
    async def test_step_candidates_empty_when_not_captured(self, make_client, query):
        ctx = await _record_run(make_client())
        assert await query.step_candidates(ctx.steps[1].step_id) == []
        assert await query.step_candidates("unknown") == []

    @pytest.mark.asyncio
    async def test_high_drop_steps(self, make_client, query):
        client = make_client()
        await _record_run(client, filter_keep=0)
        await _record_run(client, filter_keep=5)

        steps = await query.high_drop_steps(min_drop_ratio=0.9, step_type=StepType.FILTER)
        assert len(steps) == 1
        assert steps[0].drop_ratio == 1.0
        assert steps[0].candidates_out == 0

    @pytest.mark.asyncio
    async def test_server_error_raises(self, backend, query):
        backend.fail_status["/api/v1/runs"] = 500
        with pytest.raises(IngestionError) as exc_info:
            await query.list_runs()
        assert exc_info.value.kind == "query"
        assert exc_info.value.status_code == 500

    @pytest.mark.asyncio
    async def test_context_manager_closes(self, backend):
        async with RunQuery(XRayConfig(api_url=API_URL), http_transport=httpx.MockTransport(backend)) as q:
            await q.list_runs()
        assert q._client.is_closed


# ============================================================================
# TestParams
# ============================================================================

class TestParams:
    def test_drops_none_and_stringifies(self):
        params = _params(step_type=StepType.FILTER, environment=Environment.DEV, run_id=None, limit=5)
        assert params == {"step_type": "FILTER", "environment": "dev", "limit": 5}
