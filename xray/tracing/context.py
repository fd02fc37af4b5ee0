"""
Run/step lifecycle for pipeline decision tracing.

Usage:
    client = XRayClient(XRayConfig(api_url="http://localhost:4000"))

    async def pipeline():
        items = await client.step(StepType.INPUT, "fetch", fetch_items)
        kept = await client.step(
            StepType.FILTER, "price-filter", lambda: filter_items(items),
            candidates=[Candidate(candidate_id=i.id, content=i) for i in items],
            artifacts={"rule": "price<100"},
        )
        return kept

    result = await client.run("catalog-search", "v1.2.0", pipeline)

    # Or as a context manager:
    async with client.traced_run("catalog-search", "v1.2.0") as run:
        await client.step(StepType.RANKING, "rank", rank_items)

Each asyncio Task sees its own active run (contextvars), so one client can
serve concurrent runs. step() outside any run is a pure pass-through.
"""

import asyncio
from contextlib import asynccontextmanager
from contextvars import ContextVar
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Mapping, Optional, TypeVar, Union

from xray.config import XRayConfig
from xray.tracing.builder import attach_candidates, build_step, coerce_candidates, new_id
from xray.tracing.capture import resolve_capture
from xray.tracing.counting import CountLike, as_count_strategy
from xray.tracing.degradation import DegradationController
from xray.tracing.outcome import Outcome, attempt
from xray.tracing.pending import PendingQueue
from xray.tracing.records import (
    Candidate,
    CaptureLevel,
    Environment,
    Run,
    Step,
    StepType,
    utcnow,
)
from xray.tracing.summary import format_summary
from xray.tracing.transport import IngestionError, IngestionTransport
from xray.utils.logger import get_logger

logger = get_logger(__name__)

T = TypeVar("T")
StageFn = Callable[[], Union[Awaitable[T], T]]


@dataclass
class RunContext:
    """
    Everything owned by one active run.

    Created by XRayClient.run() / traced_run(); can also be passed to
    step(run=...) to thread the run explicitly instead of via context.
    """
    run: Run
    pending: PendingQueue = field(default_factory=PendingQueue)
    steps: List[Step] = field(default_factory=list)
    _next_position: int = field(default=0, repr=False)

    @property
    def run_id(self) -> str:
        return self.run.run_id

    def next_position(self) -> int:
        """Read-then-increment. No await in between, so positions never collide."""
        position = self._next_position
        self._next_position += 1
        return position


class XRayClient:
    """
    Wraps pipeline runs and stages, and ships Run/Step/Candidate records.

    Instrumentation never changes the pipeline's control flow: stage results
    and exceptions pass through untouched. Only a failed run submission
    surfaces to the caller; step and candidate failures are contained and
    may flip the client into permanent no-op (degraded) mode.
    """

    def __init__(
        self,
        config: Optional[XRayConfig] = None,
        transport: Optional[IngestionTransport] = None,
    ):
        self.config = config or XRayConfig()
        self.transport = transport or IngestionTransport(self.config)
        self.degradation = DegradationController(enabled=self.config.degrade_on_error)
        # One variable per client, so two clients never see each other's runs
        self._active_run: ContextVar[Optional[RunContext]] = ContextVar(
            f"xray_active_run_{id(self):x}", default=None
        )

    async def __aenter__(self) -> "XRayClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self.transport.aclose()

    @property
    def degraded(self) -> bool:
        return self.degradation.degraded

    def current_run(self) -> Optional[RunContext]:
        """The run active in this task, or None."""
        return self._active_run.get()

    # --- Run Lifecycle ---

    def _open_context(
        self,
        pipeline_name: str,
        pipeline_version: str,
        environment: Optional[Union[Environment, str]],
        metadata: Optional[Dict[str, Any]],
    ) -> RunContext:
        if not pipeline_name or not pipeline_name.strip():
            raise ValueError("pipeline_name must be a non-empty string")
        if not pipeline_version or not pipeline_version.strip():
            raise ValueError("pipeline_version must be a non-empty string")

        run = Run(
            run_id=new_id(),
            pipeline_name=pipeline_name,
            pipeline_version=pipeline_version,
            environment=Environment(environment) if environment else Environment.PROD,
            started_at=utcnow(),
            metadata=dict(metadata) if metadata is not None else None,
        )
        logger.info(f"Run started: {run.run_id} ({pipeline_name} {pipeline_version})")
        return RunContext(run=run)

    async def _finish_run(self, ctx: RunContext, stage_failed: bool) -> None:
        """Stamp the end time and emit run-updated."""
        ctx.run.finish()
        try:
            await self._ingest_run(ctx.run)
        except IngestionError as e:
            if not stage_failed:
                raise
            # The stage's own exception wins; this one only gets logged.
            logger.error(f"Run update lost for {ctx.run_id} after stage failure: {e}")

    async def _close_context(self, ctx: RunContext) -> None:
        if not ctx.run.finished:
            ctx.run.finish()
        await self._drain(ctx)
        if self.config.summary_format:
            logger.info(format_summary(ctx.run, ctx.steps, self.config.summary_format))
        logger.info(f"Run finished: {ctx.run_id} ({len(ctx.steps)} steps)")

    async def run(
        self,
        pipeline_name: str,
        pipeline_version: str,
        fn: StageFn,
        environment: Optional[Union[Environment, str]] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> T:
        """
        Execute fn as one traced pipeline run.

        Emits run-created, awaits fn, emits run-updated with the end time,
        then returns fn's result or re-raises its exception unchanged. The
        buffered records are drained exactly once, whatever happened.

        Raises:
            ValueError: If pipeline_name or pipeline_version is empty.
            IngestionError: If the run record could not be submitted.
        """
        ctx = self._open_context(pipeline_name, pipeline_version, environment, metadata)
        token = self._active_run.set(ctx)
        try:
            await self._ingest_run(ctx.run)
            outcome: Outcome[T] = await attempt(fn)
            if not outcome.ok:
                logger.info(f"Run {ctx.run_id} stage failed: {outcome.error_type}")
            await self._finish_run(ctx, stage_failed=not outcome.ok)
            return outcome.unwrap()
        finally:
            try:
                await self._close_context(ctx)
            finally:
                self._active_run.reset(token)

    @asynccontextmanager
    async def traced_run(
        self,
        pipeline_name: str,
        pipeline_version: str,
        environment: Optional[Union[Environment, str]] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ):
        """
        Async context manager form of run().

        Usage:
            async with client.traced_run("search", "v2") as run:
                await client.step(StepType.RETRIEVAL, "bm25", retrieve)

        Marks the end time on normal exit and on exception (then re-raises),
        and always drains buffered records.
        """
        ctx = self._open_context(pipeline_name, pipeline_version, environment, metadata)
        token = self._active_run.set(ctx)
        try:
            await self._ingest_run(ctx.run)
            try:
                yield ctx
            except (Exception, asyncio.CancelledError):
                await self._finish_run(ctx, stage_failed=True)
                raise
            await self._finish_run(ctx, stage_failed=False)
        finally:
            try:
                await self._close_context(ctx)
            finally:
                self._active_run.reset(token)

    # --- Steps ---

    async def step(
        self,
        step_type: Union[StepType, str],
        step_name: str,
        fn: StageFn,
        capture_level: Optional[Union[CaptureLevel, str]] = None,
        candidates: Optional[Iterable[Union[Candidate, Mapping[str, Any]]]] = None,
        artifacts: Optional[Dict[str, Any]] = None,
        metrics: Optional[Dict[str, Any]] = None,
        count: Optional[CountLike] = None,
        run: Optional[RunContext] = None,
    ) -> T:
        """
        Execute fn as one traced decision boundary.

        Args:
            step_type: StepType (or its string value).
            step_name: Human-readable stage name.
            fn: Zero-argument stage; may be sync or async.
            capture_level: Overrides the config default for this step.
            candidates: Options considered by the stage; sets candidates_in
                and, under FULL capture, is persisted as a batch.
            artifacts: Structured decision details (rules, thresholds).
            metrics: Free-form numeric/text measurements.
            count: CountStrategy or callable mapping the result to candidates_out.
            run: Explicit run handle; defaults to the task's active run.

        Returns:
            fn's result, untouched. fn's exception is re-raised unchanged.
        """
        ctx = run or self._active_run.get()
        if ctx is None:
            return (await attempt(fn)).unwrap()

        # Bad arguments raise here, before a position is taken
        step_type = StepType(step_type)
        candidate_list = coerce_candidates(candidates)
        capture = resolve_capture(
            CaptureLevel(capture_level) if capture_level is not None else None,
            self.config.default_capture_level,
            candidate_list,
        )
        count_strategy = as_count_strategy(count)
        if not capture.include_details and (metrics or artifacts):
            logger.debug(f"Step '{step_name}' sends details at capture level NONE; backend may ignore them")

        position = ctx.next_position()
        step_id = new_id()
        started_at = utcnow()
        outcome: Outcome[T] = await attempt(fn)

        step = build_step(
            outcome,
            run_id=ctx.run_id,
            step_type=step_type,
            step_name=step_name,
            position=position,
            capture=capture,
            started_at=started_at,
            candidates=candidate_list,
            metrics=metrics,
            artifacts=artifacts,
            count=count_strategy,
            step_id=step_id,
        )
        ctx.steps.append(step)
        await self._emit_step(ctx, step)

        if outcome.ok and capture.persist_candidates and candidate_list is not None:
            await self._emit_candidates(ctx, step.step_id, attach_candidates(step.step_id, candidate_list))

        return outcome.unwrap()

    # --- Ingestion ---

    def _ingestion_live(self) -> bool:
        return self.transport.configured and not self.degradation.degraded

    async def _ingest_run(self, run: Run) -> None:
        if not self._ingestion_live():
            return
        try:
            await self.transport.submit_run(run)
        except IngestionError as e:
            self.degradation.trip(e)
            logger.error(f"Run submission failed for {run.run_id}: {e}")
            raise

    def _buffering(self, ctx: RunContext) -> bool:
        # A finished run is never drained again, so its late records go out directly
        return self.config.enable_async_ingestion and not ctx.run.finished

    async def _emit_step(self, ctx: RunContext, step: Step) -> None:
        if not self._ingestion_live():
            return
        if self._buffering(ctx):
            ctx.pending.push_step(step)
            return
        await self._send_step(step)

    async def _emit_candidates(self, ctx: RunContext, step_id: str, candidates: List[Candidate]) -> None:
        if not self._ingestion_live():
            return
        if self._buffering(ctx):
            ctx.pending.push_candidates(step_id, candidates)
            return
        await self._send_candidates(step_id, candidates)

    async def _send_step(self, step: Step) -> None:
        # Re-checked per record: a drain may degrade partway through
        if not self._ingestion_live():
            return
        try:
            await self.transport.submit_step(step)
        except IngestionError as e:
            self.degradation.trip(e)
            logger.error(f"Step submission failed ({step.step_name}, position={step.position}): {e}")

    async def _send_candidates(self, step_id: str, candidates: List[Candidate]) -> None:
        if not self._ingestion_live():
            return
        try:
            await self.transport.submit_candidates(step_id, candidates)
        except IngestionError as e:
            self.degradation.trip(e)
            logger.error(f"Candidate submission failed for step {step_id}: {e}")

    async def flush(self, run: Optional[RunContext] = None) -> None:
        """Drain buffered records of a run now instead of waiting for it to end."""
        ctx = run or self._active_run.get()
        if ctx is not None:
            await self._drain(ctx)

    async def _drain(self, ctx: RunContext) -> None:
        """
        Submit everything buffered for ctx: all steps concurrently, then all
        candidate batches concurrently (a step must exist before its candidates).
        """
        steps, batches = ctx.pending.drain()
        if not steps and not batches:
            return
        if not self._ingestion_live():
            logger.debug(f"Dropped {len(steps)} steps, {len(batches)} candidate batches for {ctx.run_id}")
            return

        limiter = asyncio.Semaphore(self.config.batch_size)

        async def bounded(submission: Awaitable[None]) -> None:
            async with limiter:
                await submission

        await asyncio.gather(*(bounded(self._send_step(s)) for s in steps))
        await asyncio.gather(*(bounded(self._send_candidates(b.step_id, b.candidates)) for b in batches))
        logger.debug(f"Flushed {len(steps)} steps, {len(batches)} candidate batches for {ctx.run_id}")
