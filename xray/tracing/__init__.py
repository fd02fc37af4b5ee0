"""
X-Ray decision tracing for multi-stage pipelines.

Records why a pipeline produced its output: one Run per execution, one Step
per decision boundary (with candidate counts and drop ratio), and, under
FULL capture, the Candidates each step considered.

Usage:
    from xray.tracing import XRayClient, StepType, CaptureLevel

    client = XRayClient(XRayConfig(api_url="http://localhost:4000"))

    async def pipeline():
        found = await client.step(StepType.RETRIEVAL, "search", search)
        return await client.step(
            StepType.FILTER, "in-stock", lambda: in_stock(found),
            candidates=[{"candidate_id": p.sku} for p in found],
            capture_level=CaptureLevel.FULL,
        )

    result = await client.run("product-search", "v3", pipeline)
"""

from xray.tracing.records import (
    Run,
    Step,
    Candidate,
    StepType,
    CaptureLevel,
    Environment,
)
from xray.tracing.capture import CaptureDecision, resolve_capture
from xray.tracing.counting import (
    CountStrategy,
    SequenceLength,
    SizedLength,
    AttributeCount,
    ScalarCount,
    ChainCount,
    DEFAULT_COUNT,
)
from xray.tracing.builder import build_step, compute_drop_ratio
from xray.tracing.transport import IngestionTransport, IngestionError
from xray.tracing.degradation import DegradationController
from xray.tracing.pending import PendingQueue
from xray.tracing.context import XRayClient, RunContext
from xray.tracing.query import RunQuery, RunDetail, RunPage
from xray.tracing.summary import format_compact_summary, format_verbose_summary

__all__ = [
    "Run",
    "Step",
    "Candidate",
    "StepType",
    "CaptureLevel",
    "Environment",
    "CaptureDecision",
    "resolve_capture",
    "CountStrategy",
    "SequenceLength",
    "SizedLength",
    "AttributeCount",
    "ScalarCount",
    "ChainCount",
    "DEFAULT_COUNT",
    "build_step",
    "compute_drop_ratio",
    "IngestionTransport",
    "IngestionError",
    "DegradationController",
    "PendingQueue",
    "XRayClient",
    "RunContext",
    "RunQuery",
    "RunDetail",
    "RunPage",
    "format_compact_summary",
    "format_verbose_summary",
]
