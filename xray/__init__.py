"""
X-Ray: explain why a multi-step pipeline produced its output.

    from xray import XRayClient, XRayConfig, StepType

    async with XRayClient(XRayConfig(api_url="http://localhost:4000")) as client:
        await client.run("my-pipeline", "v1.0.0", pipeline)
"""

# tracing must load before config (config reuses the tracing enums)
from xray.tracing import (
    Candidate,
    CaptureLevel,
    Environment,
    IngestionError,
    Run,
    RunContext,
    RunQuery,
    Step,
    StepType,
    XRayClient,
)
from xray.config import XRayConfig
from xray.utils.logger import get_logger, setup_logging

__version__ = "0.1.0"

__all__ = [
    "Candidate",
    "CaptureLevel",
    "Environment",
    "IngestionError",
    "Run",
    "RunContext",
    "RunQuery",
    "Step",
    "StepType",
    "XRayClient",
    "XRayConfig",
    "get_logger",
    "setup_logging",
]
