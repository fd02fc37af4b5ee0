"""
Capture policy: how much of a step gets recorded.

    NONE     step metadata and counts (metrics/artifacts are still sent,
             the backend may ignore them)
    SUMMARY  plus metrics and artifacts
    FULL     plus the candidate list, when the caller supplied one

Evaluated once per step against the resolved level. Never affects records
that were already emitted.
"""

from dataclasses import dataclass
from typing import Optional, Sequence

from xray.tracing.records import CaptureLevel, Candidate

_INCLUDES_DETAILS = {
    CaptureLevel.NONE: False,
    CaptureLevel.SUMMARY: True,
    CaptureLevel.FULL: True,
}


@dataclass(frozen=True)
class CaptureDecision:
    level: CaptureLevel
    include_details: bool
    persist_candidates: bool


def resolve_capture(
    requested: Optional[CaptureLevel],
    default: CaptureLevel,
    candidates: Optional[Sequence[Candidate]] = None,
) -> CaptureDecision:
    """Pick the effective level (explicit wins over default) and what it implies."""
    level = CaptureLevel(requested) if requested is not None else CaptureLevel(default)
    return CaptureDecision(
        level=level,
        include_details=_INCLUDES_DETAILS[level],
        persist_candidates=level is CaptureLevel.FULL and candidates is not None,
    )
