"""
Record types emitted by the X-Ray client.

Three records describe a pipeline execution:
    Run        one end-to-end execution of an instrumented pipeline
    Step       one decision boundary inside a run (filter, ranking, ...)
    Candidate  one option considered at a step (only under FULL capture)

Steps and candidates are frozen once built; a Run is mutated exactly once,
when finish() stamps its end time.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional


class _LenientEnum(str, Enum):
    """Accepts values case-insensitively, e.g. StepType("filter")."""

    @classmethod
    def _missing_(cls, value):
        if isinstance(value, str):
            for member in cls:
                if member.value.lower() == value.lower():
                    return member
        return None


class StepType(_LenientEnum):
    INPUT = "INPUT"
    GENERATION = "GENERATION"
    RETRIEVAL = "RETRIEVAL"
    FILTER = "FILTER"
    RANKING = "RANKING"
    EVALUATION = "EVALUATION"
    SELECTION = "SELECTION"


class CaptureLevel(_LenientEnum):
    NONE = "NONE"
    SUMMARY = "SUMMARY"
    FULL = "FULL"


class Environment(_LenientEnum):
    DEV = "dev"
    STAGING = "staging"
    PROD = "prod"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _parse_time(value: Optional[str]) -> Optional[datetime]:
    """Parse an ISO timestamp from the backend. Accepts a trailing 'Z'."""
    if not value:
        return None
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass
class Run:
    """One pipeline execution. Owned by the RunContext that created it."""
    run_id: str
    pipeline_name: str
    pipeline_version: str
    environment: Environment = Environment.PROD
    started_at: datetime = field(default_factory=utcnow)
    ended_at: Optional[datetime] = None
    metadata: Optional[Dict[str, Any]] = None

    @property
    def finished(self) -> bool:
        return self.ended_at is not None

    def finish(self, at: Optional[datetime] = None) -> None:
        """Stamp the end time. Only the first call has any effect."""
        if self.ended_at is not None:
            return
        ended = at or utcnow()
        # Clock skew must never produce an end before the start.
        self.ended_at = max(ended, self.started_at)

    def to_payload(self) -> Dict[str, Any]:
        return {
            "run_id": self.run_id,
            "pipeline_name": self.pipeline_name,
            "pipeline_version": self.pipeline_version,
            "environment": self.environment.value,
            "started_at": _iso(self.started_at),
            "ended_at": _iso(self.ended_at),
            "metadata": self.metadata,
        }

    @classmethod
    def from_payload(cls, data: Dict[str, Any]) -> "Run":
        return cls(
            run_id=data["run_id"],
            pipeline_name=data["pipeline_name"],
            pipeline_version=data["pipeline_version"],
            environment=Environment(data.get("environment") or Environment.PROD.value),
            started_at=_parse_time(data.get("started_at")) or utcnow(),
            ended_at=_parse_time(data.get("ended_at")),
            metadata=data.get("metadata"),
        )


@dataclass(frozen=True)
class Candidate:
    """
    One option considered at a step.

    Callers build these without a step_id; the record builder attaches
    the owning step when the candidate batch is emitted.
    """
    candidate_id: str
    content: Any = None
    metadata: Optional[Dict[str, Any]] = None
    step_id: Optional[str] = None

    def to_payload(self) -> Dict[str, Any]:
        return {
            "candidate_id": self.candidate_id,
            "content": self.content,
            "metadata": self.metadata,
        }

    @classmethod
    def from_payload(cls, data: Dict[str, Any], step_id: Optional[str] = None) -> "Candidate":
        return cls(
            candidate_id=str(data["candidate_id"]),
            content=data.get("content"),
            metadata=data.get("metadata"),
            step_id=data.get("step_id", step_id),
        )


@dataclass(frozen=True)
class Step:
    """One instrumented decision boundary, finalized when its stage returns or raises."""
    step_id: str
    run_id: str
    step_type: StepType
    step_name: str
    position: int
    capture_level: CaptureLevel
    candidates_in: int
    candidates_out: int
    drop_ratio: float
    started_at: datetime
    ended_at: Optional[datetime] = None
    metrics: Dict[str, Any] = field(default_factory=dict)
    artifacts: Optional[Dict[str, Any]] = None
    error: Optional[str] = None  # local only, never sent

    @property
    def failed(self) -> bool:
        return self.error is not None

    @property
    def duration_seconds(self) -> Optional[float]:
        if self.ended_at is None:
            return None
        return (self.ended_at - self.started_at).total_seconds()

    def to_payload(self) -> Dict[str, Any]:
        return {
            "step_id": self.step_id,
            "run_id": self.run_id,
            "step_type": self.step_type.value,
            "step_name": self.step_name,
            "position": self.position,
            "metrics": self.metrics,
            "candidates_in": self.candidates_in,
            "candidates_out": self.candidates_out,
            "drop_ratio": self.drop_ratio,
            "capture_level": self.capture_level.value,
            "artifacts": self.artifacts,
            "started_at": _iso(self.started_at),
            "ended_at": _iso(self.ended_at),
        }

    @classmethod
    def from_payload(cls, data: Dict[str, Any]) -> "Step":
        drop_ratio = data.get("drop_ratio")
        return cls(
            step_id=data["step_id"],
            run_id=data["run_id"],
            step_type=StepType(data["step_type"]),
            step_name=data["step_name"],
            position=int(data["position"]),
            capture_level=CaptureLevel(data["capture_level"]),
            candidates_in=int(data.get("candidates_in") or 0),
            candidates_out=int(data.get("candidates_out") or 0),
            drop_ratio=float(drop_ratio) if drop_ratio is not None else 0.0,
            started_at=_parse_time(data.get("started_at")) or utcnow(),
            ended_at=_parse_time(data.get("ended_at")),
            metrics=data.get("metrics") or {},
            artifacts=data.get("artifacts"),
        )


def candidates_payload(step_id: str, candidates: List[Candidate]) -> Dict[str, Any]:
    """Wire body for one candidate batch."""
    return {
        "step_id": step_id,
        "candidates": [c.to_payload() for c in candidates],
    }
