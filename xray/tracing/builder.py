"""
Record builder: turns a finished stage into a Step record.

candidates_out comes from the stage result via a CountStrategy.
candidates_in is the caller's candidate list length when one was given,
otherwise it mirrors candidates_out (no implied drop).

    drop_ratio = 1 - candidates_out / candidates_in   when candidates_in > 0
               = 0.0                                   when candidates_in == 0

A failed stage always yields candidates_out = 0 and drop_ratio = 1.
"""

import dataclasses
import uuid
from datetime import datetime
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Union

from xray.tracing.capture import CaptureDecision
from xray.tracing.counting import CountStrategy, DEFAULT_COUNT
from xray.tracing.outcome import Outcome
from xray.tracing.records import Candidate, Step, StepType, utcnow
from xray.utils.logger import get_logger

logger = get_logger(__name__)


def new_id() -> str:
    return str(uuid.uuid4())


def compute_drop_ratio(candidates_in: int, candidates_out: int) -> float:
    """Fraction eliminated by a step. Zero input means nothing could be dropped."""
    if candidates_in <= 0:
        return 0.0
    return 1 - candidates_out / candidates_in


def count_outputs(result: Any, strategy: Optional[CountStrategy] = None) -> int:
    """
    Apply the count strategy.

    A strategy that raises falls back to DEFAULT_COUNT; if that raises too,
    the result counts as one output.
    """
    strategy = strategy or DEFAULT_COUNT
    try:
        return strategy(result)
    except Exception as e:
        logger.warning(f"Count strategy {type(strategy).__name__} failed, using default: {e}")
    if strategy is not DEFAULT_COUNT:
        try:
            return DEFAULT_COUNT(result)
        except Exception as e:
            logger.warning(f"Default count failed, counting result as one output: {e}")
    return 1


def coerce_candidates(
    candidates: Optional[Iterable[Union[Candidate, Mapping[str, Any]]]],
) -> Optional[List[Candidate]]:
    """Accept Candidate records or plain dicts with a candidate_id key."""
    if candidates is None:
        return None
    return [
        c if isinstance(c, Candidate) else Candidate.from_payload(dict(c))
        for c in candidates
    ]


def build_step(
    outcome: Outcome,
    *,
    run_id: str,
    step_type: StepType,
    step_name: str,
    position: int,
    capture: CaptureDecision,
    started_at: datetime,
    candidates: Optional[Sequence[Candidate]] = None,
    metrics: Optional[Dict[str, Any]] = None,
    artifacts: Optional[Dict[str, Any]] = None,
    count: Optional[CountStrategy] = None,
    step_id: Optional[str] = None,
    ended_at: Optional[datetime] = None,
) -> Step:
    """
    Build the finalized Step for one stage invocation.

    Args:
        outcome: What the stage did (value or captured exception).
        capture: The resolved capture decision for this step.
        candidates: Caller-supplied candidate list, if any.
        count: Strategy for counting outputs; DEFAULT_COUNT if None.

    Returns:
        A frozen Step record ready for emission.
    """
    supplied_in = len(candidates) if candidates is not None else None

    if outcome.ok:
        candidates_out = count_outputs(outcome.value, count)
        candidates_in = supplied_in if supplied_in is not None else candidates_out
        drop_ratio = compute_drop_ratio(candidates_in, candidates_out)
    else:
        candidates_in = supplied_in if supplied_in is not None else 0
        candidates_out = 0
        drop_ratio = 1.0

    return Step(
        step_id=step_id or new_id(),
        run_id=run_id,
        step_type=StepType(step_type),
        step_name=step_name,
        position=position,
        capture_level=capture.level,
        candidates_in=candidates_in,
        candidates_out=candidates_out,
        drop_ratio=drop_ratio,
        started_at=started_at,
        ended_at=ended_at or utcnow(),
        metrics=dict(metrics or {}),
        artifacts=dict(artifacts) if artifacts is not None else None,
        error=outcome.error_type,
    )


def attach_candidates(step_id: str, candidates: Sequence[Candidate]) -> List[Candidate]:
    """Copy the caller's candidates, tied to their owning step."""
    return [dataclasses.replace(c, step_id=step_id) for c in candidates]
