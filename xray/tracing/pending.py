"""Buffered step and candidate records awaiting end-of-run submission."""

from dataclasses import dataclass, field
from typing import List, Tuple

from xray.tracing.records import Candidate, Step


@dataclass
class CandidateBatch:
    step_id: str
    candidates: List[Candidate]


@dataclass
class PendingQueue:
    """
    In-memory queue owned by one RunContext.

    drain() hands back everything and empties the queue before the caller
    submits anything, so a failure mid-drain can never cause a resend.
    """
    steps: List[Step] = field(default_factory=list)
    candidate_batches: List[CandidateBatch] = field(default_factory=list)

    def push_step(self, step: Step) -> None:
        self.steps.append(step)

    def push_candidates(self, step_id: str, candidates: List[Candidate]) -> None:
        self.candidate_batches.append(CandidateBatch(step_id=step_id, candidates=candidates))

    def __len__(self) -> int:
        return len(self.steps) + len(self.candidate_batches)

    def drain(self) -> Tuple[List[Step], List[CandidateBatch]]:
        steps, batches = self.steps, self.candidate_batches
        self.steps = []
        self.candidate_batches = []
        return steps, batches
