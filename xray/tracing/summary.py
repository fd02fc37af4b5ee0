"""
Post-run summary: compact or verbose text view of a run and its steps.

1. format_compact_summary(run, steps) -> a few lines, one per step
2. format_verbose_summary(run, steps) -> per-step metrics, artifacts, errors

Both take plain records, so they work on a live RunContext and on a
RunDetail fetched back through RunQuery. Steps are ordered by position,
never by arrival.
"""

from typing import List, Optional, Sequence

from xray.tracing.records import Run, Step


def _fmt_duration(seconds: Optional[float]) -> str:
    """Format seconds into human-readable duration."""
    if seconds is None:
        return "-"
    if seconds < 1:
        return f"{seconds * 1000:.0f}ms"
    if seconds < 60:
        return f"{seconds:.1f}s"
    minutes = int(seconds // 60)
    secs = seconds % 60
    return f"{minutes}m {secs:.0f}s"


def _fmt_ratio(ratio: Optional[float]) -> str:
    if ratio is None:
        return "-"
    return f"{ratio:.0%}"


def _run_duration(run: Run) -> Optional[float]:
    if run.ended_at is None:
        return None
    return (run.ended_at - run.started_at).total_seconds()


def _ordered(steps: Sequence[Step]) -> List[Step]:
    return sorted(steps, key=lambda s: s.position)


def _step_line(step: Step) -> str:
    status = f"  FAILED ({step.error})" if step.failed else ""
    return (
        f"  #{step.position:<3} {step.step_type.value:<10} {step.step_name:<24} "
        f"{step.candidates_in:>6} -> {step.candidates_out:<6} "
        f"drop {_fmt_ratio(step.drop_ratio):>5}{status}"
    )


def format_compact_summary(run: Run, steps: Sequence[Step]) -> str:
    """
    Format a compact scorecard.

    Example:
        -- X-Ray Run ------------------------------------
        my-pipeline v1.0.0 (prod)  4 steps  Duration: 1.2s
          #0   INPUT      fetch-items                   4 -> 4      drop    0%
          #1   FILTER     score-filter                  4 -> 3      drop   25%
        Run: 5f0c...
        -------------------------------------------------
    """
    ordered = _ordered(steps)
    lines = ["-- X-Ray Run ------------------------------------"]
    lines.append(
        f"{run.pipeline_name} {run.pipeline_version} ({run.environment.value})  "
        f"{len(ordered)} steps  Duration: {_fmt_duration(_run_duration(run))}"
    )
    for step in ordered:
        lines.append(_step_line(step))

    failed = [s for s in ordered if s.failed]
    if failed:
        lines.append(f"Failed: {', '.join(s.step_name for s in failed)}")

    lines.append(f"Run: {run.run_id}")
    lines.append("-------------------------------------------------")
    return "\n".join(lines)


def format_verbose_summary(run: Run, steps: Sequence[Step]) -> str:
    """Full step-by-step breakdown including metrics and artifacts."""
    lines = ["== X-Ray Run Detail ============================="]
    lines.append(f"Run ID:    {run.run_id}")
    lines.append(f"Pipeline:  {run.pipeline_name} {run.pipeline_version}")
    lines.append(f"Env:       {run.environment.value}")
    lines.append(f"Started:   {run.started_at.isoformat()}")
    lines.append(f"Ended:     {run.ended_at.isoformat() if run.ended_at else '-'}")
    lines.append(f"Duration:  {_fmt_duration(_run_duration(run))}")
    if run.metadata:
        lines.append(f"Metadata:  {run.metadata}")
    lines.append("")

    for step in _ordered(steps):
        lines.append(f"-- #{step.position} {step.step_name} [{step.step_type.value}] --")
        lines.append(f"  Capture:    {step.capture_level.value}")
        lines.append(
            f"  Candidates: {step.candidates_in} in / {step.candidates_out} out "
            f"(drop {_fmt_ratio(step.drop_ratio)})"
        )
        lines.append(f"  Duration:   {_fmt_duration(step.duration_seconds)}")
        if step.metrics:
            lines.append("  Metrics:")
            for key, value in step.metrics.items():
                lines.append(f"    {key}: {value}")
        if step.artifacts:
            lines.append("  Artifacts:")
            for key, value in step.artifacts.items():
                lines.append(f"    {key}: {value}")
        if step.error:
            lines.append(f"  Error:      {step.error}")
        lines.append("")

    lines.append("=================================================")
    return "\n".join(lines)


def format_summary(run: Run, steps: Sequence[Step], style: str = "compact") -> str:
    if style == "verbose":
        return format_verbose_summary(run, steps)
    return format_compact_summary(run, steps)
