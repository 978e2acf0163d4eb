"""Rendering of batch reports for the terminal."""

from __future__ import annotations

import json

from deka.domain.outcomes import BatchReport, Outcome


def _describe_failure(outcome: Outcome) -> str:
    reason = outcome.reason.value if outcome.reason else "failed"
    if outcome.classification is not None:
        reason = f"{reason} ({outcome.classification.category.value})"
    text = f"{reason} after {outcome.attempts} attempt(s) in {outcome.elapsed:.1f}s"
    if outcome.error is not None:
        text = f"{text}: {outcome.error}"
    return text


def render_plain(report: BatchReport) -> str:
    total = len(report.results)
    lines = [f"Applied {report.applied}/{total} object(s) in {report.elapsed:.1f}s"]
    for ref, outcome in report.results:
        if outcome.ok:
            lines.append(f"  ok      {ref} (attempts: {outcome.attempts})")
        else:
            lines.append(f"  FAILED  {ref}: {_describe_failure(outcome)}")
    return "\n".join(lines)


def render_json(report: BatchReport) -> str:
    return json.dumps(report.to_dict(), indent=2)


def render_report(report: BatchReport, fmt: str = "plain") -> str:
    if fmt == "json":
        return render_json(report)
    return render_plain(report)
