"""Structured per-attempt events and the sinks that consume them."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Protocol

from deka.domain.objects import Action, ObjectRef
from deka.domain.outcomes import BatchReport
from deka.execution.classifier import ErrorCategory

logger = logging.getLogger(__name__)


class AttemptResult(str, Enum):
    SUCCEEDED = "succeeded"
    RETRYING = "retrying"
    FAILED = "failed"


@dataclass(frozen=True)
class AttemptEvent:
    ref: ObjectRef
    action: Action
    attempt: int
    elapsed: float
    result: AttemptResult
    error: str | None = None
    category: ErrorCategory | None = None
    next_delay: float | None = None

    def log_fields(self) -> dict[str, object]:
        fields: dict[str, object] = {
            "object": str(self.ref),
            "api_version": self.ref.api_version,
            "action": self.action.value,
            "attempt": self.attempt,
            "elapsed": round(self.elapsed, 3),
            "result": self.result.value,
        }
        if self.error is not None:
            fields["error"] = self.error
        if self.category is not None:
            fields["category"] = self.category.value
        if self.next_delay is not None:
            fields["next_delay"] = round(self.next_delay, 3)
        return fields


class EventSink(Protocol):
    def attempt(self, event: AttemptEvent) -> None: ...

    def report(self, report: BatchReport) -> None: ...


class LoggingEventSink:
    """Emit events through the standard logging module with ``extra`` fields."""

    def __init__(self, log: logging.Logger | None = None) -> None:
        self._log = log or logger

    def attempt(self, event: AttemptEvent) -> None:
        fields = event.log_fields()
        verb = "Deleted" if event.action is Action.DELETE else "Applied"
        if event.result is AttemptResult.SUCCEEDED:
            self._log.info("%s %s", verb, event.ref, extra=fields)
        elif event.result is AttemptResult.RETRYING:
            self._log.warning(
                "Attempt %d for %s failed, retrying in %.1fs: %s",
                event.attempt,
                event.ref,
                event.next_delay or 0.0,
                event.error,
                extra=fields,
            )
        else:
            self._log.warning(
                "Giving up on %s after %d attempt(s): %s",
                event.ref,
                event.attempt,
                event.error,
                extra=fields,
            )

    def report(self, report: BatchReport) -> None:
        fields = {
            "applied": report.applied,
            "failed": report.failed,
            "elapsed": round(report.elapsed, 3),
            "success": report.success,
        }
        if report.success:
            self._log.info(
                "Applied %d object(s) in %.1fs", report.applied, report.elapsed, extra=fields
            )
            return
        self._log.error(
            "%d of %d object(s) failed",
            report.failed,
            len(report.results),
            extra=fields,
        )


class CollectingEventSink:
    """Keep every event in memory."""

    def __init__(self) -> None:
        self.events: list[AttemptEvent] = []
        self.reports: list[BatchReport] = []

    def attempt(self, event: AttemptEvent) -> None:
        self.events.append(event)

    def report(self, report: BatchReport) -> None:
        self.reports.append(report)

    def events_for(self, ref: ObjectRef) -> list[AttemptEvent]:
        return [event for event in self.events if event.ref == ref]
