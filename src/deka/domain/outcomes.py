"""Per-object outcomes and the aggregate batch report."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from deka.domain.objects import ObjectRef
from deka.execution.classifier import Classification


class OutcomeStatus(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class FailureReason(str, Enum):
    TERMINAL = "terminal"
    TIMEOUT = "timeout"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class OperationAttempt:
    attempt: int
    elapsed: float
    error: BaseException | None = None


@dataclass(frozen=True)
class Outcome:
    status: OutcomeStatus
    attempts: int
    elapsed: float
    reason: FailureReason | None = None
    error: BaseException | None = None
    classification: Classification | None = None

    @classmethod
    def succeeded(cls, attempts: int, elapsed: float) -> "Outcome":
        return cls(OutcomeStatus.SUCCEEDED, attempts=attempts, elapsed=elapsed)

    @classmethod
    def failed(
        cls,
        reason: FailureReason,
        attempts: int,
        elapsed: float,
        error: BaseException | None = None,
        classification: Classification | None = None,
    ) -> "Outcome":
        return cls(
            OutcomeStatus.FAILED,
            attempts=attempts,
            elapsed=elapsed,
            reason=reason,
            error=error,
            classification=classification,
        )

    @property
    def ok(self) -> bool:
        return self.status is OutcomeStatus.SUCCEEDED

    def to_dict(self) -> dict[str, object]:
        data: dict[str, object] = {
            "status": self.status.value,
            "attempts": self.attempts,
            "elapsed_seconds": round(self.elapsed, 3),
        }
        if not self.ok:
            data["reason"] = self.reason.value if self.reason else None
            data["error"] = str(self.error) if self.error is not None else None
            data["category"] = (
                self.classification.category.value if self.classification else None
            )
        return data


@dataclass(frozen=True)
class BatchReport:
    results: tuple[tuple[ObjectRef, Outcome], ...]
    elapsed: float

    @property
    def applied(self) -> int:
        return sum(1 for _, outcome in self.results if outcome.ok)

    @property
    def failed(self) -> int:
        return len(self.results) - self.applied

    @property
    def success(self) -> bool:
        return self.failed == 0

    @property
    def total_failure(self) -> bool:
        return bool(self.results) and self.applied == 0

    def failures(self) -> list[tuple[ObjectRef, Outcome]]:
        return [(ref, outcome) for ref, outcome in self.results if not outcome.ok]

    def outcome_for(self, ref: ObjectRef) -> Outcome:
        for candidate, outcome in self.results:
            if candidate == ref:
                return outcome
        raise KeyError(str(ref))

    def to_dict(self) -> dict[str, object]:
        return {
            "success": self.success,
            "applied": self.applied,
            "failed": self.failed,
            "elapsed_seconds": round(self.elapsed, 3),
            "objects": [
                {"object": ref.to_dict(), **outcome.to_dict()} for ref, outcome in self.results
            ],
        }
