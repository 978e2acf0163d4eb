"""Retry loop for a single object.

Each operation moves through ``Idle -> Attempting -> (Succeeded | Failed)``.
``Attempting`` may repeat: a retryable failure sleeps for the next backoff
delay and tries again, as long as the shared budget admits it. Nothing that
happens here is allowed to escape into sibling operations; every failure is
folded into the returned :class:`Outcome`. Cancellation is recorded and then
re-raised so the owning task still ends up cancelled.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Protocol

from deka.domain.objects import Action, ObjectRef, TargetObject
from deka.domain.outcomes import FailureReason, OperationAttempt, Outcome
from deka.errors import InvalidTransition
from deka.execution.backoff import Budget, Clock, ExponentialBackoff
from deka.execution.classifier import Classification, classify_error
from deka.execution.events import AttemptEvent, AttemptResult, EventSink
from deka.execution.gate import ConcurrencyGate


class ApiClient(Protocol):
    async def apply(self, obj: TargetObject) -> None: ...

    async def delete(self, obj: TargetObject) -> None: ...

    def ref_for(self, obj: TargetObject) -> ObjectRef: ...


@dataclass(frozen=True)
class Idle:
    pass


@dataclass(frozen=True)
class Attempting:
    attempt: int
    started_at: float


@dataclass(frozen=True)
class Succeeded:
    attempts: int
    elapsed: float


@dataclass(frozen=True)
class Failed:
    reason: FailureReason
    attempts: int
    elapsed: float
    error: BaseException | None = None
    classification: Classification | None = None


OperationState = Idle | Attempting | Succeeded | Failed

_TRANSITIONS: dict[type, tuple[type, ...]] = {
    Idle: (Attempting, Failed),
    Attempting: (Attempting, Succeeded, Failed),
}


class ObjectOperation:
    def __init__(
        self,
        obj: TargetObject,
        client: ApiClient,
        *,
        gate: ConcurrencyGate,
        budget: Budget,
        backoff: ExponentialBackoff,
        sink: EventSink | None = None,
        clock: Clock = time.monotonic,
    ) -> None:
        self.obj = obj
        self._client = client
        self._gate = gate
        self._budget = budget
        self._backoff = backoff
        self._sink = sink
        self._clock = clock
        self._state: OperationState = Idle()
        self._started_at: float | None = None
        self._last_error: BaseException | None = None
        self._last_classification: Classification | None = None

    @property
    def state(self) -> OperationState:
        return self._state

    @property
    def ref(self) -> ObjectRef:
        return self._client.ref_for(self.obj)

    @property
    def attempts(self) -> int:
        state = self._state
        if isinstance(state, Attempting):
            return state.attempt
        if isinstance(state, (Succeeded, Failed)):
            return state.attempts
        return 0

    @property
    def elapsed(self) -> float:
        if self._started_at is None:
            return 0.0
        return self._clock() - self._started_at

    @property
    def done(self) -> bool:
        return isinstance(self._state, (Succeeded, Failed))

    @property
    def last_attempt(self) -> OperationAttempt | None:
        if self.attempts == 0:
            return None
        return OperationAttempt(self.attempts, self.elapsed, self._last_error)

    @property
    def outcome(self) -> Outcome | None:
        state = self._state
        if isinstance(state, Succeeded):
            return Outcome.succeeded(state.attempts, state.elapsed)
        if isinstance(state, Failed):
            return Outcome.failed(
                state.reason,
                attempts=state.attempts,
                elapsed=state.elapsed,
                error=state.error,
                classification=state.classification,
            )
        return None

    def abandon(self, reason: FailureReason = FailureReason.CANCELLED) -> Outcome:
        """Close out an unfinished operation; finished ones keep their outcome."""
        if not self.done:
            self._finish_failed(reason)
        outcome = self.outcome
        assert outcome is not None
        return outcome

    async def run(self) -> Outcome:
        if not isinstance(self._state, Idle):
            raise InvalidTransition("operation has already been started")
        self._started_at = self._clock()
        self._transition(Attempting(attempt=1, started_at=self._started_at))
        try:
            return await self._attempt_until_done()
        except asyncio.CancelledError:
            self.abandon()
            raise

    async def _attempt_until_done(self) -> Outcome:
        while True:
            state = self._state
            assert isinstance(state, Attempting)
            try:
                async with self._gate.slot():
                    await self._call()
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                self._last_error = exc
                self._last_classification = classify_error(exc)
            else:
                self._transition(Succeeded(attempts=state.attempt, elapsed=self.elapsed))
                self._emit(AttemptResult.SUCCEEDED)
                return self._require_outcome()

            if self._last_classification.terminal:
                return self._finish_failed(FailureReason.TERMINAL)

            delay = self._backoff.next_delay(state.attempt)
            if self._budget.expired() or not self._budget.admits(delay):
                return self._finish_failed(FailureReason.TIMEOUT)

            self._emit(AttemptResult.RETRYING, next_delay=delay)
            await asyncio.sleep(delay)
            self._transition(Attempting(attempt=state.attempt + 1, started_at=state.started_at))

    async def _call(self) -> None:
        if self.obj.action is Action.DELETE:
            await self._client.delete(self.obj)
        else:
            await self._client.apply(self.obj)

    def _finish_failed(self, reason: FailureReason) -> Outcome:
        self._transition(
            Failed(
                reason=reason,
                attempts=self.attempts,
                elapsed=self.elapsed,
                error=self._last_error,
                classification=self._last_classification,
            )
        )
        self._emit(AttemptResult.FAILED, reason=reason)
        return self._require_outcome()

    def _require_outcome(self) -> Outcome:
        outcome = self.outcome
        if outcome is None:
            raise InvalidTransition(f"{type(self._state).__name__} is not a terminal state")
        return outcome

    def _transition(self, new_state: OperationState) -> None:
        allowed = _TRANSITIONS.get(type(self._state), ())
        if not isinstance(new_state, allowed):
            raise InvalidTransition(
                f"{self.obj.ref}: cannot move from {type(self._state).__name__} "
                f"to {type(new_state).__name__}"
            )
        self._state = new_state

    def _emit(
        self,
        result: AttemptResult,
        *,
        next_delay: float | None = None,
        reason: FailureReason | None = None,
    ) -> None:
        if self._sink is None:
            return
        error: str | None = None
        if result is not AttemptResult.SUCCEEDED:
            if reason is FailureReason.CANCELLED:
                error = "cancelled"
            elif reason is FailureReason.TIMEOUT:
                error = f"timed out: {self._last_error}"
            elif self._last_error is not None:
                error = str(self._last_error)
        category = None
        if self._last_classification is not None and result is not AttemptResult.SUCCEEDED:
            category = self._last_classification.category
        self._sink.attempt(
            AttemptEvent(
                ref=self.ref,
                action=self.obj.action,
                attempt=self.attempts,
                elapsed=self.elapsed,
                result=result,
                error=error,
                category=category,
                next_delay=next_delay,
            )
        )
