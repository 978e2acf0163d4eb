"""Fan out object operations and collect a batch report."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from collections.abc import Iterable

from deka.domain.objects import TargetObject
from deka.domain.outcomes import BatchReport, FailureReason, Outcome
from deka.execution.backoff import Budget, Clock, ExponentialBackoff
from deka.execution.events import EventSink, LoggingEventSink
from deka.execution.gate import ConcurrencyGate
from deka.execution.operation import ApiClient, ObjectOperation

logger = logging.getLogger(__name__)


class Orchestrator:
    """Apply objects independently of each other, in no particular order.

    One task runs per object. A failure of one object never cancels or
    delays another; the only shared state is the concurrency gate and the
    budget's deadline.
    """

    def __init__(
        self,
        client: ApiClient,
        *,
        backoff: ExponentialBackoff | None = None,
        sink: EventSink | None = None,
        clock: Clock = time.monotonic,
    ) -> None:
        self._client = client
        self._backoff = backoff or ExponentialBackoff()
        self._sink: EventSink = sink if sink is not None else LoggingEventSink()
        self._clock = clock

    async def apply_batch(
        self,
        objects: Iterable[TargetObject],
        *,
        parallelism: int,
        timeout: float,
        shutdown: asyncio.Event | None = None,
    ) -> BatchReport:
        if parallelism < 0:
            raise ValueError("parallelism must be >= 0")
        if timeout < 0:
            raise ValueError("timeout must be >= 0")

        targets = list(objects)
        started_at = self._clock()
        budget = Budget.from_timeout(timeout, clock=self._clock)
        gate = ConcurrencyGate(parallelism)
        operations = [
            ObjectOperation(
                obj,
                self._client,
                gate=gate,
                budget=budget,
                backoff=self._backoff,
                sink=self._sink,
                clock=self._clock,
            )
            for obj in targets
        ]
        logger.debug(
            "Starting batch of %d object(s)",
            len(targets),
            extra={"parallelism": parallelism, "timeout": timeout},
        )

        tasks = [asyncio.create_task(op.run(), name=f"deka:{op.obj.ref}") for op in operations]
        try:
            await self._wait(tasks, shutdown)
        finally:
            await self._abandon(tasks)

        results = tuple(
            (op.ref, self._outcome(op, task)) for op, task in zip(operations, tasks)
        )
        report = BatchReport(results=results, elapsed=self._clock() - started_at)
        self._sink.report(report)
        return report

    async def _wait(self, tasks: list[asyncio.Task], shutdown: asyncio.Event | None) -> None:
        if not tasks:
            return
        if shutdown is None:
            await asyncio.wait(tasks)
            return

        waiter = asyncio.create_task(shutdown.wait(), name="deka:shutdown")
        try:
            pending = set(tasks)
            while pending:
                done, _ = await asyncio.wait(
                    pending | {waiter}, return_when=asyncio.FIRST_COMPLETED
                )
                if waiter in done:
                    logger.warning("Shutdown requested, abandoning unfinished objects")
                    return
                pending -= done
        finally:
            waiter.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await waiter

    @staticmethod
    async def _abandon(tasks: list[asyncio.Task]) -> None:
        unfinished = [task for task in tasks if not task.done()]
        for task in unfinished:
            task.cancel()
        if unfinished:
            await asyncio.gather(*unfinished, return_exceptions=True)

    @staticmethod
    def _outcome(operation: ObjectOperation, task: asyncio.Task) -> Outcome:
        if not task.cancelled():
            exc = task.exception()
            if exc is None:
                return task.result()
            logger.error("Operation for %s crashed: %r", operation.obj.ref, exc)
            return operation.abandon(FailureReason.TERMINAL)
        # Cancelled tasks record their state before unwinding; a task that
        # never got scheduled is still Idle.
        return operation.abandon()


async def apply_batch(
    objects: Iterable[TargetObject],
    client: ApiClient,
    *,
    parallelism: int = 10,
    timeout: float = 300,
    backoff: ExponentialBackoff | None = None,
    sink: EventSink | None = None,
    shutdown: asyncio.Event | None = None,
) -> BatchReport:
    """Apply ``objects`` with at most ``parallelism`` concurrent calls (0 = unbounded)."""
    orchestrator = Orchestrator(client, backoff=backoff, sink=sink)
    return await orchestrator.apply_batch(
        objects, parallelism=parallelism, timeout=timeout, shutdown=shutdown
    )
