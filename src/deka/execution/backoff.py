"""Retry delay schedule and the shared wall-clock budget."""

from __future__ import annotations

import random
import time
from dataclasses import dataclass, field
from typing import Callable

Clock = Callable[[], float]


@dataclass(frozen=True)
class ExponentialBackoff:
    """Exponential backoff with randomized jitter.

    For the attempt that just failed (1-based)::

        base  = min(initial_delay * multiplier ** (attempt - 1), max_delay)
        delay = uniform(base * (1 - f), base * (1 + f)), capped at max_delay

    With the defaults the expected delays are 0.4s, 2s, 10s, then 30s.
    """

    initial_delay: float = 0.4
    multiplier: float = 5.0
    max_delay: float = 30.0
    randomization_factor: float = 0.5
    rng: random.Random = field(default_factory=random.Random, compare=False, repr=False)

    def __post_init__(self) -> None:
        if self.initial_delay < 0:
            raise ValueError("initial_delay must be >= 0")
        if self.multiplier < 1:
            raise ValueError("multiplier must be >= 1")
        if self.max_delay < self.initial_delay:
            raise ValueError("max_delay must be >= initial_delay")
        if not 0 <= self.randomization_factor <= 1:
            raise ValueError("randomization_factor must be within [0, 1]")

    def base_delay(self, attempt: int) -> float:
        if attempt < 1:
            raise ValueError("attempt numbers start at 1")
        # Stop growing once capped so large attempt numbers cannot overflow.
        delay = self.initial_delay
        for _ in range(attempt - 1):
            delay *= self.multiplier
            if delay >= self.max_delay:
                return self.max_delay
        return min(delay, self.max_delay)

    def next_delay(self, attempt: int) -> float:
        base = self.base_delay(attempt)
        if self.randomization_factor == 0 or base == 0:
            return base
        spread = base * self.randomization_factor
        return min(self.rng.uniform(base - spread, base + spread), self.max_delay)


@dataclass(frozen=True)
class Budget:
    """A single deadline shared by every operation in a batch.

    ``deadline`` is an absolute reading of ``clock``; ``None`` disables it.
    """

    deadline: float | None
    clock: Clock = field(default=time.monotonic, compare=False, repr=False)

    @classmethod
    def from_timeout(cls, timeout: float, clock: Clock = time.monotonic) -> "Budget":
        if timeout < 0:
            raise ValueError("timeout must be >= 0")
        if timeout == 0:
            return cls(deadline=None, clock=clock)
        return cls(deadline=clock() + timeout, clock=clock)

    @classmethod
    def unbounded(cls, clock: Clock = time.monotonic) -> "Budget":
        return cls(deadline=None, clock=clock)

    @property
    def bounded(self) -> bool:
        return self.deadline is not None

    def remaining(self) -> float | None:
        if self.deadline is None:
            return None
        return max(0.0, self.deadline - self.clock())

    def expired(self) -> bool:
        return self.deadline is not None and self.clock() >= self.deadline

    def admits(self, delay: float) -> bool:
        """Whether sleeping for ``delay`` still ends before the deadline."""
        if self.deadline is None:
            return True
        return self.clock() + delay <= self.deadline
