from __future__ import annotations

import random

import pytest

from deka.execution.backoff import Budget, ExponentialBackoff


class _Clock:
    def __init__(self, now: float = 100.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


def test_base_delay_grows_exponentially_and_caps() -> None:
    policy = ExponentialBackoff(initial_delay=0.4, multiplier=5.0, max_delay=30.0)
    assert policy.base_delay(1) == pytest.approx(0.4)
    assert policy.base_delay(2) == pytest.approx(2.0)
    assert policy.base_delay(3) == pytest.approx(10.0)
    assert policy.base_delay(4) == 30.0
    assert policy.base_delay(500) == 30.0


def test_next_delay_without_jitter_is_deterministic() -> None:
    policy = ExponentialBackoff(
        initial_delay=1.0, multiplier=2.0, max_delay=10.0, randomization_factor=0.0
    )
    assert [policy.next_delay(n) for n in range(1, 6)] == [1.0, 2.0, 4.0, 8.0, 10.0]


def test_jitter_stays_within_randomization_window() -> None:
    policy = ExponentialBackoff(
        initial_delay=1.0,
        multiplier=2.0,
        max_delay=100.0,
        randomization_factor=0.5,
        rng=random.Random(7),
    )
    for attempt in range(1, 6):
        base = policy.base_delay(attempt)
        for _ in range(50):
            delay = policy.next_delay(attempt)
            assert base * 0.5 <= delay <= base * 1.5


def test_jitter_never_exceeds_max_delay() -> None:
    policy = ExponentialBackoff(
        initial_delay=1.0, multiplier=2.0, max_delay=4.0, randomization_factor=1.0
    )
    assert all(policy.next_delay(10) <= 4.0 for _ in range(100))


def test_jitter_spreads_concurrent_retries() -> None:
    policy = ExponentialBackoff(initial_delay=1.0, rng=random.Random(1))
    assert len({policy.next_delay(1) for _ in range(20)}) > 1


@pytest.mark.parametrize(
    "kwargs",
    [
        {"initial_delay": -1.0},
        {"multiplier": 0.5},
        {"initial_delay": 5.0, "max_delay": 1.0},
        {"randomization_factor": 1.5},
    ],
)
def test_invalid_parameters_are_rejected(kwargs: dict[str, float]) -> None:
    with pytest.raises(ValueError):
        ExponentialBackoff(**kwargs)


def test_attempt_numbers_start_at_one() -> None:
    with pytest.raises(ValueError):
        ExponentialBackoff().next_delay(0)


def test_budget_admits_delays_ending_before_deadline() -> None:
    clock = _Clock()
    budget = Budget.from_timeout(10.0, clock=clock)

    assert budget.deadline == 110.0
    assert budget.admits(9.0)
    assert budget.admits(10.0)
    assert not budget.admits(10.5)

    clock.now = 108.0
    assert budget.remaining() == pytest.approx(2.0)
    assert not budget.admits(3.0)
    assert not budget.expired()

    clock.now = 110.0
    assert budget.expired()
    assert budget.remaining() == 0.0


def test_zero_timeout_means_no_deadline() -> None:
    clock = _Clock()
    budget = Budget.from_timeout(0, clock=clock)

    clock.now = 1e9
    assert not budget.bounded
    assert budget.remaining() is None
    assert not budget.expired()
    assert budget.admits(1e9)


def test_budget_rejects_negative_timeout() -> None:
    with pytest.raises(ValueError):
        Budget.from_timeout(-1)


def test_budget_is_immutable() -> None:
    budget = Budget.unbounded()
    with pytest.raises(AttributeError):
        budget.deadline = 5.0  # type: ignore[misc]
