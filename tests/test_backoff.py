"""Tests for exponential backoff with jitter."""

from __future__ import annotations

import random

import pytest

from courier.config import BackoffSettings
from courier.webhooks.backoff import base_delay, compute_backoff


@pytest.fixture
def policy() -> BackoffSettings:
    return BackoffSettings(base_seconds=1.0, max_seconds=3600.0)


class TestBaseDelay:
    """Tests for base_delay()."""

    def test_doubles_per_attempt(self, policy: BackoffSettings) -> None:
        assert [base_delay(n, policy) for n in range(5)] == [1.0, 2.0, 4.0, 8.0, 16.0]

    def test_capped_at_max(self, policy: BackoffSettings) -> None:
        assert base_delay(12, policy) == 3600.0
        assert base_delay(500, policy) == 3600.0

    def test_negative_attempt_treated_as_zero(self, policy: BackoffSettings) -> None:
        assert base_delay(-3, policy) == 1.0


class TestComputeBackoff:
    """Tests for compute_backoff()."""

    @pytest.mark.parametrize("attempt", [0, 1, 2, 5, 11, 12, 40])
    def test_within_jitter_bounds(self, policy: BackoffSettings, attempt: int) -> None:
        """Every delay lies in [0.8, 1.2] x min(base * 2^n, max)."""
        rng = random.Random(attempt)
        nominal = min(1.0 * 2**attempt, 3600.0)
        for _ in range(200):
            delay = compute_backoff(attempt, policy, rng)
            assert nominal * 0.8 <= delay <= nominal * 1.2

    def test_never_exceeds_jittered_cap(self, policy: BackoffSettings) -> None:
        rng = random.Random(1)
        assert max(compute_backoff(30, policy, rng) for _ in range(500)) <= 3600.0 * 1.2

    def test_expected_value_non_decreasing(self, policy: BackoffSettings) -> None:
        """Mean delay grows with the attempt number below the cap."""
        rng = random.Random(3)
        means = [
            sum(compute_backoff(n, policy, rng) for _ in range(300)) / 300 for n in range(12)
        ]
        assert all(later >= earlier * 0.99 for earlier, later in zip(means, means[1:]))

    def test_seeded_rng_reproducible(self, policy: BackoffSettings) -> None:
        first = [compute_backoff(3, policy, random.Random(42)) for _ in range(3)]
        second = [compute_backoff(3, policy, random.Random(42)) for _ in range(3)]
        assert first == second

    def test_custom_policy(self) -> None:
        policy = BackoffSettings(base_seconds=0.5, max_seconds=10.0, jitter_min=1.0, jitter_max=1.0)
        assert compute_backoff(2, policy) == 2.0
        assert compute_backoff(10, policy) == 10.0
