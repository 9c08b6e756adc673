"""Exponential backoff with bounded jitter."""

from __future__ import annotations

import random

from courier.config import BackoffSettings


def base_delay(attempt: int, policy: BackoffSettings) -> float:
    """Delay before jitter: ``min(base * 2**attempt, max)``."""
    # Cap the exponent so huge attempt numbers cannot overflow the float
    exponent = min(max(attempt, 0), 64)
    return min(policy.base_seconds * (2.0**exponent), policy.max_seconds)


def compute_backoff(
    attempt: int,
    policy: BackoffSettings,
    rng: random.Random | None = None,
) -> float:
    """Seconds to wait before retrying after ``attempt`` completed attempts.

    Args:
        attempt: Number of attempts made so far.
        policy: Base, cap and jitter bounds.
        rng: Random source; the module-level generator if None.

    Returns:
        ``base_delay(attempt) * uniform(jitter_min, jitter_max)``.
    """
    source = rng or random
    return base_delay(attempt, policy) * source.uniform(policy.jitter_min, policy.jitter_max)
