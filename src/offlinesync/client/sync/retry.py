"""Retry scheduling with exponential backoff.

This module provides:
- compute_backoff: Delay before the next attempt of a failed operation
- next_attempt_at: Absolute time an operation becomes eligible again

Operations are never retried inside a cycle. A transport failure records
the attempt and pushes the operation's eligibility into the future; later
cycles skip it (and every later operation on the same entity) until then.
"""

from __future__ import annotations

import time

# Default retry configuration
DEFAULT_MAX_ATTEMPTS = 5
DEFAULT_INITIAL_BACKOFF = 1.0  # seconds
DEFAULT_MAX_BACKOFF = 60.0  # seconds
DEFAULT_BACKOFF_MULTIPLIER = 2.0


def compute_backoff(
    attempts: int,
    initial_backoff: float = DEFAULT_INITIAL_BACKOFF,
    max_backoff: float = DEFAULT_MAX_BACKOFF,
    backoff_multiplier: float = DEFAULT_BACKOFF_MULTIPLIER,
) -> float:
    """Delay after the given number of failed attempts.

    Args:
        attempts: Failed attempts so far (1 after the first failure).
        initial_backoff: Delay after the first failure.
        max_backoff: Upper bound.
        backoff_multiplier: Growth factor per attempt.

    Returns:
        Delay in seconds (0 when attempts < 1).
    """
    if attempts < 1:
        return 0.0
    delay: float = initial_backoff * backoff_multiplier ** (attempts - 1)
    return min(delay, max_backoff)


def next_attempt_at(
    attempts: int,
    initial_backoff: float = DEFAULT_INITIAL_BACKOFF,
    max_backoff: float = DEFAULT_MAX_BACKOFF,
    backoff_multiplier: float = DEFAULT_BACKOFF_MULTIPLIER,
    now: float | None = None,
) -> float:
    """Absolute time at which an operation may be tried again."""
    now = time.time() if now is None else now
    return now + compute_backoff(attempts, initial_backoff, max_backoff, backoff_multiplier)
