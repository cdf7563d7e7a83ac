"""Retry spacing shared by every retrying operation in the engine."""

from __future__ import annotations


def exponential_backoff_ms(attempt: int, base_delay_ms: int) -> int:
    """Delay before retry number ``attempt``.

    Attempt 1 waits ``base_delay_ms``, attempt 2 twice that, attempt 3 four
    times that. Attempts below 1 run immediately.
    """
    if attempt < 1:
        return 0
    return base_delay_ms * 2 ** (attempt - 1)


def exponential_backoff_seconds(attempt: int, base_delay_ms: int) -> float:
    return exponential_backoff_ms(attempt, base_delay_ms) / 1000.0
