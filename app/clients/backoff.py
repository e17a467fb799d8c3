"""Backoff schedules used by the fetch retry middleware."""

from __future__ import annotations


def _validate(attempt: int, base_delay: float) -> None:
    if attempt < 0:
        raise ValueError("attempt must be >= 0")
    if base_delay < 0:
        raise ValueError("base_delay must be >= 0")


def exponential_delay(
    attempt: int,
    base_delay: float,
    *,
    factor: float = 2.0,
    max_delay: float | None = None,
) -> float:
    """Delay after the zero-based ``attempt`` was rate limited: base * factor^(attempt + 1)."""
    _validate(attempt, base_delay)
    if factor < 1:
        raise ValueError("factor must be >= 1")
    delay = base_delay * factor ** (attempt + 1)
    return min(delay, max_delay) if max_delay is not None else delay


def linear_delay(attempt: int, base_delay: float, *, max_delay: float | None = None) -> float:
    """Delay after the zero-based ``attempt`` timed out: base * (attempt + 1)."""
    _validate(attempt, base_delay)
    delay = base_delay * (attempt + 1)
    return min(delay, max_delay) if max_delay is not None else delay
