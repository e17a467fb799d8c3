"""Bounded worker pool for fan-out over source API calls."""

from __future__ import annotations

from collections.abc import Callable, Sequence
from concurrent.futures import ThreadPoolExecutor
from threading import Lock
from typing import TypeVar

T = TypeVar("T")
R = TypeVar("R")


def run_with_concurrency(
    items: Sequence[T],
    worker: Callable[[T], R],
    concurrency: int,
) -> list[R]:
    """Apply ``worker`` to every item with at most ``concurrency`` calls in flight.

    Each thread pulls the next index from a shared counter until the input is
    exhausted. Results keep the input order. The first worker exception is
    re-raised once all threads have stopped.
    """
    if concurrency < 1:
        raise ValueError("concurrency must be >= 1")
    if not items:
        return []

    results: list[R | None] = [None] * len(items)
    next_index = 0
    lock = Lock()

    def _drain() -> None:
        nonlocal next_index
        while True:
            with lock:
                if next_index >= len(items):
                    return
                index = next_index
                next_index += 1
            results[index] = worker(items[index])

    workers = min(concurrency, len(items))
    with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="listener-worker") as pool:
        futures = [pool.submit(_drain) for _ in range(workers)]
        for future in futures:
            future.result()
    return results  # type: ignore[return-value]
