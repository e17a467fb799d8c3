import pytest

from app.clients.cache import BoundedCache
from app.clients.workers import run_with_concurrency


class FakeClock:
    def __init__(self) -> None:
        self.now = 100.0

    def __call__(self) -> float:
        return self.now


def test_cache_expires_entries_after_ttl():
    clock = FakeClock()
    cache: BoundedCache[str] = BoundedCache(10, 5.0, clock=clock)
    cache.set("a", "alpha")

    assert cache.get("a") == "alpha"
    clock.now += 5.0
    assert cache.get("a") is None
    assert cache.stats()["misses"] == 1


def test_cache_evicts_least_recently_used_entry():
    cache: BoundedCache[int] = BoundedCache(2, 60.0, clock=FakeClock())
    cache.set("a", 1)
    cache.set("b", 2)
    cache.get("a")
    cache.set("c", 3)

    assert cache.get("b") is None
    assert cache.get("a") == 1
    assert cache.get("c") == 3
    stats = cache.stats()
    assert stats["evictions"] == 1
    assert stats["size"] == 2 == len(cache)


def test_cache_distinguishes_cached_none_from_missing():
    cache: BoundedCache[str | None] = BoundedCache(2, 60.0, clock=FakeClock())
    sentinel = object()
    cache.set("gone", None)

    assert cache.get("gone", sentinel) is None
    assert cache.get("never", sentinel) is sentinel


def test_cache_rejects_invalid_bounds():
    with pytest.raises(ValueError):
        BoundedCache(0, 1.0)
    with pytest.raises(ValueError):
        BoundedCache(1, 0)


def test_run_with_concurrency_preserves_input_order():
    assert run_with_concurrency([3, 1, 2, 5, 4], lambda value: value * 10, 3) == [
        30,
        10,
        20,
        50,
        40,
    ]


def test_run_with_concurrency_reraises_worker_errors():
    def worker(value: int) -> int:
        if value == 2:
            raise RuntimeError("boom")
        return value

    with pytest.raises(RuntimeError, match="boom"):
        run_with_concurrency([1, 2, 3], worker, 2)


def test_run_with_concurrency_validates_limit():
    with pytest.raises(ValueError):
        run_with_concurrency([1], lambda value: value, 0)
    assert run_with_concurrency([], lambda value: value, 2) == []
