from __future__ import annotations

import pytest

from groupwarden.detection.cache import DetectionCache


class ManualClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


def test_fingerprint_normalises_whitespace_and_includes_config() -> None:
    first = DetectionCache.fingerprint("buy   crypto\nnow", model="a")
    second = DetectionCache.fingerprint("buy crypto now", model="a")
    other_model = DetectionCache.fingerprint("buy crypto now", model="b")
    assert first == second
    assert first != other_model
    assert first.startswith("detection:")
    assert DetectionCache.fingerprint("x", namespace="openai").startswith("openai:")


@pytest.mark.asyncio
async def test_entries_expire_after_ttl() -> None:
    clock = ManualClock()
    cache: DetectionCache[str] = DetectionCache(ttl_seconds=10, clock=clock)
    await cache.set("k", "v")
    clock.now = 9.9
    assert await cache.get("k") == "v"
    clock.now = 10.0
    assert await cache.get("k") is None
    assert len(cache) == 0


@pytest.mark.asyncio
async def test_oldest_entry_is_evicted_when_full() -> None:
    cache: DetectionCache[int] = DetectionCache(max_entries=2)
    await cache.set("a", 1)
    await cache.set("b", 2)
    await cache.set("c", 3)
    assert await cache.get("a") is None
    assert await cache.get("b") == 2
    assert await cache.get("c") == 3


@pytest.mark.asyncio
async def test_rewriting_a_key_refreshes_its_position() -> None:
    cache: DetectionCache[int] = DetectionCache(max_entries=2)
    await cache.set("a", 1)
    await cache.set("b", 2)
    await cache.set("a", 10)
    await cache.set("c", 3)
    assert await cache.get("a") == 10
    assert await cache.get("b") is None
    await cache.clear()
    assert len(cache) == 0
