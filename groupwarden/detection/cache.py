from __future__ import annotations

import asyncio
import hashlib
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable, Generic, Optional, TypeVar

import structlog

logger = structlog.get_logger(__name__)

V = TypeVar("V")


@dataclass(slots=True)
class _Entry(Generic[V]):
    value: V
    expires_at: float


class DetectionCache(Generic[V]):
    """
    In-memory TTL cache for provider verdicts keyed by message fingerprint.

    Last write wins. Two checks racing on the same key may both call the provider;
    both results are correct for the key, so only the duplicate work is lost.
    """

    def __init__(
        self,
        *,
        ttl_seconds: float = 3600.0,
        max_entries: int = 10_000,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._ttl = ttl_seconds
        self._max_entries = max_entries
        self._clock = clock
        self._entries: OrderedDict[str, _Entry[V]] = OrderedDict()
        self._lock = asyncio.Lock()

    @staticmethod
    def fingerprint(text: str, *, namespace: str = "detection", **config: Any) -> str:
        normalized = " ".join(text.split())
        digest = hashlib.sha256()
        digest.update(normalized.encode("utf-8"))
        for key, value in sorted(config.items()):
            digest.update(b"\x00")
            digest.update(f"{key}={value}".encode("utf-8"))
        return f"{namespace}:{digest.hexdigest()}"

    async def get(self, key: str) -> Optional[V]:
        async with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if entry.expires_at <= self._clock():
                del self._entries[key]
                logger.debug("detection_cache_expired", key=key)
                return None
            return entry.value

    async def set(self, key: str, value: V) -> None:
        async with self._lock:
            self._entries.pop(key, None)
            self._entries[key] = _Entry(value=value, expires_at=self._clock() + self._ttl)
            while len(self._entries) > self._max_entries:
                evicted, _ = self._entries.popitem(last=False)
                logger.debug("detection_cache_evicted", key=evicted)

    async def clear(self) -> None:
        async with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)
