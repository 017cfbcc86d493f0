"""Process-wide mutable state owned by one orchestrator instance."""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Generic, Hashable, Optional, TypeVar

from .cancellation import TaskTracker

T = TypeVar("T")

Clock = Callable[[], float]


@dataclass
class CacheEntry(Generic[T]):
    timestamp: float
    value: T


class TtlCache(Generic[T]):
    """Keyed cache whose staleness is decided only by age at read time."""

    def __init__(self, ttl: float, clock: Clock = time.monotonic) -> None:
        self.ttl = ttl
        self._clock = clock
        self._entries: Dict[Hashable, CacheEntry[T]] = {}

    def lookup(self, key: Hashable) -> Optional[CacheEntry[T]]:
        """Return the fresh entry for ``key`` or None; a cached ``None`` value is still a hit."""
        entry = self._entries.get(key)
        if entry is None:
            return None
        if self._clock() - entry.timestamp >= self.ttl:
            return None
        return entry

    def peek(self, key: Hashable) -> Optional[CacheEntry[T]]:
        """Return the entry for ``key`` regardless of age."""
        return self._entries.get(key)

    def put(self, key: Hashable, value: T) -> T:
        self._entries[key] = CacheEntry(timestamp=self._clock(), value=value)
        return value

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


@dataclass
class OrchestratorState:
    """Caches, in-flight maps and the task tracker.

    Tests build a fresh instance per case. Mutations happen synchronously
    between suspension points on the single event loop, so no locking.
    """

    device_cache_ttl: float = 0.8
    container_cache_ttl: float = 600.0
    scheme_cache_ttl: float = 600.0
    hint_cache_ttl: float = 600.0
    clock: Clock = time.monotonic
    tracker: TaskTracker = field(default_factory=TaskTracker)
    in_flight: Dict[str, "asyncio.Future[Any]"] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.device_cache: TtlCache[Any] = TtlCache(self.device_cache_ttl, self.clock)
        self.container_cache: TtlCache[Any] = TtlCache(self.container_cache_ttl, self.clock)
        self.scheme_cache: TtlCache[Any] = TtlCache(self.scheme_cache_ttl, self.clock)
        self.hint_cache: TtlCache[bool] = TtlCache(self.hint_cache_ttl, self.clock)

    @classmethod
    def from_settings(cls, settings, clock: Clock = time.monotonic) -> "OrchestratorState":
        return cls(
            device_cache_ttl=settings.device_cache_ttl,
            container_cache_ttl=settings.container_cache_ttl,
            scheme_cache_ttl=settings.scheme_cache_ttl,
            hint_cache_ttl=settings.hint_cache_ttl,
            clock=clock,
        )

    async def coalesce(self, key: str, factory: Callable[[], Any]) -> Any:
        """Share one running ``factory()`` coroutine among concurrent callers of ``key``."""
        pending = self.in_flight.get(key)
        if pending is not None:
            return await asyncio.shield(pending)
        task = asyncio.ensure_future(factory())
        self.in_flight[key] = task
        try:
            return await asyncio.shield(task)
        finally:
            if self.in_flight.get(key) is task:
                del self.in_flight[key]


__all__ = ["CacheEntry", "Clock", "OrchestratorState", "TtlCache"]
