"""Explicit time-bounded cache for read-side lookups."""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Hashable, Optional, Tuple


@dataclass
class _Entry:
    value: Any
    expires_at: float


class TTLCache:
    """Small in-process cache with a fixed time-to-live per entry.

    Keys are tuples whose first element is a namespace (usually a source id),
    so writers can drop everything derived from one source with
    ``invalidate_namespace`` after they change it. A TTL of zero disables
    caching entirely.
    """

    def __init__(self, ttl_seconds: float, *, clock: Callable[[], float] = time.monotonic) -> None:
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: Dict[Tuple[Hashable, ...], _Entry] = {}

    def get(self, key: Tuple[Hashable, ...]) -> Optional[Any]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry.expires_at <= self._clock():
            self._entries.pop(key, None)
            return None
        return entry.value

    def set(self, key: Tuple[Hashable, ...], value: Any) -> None:
        if self.ttl_seconds <= 0:
            return
        self._entries[key] = _Entry(value=value, expires_at=self._clock() + self.ttl_seconds)

    def invalidate(self, key: Tuple[Hashable, ...]) -> None:
        self._entries.pop(key, None)

    def invalidate_namespace(self, namespace: Hashable) -> int:
        """Drop every key that starts with ``namespace``; returns the number removed."""
        doomed = [key for key in self._entries if key and key[0] == namespace]
        for key in doomed:
            del self._entries[key]
        return len(doomed)

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)
