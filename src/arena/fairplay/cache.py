"""Per-participant activity history cache.

Uses an OrderedDict with time-window eviction, like an event dedup
filter: entries older than the TTL are dropped on access, the oldest
entries go first once the size cap is hit, and ingesting new activity
for a participant invalidates that participant's entry.

A reader takes ``generation()`` before it queries the store and hands it
back to ``put``. If the participant was invalidated in between, the read
may predate the new activity and is not cached.
"""

from __future__ import annotations

import time
from collections import OrderedDict
from typing import Any


class HistoryCache:
    """Time-bounded cache of activity histories keyed by participant id."""

    def __init__(self, ttl_seconds: float = 60.0, max_entries: int = 10_000) -> None:
        self._entries: OrderedDict[int, tuple[float, list[Any]]] = OrderedDict()
        self._ttl = ttl_seconds
        self._max_entries = max_entries
        self._hits = 0
        self._misses = 0
        self._generation = 0
        self._invalidated: OrderedDict[int, int] = OrderedDict()
        # Highest stamp dropped from _invalidated; stands in for any pruned participant.
        self._floor = 0

    def generation(self) -> int:
        return self._generation

    def get(self, participant_id: int) -> list[Any] | None:
        now = time.monotonic()
        self._evict(now)
        entry = self._entries.get(participant_id)
        if entry is None:
            self._misses += 1
            return None
        self._hits += 1
        return entry[1]

    def put(self, participant_id: int, history: list[Any], generation: int | None = None) -> bool:
        """Cache ``history``; refused when it was read before the last invalidation."""
        if generation is not None and self._invalidated.get(participant_id, self._floor) > generation:
            return False

        now = time.monotonic()
        self._entries.pop(participant_id, None)
        self._entries[participant_id] = (now, history)

        while len(self._entries) > self._max_entries:
            self._entries.popitem(last=False)
        return True

    def invalidate(self, participant_id: int) -> None:
        self._entries.pop(participant_id, None)
        self._generation += 1
        self._invalidated.pop(participant_id, None)
        self._invalidated[participant_id] = self._generation

        while len(self._invalidated) > self._max_entries:
            _, stamp = self._invalidated.popitem(last=False)
            self._floor = max(self._floor, stamp)

    def clear(self) -> None:
        self._entries.clear()
        self._generation += 1
        self._invalidated.clear()
        self._floor = self._generation

    def _evict(self, now: float) -> None:
        """Remove entries older than the TTL."""
        cutoff = now - self._ttl
        while self._entries:
            _, (ts, _) = next(iter(self._entries.items()))
            if ts >= cutoff:
                break
            self._entries.popitem(last=False)

    def __len__(self) -> int:
        return len(self._entries)

    @property
    def stats(self) -> dict[str, int]:
        return {
            "cached": len(self._entries),
            "hits": self._hits,
            "misses": self._misses,
        }
