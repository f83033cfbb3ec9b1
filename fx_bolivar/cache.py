"""Process-wide memo of the last aggregated snapshot."""

from __future__ import annotations

import threading
from dataclasses import dataclass
from datetime import datetime, timedelta

from fx_bolivar.ingestion.models import Snapshot
from fx_bolivar.utils.date_range import Clock, utc_now

DEFAULT_TTL = timedelta(minutes=5)


@dataclass(frozen=True, slots=True)
class CacheEntry:
    snapshot: Snapshot
    stored_at: datetime

    def is_fresh(self, now: datetime, ttl: timedelta) -> bool:
        return now - self.stored_at < ttl


class RateCache:
    """Single-entry, time-boxed snapshot cache.

    The entry is an immutable :class:`CacheEntry` swapped as a whole under a
    lock, so readers either see the previous entry or the new one. Stale
    entries are kept (not deleted) so the aggregator can fall back to them
    when every upstream fails; only :meth:`invalidate` drops the entry.
    """

    def __init__(self, ttl: timedelta = DEFAULT_TTL, *, clock: Clock = utc_now) -> None:
        if ttl <= timedelta(0):
            raise ValueError("ttl must be positive")
        self.ttl = ttl
        self.clock = clock
        self._lock = threading.Lock()
        self._entry: CacheEntry | None = None

    def get(self) -> Snapshot | None:
        """Return the cached snapshot while it is fresh, otherwise ``None``."""

        with self._lock:
            entry = self._entry
        if entry is None or not entry.is_fresh(self.clock(), self.ttl):
            return None
        return entry.snapshot

    def peek(self) -> CacheEntry | None:
        """Return the current entry regardless of its age."""

        with self._lock:
            return self._entry

    def put(self, snapshot: Snapshot) -> CacheEntry:
        entry = CacheEntry(snapshot=snapshot, stored_at=self.clock())
        with self._lock:
            self._entry = entry
        return entry

    def restore(self, entry: CacheEntry) -> None:
        """Reinstate ``entry`` with its original age if the cache is empty."""

        with self._lock:
            if self._entry is None:
                self._entry = entry

    def invalidate(self) -> None:
        with self._lock:
            self._entry = None


__all__ = ["CacheEntry", "DEFAULT_TTL", "RateCache"]
