"""Merge fetcher outputs into a single cached snapshot."""

from __future__ import annotations

import threading
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Sequence

from fx_bolivar.cache import CacheEntry, RateCache
from fx_bolivar.errors import NoSourcesAvailable
from fx_bolivar.ingestion.models import FetchFailure, FetchOutcome, Quote, Snapshot
from fx_bolivar.ingestion.strategy import FetchStrategy
from fx_bolivar.utils.date_range import Clock, utc_now
from fx_bolivar.utils.logger import get_logger

LOGGER = get_logger(__name__)

SnapshotListener = Callable[[Snapshot], Any]


class CacheStatus(str, Enum):
    HIT = "hit"
    MISS = "miss"
    STALE = "stale"


@dataclass(frozen=True, slots=True)
class AggregationResult:
    snapshot: Snapshot
    cache_status: CacheStatus
    failures: tuple[FetchFailure, ...] = ()

    def to_payload(self) -> Dict[str, Any]:
        return {
            "cache": self.cache_status.value,
            "fetched_at": self.snapshot.fetched_at.isoformat(),
            "rates": self.snapshot.to_payload(),
            "failures": [str(failure) for failure in self.failures],
        }


class RateAggregator:
    """Cache-first aggregation over independent quote fetchers.

    Fetchers run concurrently; a failing fetcher only contributes zero
    quotes. Quotes are merged in fetcher order so later fetchers win when two
    report the same source. Refreshes are serialised so two concurrent cache
    misses do not both hit the upstreams, and a forced refresh never exposes
    an empty cache to readers waiting on it.

    Listeners run on a single background worker, in refresh order, after the
    refresh lock is released. :meth:`flush` waits for the queued calls.
    """

    def __init__(
        self,
        fetchers: Sequence[FetchStrategy],
        cache: RateCache,
        *,
        clock: Clock = utc_now,
        listeners: Sequence[SnapshotListener] = (),
    ) -> None:
        if not fetchers:
            raise ValueError("At least one fetcher is required")
        self.fetchers = list(fetchers)
        self.cache = cache
        self.clock = clock
        self.listeners: list[SnapshotListener] = list(listeners)
        self._refresh_lock = threading.Lock()
        self._listener_lock = threading.Lock()
        self._listener_pool: ThreadPoolExecutor | None = None
        self._pending: list[Future[None]] = []

    def add_listener(self, listener: SnapshotListener) -> None:
        self.listeners.append(listener)

    def aggregate(self, *, force: bool = False) -> Snapshot:
        return self.aggregate_with_status(force=force).snapshot

    def aggregate_with_status(self, *, force: bool = False) -> AggregationResult:
        if not force:
            cached = self.cache.get()
            if cached is not None:
                return AggregationResult(cached, CacheStatus.HIT)

        with self._refresh_lock:
            if force:
                fallback = self.cache.peek()
                self.cache.invalidate()
            else:
                # Another caller may have refreshed while we waited.
                cached = self.cache.get()
                if cached is not None:
                    return AggregationResult(cached, CacheStatus.HIT)
                fallback = self.cache.peek()
            result = self._refresh(fallback)

        if result.cache_status is CacheStatus.MISS:
            self._notify(result.snapshot)
        return result

    def diagnose(self) -> list[FetchOutcome]:
        """Run every fetcher once, bypassing the cache, and return the outcomes."""

        return self._fetch_all()

    def _refresh(self, fallback: CacheEntry | None) -> AggregationResult:
        outcomes = self._fetch_all()
        failures = tuple(o.failure for o in outcomes if o.failure is not None)
        quotes: list[Quote] = [quote for outcome in outcomes for quote in outcome.quotes]

        if not quotes:
            if fallback is not None:
                LOGGER.warning(
                    "All %s fetchers failed; serving stale snapshot stored at %s",
                    len(self.fetchers),
                    fallback.stored_at.isoformat(),
                )
                # Put the stale entry back so later readers keep a fallback.
                self.cache.restore(fallback)
                return AggregationResult(fallback.snapshot, CacheStatus.STALE, failures)
            raise NoSourcesAvailable(failures)

        snapshot = Snapshot.merge(quotes, self.clock())
        self.cache.put(snapshot)
        for failure in failures:
            LOGGER.warning("Source contributed nothing: %s", failure)
        return AggregationResult(snapshot, CacheStatus.MISS, failures)

    def _fetch_all(self) -> list[FetchOutcome]:
        with ThreadPoolExecutor(
            max_workers=len(self.fetchers), thread_name_prefix="fx-fetch"
        ) as pool:
            futures = [pool.submit(fetcher.fetch) for fetcher in self.fetchers]
            return [future.result() for future in futures]

    def _notify(self, snapshot: Snapshot) -> None:
        if not self.listeners:
            return
        with self._listener_lock:
            if self._listener_pool is None:
                self._listener_pool = ThreadPoolExecutor(
                    max_workers=1, thread_name_prefix="fx-listener"
                )
            self._pending = [future for future in self._pending if not future.done()]
            self._pending.append(self._listener_pool.submit(self._run_listeners, snapshot))

    def _run_listeners(self, snapshot: Snapshot) -> None:
        for listener in self.listeners:
            try:
                listener(snapshot)
            except Exception:  # noqa: BLE001 - listeners must not fail aggregation
                LOGGER.exception("Snapshot listener %r failed", listener)

    def flush(self, timeout: float | None = None) -> None:
        """Block until every queued listener call has finished."""

        with self._listener_lock:
            pending = list(self._pending)
        if pending:
            wait(pending, timeout=timeout)

    def close(self) -> None:
        with self._listener_lock:
            pool, self._listener_pool = self._listener_pool, None
            self._pending = []
        if pool is not None:
            pool.shutdown(wait=True)


__all__ = ["AggregationResult", "CacheStatus", "RateAggregator", "SnapshotListener"]
