"""Daily, deduplicated rate history."""

from __future__ import annotations

from datetime import date

from fx_bolivar.db.base_backend import BackendStrategy
from fx_bolivar.db.records import AUTOMATIC_SOURCE, HistoricalRecord
from fx_bolivar.errors import PersistenceConflict
from fx_bolivar.ingestion.models import RateSource, Snapshot
from fx_bolivar.utils.date_range import (
    DEFAULT_TIMEZONE,
    Clock,
    day_key,
    retention_cutoff,
    trailing_days,
    utc_now,
)
from fx_bolivar.utils.logger import get_logger

LOGGER = get_logger(__name__)


def spread_percent(official: float, parallel: float) -> float:
    """Return how far the parallel rate sits above the official one, in percent."""

    if official == 0:
        raise ValueError("official rate must be non-zero")
    return (parallel - official) / official * 100


def _delta(current: float | None, previous: float | None) -> float:
    if current is None or previous is None:
        return 0.0
    return current - previous


class HistoricalRecorder:
    """Upsert exactly one :class:`HistoricalRecord` per local calendar day.

    * The first commit of a day inserts a row whose deltas are measured
      against the most recent earlier day (or zero for the very first row).
    * Later commits on the same day overwrite that row, and their deltas are
      measured against the values the row held just before the overwrite.

    Same-day overwrites compute their deltas inside the backend's
    :meth:`~BackendStrategy.update_day`, from the row as it stands under the
    lock, so concurrent commits for one day are serialised. Two writers racing
    to create a day are resolved by the unique ``day`` constraint: the loser
    gets a :class:`PersistenceConflict` and applies its values as an update.
    """

    def __init__(
        self,
        backend: BackendStrategy,
        *,
        timezone: str = DEFAULT_TIMEZONE,
        clock: Clock = utc_now,
    ) -> None:
        self.backend = backend
        self.timezone = timezone
        self.clock = clock

    def today(self) -> date:
        return day_key(self.clock(), self.timezone)

    def baseline(self, today: date | None = None) -> HistoricalRecord | None:
        """Return the most recent record strictly before ``today``."""

        return self.backend.latest_before(today or self.today())

    def commit(
        self,
        official: float,
        parallel: float,
        secondary: float | None = None,
        *,
        source: str = AUTOMATIC_SOURCE,
    ) -> HistoricalRecord:
        now = self.clock()
        today = day_key(now, self.timezone)
        spread = spread_percent(official, parallel)

        existing = self.backend.get_record(today)
        if existing is None:
            baseline = self.backend.latest_before(today)
            candidate = HistoricalRecord(
                day=today,
                official_rate=official,
                parallel_rate=parallel,
                secondary_rate=secondary,
                official_delta=_delta(official, baseline.official_rate) if baseline else 0.0,
                parallel_delta=_delta(parallel, baseline.parallel_rate) if baseline else 0.0,
                secondary_delta=_delta(secondary, baseline.secondary_rate) if baseline else 0.0,
                spread_percent=spread,
                source=source,
                created_at=now,
                updated_at=now,
            )
            try:
                record = self.backend.insert_record(candidate)
            except PersistenceConflict:
                LOGGER.warning("Concurrent commit for %s detected; retrying as update", today)
            else:
                LOGGER.info("Created rate history for %s", today.isoformat())
                return record

        def rebase(current: HistoricalRecord) -> HistoricalRecord:
            return current.with_updates(
                official_rate=official,
                parallel_rate=parallel,
                secondary_rate=secondary,
                official_delta=_delta(official, current.official_rate),
                parallel_delta=_delta(parallel, current.parallel_rate),
                secondary_delta=_delta(secondary, current.secondary_rate),
                spread_percent=spread,
                source=source,
                updated_at=now,
            )

        record = self.backend.update_day(today, rebase)
        LOGGER.info("Updated rate history for %s in place", today.isoformat())
        return record

    def record_snapshot(self, snapshot: Snapshot) -> HistoricalRecord | None:
        """Aggregator hook: commit the day's rates carried by ``snapshot``."""

        official = snapshot.mid(RateSource.OFFICIAL)
        parallel = snapshot.mid(RateSource.PARALLEL)
        if official is None or parallel is None:
            LOGGER.warning(
                "Skipping history commit; snapshot lacks %s",
                ", ".join(snapshot.missing((RateSource.OFFICIAL, RateSource.PARALLEL))),
            )
            return None
        return self.commit(official, parallel, snapshot.mid(RateSource.SECONDARY))

    def history(self, days: int = 30) -> list[HistoricalRecord]:
        """Return the records of the last ``days`` days in ascending order."""

        window = trailing_days(self.today(), days)
        return self.backend.fetch_range(window.start, window.end)

    def purge(self) -> int:
        """Delete records older than one year; maintenance, not hot path."""

        cutoff = retention_cutoff(self.today())
        deleted = self.backend.delete_before(cutoff)
        LOGGER.info("Deleted %s rate history rows older than %s", deleted, cutoff.isoformat())
        return deleted


__all__ = ["HistoricalRecorder", "spread_percent"]
