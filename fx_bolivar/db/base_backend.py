"""Backend strategy interfaces for FxBolivar."""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import date
from typing import Callable

from fx_bolivar.db.records import HistoricalRecord, Subscriber


class BackendStrategy(ABC):
    """Common interface implemented by every database backend.

    A backend owns two collections: the daily rate history (unique on
    ``day``) and the subscriber directory (unique on ``chat_id``).
    """

    @abstractmethod
    def ensure_schema(self) -> None:
        """Create required tables/collections and verify connectivity."""

    # -- rate history -------------------------------------------------

    @abstractmethod
    def get_record(self, day: date) -> HistoricalRecord | None:
        """Return the record stored for ``day``, if any."""

    @abstractmethod
    def latest_before(self, day: date) -> HistoricalRecord | None:
        """Return the most recent record whose day is strictly before ``day``."""

    @abstractmethod
    def insert_record(self, record: HistoricalRecord) -> HistoricalRecord:
        """Insert a new day; raise ``PersistenceConflict`` if the day exists."""

    @abstractmethod
    def update_day(
        self,
        day: date,
        apply: Callable[[HistoricalRecord], HistoricalRecord],
    ) -> HistoricalRecord:
        """Overwrite the row for ``day`` with ``apply(current)``.

        The read of ``current`` and the write of the result happen under one
        lock, so concurrent updates of the same day are serialised. Raise
        ``PersistenceConflict`` if the day has no row.
        """

    @abstractmethod
    def fetch_range(
        self,
        start: date | None = None,
        end: date | None = None,
    ) -> list[HistoricalRecord]:
        """Return records ordered by day, constrained by the provided dates."""

    @abstractmethod
    def delete_before(self, day: date) -> int:
        """Delete records strictly older than ``day`` and return the count."""

    # -- subscriber directory -----------------------------------------

    @abstractmethod
    def get_subscriber(self, chat_id: str) -> Subscriber | None:
        """Return the subscriber row for ``chat_id``."""

    @abstractmethod
    def save_subscriber(self, subscriber: Subscriber) -> bool:
        """Insert or overwrite a subscriber. Return True when it was created."""

    @abstractmethod
    def active_subscribers(self) -> list[str]:
        """Return the chat ids of every active subscriber."""

    def close(self) -> None:  # pragma: no cover - optional cleanup hook
        """Backends may override to release connections/resources."""


__all__ = ["BackendStrategy"]
