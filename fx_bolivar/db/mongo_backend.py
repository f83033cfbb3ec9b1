"""MongoDB backend strategy."""

from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Any, Callable, Mapping

from pymongo import ASCENDING, DESCENDING, MongoClient
from pymongo.collection import Collection
from pymongo.errors import DuplicateKeyError, PyMongoError

from fx_bolivar.db.base_backend import BackendStrategy
from fx_bolivar.db.records import AUTOMATIC_SOURCE, HistoricalRecord, Subscriber
from fx_bolivar.errors import PersistenceConflict
from fx_bolivar.utils.logger import get_logger

LOGGER = get_logger(__name__)

_MAX_UPDATE_ATTEMPTS = 5

_RECORD_FIELDS = (
    "official_rate",
    "parallel_rate",
    "secondary_rate",
    "official_delta",
    "parallel_delta",
    "secondary_delta",
    "spread_percent",
    "source",
)


def _utc(value: datetime | None) -> datetime:
    if value is None:
        return datetime.now(timezone.utc)
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _record_from_doc(doc: Mapping[str, Any]) -> HistoricalRecord:
    secondary = doc.get("secondary_rate")
    return HistoricalRecord(
        day=date.fromisoformat(doc["day"]),
        official_rate=float(doc["official_rate"]),
        parallel_rate=float(doc["parallel_rate"]),
        secondary_rate=float(secondary) if secondary is not None else None,
        official_delta=float(doc.get("official_delta", 0.0)),
        parallel_delta=float(doc.get("parallel_delta", 0.0)),
        secondary_delta=float(doc.get("secondary_delta", 0.0)),
        spread_percent=float(doc["spread_percent"]),
        source=doc.get("source", AUTOMATIC_SOURCE),
        created_at=_utc(doc.get("created_at")),
        updated_at=_utc(doc.get("updated_at")),
    )


class MongoBackend(BackendStrategy):
    """Backend strategy that persists history and subscribers inside MongoDB.

    Days are stored as ISO strings so range queries compare lexicographically
    in the same order as the dates themselves.
    """

    def __init__(self, url: str, *, database: str | None = None) -> None:
        self.url = url
        self._client = MongoClient(url)
        db = self._client.get_default_database() if database is None else self._client[database]
        if db is None:
            raise ValueError("MongoDB connection URI must include a database name")
        self._history: Collection = db["rate_history"]
        self._subscribers: Collection = db["subscribers"]

    def ensure_schema(self) -> None:
        try:
            LOGGER.info("Ensuring MongoDB rate_history/subscribers collections exist")
            self._client.admin.command("ping")
            self._history.create_index([("day", ASCENDING)], unique=True)
            self._subscribers.create_index([("chat_id", ASCENDING)], unique=True)
        except PyMongoError as exc:  # pragma: no cover - error path
            raise RuntimeError(f"Failed to ensure MongoDB schema: {exc}") from exc

    def get_record(self, day: date) -> HistoricalRecord | None:
        doc = self._history.find_one({"day": day.isoformat()})
        return _record_from_doc(doc) if doc else None

    def latest_before(self, day: date) -> HistoricalRecord | None:
        cursor = (
            self._history.find({"day": {"$lt": day.isoformat()}})
            .sort("day", DESCENDING)
            .limit(1)
        )
        for doc in cursor:
            return _record_from_doc(doc)
        return None

    def insert_record(self, record: HistoricalRecord) -> HistoricalRecord:
        created_at = _utc(record.created_at)
        doc: dict[str, Any] = {
            "day": record.day.isoformat(),
            "created_at": created_at,
            "updated_at": _utc(record.updated_at or created_at),
            "revision": 0,
        }
        doc.update({name: getattr(record, name) for name in _RECORD_FIELDS})
        try:
            self._history.insert_one(doc)
        except DuplicateKeyError as exc:
            raise PersistenceConflict(
                f"A rate_history document for {record.day.isoformat()} already exists"
            ) from exc
        return _record_from_doc(doc)

    def update_day(
        self,
        day: date,
        apply: Callable[[HistoricalRecord], HistoricalRecord],
    ) -> HistoricalRecord:
        key = day.isoformat()
        for _ in range(_MAX_UPDATE_ATTEMPTS):
            doc = self._history.find_one({"day": key})
            if doc is None:
                raise PersistenceConflict(f"No rate_history document for {key} to update")
            record = apply(_record_from_doc(doc))
            revision = doc.get("revision")
            changes: dict[str, Any] = {name: getattr(record, name) for name in _RECORD_FIELDS}
            changes["updated_at"] = _utc(record.updated_at)
            changes["revision"] = (revision or 0) + 1
            # Compare-and-set on the revision read above.
            expected: Any = revision if revision is not None else {"$exists": False}
            result = self._history.update_one(
                {"day": key, "revision": expected}, {"$set": changes}
            )
            if result.matched_count:
                return _record_from_doc({**doc, **changes})
            LOGGER.warning("rate_history document for %s changed concurrently; retrying", key)
        raise PersistenceConflict(
            f"rate_history document for {key} kept changing after {_MAX_UPDATE_ATTEMPTS} attempts"
        )

    def fetch_range(
        self,
        start: date | None = None,
        end: date | None = None,
    ) -> list[HistoricalRecord]:
        query: dict[str, Any] = {}
        if start is not None or end is not None:
            range_query: dict[str, str] = {}
            if start is not None:
                range_query["$gte"] = start.isoformat()
            if end is not None:
                range_query["$lte"] = end.isoformat()
            query["day"] = range_query
        return [_record_from_doc(doc) for doc in self._history.find(query).sort("day", ASCENDING)]

    def delete_before(self, day: date) -> int:
        result = self._history.delete_many({"day": {"$lt": day.isoformat()}})
        return int(result.deleted_count)

    def get_subscriber(self, chat_id: str) -> Subscriber | None:
        doc = self._subscribers.find_one({"chat_id": chat_id})
        if not doc:
            return None
        return Subscriber(
            chat_id=doc["chat_id"],
            username=doc.get("username"),
            subscribed_at=_utc(doc.get("subscribed_at")),
            active=bool(doc.get("active", False)),
        )

    def save_subscriber(self, subscriber: Subscriber) -> bool:
        doc = {
            "chat_id": subscriber.chat_id,
            "username": subscriber.username,
            "subscribed_at": _utc(subscriber.subscribed_at),
            "active": subscriber.active,
        }
        result = self._subscribers.replace_one({"chat_id": subscriber.chat_id}, doc, upsert=True)
        return result.upserted_id is not None

    def active_subscribers(self) -> list[str]:
        docs = self._subscribers.find({"active": True}).sort("subscribed_at", ASCENDING)
        return [str(doc["chat_id"]) for doc in docs]

    def close(self) -> None:  # pragma: no cover - trivial cleanup
        self._client.close()


__all__ = ["MongoBackend"]
