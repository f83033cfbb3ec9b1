"""Mongo backend tests that monkeypatch pymongo primitives."""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from typing import Any, Dict, List

import pytest

from fx_bolivar.db import mongo_backend as mongo_module
from fx_bolivar.db.records import HistoricalRecord, Subscriber
from fx_bolivar.errors import PersistenceConflict

NOW = datetime(2026, 10, 19, 16, 0, tzinfo=timezone.utc)


class _DuplicateKeyError(Exception):
    pass


def _matches(doc: Dict[str, Any], query: Dict[str, Any]) -> bool:
    for field, condition in query.items():
        value = doc.get(field)
        if isinstance(condition, dict):
            if "$exists" in condition and (field in doc) != condition["$exists"]:
                return False
            if "$lt" in condition and not value < condition["$lt"]:
                return False
            if "$gte" in condition and not value >= condition["$gte"]:
                return False
            if "$lte" in condition and not value <= condition["$lte"]:
                return False
        elif value != condition:
            return False
    return True


class _DummyCursor:
    def __init__(self, docs: List[Dict[str, Any]]) -> None:
        self._docs = docs

    def sort(self, field: str, direction: int) -> "_DummyCursor":
        reverse = direction == -1
        return _DummyCursor(sorted(self._docs, key=lambda doc: doc[field], reverse=reverse))

    def limit(self, count: int) -> "_DummyCursor":
        return _DummyCursor(self._docs[:count])

    def __iter__(self):
        return iter([dict(doc) for doc in self._docs])


class _Result:
    def __init__(self, **fields: Any) -> None:
        self.__dict__.update(fields)


class _DummyCollection:
    def __init__(self) -> None:
        self.docs: List[Dict[str, Any]] = []
        self.indexes: list[tuple[tuple[tuple[str, int], ...], bool]] = []

    def __bool__(self) -> bool:  # pragma: no cover - behavioural parity with pymongo
        raise NotImplementedError("Collection truthiness is undefined")

    def create_index(self, fields: list[tuple[str, int]], unique: bool) -> None:
        self.indexes.append((tuple(fields), unique))

    def _unique_field(self) -> str | None:
        return self.indexes[0][0][0][0] if self.indexes else None

    def insert_one(self, doc: Dict[str, Any]) -> _Result:
        key = self._unique_field()
        if key and any(existing[key] == doc[key] for existing in self.docs):
            raise _DuplicateKeyError(key)
        self.docs.append(dict(doc))
        return _Result(inserted_id=len(self.docs))

    def find_one(self, query: Dict[str, Any]) -> Dict[str, Any] | None:
        for doc in self.docs:
            if _matches(doc, query):
                return dict(doc)
        return None

    def find(self, query: Dict[str, Any]) -> _DummyCursor:
        return _DummyCursor([doc for doc in self.docs if _matches(doc, query)])

    def update_one(self, query: Dict[str, Any], update: Dict[str, Any]) -> _Result:
        for doc in self.docs:
            if _matches(doc, query):
                doc.update(update["$set"])
                return _Result(matched_count=1)
        return _Result(matched_count=0)

    def replace_one(self, query: Dict[str, Any], doc: Dict[str, Any], upsert: bool) -> _Result:
        assert upsert is True
        for index, existing in enumerate(self.docs):
            if _matches(existing, query):
                self.docs[index] = dict(doc)
                return _Result(upserted_id=None)
        self.docs.append(dict(doc))
        return _Result(upserted_id=len(self.docs))

    def delete_many(self, query: Dict[str, Any]) -> _Result:
        keep = [doc for doc in self.docs if not _matches(doc, query)]
        deleted = len(self.docs) - len(keep)
        self.docs = keep
        return _Result(deleted_count=deleted)


class _DummyDatabase(dict):
    def __getitem__(self, name: str) -> _DummyCollection:  # type: ignore[override]
        if name not in self:
            self[name] = _DummyCollection()
        return dict.__getitem__(self, name)


class _DummyClient:
    def __init__(self, url: str) -> None:
        self.url = url
        self.admin = self
        self.closed = False
        self.databases: Dict[str, _DummyDatabase] = {}

    def __getitem__(self, name: str) -> _DummyDatabase:
        return self.databases.setdefault(name, _DummyDatabase())

    def get_default_database(self) -> _DummyDatabase:
        return self.__getitem__("default")

    def command(self, name: str) -> None:
        assert name == "ping"

    def close(self) -> None:
        self.closed = True


@pytest.fixture(autouse=True)
def patch_mongo_client(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(mongo_module, "MongoClient", _DummyClient)
    monkeypatch.setattr(mongo_module, "PyMongoError", RuntimeError)
    monkeypatch.setattr(mongo_module, "DuplicateKeyError", _DuplicateKeyError)


@pytest.fixture
def backend() -> mongo_module.MongoBackend:
    backend = mongo_module.MongoBackend("mongodb://example.com/", database="fx")
    backend.ensure_schema()
    return backend


def _record(day: date, parallel: float = 60.0) -> HistoricalRecord:
    return HistoricalRecord(
        day=day,
        official_rate=36.0,
        parallel_rate=parallel,
        secondary_rate=None,
        official_delta=0.0,
        parallel_delta=0.0,
        secondary_delta=0.0,
        spread_percent=66.67,
        created_at=NOW,
        updated_at=NOW,
    )


def test_mongo_backend_creates_unique_indexes(backend: mongo_module.MongoBackend) -> None:
    assert backend._history.indexes == [((("day", 1),), True)]
    assert backend._subscribers.indexes == [((("chat_id", 1),), True)]


def test_mongo_backend_history_roundtrip(backend: mongo_module.MongoBackend) -> None:
    for day in (date(2026, 10, 19), date(2026, 10, 17), date(2026, 10, 18)):
        backend.insert_record(_record(day))

    fetched = backend.fetch_range(date(2026, 10, 18), date(2026, 10, 19))
    assert [row.day for row in fetched] == [date(2026, 10, 18), date(2026, 10, 19)]
    assert fetched[0].created_at == NOW
    assert backend.latest_before(date(2026, 10, 19)).day == date(2026, 10, 18)  # type: ignore[union-attr]
    assert backend.latest_before(date(2026, 10, 17)) is None

    with pytest.raises(PersistenceConflict):
        backend.insert_record(_record(date(2026, 10, 19), parallel=61.0))


def _set_parallel(value: float):
    def apply(current: HistoricalRecord) -> HistoricalRecord:
        return current.with_updates(
            parallel_rate=value, parallel_delta=value - current.parallel_rate
        )

    return apply


def test_mongo_backend_update_and_delete(backend: mongo_module.MongoBackend) -> None:
    with pytest.raises(PersistenceConflict):
        backend.update_day(date(2026, 10, 19), _set_parallel(62.0))

    backend.insert_record(_record(date(2025, 10, 1)))
    backend.insert_record(_record(date(2026, 10, 19)))
    updated = backend.update_day(date(2026, 10, 19), _set_parallel(62.0))

    assert updated.parallel_rate == 62.0
    assert updated.parallel_delta == pytest.approx(2.0)
    assert backend._history.find_one({"day": "2026-10-19"})["revision"] == 1  # type: ignore[index]
    assert backend.delete_before(date(2025, 10, 19)) == 1
    assert [row.day for row in backend.fetch_range()] == [date(2026, 10, 19)]


def test_mongo_backend_subscribers(backend: mongo_module.MongoBackend) -> None:
    first = Subscriber(chat_id="100", subscribed_at=NOW)
    second = Subscriber(chat_id="200", subscribed_at=NOW - timedelta(days=1), username="luis")

    assert backend.save_subscriber(first) is True
    assert backend.save_subscriber(second) is True
    assert backend.active_subscribers() == ["200", "100"]

    second.active = False
    assert backend.save_subscriber(second) is False
    assert backend.active_subscribers() == ["100"]
    assert backend.get_subscriber("200") == second
    assert backend.get_subscriber("300") is None


def test_mongo_backend_uses_default_database_and_closes() -> None:
    backend = mongo_module.MongoBackend("mongodb://example.com/fx")

    backend.close()

    assert backend._client.closed is True


def test_mongo_backend_update_retries_after_concurrent_write(
    backend: mongo_module.MongoBackend,
) -> None:
    backend.insert_record(_record(date(2026, 10, 19)))
    collection = backend._history
    original_update = collection.update_one
    interleaved: list[bool] = []

    def update_one(query: Dict[str, Any], update: Dict[str, Any]) -> _Result:
        if not interleaved:
            # Another writer lands between our read and our write.
            interleaved.append(True)
            original_update(
                {"day": "2026-10-19"}, {"$set": {"parallel_rate": 61.0, "revision": 1}}
            )
        return original_update(query, update)

    collection.update_one = update_one  # type: ignore[method-assign]

    updated = backend.update_day(date(2026, 10, 19), _set_parallel(64.0))

    assert updated.parallel_rate == 64.0
    assert updated.parallel_delta == pytest.approx(3.0)
    assert collection.find_one({"day": "2026-10-19"})["revision"] == 2  # type: ignore[index]


def test_mongo_backend_update_accepts_documents_without_revision(
    backend: mongo_module.MongoBackend,
) -> None:
    backend.insert_record(_record(date(2026, 10, 19)))
    del backend._history.docs[0]["revision"]

    updated = backend.update_day(date(2026, 10, 19), _set_parallel(61.0))

    assert updated.parallel_rate == 61.0
    assert backend._history.docs[0]["revision"] == 1
