"""Shared SQLAlchemy logic for SQLite/Postgres/MySQL backends."""

from __future__ import annotations

import threading
from datetime import date, datetime, timezone
from typing import Any, Callable, cast

from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    Float,
    Integer,
    String,
    create_engine,
    delete,
    select,
    text,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from fx_bolivar.db.base_backend import BackendStrategy
from fx_bolivar.db.records import AUTOMATIC_SOURCE, HistoricalRecord, Subscriber
from fx_bolivar.errors import PersistenceConflict
from fx_bolivar.utils.logger import get_logger

LOGGER = get_logger(__name__)


class Base(DeclarativeBase):
    pass


class _RateHistory(Base):
    __tablename__ = "rate_history"

    id = Column(Integer, primary_key=True, autoincrement=True)
    day = Column(Date, nullable=False, unique=True, index=True)
    official_rate = Column(Float, nullable=False)
    parallel_rate = Column(Float, nullable=False)
    secondary_rate = Column(Float, nullable=True)
    official_delta = Column(Float, nullable=False, default=0.0)
    parallel_delta = Column(Float, nullable=False, default=0.0)
    secondary_delta = Column(Float, nullable=False, default=0.0)
    spread_percent = Column(Float, nullable=False)
    source = Column(String(64), nullable=False, default=AUTOMATIC_SOURCE)
    created_at = Column(DateTime, nullable=False)
    updated_at = Column(DateTime, nullable=False)


class _Subscriber(Base):
    __tablename__ = "subscribers"

    chat_id = Column(String(64), primary_key=True)
    username = Column(String(255), nullable=True)
    subscribed_at = Column(DateTime, nullable=False)
    active = Column(Boolean, nullable=False, default=True)


def _to_naive_utc(value: datetime | None) -> datetime:
    if value is None:
        value = datetime.now(timezone.utc)
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def _from_naive_utc(value: object) -> datetime:
    if isinstance(value, str):
        value = datetime.fromisoformat(value)
    moment = cast(datetime, value)
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment


def _normalise_day(value: object) -> date:
    if isinstance(value, date) and not isinstance(value, datetime):
        return value
    if isinstance(value, datetime):
        return value.date()
    return date.fromisoformat(str(value))


def _record_from_row(row: _RateHistory) -> HistoricalRecord:
    secondary = cast("float | None", row.secondary_rate)
    return HistoricalRecord(
        day=_normalise_day(row.day),
        official_rate=float(cast(float, row.official_rate)),
        parallel_rate=float(cast(float, row.parallel_rate)),
        secondary_rate=float(secondary) if secondary is not None else None,
        official_delta=float(cast(float, row.official_delta)),
        parallel_delta=float(cast(float, row.parallel_delta)),
        secondary_delta=float(cast(float, row.secondary_delta)),
        spread_percent=float(cast(float, row.spread_percent)),
        source=cast(str, row.source),
        created_at=_from_naive_utc(row.created_at),
        updated_at=_from_naive_utc(row.updated_at),
    )


def _apply_record(row: _RateHistory, record: HistoricalRecord) -> None:
    values: dict[str, Any] = {
        "official_rate": record.official_rate,
        "parallel_rate": record.parallel_rate,
        "secondary_rate": record.secondary_rate,
        "official_delta": record.official_delta,
        "parallel_delta": record.parallel_delta,
        "secondary_delta": record.secondary_delta,
        "spread_percent": record.spread_percent,
        "source": record.source,
        "updated_at": _to_naive_utc(record.updated_at),
    }
    for key, value in values.items():
        setattr(row, key, value)


def _subscriber_from_row(row: _Subscriber) -> Subscriber:
    return Subscriber(
        chat_id=cast(str, row.chat_id),
        username=cast("str | None", row.username),
        subscribed_at=_from_naive_utc(row.subscribed_at),
        active=bool(row.active),
    )


class RelationalBackend(BackendStrategy):
    """Base class that encapsulates SQLAlchemy powered interactions."""

    def __init__(self, url: str, **engine_kwargs: Any) -> None:
        self.url = url
        self._engine_kwargs = engine_kwargs
        self._engine_instance: Engine | None = None
        self._session_factory: sessionmaker[Session] | None = None
        # SQLite ignores FOR UPDATE; serialise same-process writers here.
        self._update_lock = threading.Lock()

    def _get_engine(self) -> Engine:
        if self._engine_instance is None:
            self._engine_instance = create_engine(self.url, future=True, **self._engine_kwargs)
        return self._engine_instance

    def _session(self) -> Session:
        if self._session_factory is None:
            self._session_factory = sessionmaker(
                bind=self._get_engine(), expire_on_commit=False, future=True
            )
        return self._session_factory()

    def ensure_schema(self) -> None:
        engine = self._get_engine()
        with engine.begin() as connection:
            LOGGER.info("Ensuring rate_history/subscribers schema exists")
            connection.execute(text("SELECT 1"))
        Base.metadata.create_all(engine)

    def get_record(self, day: date) -> HistoricalRecord | None:
        with self._session() as session:
            row = session.execute(
                select(_RateHistory).where(_RateHistory.day == day)
            ).scalar_one_or_none()
            return _record_from_row(row) if row is not None else None

    def latest_before(self, day: date) -> HistoricalRecord | None:
        with self._session() as session:
            row = session.execute(
                select(_RateHistory)
                .where(_RateHistory.day < day)
                .order_by(_RateHistory.day.desc())
                .limit(1)
            ).scalar_one_or_none()
            return _record_from_row(row) if row is not None else None

    def insert_record(self, record: HistoricalRecord) -> HistoricalRecord:
        now = _to_naive_utc(record.created_at)
        row = _RateHistory(day=record.day, created_at=now)
        _apply_record(row, record)
        with self._session() as session:
            session.add(row)
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise PersistenceConflict(
                    f"A rate_history row for {record.day.isoformat()} already exists"
                ) from exc
            return _record_from_row(row)

    def update_day(
        self,
        day: date,
        apply: Callable[[HistoricalRecord], HistoricalRecord],
    ) -> HistoricalRecord:
        with self._update_lock, self._session() as session:
            with session.begin():
                row = session.execute(
                    select(_RateHistory).where(_RateHistory.day == day).with_for_update()
                ).scalar_one_or_none()
                if row is None:
                    raise PersistenceConflict(
                        f"No rate_history row for {day.isoformat()} to update"
                    )
                _apply_record(row, apply(_record_from_row(row)))
            return _record_from_row(row)

    def fetch_range(
        self,
        start: date | None = None,
        end: date | None = None,
    ) -> list[HistoricalRecord]:
        stmt = select(_RateHistory).order_by(_RateHistory.day)
        if start is not None:
            stmt = stmt.where(_RateHistory.day >= start)
        if end is not None:
            stmt = stmt.where(_RateHistory.day <= end)
        with self._session() as session:
            return [_record_from_row(row) for row in session.execute(stmt).scalars()]

    def delete_before(self, day: date) -> int:
        with self._session() as session:
            with session.begin():
                result = session.execute(delete(_RateHistory).where(_RateHistory.day < day))
            return int(result.rowcount or 0)

    def get_subscriber(self, chat_id: str) -> Subscriber | None:
        with self._session() as session:
            row = session.get(_Subscriber, chat_id)
            return _subscriber_from_row(row) if row is not None else None

    def save_subscriber(self, subscriber: Subscriber) -> bool:
        with self._session() as session:
            with session.begin():
                row = session.get(_Subscriber, subscriber.chat_id)
                created = row is None
                if row is None:
                    row = _Subscriber(chat_id=subscriber.chat_id)
                    session.add(row)
                setattr(row, "username", subscriber.username)
                setattr(row, "subscribed_at", _to_naive_utc(subscriber.subscribed_at))
                setattr(row, "active", subscriber.active)
            return created

    def active_subscribers(self) -> list[str]:
        with self._session() as session:
            rows = session.execute(
                select(_Subscriber.chat_id)
                .where(_Subscriber.active.is_(True))
                .order_by(_Subscriber.subscribed_at)
            )
            return [str(chat_id) for chat_id in rows.scalars()]

    def close(self) -> None:  # pragma: no cover - trivial resource cleanup
        if self._engine_instance is not None:
            self._engine_instance.dispose()


__all__ = ["Base", "RelationalBackend"]
