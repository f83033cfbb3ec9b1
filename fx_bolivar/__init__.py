"""Public interface for the fx_bolivar package."""

from __future__ import annotations

import re
import threading
from dataclasses import dataclass
from enum import Enum
from importlib import metadata as importlib_metadata
from pathlib import Path
from typing import Any, Dict, List, Sequence
from urllib.parse import parse_qsl, quote, urlencode, urlparse, urlunparse

from fx_bolivar.aggregator import AggregationResult, CacheStatus, RateAggregator
from fx_bolivar.cache import RateCache
from fx_bolivar.config import Settings
from fx_bolivar.db import DEFAULT_SQLITE_DB_PATH
from fx_bolivar.db.base_backend import BackendStrategy
from fx_bolivar.db.records import HistoricalRecord
from fx_bolivar.errors import (
    FxBolivarError,
    MissingRequiredSource,
    NoSourcesAvailable,
    PersistenceConflict,
)
from fx_bolivar.history import HistoricalRecorder
from fx_bolivar.ingestion.bcv_scraper import BCVScraperFetcher
from fx_bolivar.ingestion.dolarapi import dolares_fetcher, euros_fetcher
from fx_bolivar.ingestion.models import Quote, RateSource, Snapshot
from fx_bolivar.ingestion.strategy import FetchStrategy
from fx_bolivar.notifications.engine import ChangeNotificationEngine, NotificationResult
from fx_bolivar.notifications.gateway import MessageChannel, SubscriberGateway
from fx_bolivar.notifications.telegram import TelegramChannel
from fx_bolivar.utils.date_range import Clock, utc_now
from fx_bolivar.utils.logger import get_logger

__all__ = [
    "__version__",
    "AggregationResult",
    "CacheStatus",
    "DatabaseBackend",
    "DatabaseConnectionInfo",
    "FxBolivar",
    "HistoricalRecord",
    "MissingRequiredSource",
    "NoSourcesAvailable",
    "NotificationResult",
    "PersistenceConflict",
    "Quote",
    "RateSource",
    "Settings",
    "Snapshot",
]

LOGGER = get_logger(__name__)

try:
    __version__ = importlib_metadata.version("fx-bolivar")
except importlib_metadata.PackageNotFoundError:  # pragma: no cover - fallback for local runs
    __version__ = "0.1.0"


class DatabaseBackend(str, Enum):
    """Supported database engines for FxBolivar."""

    SQLITE = "sqlite"
    MYSQL = "mysql"
    POSTGRES = "postgres"
    MONGODB = "mongodb"

    @classmethod
    def resolve_backend_and_scheme(cls, scheme: str) -> tuple["DatabaseBackend", str]:
        """Return backend enum + canonical scheme used in connection URLs."""

        if not scheme:
            raise ValueError("DB_URL must include a scheme (e.g. mysql:// or postgres://)")
        scheme_lower = scheme.lower()
        base_scheme, _, driver = scheme_lower.partition("+")
        if base_scheme in {"postgresql", "postgres"}:
            # SQLAlchemy only understands ``postgresql``; keep driver hints.
            return cls.POSTGRES, f"postgresql+{driver}" if driver else "postgresql"
        if base_scheme == "sqlite":
            return cls.SQLITE, "sqlite"
        if base_scheme == "mysql":
            # Preserve optional driver hints such as ``mysql+pymysql``.
            return cls.MYSQL, scheme_lower if driver else "mysql+pymysql"
        if base_scheme == "mongodb":
            # Keep srv-style schemes intact so pymongo can route via DNS.
            return cls.MONGODB, scheme_lower if driver else "mongodb"
        raise ValueError(
            "Unsupported database backend. Supported values are SQLite, MySQL, "
            "Postgres, and MongoDB."
        )

    @classmethod
    def from_scheme(cls, scheme: str) -> "DatabaseBackend":
        """Normalise URL schemes into a DatabaseBackend value."""

        backend, _ = cls.resolve_backend_and_scheme(scheme)
        return backend


@dataclass(slots=True)
class DatabaseConnectionInfo:
    """Represents how FxBolivar should talk to the persistence layer."""

    backend: DatabaseBackend
    url: str
    name: str | None
    username: str | None
    password: str | None
    host: str | None
    port: int | None

    @classmethod
    def from_url(cls, url: str) -> "DatabaseConnectionInfo":
        """Create a connection object by parsing a database URL/DSN."""

        cleaned_url, query_db_name = cls._normalise_database_name_parameter(url)
        parsed = urlparse(cleaned_url)
        if not parsed.scheme:
            raise ValueError("DB_URL must include a scheme (e.g. mysql:// or postgres://)")
        backend, canonical_scheme = DatabaseBackend.resolve_backend_and_scheme(parsed.scheme)
        if parsed.scheme != canonical_scheme:
            parsed = parsed._replace(scheme=canonical_scheme)
            cleaned_url = urlunparse(parsed)
        if backend is DatabaseBackend.SQLITE:
            # ``sqlite:////abs/path.db`` → ``/abs/path.db``; ``sqlite:///rel.db`` → ``rel.db``.
            resolved_name = parsed.path[1:] if parsed.path.startswith("/") else parsed.path
        else:
            resolved_name = parsed.path[1:] if parsed.path and parsed.path != "/" else None
        if not resolved_name:
            resolved_name = query_db_name

        return cls(
            backend=backend,
            url=cleaned_url,
            name=resolved_name or None,
            username=parsed.username,
            password=parsed.password,
            host=parsed.hostname,
            port=parsed.port,
        )

    @classmethod
    def default_sqlite(cls, db_path: str | Path = DEFAULT_SQLITE_DB_PATH) -> "DatabaseConnectionInfo":
        path = Path(db_path)
        return cls(
            backend=DatabaseBackend.SQLITE,
            url=f"sqlite:///{quote(path.as_posix(), safe='/:')}",
            name=str(path),
            username=None,
            password=None,
            host=None,
            port=None,
        )

    @staticmethod
    def _normalise_database_name_parameter(url: str) -> tuple[str, str | None]:
        """Support a ``DATABASE_NAME`` query parameter in place of a URL path."""

        # ``DATABASE_NAME=foo`` is sometimes appended without an ``&`` delimiter.
        patched_url = re.sub(
            r"(?i)(?<![?&])DATABASE_NAME=",
            "&DATABASE_NAME=",
            url,
        )
        parsed = urlparse(patched_url)
        query_pairs = parse_qsl(parsed.query, keep_blank_values=True)
        remaining_pairs: list[tuple[str, str]] = []
        database_name: str | None = None
        for key, value in query_pairs:
            if key.lower() == "database_name":
                if value:
                    database_name = value
                continue
            remaining_pairs.append((key, value))
        if database_name is None:
            # Re-serialising would collapse ``sqlite:////abs/path`` slashes.
            return url, None

        new_path = parsed.path
        if (not new_path or new_path == "/") and database_name:
            new_path = f"/{database_name}"

        new_query = urlencode(remaining_pairs, doseq=True)
        cleaned = parsed._replace(query=new_query, path=new_path)
        return urlunparse(cleaned), database_name

    @property
    def is_sqlite(self) -> bool:
        return self.backend is DatabaseBackend.SQLITE

    @property
    def is_external(self) -> bool:
        """Return True for MySQL/Postgres/MongoDB backends."""

        return not self.is_sqlite


def default_fetchers(settings: Settings, clock: Clock = utc_now) -> list[FetchStrategy]:
    """Upstreams in merge order: the scraper first so the APIs win ties."""

    timeout = settings.fetch_timeout_seconds
    return [
        BCVScraperFetcher(timeout=timeout, clock=clock),
        dolares_fetcher(timeout=timeout, clock=clock),
        euros_fetcher(timeout=timeout, clock=clock),
    ]


class FxBolivar:
    """Package facade wiring fetchers, cache, history and notifications.

    Each public method corresponds to one inbound operation and returns a
    JSON-ready payload. Errors surface as :class:`FxBolivarError` subclasses;
    :meth:`error_payload` turns them into ``({"error": ...}, status)`` for an
    HTTP layer.
    """

    _DRIVER_HINTS: dict[DatabaseBackend, str] = {
        DatabaseBackend.POSTGRES: "Install psycopg2 via 'pip install fx-bolivar[postgres]'.",
        DatabaseBackend.MYSQL: "Install PyMySQL via 'pip install fx-bolivar[mysql]'.",
    }

    __version__ = __version__

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        db_config: DatabaseConnectionInfo | str | None = None,
        backend: BackendStrategy | None = None,
        fetchers: Sequence[FetchStrategy] | None = None,
        channel: MessageChannel | None = None,
        clock: Clock = utc_now,
    ) -> None:
        self.settings = settings or Settings.from_env()
        self.clock = clock
        self.connection_info = self._build_connection_info(
            db_config if db_config is not None else self.settings.db_url
        )
        self._backend_strategy: BackendStrategy | None = backend
        # Reentrant: the lazy properties below nest through _get_backend_strategy.
        self._backend_lock = threading.RLock()
        self.cache = RateCache(self.settings.cache_ttl, clock=clock)
        self.aggregator = RateAggregator(
            fetchers if fetchers is not None else default_fetchers(self.settings, clock),
            self.cache,
            clock=clock,
            listeners=[self._record_snapshot],
        )
        self.channel: MessageChannel = channel or TelegramChannel(
            self.settings.telegram_bot_token,
            timeout=self.settings.delivery_timeout_seconds,
        )
        self._recorder: HistoricalRecorder | None = None
        self._gateway: SubscriberGateway | None = None
        self._engine: ChangeNotificationEngine | None = None

    @staticmethod
    def _build_connection_info(
        db_config: DatabaseConnectionInfo | str | None,
    ) -> DatabaseConnectionInfo:
        if isinstance(db_config, DatabaseConnectionInfo):
            return db_config
        if isinstance(db_config, str):
            return DatabaseConnectionInfo.from_url(db_config)
        return DatabaseConnectionInfo.default_sqlite()

    def _build_backend(self) -> BackendStrategy:
        info = self.connection_info
        if info.backend is DatabaseBackend.SQLITE:
            from fx_bolivar.db.sqlite_backend import SQLiteBackend

            return SQLiteBackend(info.name or DEFAULT_SQLITE_DB_PATH)
        if info.backend is DatabaseBackend.POSTGRES:
            from fx_bolivar.db.postgres_backend import PostgresBackend

            return PostgresBackend(info.url)
        if info.backend is DatabaseBackend.MYSQL:
            from fx_bolivar.db.mysql_backend import MySQLBackend

            return MySQLBackend(info.url)
        if info.backend is DatabaseBackend.MONGODB:
            from fx_bolivar.db.mongo_backend import MongoBackend

            return MongoBackend(info.url, database=info.name)
        raise ValueError(f"Unsupported backend: {info.backend}")

    def _get_backend_strategy(self) -> BackendStrategy:
        with self._backend_lock:
            if self._backend_strategy is None:
                backend = self._build_backend()
                backend.ensure_schema()
                self._backend_strategy = backend
            return self._backend_strategy

    @property
    def recorder(self) -> HistoricalRecorder:
        with self._backend_lock:
            if self._recorder is None:
                self._recorder = HistoricalRecorder(
                    self._get_backend_strategy(),
                    timezone=self.settings.timezone,
                    clock=self.clock,
                )
            return self._recorder

    @property
    def gateway(self) -> SubscriberGateway:
        with self._backend_lock:
            if self._gateway is None:
                self._gateway = SubscriberGateway(
                    self._get_backend_strategy(),
                    self.channel,
                    clock=self.clock,
                    site_url=self.settings.site_url,
                )
            return self._gateway

    @property
    def engine(self) -> ChangeNotificationEngine:
        with self._backend_lock:
            if self._engine is None:
                self._engine = ChangeNotificationEngine(
                    self.aggregator,
                    self.recorder,
                    self.gateway,
                    clock=self.clock,
                    timezone=self.settings.timezone,
                    threshold_percent=self.settings.change_threshold_percent,
                    digest_hour=self.settings.digest_hour,
                    digest_minutes=self.settings.digest_minutes,
                )
            return self._engine

    def _record_snapshot(self, snapshot: Snapshot) -> None:
        # Fed from the snapshot that was just cached, so the cache stays valid.
        self.recorder.record_snapshot(snapshot)

    def current_rates(self) -> Dict[str, Any]:
        """Return the current snapshot, served from cache when fresh."""

        return self.aggregator.aggregate_with_status().to_payload()

    def force_refresh(self) -> Dict[str, Any]:
        """Drop the cached snapshot and aggregate again."""

        return self.aggregator.aggregate_with_status(force=True).to_payload()

    def diagnose(self) -> Dict[str, Any]:
        """Run every fetcher once, bypassing the cache, and report each outcome."""

        outcomes = self.aggregator.diagnose()
        return {
            "timestamp": self.clock().isoformat(),
            "sources": [outcome.to_payload() for outcome in outcomes],
        }

    def historical(self, days: int = 30) -> List[Dict[str, Any]]:
        """Return one chart point per stored day over the last ``days`` days."""

        self.aggregator.flush()
        return [record.to_series_point() for record in self.recorder.history(days)]

    def commit_historical(
        self,
        official: float,
        parallel: float,
        secondary: float | None = None,
    ) -> Dict[str, Any]:
        """Persist externally supplied rates as today's record."""

        if not official or not parallel:
            raise ValueError("official and parallel rates are required")
        # Queued automatic commits must land before this one.
        self.aggregator.flush()
        record = self.recorder.commit(official, parallel, secondary)
        self.cache.invalidate()
        return {"success": True, "data": record.to_payload()}

    def subscribe(self, chat_id: str, username: str | None = None) -> Dict[str, Any]:
        subscriber = self.gateway.subscribe(chat_id, username)
        return {
            "success": True,
            "message": "Subscription stored",
            "chat_id": subscriber.chat_id,
            "username": subscriber.username,
        }

    def subscription_status(self, chat_id: str) -> Dict[str, Any]:
        return {"subscribed": self.gateway.is_subscribed(chat_id), "chat_id": str(chat_id)}

    def unsubscribe(self, chat_id: str) -> Dict[str, Any]:
        return {"success": self.gateway.unsubscribe(chat_id), "chat_id": str(chat_id)}

    def evaluate_notifications(self) -> Dict[str, Any]:
        """Run the change-notification engine once and report its decision."""

        return self.engine.evaluate().to_payload()

    def purge_history(self) -> Dict[str, Any]:
        self.aggregator.flush()
        return {"deleted": self.recorder.purge()}

    @staticmethod
    def error_payload(exc: Exception) -> tuple[Dict[str, Any], int]:
        """Map an exception onto the ``{"error": message}`` body and HTTP status."""

        if isinstance(exc, FxBolivarError):
            return {"error": str(exc)}, exc.http_status
        if isinstance(exc, ValueError):
            return {"error": str(exc)}, 400
        return {"error": str(exc) or "Unknown error"}, 500

    def connection(self) -> tuple[bool, str | None]:
        """Attempt to establish a database connection and report the outcome."""

        try:
            self._get_backend_strategy()
        except ModuleNotFoundError as exc:
            return False, self._missing_driver_message(exc)
        except Exception as exc:  # noqa: BLE001 - driver provides error detail
            return False, str(exc)
        return True, None

    def _missing_driver_message(self, exc: ModuleNotFoundError) -> str:
        """Return a user-friendly hint when an optional DB driver is missing."""

        module_name = exc.name or str(exc)
        hint = self._DRIVER_HINTS.get(self.connection_info.backend)
        base = (
            f"Missing optional dependency '{module_name}' required for "
            f"{self.connection_info.backend.value} connections."
        )
        if hint:
            return f"{base} {hint}"
        return base

    def close(self) -> None:
        self.aggregator.close()
        if self._backend_strategy is not None:
            self._backend_strategy.close()
