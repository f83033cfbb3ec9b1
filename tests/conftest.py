"""Shared fakes: a controllable clock, scripted fetchers and a recording channel."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Iterable

import pytest
import requests

from fx_bolivar.db.sqlite_backend import SQLiteBackend
from fx_bolivar.errors import DeliveryFailure
from fx_bolivar.ingestion.models import FailureKind, FetchOutcome, Quote, RateSource

# 12:00 in Caracas (UTC-4, no DST), outside the morning digest window.
NOON_CARACAS = datetime(2026, 10, 19, 16, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, now: datetime = NOON_CARACAS) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta: float) -> None:
        self.now = self.now + timedelta(**delta)


def make_quote(source: RateSource | str, mid: float, label: str | None = None) -> Quote:
    source = RateSource(source)
    return Quote(
        source=source,
        label=label or source.value,
        mid=mid,
        observed_at=NOON_CARACAS,
    )


class ScriptedFetcher:
    """FetchStrategy double returning canned quotes or a typed failure."""

    def __init__(
        self,
        name: str,
        rates: dict[str, float] | None = None,
        *,
        failure: FailureKind | None = None,
    ) -> None:
        self.name = name
        self.rates = dict(rates or {})
        self.failure = failure
        self.calls = 0

    def fetch(self) -> FetchOutcome:
        self.calls += 1
        if self.failure is not None:
            return FetchOutcome.failed(self.name, self.failure, "scripted failure")
        return FetchOutcome.success(
            self.name, [make_quote(source, mid) for source, mid in self.rates.items()]
        )


class RecordingChannel:
    """MessageChannel double.

    Chats listed in ``failing`` raise DeliveryFailure; chats mapped in
    ``errors`` raise the given exception instead.
    """

    def __init__(
        self, failing: Iterable[str] = (), errors: dict[str, Exception] | None = None
    ) -> None:
        self.failing = set(failing)
        self.errors = dict(errors or {})
        self.sent: list[tuple[str, str]] = []

    def send(self, chat_id: str, text: str) -> None:
        if chat_id in self.errors:
            raise self.errors[chat_id]
        if chat_id in self.failing:
            raise DeliveryFailure(chat_id, "chat not found")
        self.sent.append((chat_id, text))


class FakeResponse:
    def __init__(
        self,
        *,
        status_code: int = 200,
        json_data: Any = None,
        text: str = "",
        reason: str = "OK",
    ) -> None:
        self.status_code = status_code
        self._json = json_data
        self.text = text
        self.reason = reason

    @property
    def ok(self) -> bool:
        return self.status_code < 400

    def json(self) -> Any:
        if self._json is None:
            raise ValueError("No JSON body")
        return self._json

    def raise_for_status(self) -> None:
        if not self.ok:
            raise requests.HTTPError(f"{self.status_code} {self.reason}", response=self)


class FakeSession:
    """Minimal ``requests.Session`` stand-in keyed by URL."""

    def __init__(self, responses: dict[str, Any] | None = None) -> None:
        self.responses = dict(responses or {})
        self.headers: dict[str, str] = {}
        self.calls: list[tuple[str, str, dict[str, Any]]] = []

    def _respond(self, method: str, url: str, kwargs: dict[str, Any]) -> FakeResponse:
        self.calls.append((method, url, kwargs))
        response = self.responses[url]
        if isinstance(response, Exception):
            raise response
        return response

    def get(self, url: str, **kwargs: Any) -> FakeResponse:
        return self._respond("GET", url, kwargs)

    def post(self, url: str, **kwargs: Any) -> FakeResponse:
        return self._respond("POST", url, kwargs)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def sqlite_backend(tmp_path: Path):
    backend = SQLiteBackend(db_path=tmp_path / "fx_bolivar.db")
    yield backend
    backend.close()
