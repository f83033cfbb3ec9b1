from __future__ import annotations

from datetime import datetime, timezone

import requests

from conftest import FakeClock, FakeResponse, FakeSession
from fx_bolivar.ingestion.dolarapi import (
    DOLARES_URL,
    EUROS_URL,
    DolarApiFetcher,
    dolares_fetcher,
    euros_fetcher,
)
from fx_bolivar.ingestion.models import FailureKind, RateSource

DOLARES_PAYLOAD = [
    {
        "fuente": "oficial",
        "nombre": "Oficial",
        "compra": None,
        "venta": None,
        "promedio": 36.52,
        "fechaActualizacion": "2026-10-19T13:00:00.000Z",
    },
    {
        "fuente": "paralelo",
        "nombre": "Paralelo",
        "compra": "59,10",
        "venta": "60,90",
        "promedio": 60.0,
        "fechaActualizacion": "2026-10-19T14:30:00-04:00",
    },
    {"fuente": "bitcoin", "nombre": "Bitcoin", "promedio": 58.0},
]


def _fetcher(payload: object, url: str = DOLARES_URL, **kwargs) -> DolarApiFetcher:
    session = FakeSession({url: FakeResponse(json_data=payload)})
    factory = dolares_fetcher if url == DOLARES_URL else euros_fetcher
    return factory(session=session, clock=FakeClock(), **kwargs)


def test_dolares_endpoint_maps_sources() -> None:
    outcome = _fetcher(DOLARES_PAYLOAD).fetch()

    assert outcome.ok
    assert outcome.fetcher == "dolarapi:dolares"
    by_source = {quote.source: quote for quote in outcome.quotes}
    assert set(by_source) == {RateSource.OFFICIAL, RateSource.PARALLEL}
    assert by_source[RateSource.OFFICIAL].observed_at == datetime(
        2026, 10, 19, 13, 0, tzinfo=timezone.utc
    )
    parallel = by_source[RateSource.PARALLEL]
    assert (parallel.buy, parallel.sell, parallel.mid) == (59.1, 60.9, 60.0)


def test_euros_endpoint_maps_official_to_secondary() -> None:
    payload = [{"fuente": "oficial", "nombre": "Euro BCV", "promedio": "40,15"}]

    outcome = _fetcher(payload, url=EUROS_URL).fetch()

    assert outcome.ok
    (quote,) = outcome.quotes
    assert quote.source is RateSource.SECONDARY
    assert quote.mid == 40.15
    # No upstream timestamp: observed at fetch time.
    assert quote.observed_at == FakeClock().now


def test_invalid_entries_are_dropped_individually() -> None:
    payload = [
        {"fuente": "oficial", "promedio": 0},
        {"fuente": "paralelo", "promedio": 60.0},
        "not-an-object",
    ]

    outcome = _fetcher(payload).fetch()

    assert [quote.source for quote in outcome.quotes] == [RateSource.PARALLEL]


def test_no_usable_quotes_is_invalid_data() -> None:
    outcome = _fetcher([{"fuente": "oficial", "promedio": 99999}]).fetch()

    assert not outcome.ok
    assert outcome.failure.kind is FailureKind.INVALID_DATA  # type: ignore[union-attr]


def test_non_list_payload_is_invalid_data() -> None:
    outcome = _fetcher({"error": "maintenance"}).fetch()

    assert outcome.failure.kind is FailureKind.INVALID_DATA  # type: ignore[union-attr]


def test_timeout_and_http_errors_are_typed() -> None:
    timeout_session = FakeSession({DOLARES_URL: requests.Timeout("read timed out")})
    down_session = FakeSession({DOLARES_URL: FakeResponse(status_code=503, reason="Down")})

    timed_out = DolarApiFetcher(DOLARES_URL, session=timeout_session).fetch()
    unavailable = DolarApiFetcher(DOLARES_URL, session=down_session).fetch()

    assert timed_out.failure.kind is FailureKind.TIMEOUT  # type: ignore[union-attr]
    assert unavailable.failure.kind is FailureKind.UNAVAILABLE  # type: ignore[union-attr]
    assert "503" in unavailable.failure.message  # type: ignore[union-attr]


def test_request_uses_configured_timeout() -> None:
    session = FakeSession({DOLARES_URL: FakeResponse(json_data=DOLARES_PAYLOAD)})

    DolarApiFetcher(DOLARES_URL, session=session, timeout=3.5).fetch()

    (_method, url, kwargs) = session.calls[0]
    assert url == DOLARES_URL
    assert kwargs["timeout"] == 3.5
