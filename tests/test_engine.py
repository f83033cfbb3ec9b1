from __future__ import annotations

from datetime import datetime, timezone

import pytest

from conftest import FakeClock, RecordingChannel, ScriptedFetcher
from fx_bolivar.aggregator import RateAggregator
from fx_bolivar.cache import RateCache
from fx_bolivar.db.records import Subscriber
from fx_bolivar.db.sqlite_backend import SQLiteBackend
from fx_bolivar.errors import MissingRequiredSource
from fx_bolivar.history import HistoricalRecorder
from fx_bolivar.notifications.engine import (
    ChangeNotificationEngine,
    MessageType,
    NotificationResult,
    percent_change,
)
from fx_bolivar.notifications.gateway import SubscriberGateway

# 08:10 in Caracas.
DIGEST_TIME = datetime(2026, 10, 19, 12, 10, tzinfo=timezone.utc)


class EngineHarness:
    def __init__(self, backend: SQLiteBackend, clock: FakeClock, rates: dict[str, float]) -> None:
        self.backend = backend
        self.clock = clock
        self.fetcher = ScriptedFetcher("api", rates)
        self.channel = RecordingChannel(failing={"blocked-1", "blocked-2"})
        self.recorder = HistoricalRecorder(backend, clock=clock)
        self.gateway = SubscriberGateway(backend, self.channel, clock=clock)
        aggregator = RateAggregator([self.fetcher], RateCache(clock=clock), clock=clock)
        self.engine = ChangeNotificationEngine(aggregator, self.recorder, self.gateway, clock=clock)

    def seed_yesterday(self, official: float, parallel: float, secondary: float) -> None:
        today = self.clock.now
        self.clock.advance(days=-1)
        self.recorder.commit(official, parallel, secondary)
        self.clock.now = today

    def add_subscribers(self, *chat_ids: str) -> None:
        for chat_id in chat_ids:
            self.backend.save_subscriber(Subscriber(chat_id=chat_id, subscribed_at=self.clock()))


def _harness(
    sqlite_backend: SQLiteBackend, clock: FakeClock, parallel: float = 300.0
) -> EngineHarness:
    harness = EngineHarness(
        sqlite_backend, clock, {"official": 36.0, "parallel": parallel, "secondary": 40.0}
    )
    harness.add_subscribers("100", "200")
    return harness


def test_percent_change() -> None:
    assert percent_change(306.0, 300.0) == pytest.approx(2.0)
    assert percent_change(306.0, None) == 0.0
    assert percent_change(306.0, 0.0) == 0.0


def test_bootstrap_sends_initial_setup(sqlite_backend: SQLiteBackend, clock: FakeClock) -> None:
    harness = _harness(sqlite_backend, clock)

    result = harness.engine.evaluate()

    assert result.notified is True
    assert result.message_type is MessageType.INITIAL_SETUP
    assert result.change_percent is None
    assert sorted(chat for chat, _ in harness.channel.sent) == ["100", "200"]
    assert "Sistema Iniciado" in harness.channel.sent[0][1]
    assert result.to_payload()["type"] == "initial_setup"


def test_small_change_is_suppressed(sqlite_backend: SQLiteBackend, clock: FakeClock) -> None:
    harness = _harness(sqlite_backend, clock, parallel=302.4)
    harness.seed_yesterday(36.0, 300.0, 40.0)

    result = harness.engine.evaluate()

    assert result.notified is False
    assert result.change_percent["parallel"] == pytest.approx(0.8)  # type: ignore[index]
    assert harness.channel.sent == []
    payload = result.to_payload()
    assert payload["message"] == "No significant change"
    assert "delivery" not in payload


def test_threshold_crossing_alerts_only_changed_currency(
    sqlite_backend: SQLiteBackend, clock: FakeClock
) -> None:
    harness = _harness(sqlite_backend, clock, parallel=303.6)
    harness.seed_yesterday(36.0, 300.0, 40.0)

    result = harness.engine.evaluate()

    assert result.notified is True
    assert result.message_type is MessageType.CHANGE_DETECTED
    assert result.significant_changes == ["parallel"]
    text = harness.channel.sent[0][1]
    assert "Dólar Paralelo SUBIÓ" in text
    assert "300.00 → 303.60" in text
    assert "Dólar BCV SUBIÓ" not in text


def test_digest_window_overrides_threshold(sqlite_backend: SQLiteBackend) -> None:
    clock = FakeClock(DIGEST_TIME)
    harness = _harness(sqlite_backend, clock)
    harness.seed_yesterday(36.0, 300.0, 40.0)

    result = harness.engine.evaluate()

    assert result.notified is True
    assert result.message_type is MessageType.DAILY_REPORT
    assert result.significant_changes == []
    assert result.change_percent == {"official": 0.0, "parallel": 0.0, "secondary": 0.0}
    assert "Resumen Diario" in harness.channel.sent[0][1]


def test_digest_window_bounds(sqlite_backend: SQLiteBackend, clock: FakeClock) -> None:
    engine = _harness(sqlite_backend, clock).engine

    assert engine.is_digest_window(datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc))
    assert not engine.is_digest_window(datetime(2026, 10, 19, 12, 30, tzinfo=timezone.utc))
    assert not engine.is_digest_window()


def test_missing_required_source_aborts(sqlite_backend: SQLiteBackend, clock: FakeClock) -> None:
    harness = EngineHarness(sqlite_backend, clock, {"official": 36.0, "parallel": 300.0})
    harness.add_subscribers("100")

    with pytest.raises(MissingRequiredSource) as excinfo:
        harness.engine.evaluate()

    assert excinfo.value.missing == ["secondary"]
    assert harness.channel.sent == []


def test_partial_delivery_failure_still_notifies(
    sqlite_backend: SQLiteBackend, clock: FakeClock
) -> None:
    harness = _harness(sqlite_backend, clock, parallel=306.0)
    harness.add_subscribers("blocked-1", "300", "blocked-2")
    harness.seed_yesterday(36.0, 300.0, 40.0)

    result = harness.engine.evaluate()

    assert result.notified is True
    assert result.delivery.attempted == 5
    assert result.delivery_failures == 2
    assert sorted(chat for chat, _ in harness.channel.sent) == ["100", "200", "300"]
    assert result.to_payload()["delivery"]["failed"] == 2


def test_unexpected_channel_error_does_not_abort_broadcast(
    sqlite_backend: SQLiteBackend, clock: FakeClock
) -> None:
    harness = _harness(sqlite_backend, clock, parallel=306.0)
    harness.channel.errors["300"] = ConnectionError("socket reset")
    harness.add_subscribers("300")
    harness.seed_yesterday(36.0, 300.0, 40.0)

    result = harness.engine.evaluate()

    assert result.notified is True
    assert result.delivery_failures == 1
    assert sorted(chat for chat, _ in harness.channel.sent) == ["100", "200"]
    assert result.to_payload()["delivery"]["failures"] == [
        {"recipient": "300", "error": "socket reset"}
    ]


def test_no_subscribers_still_counts_as_notified(
    sqlite_backend: SQLiteBackend, clock: FakeClock
) -> None:
    harness = EngineHarness(
        sqlite_backend, clock, {"official": 36.0, "parallel": 310.0, "secondary": 40.0}
    )
    harness.seed_yesterday(36.0, 300.0, 40.0)

    result = harness.engine.evaluate()

    assert result.notified is True
    assert result.delivery.attempted == 0


def test_notify_without_message_raises(sqlite_backend: SQLiteBackend, clock: FakeClock) -> None:
    harness = _harness(sqlite_backend, clock)

    with pytest.raises(RuntimeError):
        harness.engine._notify(NotificationResult(notified=True, rates={}))

    assert harness.channel.sent == []
