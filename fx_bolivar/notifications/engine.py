"""Decide when subscribers hear about rate movements, and tell them."""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict

from fx_bolivar.aggregator import RateAggregator
from fx_bolivar.db.records import HistoricalRecord
from fx_bolivar.errors import MissingRequiredSource
from fx_bolivar.history import HistoricalRecorder
from fx_bolivar.ingestion.models import REQUIRED_SOURCES
from fx_bolivar.notifications.gateway import DeliveryOutcome, DeliveryReport, SubscriberGateway
from fx_bolivar.notifications.messages import (
    render_change_alert,
    render_daily_report,
    render_initial_setup,
)
from fx_bolivar.utils.date_range import Clock, in_daily_window, local_time, utc_now
from fx_bolivar.utils.logger import get_logger

LOGGER = get_logger(__name__)

DEFAULT_THRESHOLD_PERCENT = 1.0
DEFAULT_DIGEST_HOUR = 8
DEFAULT_DIGEST_MINUTES = 30
MAX_DELIVERY_WORKERS = 16


class MessageType(str, Enum):
    INITIAL_SETUP = "initial_setup"
    DAILY_REPORT = "daily_report"
    CHANGE_DETECTED = "change_detected"


@dataclass(slots=True)
class NotificationResult:
    notified: bool
    rates: Dict[str, float]
    message_type: MessageType | None = None
    change_percent: Dict[str, float] | None = None
    significant_changes: list[str] = field(default_factory=list)
    delivery: DeliveryReport = field(default_factory=DeliveryReport)
    message: str | None = None

    @property
    def delivery_failures(self) -> int:
        return self.delivery.failed

    def to_payload(self) -> Dict[str, Any]:
        if not self.notified:
            summary = "No significant change"
        elif self.message_type is MessageType.INITIAL_SETUP:
            summary = "System initialised; first notification sent"
        else:
            summary = "Notification sent"
        payload: Dict[str, Any] = {
            "success": True,
            "message": summary,
            "notified": self.notified,
            "rates": dict(self.rates),
        }
        if self.message_type is not None:
            payload["type"] = self.message_type.value
        if self.change_percent is not None:
            payload["change_percent"] = dict(self.change_percent)
        if self.notified:
            payload["significant_changes"] = list(self.significant_changes)
            payload["delivery"] = self.delivery.to_payload()
        return payload


def percent_change(current: float, previous: float | None) -> float:
    if not previous:
        return 0.0
    return (current - previous) / previous * 100


def _baseline_values(baseline: HistoricalRecord) -> Dict[str, float | None]:
    return {
        "official": baseline.official_rate,
        "parallel": baseline.parallel_rate,
        "secondary": baseline.secondary_rate,
    }


class ChangeNotificationEngine:
    """One evaluation per call: Idle → Evaluating → Suppressed | Notifying.

    Nothing is remembered between calls; the only state is the history row
    of the most recent day before today. Every call inside the digest window
    sends a digest, so a scheduler polling several times within the window
    sends several digests.
    """

    def __init__(
        self,
        aggregator: RateAggregator,
        recorder: HistoricalRecorder,
        gateway: SubscriberGateway,
        *,
        clock: Clock = utc_now,
        timezone: str | None = None,
        threshold_percent: float = DEFAULT_THRESHOLD_PERCENT,
        digest_hour: int = DEFAULT_DIGEST_HOUR,
        digest_minutes: int = DEFAULT_DIGEST_MINUTES,
    ) -> None:
        self.aggregator = aggregator
        self.recorder = recorder
        self.gateway = gateway
        self.clock = clock
        self.timezone = timezone or recorder.timezone
        self.threshold_percent = threshold_percent
        self.digest_hour = digest_hour
        self.digest_minutes = digest_minutes

    def is_digest_window(self, moment: datetime | None = None) -> bool:
        return in_daily_window(
            moment or self.clock(),
            hour=self.digest_hour,
            minutes=self.digest_minutes,
            tz=self.timezone,
        )

    def evaluate(self) -> NotificationResult:
        snapshot = self.aggregator.aggregate()
        missing = snapshot.missing(REQUIRED_SOURCES)
        if missing:
            raise MissingRequiredSource(missing)
        rates: Dict[str, float] = {
            source.value: float(snapshot.mid(source))  # type: ignore[arg-type]
            for source in REQUIRED_SOURCES
        }

        now = self.clock()
        local_now = local_time(now, self.timezone)
        baseline = self.recorder.baseline(local_now.date())

        if baseline is None:
            LOGGER.info("No history before %s; sending initial setup message", local_now.date())
            message = render_initial_setup(rates, local_now)
            return self._notify(
                NotificationResult(
                    notified=True,
                    rates=rates,
                    message_type=MessageType.INITIAL_SETUP,
                    message=message,
                )
            )

        previous = _baseline_values(baseline)
        change_percent = {name: percent_change(rates[name], previous[name]) for name in rates}
        digest = self.is_digest_window(now)
        significant = [
            name
            for name, change in change_percent.items()
            if abs(change) >= self.threshold_percent
        ]

        if digest:
            message = render_daily_report(rates, change_percent, local_now)
            message_type = MessageType.DAILY_REPORT
            significant = []
        elif significant:
            message = render_change_alert(rates, previous, change_percent, significant, local_now)
            message_type = MessageType.CHANGE_DETECTED
        else:
            LOGGER.info("No significant change versus %s; suppressing", baseline.day.isoformat())
            return NotificationResult(notified=False, rates=rates, change_percent=change_percent)

        return self._notify(
            NotificationResult(
                notified=True,
                rates=rates,
                message_type=message_type,
                change_percent=change_percent,
                significant_changes=significant,
                message=message,
            )
        )

    def _notify(self, result: NotificationResult) -> NotificationResult:
        if result.message is None:
            raise RuntimeError("Cannot notify subscribers without a message")
        result.delivery = self.dispatch(result.message)
        return result

    def dispatch(self, message: str) -> DeliveryReport:
        """Send ``message`` to every active recipient and wait for all of them."""

        recipients = self.gateway.active_recipients()
        if not recipients:
            LOGGER.info("No active subscribers; nothing to deliver")
            return DeliveryReport()
        LOGGER.info("Sending notification to %s subscriber(s)", len(recipients))
        workers = min(MAX_DELIVERY_WORKERS, len(recipients))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="fx-deliver") as pool:
            futures = [
                pool.submit(self.gateway.deliver, recipient, message) for recipient in recipients
            ]
            outcomes: list[DeliveryOutcome] = [future.result() for future in futures]
        report = DeliveryReport(outcomes)
        if report.failed:
            LOGGER.error("%s of %s deliveries failed", report.failed, report.attempted)
        else:
            LOGGER.info("All %s deliveries succeeded", report.attempted)
        return report


__all__ = [
    "ChangeNotificationEngine",
    "MessageType",
    "NotificationResult",
    "percent_change",
]
