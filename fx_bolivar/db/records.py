"""Records persisted by the backends."""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import date, datetime
from typing import Any, Dict

AUTOMATIC_SOURCE = "automatic"


@dataclass(slots=True)
class HistoricalRecord:
    """One committed rate snapshot per calendar day."""

    day: date
    official_rate: float
    parallel_rate: float
    secondary_rate: float | None
    official_delta: float
    parallel_delta: float
    secondary_delta: float
    spread_percent: float
    source: str = AUTOMATIC_SOURCE
    created_at: datetime | None = None
    updated_at: datetime | None = None

    def with_updates(self, **changes: Any) -> "HistoricalRecord":
        return replace(self, **changes)

    def to_payload(self) -> Dict[str, Any]:
        return {
            "day": self.day.isoformat(),
            "official_rate": self.official_rate,
            "parallel_rate": self.parallel_rate,
            "secondary_rate": self.secondary_rate,
            "official_delta": self.official_delta,
            "parallel_delta": self.parallel_delta,
            "secondary_delta": self.secondary_delta,
            "spread_percent": self.spread_percent,
            "source": self.source,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def to_series_point(self) -> Dict[str, Any]:
        """Shape used by charts: one point per day."""

        return {
            "date": self.day.isoformat(),
            "official": self.official_rate,
            "parallel": self.parallel_rate,
            "secondary": self.secondary_rate if self.secondary_rate is not None else 0.0,
            "spread_percent": self.spread_percent,
        }


@dataclass(slots=True)
class Subscriber:
    """Opt-in notification recipient."""

    chat_id: str
    subscribed_at: datetime
    active: bool = True
    username: str | None = None


__all__ = ["AUTOMATIC_SOURCE", "HistoricalRecord", "Subscriber"]
