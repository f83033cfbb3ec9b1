"""Data models shared across ingestion modules."""

from __future__ import annotations

import math
import re
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Iterable, Sequence

from fx_bolivar.errors import InvalidData

MIN_RATE = 1.0
MAX_RATE = 10_000.0


class RateSource(str, Enum):
    """Stable identifiers for the three tracked rates."""

    OFFICIAL = "official"
    PARALLEL = "parallel"
    SECONDARY = "secondary"


REQUIRED_SOURCES: tuple[RateSource, ...] = (
    RateSource.OFFICIAL,
    RateSource.PARALLEL,
    RateSource.SECONDARY,
)


class FailureKind(str, Enum):
    TIMEOUT = "timeout"
    INVALID_DATA = "invalid_data"
    UNAVAILABLE = "unavailable"


def parse_rate(value: object | None) -> float | None:
    """Coerce upstream numbers (``"273,58610000"``, ``36.5``) into floats."""

    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    cleaned = re.sub(r"[^0-9,.-]", "", str(value))
    if not cleaned:
        return None
    if "," in cleaned and "." in cleaned:
        # ``1.234,56`` uses the dot as thousands separator.
        if cleaned.rfind(",") > cleaned.rfind("."):
            cleaned = cleaned.replace(".", "").replace(",", ".")
        else:
            cleaned = cleaned.replace(",", "")
    else:
        cleaned = cleaned.replace(",", ".")
    try:
        return float(cleaned)
    except ValueError:
        return None


def validate_mid(value: object | None) -> float:
    """Return ``value`` as a usable mid rate or raise :class:`InvalidData`."""

    parsed = parse_rate(value)
    if parsed is None or not math.isfinite(parsed):
        raise InvalidData(f"Unparsable rate: {value!r}")
    if parsed < MIN_RATE or parsed > MAX_RATE:
        raise InvalidData(f"Rate outside sane range [{MIN_RATE}, {MAX_RATE}]: {parsed}")
    return parsed


@dataclass(frozen=True, slots=True)
class Quote:
    """One source's observation of a rate."""

    source: RateSource
    label: str
    mid: float
    observed_at: datetime
    buy: float | None = None
    sell: float | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "mid", validate_mid(self.mid))

    def to_payload(self) -> Dict[str, Any]:
        return {
            "source": self.source.value,
            "label": self.label,
            "buy": self.buy,
            "sell": self.sell,
            "mid": self.mid,
            "observed_at": self.observed_at.isoformat(),
        }


@dataclass(frozen=True, slots=True)
class Snapshot:
    """Merged quotes from every source at one aggregation instant."""

    quotes: tuple[Quote, ...]
    fetched_at: datetime

    def __post_init__(self) -> None:
        if not self.quotes:
            raise ValueError("A snapshot must contain at least one quote")
        sources = [quote.source for quote in self.quotes]
        if len(sources) != len(set(sources)):
            raise ValueError("A snapshot holds at most one quote per source")

    @classmethod
    def merge(cls, quotes: Iterable[Quote], fetched_at: datetime) -> "Snapshot":
        """Build a snapshot keeping the last quote seen for each source."""

        merged: Dict[RateSource, Quote] = {}
        for quote in quotes:
            merged.pop(quote.source, None)
            merged[quote.source] = quote
        return cls(quotes=tuple(merged.values()), fetched_at=fetched_at)

    def get(self, source: RateSource | str) -> Quote | None:
        wanted = RateSource(source)
        for quote in self.quotes:
            if quote.source is wanted:
                return quote
        return None

    def mid(self, source: RateSource | str) -> float | None:
        quote = self.get(source)
        return quote.mid if quote is not None else None

    def missing(self, required: Sequence[RateSource] = REQUIRED_SOURCES) -> list[str]:
        return [source.value for source in required if self.get(source) is None]

    def to_payload(self) -> list[Dict[str, Any]]:
        return [quote.to_payload() for quote in self.quotes]


@dataclass(frozen=True, slots=True)
class FetchFailure:
    """Typed failure produced by a fetcher instead of raising."""

    fetcher: str
    kind: FailureKind
    message: str

    def __str__(self) -> str:
        return f"{self.fetcher}: {self.kind.value} ({self.message})"


@dataclass(frozen=True, slots=True)
class FetchOutcome:
    """Either the quotes a fetcher produced or why it produced none."""

    fetcher: str
    quotes: tuple[Quote, ...] = field(default_factory=tuple)
    failure: FetchFailure | None = None

    @property
    def ok(self) -> bool:
        return self.failure is None

    @classmethod
    def success(cls, fetcher: str, quotes: Iterable[Quote]) -> "FetchOutcome":
        return cls(fetcher=fetcher, quotes=tuple(quotes))

    @classmethod
    def failed(cls, fetcher: str, kind: FailureKind, message: str) -> "FetchOutcome":
        return cls(fetcher=fetcher, failure=FetchFailure(fetcher, kind, message))

    def to_payload(self) -> Dict[str, Any]:
        return {
            "fetcher": self.fetcher,
            "success": self.ok,
            "data": [quote.to_payload() for quote in self.quotes],
            "error": str(self.failure) if self.failure is not None else None,
        }


__all__ = [
    "FailureKind",
    "FetchFailure",
    "FetchOutcome",
    "MAX_RATE",
    "MIN_RATE",
    "Quote",
    "REQUIRED_SOURCES",
    "RateSource",
    "Snapshot",
    "parse_rate",
    "validate_mid",
]
