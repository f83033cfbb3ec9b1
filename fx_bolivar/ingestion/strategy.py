"""Abstractions for pluggable quote fetchers."""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Protocol

import requests

from fx_bolivar.errors import FetchTimeout, InvalidData
from fx_bolivar.ingestion.models import FailureKind, FetchOutcome, Quote
from fx_bolivar.utils.date_range import Clock, utc_now
from fx_bolivar.utils.logger import get_logger

LOGGER = get_logger(__name__)

DEFAULT_TIMEOUT_SECONDS = 10.0


class FetchStrategy(Protocol):
    """Contract consumed by the aggregator.

    ``fetch`` must never raise: every failure is reported through the
    returned :class:`FetchOutcome`.
    """

    name: str

    def fetch(self) -> FetchOutcome:
        ...  # pragma: no cover - protocol definition


class QuoteFetcher(ABC):
    """Base class that turns network/parsing errors into typed failures."""

    name: str = "fetcher"

    def __init__(
        self,
        *,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        session: requests.Session | None = None,
        clock: Clock = utc_now,
    ) -> None:
        self.timeout = timeout
        self.session = session or requests.Session()
        self.clock = clock

    @abstractmethod
    def _fetch_quotes(self, fetched_at: datetime) -> list[Quote]:
        """Return validated quotes, raising on any failure."""

    def fetch(self) -> FetchOutcome:
        try:
            quotes = self._fetch_quotes(self.clock())
        except (FetchTimeout, requests.Timeout) as exc:
            LOGGER.warning("%s timed out after %ss: %s", self.name, self.timeout, exc)
            return FetchOutcome.failed(self.name, FailureKind.TIMEOUT, str(exc))
        except (InvalidData, ValueError) as exc:
            LOGGER.warning("%s returned invalid data: %s", self.name, exc)
            return FetchOutcome.failed(self.name, FailureKind.INVALID_DATA, str(exc))
        except Exception as exc:  # noqa: BLE001 - fetchers never raise past this point
            LOGGER.warning("%s unavailable: %s", self.name, exc)
            return FetchOutcome.failed(self.name, FailureKind.UNAVAILABLE, str(exc))
        if not quotes:
            return FetchOutcome.failed(
                self.name, FailureKind.INVALID_DATA, "no usable quotes in response"
            )
        LOGGER.info("Fetched %s quote(s) from %s", len(quotes), self.name)
        return FetchOutcome.success(self.name, quotes)


__all__ = ["DEFAULT_TIMEOUT_SECONDS", "FetchStrategy", "QuoteFetcher"]
