"""Exception hierarchy used across the rate pipeline."""

from __future__ import annotations

from typing import Iterable, Sequence


class FxBolivarError(Exception):
    """Base class for every error raised by :mod:`fx_bolivar`.

    ``http_status`` is the status an HTTP layer should answer with when the
    error escapes to a request handler.
    """

    http_status: int = 500


class ConfigurationError(FxBolivarError):
    """Raised when a required setting (bot token, DSN, ...) is missing."""


class FetchTimeout(FxBolivarError):
    """An upstream quote provider did not answer within its timeout."""

    http_status = 504


class InvalidData(FxBolivarError):
    """An upstream answered with unparsable or out-of-range data."""

    http_status = 502


class NoSourcesAvailable(FxBolivarError):
    """Every fetcher failed and no cached snapshot can stand in."""

    http_status = 503

    def __init__(self, failures: Sequence[object] = ()) -> None:
        self.failures = list(failures)
        detail = "; ".join(str(failure) for failure in self.failures)
        message = "No rate source is currently available"
        super().__init__(f"{message}: {detail}" if detail else message)


class MissingRequiredSource(FxBolivarError):
    """The snapshot lacks a currency the notification engine needs."""

    http_status = 502

    def __init__(self, missing: Iterable[str]) -> None:
        self.missing = sorted(missing)
        super().__init__(f"Snapshot is missing required sources: {', '.join(self.missing)}")


class PersistenceConflict(FxBolivarError):
    """A concurrent writer committed the same day first."""

    http_status = 409


class DeliveryFailure(FxBolivarError):
    """A single recipient could not be reached. Never fatal for a run."""

    http_status = 502

    def __init__(self, recipient: str, reason: str) -> None:
        self.recipient = recipient
        self.reason = reason
        super().__init__(f"Delivery to {recipient} failed: {reason}")


__all__ = [
    "ConfigurationError",
    "DeliveryFailure",
    "FetchTimeout",
    "FxBolivarError",
    "InvalidData",
    "MissingRequiredSource",
    "NoSourcesAvailable",
    "PersistenceConflict",
]
