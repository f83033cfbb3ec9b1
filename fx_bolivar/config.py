"""Environment-driven configuration for the pipeline."""

from __future__ import annotations

import os
from dataclasses import dataclass
from datetime import timedelta
from typing import Mapping
from zoneinfo import ZoneInfoNotFoundError

from dotenv import load_dotenv

from fx_bolivar.errors import ConfigurationError
from fx_bolivar.utils.date_range import DEFAULT_TIMEZONE, resolve_timezone


def _read_float(env: Mapping[str, str], key: str, default: float) -> float:
    raw = env.get(key)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise ConfigurationError(f"{key} must be a number, got {raw!r}") from exc


def _read_int(env: Mapping[str, str], key: str, default: int) -> int:
    value = _read_float(env, key, default)
    if value != int(value):
        raise ConfigurationError(f"{key} must be an integer, got {value!r}")
    return int(value)


@dataclass(slots=True)
class Settings:
    """Central configuration driven by environment variables.

    ``db_url`` left as ``None`` selects the bundled SQLite database.
    """

    db_url: str | None = None
    telegram_bot_token: str | None = None
    timezone: str = DEFAULT_TIMEZONE
    cache_ttl_seconds: float = 300.0
    fetch_timeout_seconds: float = 10.0
    delivery_timeout_seconds: float = 10.0
    change_threshold_percent: float = 1.0
    digest_hour: int = 8
    digest_minutes: int = 30
    site_url: str | None = None

    def __post_init__(self) -> None:
        try:
            resolve_timezone(self.timezone)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ConfigurationError(f"Unknown time zone: {self.timezone!r}") from exc
        if self.cache_ttl_seconds <= 0:
            raise ConfigurationError("cache TTL must be positive")
        if not 0 <= self.digest_hour <= 23:
            raise ConfigurationError("digest hour must be between 0 and 23")
        if not 1 <= self.digest_minutes <= 60:
            raise ConfigurationError("digest window must last between 1 and 60 minutes")

    @property
    def cache_ttl(self) -> timedelta:
        return timedelta(seconds=self.cache_ttl_seconds)

    @classmethod
    def from_env(
        cls,
        env: Mapping[str, str] | None = None,
        *,
        dotenv: bool = True,
    ) -> "Settings":
        """Build settings from ``env`` (defaults to ``os.environ`` after ``.env``)."""

        if env is None:
            if dotenv:
                load_dotenv()
            env = os.environ
        return cls(
            db_url=env.get("FX_BOLIVAR_DB_URL") or None,
            telegram_bot_token=env.get("TELEGRAM_BOT_TOKEN") or None,
            timezone=env.get("FX_BOLIVAR_TIMEZONE") or DEFAULT_TIMEZONE,
            cache_ttl_seconds=_read_float(env, "FX_BOLIVAR_CACHE_TTL", 300.0),
            fetch_timeout_seconds=_read_float(env, "FX_BOLIVAR_FETCH_TIMEOUT", 10.0),
            delivery_timeout_seconds=_read_float(env, "FX_BOLIVAR_DELIVERY_TIMEOUT", 10.0),
            change_threshold_percent=_read_float(env, "FX_BOLIVAR_CHANGE_THRESHOLD", 1.0),
            digest_hour=_read_int(env, "FX_BOLIVAR_DIGEST_HOUR", 8),
            digest_minutes=_read_int(env, "FX_BOLIVAR_DIGEST_MINUTES", 30),
            site_url=env.get("FX_BOLIVAR_SITE_URL") or None,
        )


__all__ = ["Settings"]
