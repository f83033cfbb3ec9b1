"""Fetcher for the DolarApi Venezuela JSON endpoints."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Mapping

import requests

from fx_bolivar.errors import InvalidData
from fx_bolivar.ingestion.models import Quote, RateSource, parse_rate
from fx_bolivar.ingestion.strategy import QuoteFetcher
from fx_bolivar.utils.logger import get_logger

LOGGER = get_logger(__name__)

DOLARES_URL = "https://ve.dolarapi.com/v1/dolares"
EUROS_URL = "https://ve.dolarapi.com/v1/euros"

# ``fuente`` values reported by each endpoint mapped onto tracked sources.
DOLARES_SOURCE_MAP: dict[str, RateSource] = {
    "oficial": RateSource.OFFICIAL,
    "paralelo": RateSource.PARALLEL,
    "euro": RateSource.SECONDARY,
}
EUROS_SOURCE_MAP: dict[str, RateSource] = {
    "oficial": RateSource.SECONDARY,
    "euro": RateSource.SECONDARY,
}


def _parse_timestamp(value: object | None) -> datetime | None:
    if not value:
        return None
    text = str(value).strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class DolarApiFetcher(QuoteFetcher):
    """Fetch quotes from one DolarApi endpoint.

    The endpoint answers with a JSON array of objects shaped like
    ``{"fuente", "nombre", "compra", "venta", "promedio", "fechaActualizacion"}``.
    Entries whose ``fuente`` is not in ``source_map`` are ignored; entries
    with an invalid ``promedio`` are dropped individually.
    """

    def __init__(
        self,
        url: str = DOLARES_URL,
        *,
        source_map: Mapping[str, RateSource] | None = None,
        name: str | None = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(**kwargs)
        self.url = url
        self.source_map = dict(source_map or DOLARES_SOURCE_MAP)
        self.name = name or f"dolarapi:{url.rstrip('/').rsplit('/', 1)[-1]}"

    def _fetch_quotes(self, fetched_at: datetime) -> list[Quote]:
        response = self.session.get(
            self.url,
            headers={"Accept": "application/json"},
            timeout=self.timeout,
        )
        try:
            response.raise_for_status()
        except requests.HTTPError as exc:
            raise RuntimeError(f"DolarApi responded with HTTP {response.status_code}") from exc
        payload = response.json()
        if not isinstance(payload, list):
            raise InvalidData(f"Unexpected DolarApi payload type: {type(payload).__name__}")

        quotes: list[Quote] = []
        for entry in payload:
            if not isinstance(entry, dict):
                continue
            source = self.source_map.get(str(entry.get("fuente") or "").lower())
            if source is None:
                continue
            try:
                quote = Quote(
                    source=source,
                    label=str(entry.get("nombre") or source.value.title()),
                    mid=entry.get("promedio"),  # validated by Quote
                    buy=parse_rate(entry.get("compra")),
                    sell=parse_rate(entry.get("venta")),
                    observed_at=_parse_timestamp(entry.get("fechaActualizacion")) or fetched_at,
                )
            except InvalidData as exc:
                LOGGER.warning("Discarding %s quote from %s: %s", source.value, self.name, exc)
                continue
            quotes.append(quote)
        return quotes


def dolares_fetcher(**kwargs: Any) -> DolarApiFetcher:
    return DolarApiFetcher(DOLARES_URL, source_map=DOLARES_SOURCE_MAP, **kwargs)


def euros_fetcher(**kwargs: Any) -> DolarApiFetcher:
    return DolarApiFetcher(EUROS_URL, source_map=EUROS_SOURCE_MAP, **kwargs)


__all__ = [
    "DOLARES_SOURCE_MAP",
    "DOLARES_URL",
    "DolarApiFetcher",
    "EUROS_SOURCE_MAP",
    "EUROS_URL",
    "dolares_fetcher",
    "euros_fetcher",
]
