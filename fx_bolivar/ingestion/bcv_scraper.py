"""Scraping fallback for the Banco Central de Venezuela home page."""

from __future__ import annotations

import re
from datetime import datetime
from typing import Any, Optional, Pattern

import requests
from bs4 import BeautifulSoup

from fx_bolivar.errors import FetchTimeout, InvalidData
from fx_bolivar.ingestion.models import Quote, RateSource, parse_rate, validate_mid
from fx_bolivar.ingestion.strategy import QuoteFetcher
from fx_bolivar.utils.logger import get_logger

LOGGER = get_logger(__name__)

BCV_URLS: list[str] = [
    "https://www.bcv.org.ve/",
    # Plaintext transport; the TLS chain of the BCV site is frequently broken.
    "http://www.bcv.org.ve/",
]

USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)


def _currency_patterns(code: str) -> list[Pattern[str]]:
    return [
        re.compile(rf"{code}[^\d]*(\d+[,.]?\d+)", re.IGNORECASE),
        re.compile(
            rf"<strong[^>]*>\s*{code}\s*</strong>[^<]*<strong[^>]*>\s*([0-9,.]+)\s*</strong>",
            re.IGNORECASE,
        ),
        re.compile(rf"{code}.*?([0-9]{{2,3}}[,.][0-9]{{2,}})", re.IGNORECASE | re.DOTALL),
    ]


USD_PATTERNS = _currency_patterns("USD")
EUR_PATTERNS = _currency_patterns("EUR")
DATE_PATTERN = re.compile(r"Fecha Valor:\s*(?:<[^>]+>\s*)*([^<\n]+)", re.IGNORECASE)

# Block ids used by the BCV markup for each currency.
_DOM_IDS: dict[RateSource, str] = {
    RateSource.OFFICIAL: "dolar",
    RateSource.SECONDARY: "euro",
}

_SPANISH_MONTHS = {
    "enero": 1,
    "febrero": 2,
    "marzo": 3,
    "abril": 4,
    "mayo": 5,
    "junio": 6,
    "julio": 7,
    "agosto": 8,
    "septiembre": 9,
    "setiembre": 9,
    "octubre": 10,
    "noviembre": 11,
    "diciembre": 12,
}


def _extract_from_dom(soup: BeautifulSoup, source: RateSource) -> str | None:
    block = soup.find(id=_DOM_IDS[source])
    if block is None:
        return None
    strong = block.find("strong")
    if strong is None:
        return None
    return " ".join(strong.stripped_strings) or None


def _first_match(html: str, patterns: list[Pattern[str]]) -> str | None:
    for pattern in patterns:
        match = pattern.search(html)
        if match and match.group(1):
            return match.group(1)
    return None


def parse_value_date(text: str) -> Optional[datetime]:
    """Parse ``"Martes, 14 Octubre  2025"`` style dates printed by the BCV."""

    match = re.search(r"(\d{1,2})\s+([A-Za-záéíóú]+)\s+(\d{4})", text)
    if not match:
        return None
    day, month_name, year = match.groups()
    month = _SPANISH_MONTHS.get(month_name.lower())
    if month is None:
        return None
    try:
        return datetime(int(year), month, int(day))
    except ValueError:
        return None


def parse_bcv_html(html: str) -> dict[RateSource, float]:
    """Extract USD (official) and EUR (secondary) rates from BCV markup.

    The DOM blocks are tried first; the regular expressions are applied in
    order afterwards, each one looser than the previous. USD is mandatory,
    EUR is optional. Raises :class:`InvalidData` when USD cannot be found or
    is out of range.
    """

    soup = BeautifulSoup(html, "html.parser")
    rates: dict[RateSource, float] = {}
    for source, patterns in (
        (RateSource.OFFICIAL, USD_PATTERNS),
        (RateSource.SECONDARY, EUR_PATTERNS),
    ):
        candidates = [_extract_from_dom(soup, source), _first_match(html, patterns)]
        for raw in candidates:
            if raw is None or parse_rate(raw) is None:
                continue
            try:
                rates[source] = validate_mid(raw)
            except InvalidData:
                if source is RateSource.OFFICIAL:
                    raise
                LOGGER.debug("Ignoring out-of-range EUR value %r", raw)
            break
    if RateSource.OFFICIAL not in rates:
        raise InvalidData("Could not extract the USD rate from BCV markup")
    return rates


class BCVScraperFetcher(QuoteFetcher):
    """Scrape the official USD and EUR rates from bcv.org.ve."""

    name = "bcv"

    def __init__(self, *, urls: list[str] | None = None, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self.urls = urls or list(BCV_URLS)
        self.session.headers.update(
            {
                "User-Agent": USER_AGENT,
                "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
                "Accept-Language": "es-VE,es;q=0.9,en;q=0.8",
            }
        )

    def _download(self) -> str:
        last_exc: Exception | None = None
        timed_out = False
        for url in self.urls:
            try:
                response = self.session.get(url, timeout=self.timeout)
                response.raise_for_status()
                LOGGER.info("Fetched BCV markup from %s (%s chars)", url, len(response.text))
                return response.text
            except requests.Timeout as exc:
                timed_out = True
                last_exc = exc
            except requests.RequestException as exc:
                last_exc = exc
            LOGGER.debug("Failed to fetch BCV page via %s: %s", url, last_exc)
        if timed_out:
            raise FetchTimeout(f"BCV did not answer within {self.timeout}s") from last_exc
        raise RuntimeError("Unable to reach BCV after trying all endpoints") from last_exc

    def _fetch_quotes(self, fetched_at: datetime) -> list[Quote]:
        html = self._download()
        rates = parse_bcv_html(html)
        date_match = DATE_PATTERN.search(html)
        observed_at = fetched_at
        if date_match:
            value_date = parse_value_date(date_match.group(1))
            if value_date is not None:
                observed_at = value_date.replace(tzinfo=fetched_at.tzinfo)
        labels = {RateSource.OFFICIAL: "Dólar BCV", RateSource.SECONDARY: "Euro BCV"}
        return [
            Quote(source=source, label=labels[source], mid=value, observed_at=observed_at)
            for source, value in rates.items()
        ]


__all__ = ["BCV_URLS", "BCVScraperFetcher", "parse_bcv_html", "parse_value_date"]
