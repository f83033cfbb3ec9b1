"""Spanish Markdown templates for subscriber notifications."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Mapping, Sequence

DEFAULT_SITE_URL = "https://conversor-venezuela-2025.vercel.app"

_WEEKDAYS = ("lunes", "martes", "miércoles", "jueves", "viernes", "sábado", "domingo")
_MONTHS = (
    "enero",
    "febrero",
    "marzo",
    "abril",
    "mayo",
    "junio",
    "julio",
    "agosto",
    "septiembre",
    "octubre",
    "noviembre",
    "diciembre",
)


@dataclass(frozen=True, slots=True)
class CurrencyStyle:
    title: str
    emoji: str
    unit: str


CURRENCY_STYLES: dict[str, CurrencyStyle] = {
    "official": CurrencyStyle("Dólar BCV Oficial", "💵", "Bs/$"),
    "parallel": CurrencyStyle("Dólar Paralelo", "💸", "Bs/$"),
    "secondary": CurrencyStyle("Euro", "💶", "Bs/€"),
}
_ALERT_TITLES = {"official": "Dólar BCV", "parallel": "Dólar Paralelo", "secondary": "Euro"}


def format_long_date(local: datetime) -> str:
    """``lunes, 19 de octubre de 2026`` without depending on system locales."""

    return (
        f"{_WEEKDAYS[local.weekday()]}, {local.day} de "
        f"{_MONTHS[local.month - 1]} de {local.year}"
    )


def format_clock(local: datetime) -> str:
    return local.strftime("%H:%M")


def _signed(value: float) -> str:
    return f"{'+' if value > 0 else ''}{value:.2f}"


def _spread_line(rates: Mapping[str, float]) -> str:
    spread = (rates["parallel"] / rates["official"] - 1) * 100
    return f"📊 *Diferencia BCV-Paralelo:* {spread:.2f}%"


def _rate_block(name: str, value: float) -> list[str]:
    style = CURRENCY_STYLES[name]
    return [f"{style.emoji} *{style.title}*", f"{value:.2f} {style.unit}"]


def render_initial_setup(rates: Mapping[str, float], local_now: datetime) -> str:
    lines = ["🚀 *Sistema Iniciado - Conversor Venezuela*", ""]
    for name in CURRENCY_STYLES:
        lines.extend(_rate_block(name, rates[name]))
        lines.append("")
    lines.extend(
        [
            _spread_line(rates),
            "",
            "✅ Notificaciones activas",
            f"📅 {format_long_date(local_now)} - {format_clock(local_now)}",
        ]
    )
    return "\n".join(lines)


def render_daily_report(
    rates: Mapping[str, float],
    change_percent: Mapping[str, float],
    local_now: datetime,
) -> str:
    """Digest: every rate plus the spread, changes shown only when non-zero."""

    lines = ["🌅 *Resumen Diario - Venezuela*", ""]
    for name in CURRENCY_STYLES:
        lines.extend(_rate_block(name, rates[name]))
        change = change_percent.get(name, 0.0)
        if change != 0:
            lines.append(f"Cambio: {_signed(change)}%")
        lines.append("")
    lines.extend([_spread_line(rates), "", f"📅 {format_long_date(local_now)}"])
    return "\n".join(lines)


def render_change_alert(
    rates: Mapping[str, float],
    previous: Mapping[str, float | None],
    change_percent: Mapping[str, float],
    significant: Sequence[str],
    local_now: datetime,
) -> str:
    """Alert listing only the currencies that crossed the threshold."""

    alerts: list[str] = []
    for name in significant:
        before = previous.get(name)
        if before is None:
            continue
        change = change_percent[name]
        rising = change > 0
        style = CURRENCY_STYLES[name]
        alerts.append(
            "\n".join(
                [
                    f"{'🟢' if rising else '🔴'} *{_ALERT_TITLES[name]} "
                    f"{'SUBIÓ' if rising else 'BAJÓ'}* {'📈' if rising else '📉'}",
                    f"{before:.2f} → {rates[name]:.2f} {style.unit}",
                    f"Cambio: {_signed(change)}% ({rates[name] - before:.2f} Bs)",
                ]
            )
        )
    return "\n".join(
        [
            "🔔 *¡Cambio Detectado!*",
            "",
            "\n\n".join(alerts),
            "",
            _spread_line(rates),
            "",
            f"⏰ {format_clock(local_now)}",
        ]
    )


def welcome_message(site_url: str | None = None) -> str:
    return "\n".join(
        [
            "🎉 *¡Bienvenido a Conversor Venezuela!*",
            "",
            "Te has suscrito exitosamente a las notificaciones de tasas de cambio.",
            "",
            "📊 Recibirás:",
            "- 🔔 Alertas cuando el dólar cambie ±1%",
            "- 🌅 Resumen diario a las 8:00 AM",
            "",
            "💵 Tasas actuales disponibles en:",
            site_url or DEFAULT_SITE_URL,
            "",
            "¡Gracias por suscribirte! 🇻🇪",
        ]
    )


__all__ = [
    "CURRENCY_STYLES",
    "DEFAULT_SITE_URL",
    "format_long_date",
    "render_change_alert",
    "render_daily_report",
    "render_initial_setup",
    "welcome_message",
]
