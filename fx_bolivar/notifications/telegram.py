"""Telegram Bot API channel used to deliver notifications."""

from __future__ import annotations

import requests

from fx_bolivar.errors import ConfigurationError, DeliveryFailure
from fx_bolivar.utils.logger import get_logger

LOGGER = get_logger(__name__)

TELEGRAM_API_URL = "https://api.telegram.org"


class TelegramChannel:
    """Send Markdown text messages to Telegram chats."""

    def __init__(
        self,
        token: str | None,
        *,
        timeout: float = 10.0,
        session: requests.Session | None = None,
        api_url: str = TELEGRAM_API_URL,
        parse_mode: str = "Markdown",
    ) -> None:
        self.token = token
        self.timeout = timeout
        self.session = session or requests.Session()
        self.api_url = api_url.rstrip("/")
        self.parse_mode = parse_mode

    def _endpoint(self) -> str:
        if not self.token:
            raise ConfigurationError("TELEGRAM_BOT_TOKEN is not configured")
        return f"{self.api_url}/bot{self.token}/sendMessage"

    def send(self, chat_id: str, text: str) -> None:
        """Deliver ``text`` to ``chat_id`` or raise :class:`DeliveryFailure`."""

        url = self._endpoint()
        try:
            response = self.session.post(
                url,
                json={"chat_id": chat_id, "text": text, "parse_mode": self.parse_mode},
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise DeliveryFailure(chat_id, f"transport error: {exc}") from exc
        if response.ok:
            return
        try:
            description = response.json().get("description") or response.reason
        except ValueError:
            description = response.reason
        raise DeliveryFailure(chat_id, f"HTTP {response.status_code}: {description}")


__all__ = ["TELEGRAM_API_URL", "TelegramChannel"]
