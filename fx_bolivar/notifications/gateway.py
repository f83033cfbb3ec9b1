"""Adapter over the subscriber directory and the messaging channel."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Protocol

from fx_bolivar.db.base_backend import BackendStrategy
from fx_bolivar.db.records import Subscriber
from fx_bolivar.errors import ConfigurationError, DeliveryFailure
from fx_bolivar.notifications.messages import welcome_message
from fx_bolivar.utils.date_range import Clock, utc_now
from fx_bolivar.utils.logger import get_logger

LOGGER = get_logger(__name__)


class MessageChannel(Protocol):
    def send(self, chat_id: str, text: str) -> None:
        ...  # pragma: no cover - protocol definition


@dataclass(frozen=True, slots=True)
class DeliveryOutcome:
    recipient: str
    success: bool
    error: str | None = None


@dataclass(slots=True)
class DeliveryReport:
    """Per-recipient results of one broadcast."""

    outcomes: list[DeliveryOutcome] = field(default_factory=list)

    @property
    def attempted(self) -> int:
        return len(self.outcomes)

    @property
    def delivered(self) -> int:
        return sum(1 for outcome in self.outcomes if outcome.success)

    @property
    def failed(self) -> int:
        return self.attempted - self.delivered

    def to_payload(self) -> Dict[str, Any]:
        return {
            "attempted": self.attempted,
            "delivered": self.delivered,
            "failed": self.failed,
            "failures": [
                {"recipient": outcome.recipient, "error": outcome.error}
                for outcome in self.outcomes
                if not outcome.success
            ],
        }


class SubscriberGateway:
    """Thin adapter: directory reads/writes plus single-attempt delivery.

    No retries and no backoff: a failed delivery waits for the next
    scheduled evaluation.
    """

    def __init__(
        self,
        backend: BackendStrategy,
        channel: MessageChannel,
        *,
        clock: Clock = utc_now,
        site_url: str | None = None,
    ) -> None:
        self.backend = backend
        self.channel = channel
        self.clock = clock
        self.site_url = site_url

    def active_recipients(self) -> list[str]:
        return self.backend.active_subscribers()

    def deliver(self, recipient: str, message: str) -> DeliveryOutcome:
        try:
            self.channel.send(recipient, message)
        except DeliveryFailure as exc:
            LOGGER.error("%s", exc)
            return DeliveryOutcome(recipient, False, exc.reason)
        except ConfigurationError:
            raise
        except Exception as exc:  # noqa: BLE001 - one recipient must not sink the broadcast
            LOGGER.exception("Unexpected error delivering to %s", recipient)
            return DeliveryOutcome(recipient, False, str(exc) or type(exc).__name__)
        return DeliveryOutcome(recipient, True)

    def subscribe(self, chat_id: str, username: str | None = None) -> Subscriber:
        """Add or reactivate ``chat_id`` and send it the welcome message.

        The welcome message is sent first, as a failed send usually means the
        chat id is wrong; in that case nothing is stored and the
        :class:`DeliveryFailure` propagates to the caller.
        """

        chat_id = str(chat_id).strip()
        if not chat_id:
            raise ValueError("chat_id is required")
        self.channel.send(chat_id, welcome_message(self.site_url))
        existing = self.backend.get_subscriber(chat_id)
        subscriber = Subscriber(
            chat_id=chat_id,
            username=username or (existing.username if existing else None),
            subscribed_at=existing.subscribed_at if existing else self.clock(),
            active=True,
        )
        created = self.backend.save_subscriber(subscriber)
        LOGGER.info("Subscriber %s %s", chat_id, "added" if created else "reactivated")
        return subscriber

    def is_subscribed(self, chat_id: str) -> bool:
        subscriber = self.backend.get_subscriber(str(chat_id))
        return subscriber is not None and subscriber.active

    def unsubscribe(self, chat_id: str) -> bool:
        """Deactivate ``chat_id``. Return False when it was never subscribed."""

        subscriber = self.backend.get_subscriber(str(chat_id))
        if subscriber is None:
            return False
        if subscriber.active:
            subscriber.active = False
            self.backend.save_subscriber(subscriber)
            LOGGER.info("Subscriber %s deactivated", chat_id)
        return True


__all__ = ["DeliveryOutcome", "DeliveryReport", "MessageChannel", "SubscriberGateway"]
