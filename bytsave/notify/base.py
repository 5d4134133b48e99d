# bytsave/notify/base.py

"""Notification abstractions for price-drop alerts."""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from decimal import Decimal

logger = logging.getLogger("bytsave.notify")


@dataclass(frozen=True)
class AlertMessage:
    """Everything a notifier needs to tell a recipient about a drop."""

    recipient: str
    product_title: str
    old_price: Decimal | None
    new_price: Decimal
    product_url: str
    image_url: str = ""
    currency: str = "USD"
    condition: str = ""  # e.g. "below your target of $20.00"

    @property
    def price_delta(self) -> Decimal | None:
        """How much cheaper the product is than ``old_price``."""
        if self.old_price is None:
            return None
        return self.old_price - self.new_price


@dataclass(frozen=True)
class NotificationResult:
    """Delivery outcome reported by a notifier."""

    success: bool
    provider_message_id: str = ""
    error: str = ""
    provider: str = ""


class Notifier(ABC):
    """Delivers price-drop alerts to a recipient."""

    name: str = "notifier"

    @abstractmethod
    def send_price_drop_alert(
        self, message: AlertMessage,
    ) -> NotificationResult:
        """Send *message*; report failure in the result, don't raise."""
        ...


class FallbackNotifier(Notifier):
    """Try each notifier in order until one delivers."""

    name = "fallback"

    def __init__(self, notifiers: list[Notifier]) -> None:
        if not notifiers:
            raise ValueError("FallbackNotifier needs at least one notifier")
        self.notifiers = notifiers

    def send_price_drop_alert(
        self, message: AlertMessage,
    ) -> NotificationResult:
        errors: list[str] = []
        for notifier in self.notifiers:
            result = notifier.send_price_drop_alert(message)
            if result.success:
                return result
            logger.warning(
                "%s failed for %s: %s",
                notifier.name,
                message.recipient,
                result.error,
            )
            errors.append(f"{notifier.name}: {result.error}")
        return NotificationResult(
            success=False,
            error="; ".join(errors),
            provider=self.name,
        )
