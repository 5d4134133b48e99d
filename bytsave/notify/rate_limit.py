# bytsave/notify/rate_limit.py

"""Per-recipient hourly send cap."""

import logging
import threading
import time
from dataclasses import dataclass

from bytsave.config.settings import Settings
from bytsave.notify.base import AlertMessage, NotificationResult, Notifier

logger = logging.getLogger("bytsave.rate_limit")

RATE_LIMITED_ERROR = "rate limited"

_WINDOW_SECONDS = 3600.0


@dataclass
class _Window:
    """Sends counted for one recipient in the current hour."""

    count: int
    reset_at: float


class RecipientRateLimiter:
    """Allows at most ``max_per_hour`` sends per recipient per hour."""

    def __init__(self, max_per_hour: int | None = None) -> None:
        self.max_per_hour = max_per_hour or Settings.MAX_EMAILS_PER_HOUR
        self._windows: dict[str, _Window] = {}
        self._lock = threading.Lock()

    def try_acquire(self, recipient: str) -> bool:
        """Count a send for *recipient*; False when over the cap."""
        key = recipient.strip().lower()
        now = time.time()
        with self._lock:
            window = self._windows.get(key)
            if window is None or now >= window.reset_at:
                self._windows[key] = _Window(
                    count=1, reset_at=now + _WINDOW_SECONDS,
                )
                return True
            if window.count < self.max_per_hour:
                window.count += 1
                return True
        logger.info(
            "Rate limit reached for %s (%d/%d this hour)",
            recipient,
            window.count,
            self.max_per_hour,
        )
        return False

    def release(self, recipient: str) -> None:
        """Give back a slot taken for a send that did not go out."""
        key = recipient.strip().lower()
        with self._lock:
            window = self._windows.get(key)
            if window is not None and window.count > 0:
                window.count -= 1

    def cleanup(self) -> int:
        """Drop expired windows. Returns how many were removed."""
        now = time.time()
        with self._lock:
            expired = [
                k for k, w in self._windows.items() if now >= w.reset_at
            ]
            for key in expired:
                del self._windows[key]
        if expired:
            logger.debug("Evicted %d rate-limit windows", len(expired))
        return len(expired)


class RateLimitedNotifier(Notifier):
    """Wraps a notifier with a :class:`RecipientRateLimiter`."""

    name = "rate_limited"

    def __init__(
        self,
        inner: Notifier,
        limiter: RecipientRateLimiter | None = None,
    ) -> None:
        self.inner = inner
        self.limiter = limiter or RecipientRateLimiter()

    def send_price_drop_alert(
        self, message: AlertMessage,
    ) -> NotificationResult:
        if not self.limiter.try_acquire(message.recipient):
            return NotificationResult(
                success=False,
                error=(
                    f"{RATE_LIMITED_ERROR}: {message.recipient} reached "
                    f"{self.limiter.max_per_hour} emails/hour"
                ),
                provider=self.name,
            )
        result = self.inner.send_price_drop_alert(message)
        if not result.success:
            self.limiter.release(message.recipient)
        return result
