# bytsave/notify/sendgrid_notifier.py

"""SendGrid v3 Web API notifier."""

import logging
import threading
import time
from typing import Any

from curl_cffi import requests as curl_requests

from bytsave.config.settings import Settings
from bytsave.notify.base import AlertMessage, NotificationResult, Notifier
from bytsave.notify.templates import render_price_drop

logger = logging.getLogger("bytsave.sendgrid")

_RETRYABLE_STATUS: frozenset[int] = frozenset({429, 500, 502, 503, 504})


def _error_text(resp: curl_requests.Response) -> str:
    """Pull SendGrid's error messages out of a failed response."""
    try:
        payload: Any = resp.json()
    except ValueError:
        return f"HTTP {resp.status_code}"
    errors = payload.get("errors") if isinstance(payload, dict) else None
    if isinstance(errors, list) and errors:
        return ", ".join(
            str(e.get("message", e)) if isinstance(e, dict) else str(e)
            for e in errors
        )
    return f"HTTP {resp.status_code}"


class SendGridNotifier(Notifier):
    """Sends price-drop emails through the SendGrid ``mail/send`` API."""

    name = "sendgrid"

    def __init__(
        self,
        api_key: str | None = None,
        sender: str | None = None,
        session: curl_requests.Session | None = None,
    ) -> None:
        self.api_key = Settings.SENDGRID_API_KEY if api_key is None else api_key
        self.sender = sender or Settings.EMAIL_FROM
        self._shared_session = session
        self._local = threading.local()
        self._timeout = Settings.REQUEST_TIMEOUT

    @property
    def session(self) -> curl_requests.Session:
        """The injected session, else one per calling thread."""
        if self._shared_session is not None:
            return self._shared_session
        session = getattr(self._local, "session", None)
        if session is None:
            session = curl_requests.Session()
            self._local.session = session
        return session

    def _payload(self, message: AlertMessage) -> dict[str, Any]:
        email = render_price_drop(message)
        return {
            "personalizations": [{"to": [{"email": message.recipient}]}],
            "from": {"email": self.sender},
            "subject": email.subject,
            "content": [
                {"type": "text/plain", "value": email.text},
                {"type": "text/html", "value": email.html},
            ],
        }

    def send_price_drop_alert(
        self, message: AlertMessage,
    ) -> NotificationResult:
        if not self.api_key:
            logger.warning(
                "SendGrid API key not configured, email to %s not sent",
                message.recipient,
            )
            return NotificationResult(
                success=False,
                error="SendGrid API key not configured",
                provider=self.name,
            )

        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        payload = self._payload(message)
        last_error = "no attempt made"

        for attempt in range(Settings.MAX_RETRIES):
            try:
                resp = self.session.post(
                    Settings.SENDGRID_API_URL,
                    headers=headers,
                    json=payload,
                    timeout=self._timeout,
                )
            except Exception as exc:
                last_error = str(exc)
                logger.warning(
                    "SendGrid request error on attempt %d: %s",
                    attempt + 1,
                    exc,
                    exc_info=True,
                )
                time.sleep(Settings.REQUEST_DELAY * (attempt + 1))
                continue

            if 200 <= resp.status_code < 300:
                message_id = resp.headers.get("X-Message-Id") or "unknown"
                logger.info(
                    "Price drop alert sent to %s via SendGrid "
                    "(message id %s)",
                    message.recipient,
                    message_id,
                )
                return NotificationResult(
                    success=True,
                    provider_message_id=message_id,
                    provider=self.name,
                )

            last_error = _error_text(resp)
            logger.warning(
                "SendGrid HTTP %d on attempt %d: %s",
                resp.status_code,
                attempt + 1,
                last_error,
            )
            if resp.status_code not in _RETRYABLE_STATUS:
                break
            time.sleep(Settings.REQUEST_DELAY * (2 ** attempt))

        logger.error(
            "Failed to send price drop alert to %s via SendGrid: %s",
            message.recipient,
            last_error,
        )
        return NotificationResult(
            success=False, error=last_error, provider=self.name,
        )
