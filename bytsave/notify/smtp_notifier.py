# bytsave/notify/smtp_notifier.py

"""Plain SMTP notifier, used as the fallback transport."""

import logging
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import make_msgid

from bytsave.config.settings import Settings
from bytsave.notify.base import AlertMessage, NotificationResult, Notifier
from bytsave.notify.templates import render_price_drop

logger = logging.getLogger("bytsave.smtp")


class SmtpNotifier(Notifier):
    """Sends price-drop emails over SMTP with optional STARTTLS."""

    name = "smtp"

    def __init__(
        self,
        host: str | None = None,
        port: int | None = None,
        user: str | None = None,
        password: str | None = None,
        use_tls: bool | None = None,
        sender: str | None = None,
    ) -> None:
        self.host = host or Settings.SMTP_HOST
        self.port = port or Settings.SMTP_PORT
        self.user = Settings.SMTP_USER if user is None else user
        self.password = (
            Settings.SMTP_PASSWORD if password is None else password
        )
        self.use_tls = Settings.SMTP_TLS if use_tls is None else use_tls
        self.sender = sender or Settings.EMAIL_FROM

    def _build(self, message: AlertMessage) -> MIMEMultipart:
        email = render_price_drop(message)
        msg = MIMEMultipart("alternative")
        msg["From"] = self.sender
        msg["To"] = message.recipient
        msg["Subject"] = email.subject
        msg["Message-ID"] = make_msgid(domain="bytsave.com")
        msg.attach(MIMEText(email.text, "plain"))
        msg.attach(MIMEText(email.html, "html"))
        return msg

    def send_price_drop_alert(
        self, message: AlertMessage,
    ) -> NotificationResult:
        if not self.host:
            return NotificationResult(
                success=False,
                error="SMTP host not configured",
                provider=self.name,
            )
        msg = self._build(message)
        try:
            with smtplib.SMTP(
                self.host, self.port, timeout=Settings.REQUEST_TIMEOUT,
            ) as server:
                if self.use_tls:
                    server.starttls()
                if self.user:
                    server.login(self.user, self.password)
                server.send_message(msg)
        except (smtplib.SMTPException, OSError) as exc:
            logger.error(
                "SMTP send to %s failed: %s",
                message.recipient,
                exc,
                exc_info=True,
            )
            return NotificationResult(
                success=False, error=str(exc), provider=self.name,
            )

        message_id = str(msg["Message-ID"])
        logger.info(
            "Price drop alert sent to %s via SMTP (message id %s)",
            message.recipient,
            message_id,
        )
        return NotificationResult(
            success=True,
            provider_message_id=message_id,
            provider=self.name,
        )
