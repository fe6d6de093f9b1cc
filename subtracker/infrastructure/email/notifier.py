"""
SMTP notifier - delivers payment reminder emails.

Port 465 (or EMAIL_USE_SSL) uses implicit SSL, anything else uses STARTTLS.
Failures are reported as NotificationResult(success=False), never raised, so a
caller can always count them and move on.
"""
import logging
import smtplib
import ssl
from datetime import date, datetime
from email.message import EmailMessage
from email.utils import formataddr, make_msgid
from typing import Callable

from subtracker.application.ports import (
    Notifier, NotifierError, NotificationResult, SubscriptionOwner,
)
from subtracker.config import Settings, get_settings
from subtracker.domain.subscription import Subscription
from subtracker.infrastructure.email.templates import reminder_subject, render_reminder

logger = logging.getLogger(__name__)


class SmtpReminderNotifier(Notifier):

    def __init__(self, settings: Settings | None = None, clock: Callable[[], date] = date.today):
        self.settings = settings or get_settings()
        self._clock = clock

    def send(self, owner: SubscriptionOwner, subscription: Subscription) -> NotificationResult:
        today = self._clock()
        text, html = render_reminder(
            owner.full_name, subscription, today, self.settings.APP_BASE_URL,
        )
        msg = self._build_message(
            to=owner.email,
            subject=reminder_subject(subscription, today),
            text=text,
            html=html,
        )
        return self._send_safely(msg)

    def send_test_email(self) -> NotificationResult:
        """Send a test message to the configured SMTP user itself."""
        sent_at = datetime.now().isoformat(timespec="seconds")
        msg = self._build_message(
            to=self.settings.EMAIL_SMTP_USER,
            subject="🧪 Test Email Configuration",
            text=f"Email configuration test - success! Sent at {sent_at}",
            html=(
                "<h2>Email Configuration Test</h2>"
                "<p>If you received this, the email configuration works.</p>"
                f"<p><small>Sent at: {sent_at}</small></p>"
            ),
        )
        return self._send_safely(msg)

    # ── internals ─────────────────────────────────────────

    def _build_message(self, to: str, subject: str, text: str, html: str) -> EmailMessage:
        msg = EmailMessage()
        msg["From"] = formataddr((self.settings.EMAIL_FROM_NAME, self.settings.EMAIL_SMTP_USER))
        msg["To"] = to
        msg["Subject"] = subject
        msg["Message-ID"] = make_msgid()
        msg.set_content(text)
        msg.add_alternative(html, subtype="html")
        return msg

    def _send_safely(self, msg: EmailMessage) -> NotificationResult:
        if not self.settings.smtp_configured:
            logger.warning("SMTP not configured, skipping email to %s", msg["To"])
            return NotificationResult(success=False, error="SMTP is not configured")
        try:
            self._deliver(msg)
        except NotifierError as exc:
            logger.error("Failed to send email to %s: %s", msg["To"], exc)
            return NotificationResult(success=False, error=str(exc))

        logger.info("Email sent to %s: %s", msg["To"], msg["Message-ID"])
        return NotificationResult(success=True, message_id=msg["Message-ID"])

    def _deliver(self, msg: EmailMessage) -> None:
        """
        Raises:
            NotifierError: connection, TLS, authentication or SMTP protocol failure
        """
        s = self.settings
        try:
            if s.EMAIL_SMTP_PORT == 465 or s.EMAIL_USE_SSL:
                context = ssl.create_default_context()
                with smtplib.SMTP_SSL(
                    s.EMAIL_SMTP_HOST, s.EMAIL_SMTP_PORT, context=context, timeout=s.EMAIL_TIMEOUT_SECONDS,
                ) as server:
                    server.login(s.EMAIL_SMTP_USER, s.EMAIL_SMTP_PASSWORD)
                    server.send_message(msg)
            else:
                with smtplib.SMTP(s.EMAIL_SMTP_HOST, s.EMAIL_SMTP_PORT, timeout=s.EMAIL_TIMEOUT_SECONDS) as server:
                    server.ehlo()
                    server.starttls(context=ssl.create_default_context())
                    server.ehlo()
                    server.login(s.EMAIL_SMTP_USER, s.EMAIL_SMTP_PASSWORD)
                    server.send_message(msg)
        except (smtplib.SMTPException, OSError) as exc:
            raise NotifierError(str(exc) or exc.__class__.__name__) from exc
