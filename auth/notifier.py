"""
auth/notifier.py -- Outbound notification delivery.

The core depends only on the Notifier protocol: send(Notification) either
returns or raises DeliveryError. Concrete senders:

  SmtpNotifier     -- smtplib with STARTTLS; used when SMTP_HOST is set.
  LoggingNotifier  -- development fallback; logs a redacted recipient and the
                      subject instead of sending. Never logs the body, which
                      may carry a raw token or OTP.

RetryingNotifier wraps either with a tenacity retry policy: exponential
backoff starting at 100 ms, doubling, capped at NOTIFY_MAX_DELAY_SECONDS,
for NOTIFY_MAX_ATTEMPTS attempts. After the last attempt the DeliveryError
propagates to the caller.

Two delivery modes are used by the flows:
  inline      -- recovery, OTP, and device-confirmation emails. The flow is
                 useless if the email never leaves, so DeliveryError surfaces
                 to the caller as a 500.
  best effort -- send_best_effort(), scheduled through FastAPI BackgroundTasks
                 after the response for notices that do not affect
                 correctness (password changed, MFA state changed). Failures
                 are logged and dropped.

Layer rule: no imports from api/ or teams/.
"""

from __future__ import annotations

import logging
import smtplib
import ssl
from dataclasses import dataclass
from email.message import EmailMessage
from typing import Protocol

from tenacity import Retrying, before_sleep_log, retry_if_exception_type, stop_after_attempt, wait_exponential

from core.config import Settings
from core.errors import DeliveryError

logger = logging.getLogger("teamgate.notify")


@dataclass(frozen=True)
class Notification:
    recipient: str
    subject: str
    body: str


class Notifier(Protocol):
    def send(self, notification: Notification) -> None: ...


def redact_email(email: str) -> str:
    """Redact an email address for logging to avoid PII leakage."""
    if "@" not in email:
        return "redacted"
    local, domain = email.split("@", 1)
    return f"{local[:2]}***@{domain}"


class SmtpNotifier:
    """Send plain-text email over SMTP (STARTTLS unless disabled)."""

    def __init__(
        self,
        *,
        host: str,
        port: int = 587,
        user: str = "",
        password: str = "",
        sender: str,
        use_tls: bool = True,
        timeout: float = 10.0,
    ) -> None:
        self.host = host
        self.port = port
        self.user = user
        self.password = password
        self.sender = sender
        self.use_tls = use_tls
        self.timeout = timeout

    def send(self, notification: Notification) -> None:
        msg = EmailMessage()
        msg["Subject"] = notification.subject
        msg["From"] = self.sender
        msg["To"] = notification.recipient
        msg.set_content(notification.body)

        try:
            with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as smtp:
                if self.use_tls:
                    smtp.starttls(context=ssl.create_default_context())
                if self.user and self.password:
                    smtp.login(self.user, self.password)
                smtp.send_message(msg)
        except (smtplib.SMTPException, OSError) as exc:
            logger.warning("SMTP delivery to %s failed: %s", redact_email(notification.recipient), exc)
            raise DeliveryError() from exc
        logger.info("Email sent to %s (%s)", redact_email(notification.recipient), notification.subject)


class LoggingNotifier:
    """Development notifier: records the send in the log instead of emailing."""

    def send(self, notification: Notification) -> None:
        logger.info(
            "Email (not sent, SMTP_HOST unset) to=%s subject=%r",
            redact_email(notification.recipient),
            notification.subject,
        )


class RetryingNotifier:
    """Retry DeliveryError from the wrapped notifier with capped exponential backoff."""

    def __init__(self, inner: Notifier, *, attempts: int = 3, max_delay: float = 2.0) -> None:
        self.inner = inner
        self.attempts = attempts
        self.max_delay = max_delay

    def send(self, notification: Notification) -> None:
        retrying = Retrying(
            stop=stop_after_attempt(self.attempts),
            wait=wait_exponential(multiplier=0.1, max=self.max_delay),
            retry=retry_if_exception_type(DeliveryError),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )
        retrying(self.inner.send, notification)


def send_best_effort(notifier: Notifier, notification: Notification) -> None:
    """Deliver a notice whose loss does not affect correctness. Never raises DeliveryError."""
    try:
        notifier.send(notification)
    except DeliveryError:
        logger.warning(
            "Best-effort notice to %s dropped (%s)",
            redact_email(notification.recipient),
            notification.subject,
        )


def build_notifier(settings: Settings) -> Notifier:
    """Return the configured notifier wrapped in the retry policy."""
    inner: Notifier
    if settings.smtp_host:
        inner = SmtpNotifier(
            host=settings.smtp_host,
            port=settings.smtp_port,
            user=settings.smtp_user,
            password=settings.smtp_password,
            sender=settings.email_from,
            use_tls=settings.smtp_use_tls,
        )
    else:
        logger.warning("SMTP_HOST not set -- emails will be logged, not sent")
        inner = LoggingNotifier()
    return RetryingNotifier(
        inner,
        attempts=settings.notify_max_attempts,
        max_delay=settings.notify_max_delay_seconds,
    )
