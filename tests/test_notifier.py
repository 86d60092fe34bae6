"""
tests/test_notifier.py -- Notification delivery, retry policy, and best-effort sends.
"""

from __future__ import annotations

import smtplib
from unittest.mock import MagicMock, patch

import pytest

from auth.notifier import (
    LoggingNotifier,
    Notification,
    RetryingNotifier,
    SmtpNotifier,
    build_notifier,
    redact_email,
    send_best_effort,
)
from core.config import get_settings
from core.errors import DeliveryError
from tests.helpers import RecordingNotifier

MAIL = Notification(recipient="alice@example.com", subject="Hello", body="secret-token-123")


class TestRedact:
    def test_keeps_domain_hides_local_part(self) -> None:
        assert redact_email("alice@example.com") == "al***@example.com"

    def test_non_email(self) -> None:
        assert redact_email("not-an-email") == "redacted"


class TestRetryingNotifier:
    def test_succeeds_after_transient_failures(self) -> None:
        inner = RecordingNotifier(fail_times=2)
        RetryingNotifier(inner, attempts=3, max_delay=0.01).send(MAIL)
        assert inner.attempts == 3
        assert inner.sent == [MAIL]

    def test_gives_up_and_reraises(self) -> None:
        inner = RecordingNotifier(fail_times=10)
        with pytest.raises(DeliveryError):
            RetryingNotifier(inner, attempts=3, max_delay=0.01).send(MAIL)
        assert inner.attempts == 3
        assert inner.sent == []

    def test_non_delivery_errors_are_not_retried(self) -> None:
        inner = MagicMock()
        inner.send.side_effect = RuntimeError("bug")
        with pytest.raises(RuntimeError):
            RetryingNotifier(inner, attempts=3, max_delay=0.01).send(MAIL)
        assert inner.send.call_count == 1


class TestBestEffort:
    def test_swallows_delivery_error(self) -> None:
        inner = RecordingNotifier(fail_times=1)
        send_best_effort(inner, MAIL)
        assert inner.attempts == 1

    def test_delivers_when_possible(self) -> None:
        inner = RecordingNotifier()
        send_best_effort(inner, MAIL)
        assert inner.sent == [MAIL]


class TestSmtpNotifier:
    def test_sends_message(self) -> None:
        with patch("auth.notifier.smtplib.SMTP") as smtp_cls:
            smtp = smtp_cls.return_value.__enter__.return_value
            SmtpNotifier(host="mail.local", sender="no-reply@example.com", use_tls=False).send(MAIL)
        smtp.send_message.assert_called_once()
        sent = smtp.send_message.call_args.args[0]
        assert sent["To"] == "alice@example.com"
        assert sent["Subject"] == "Hello"
        smtp.starttls.assert_not_called()

    def test_smtp_failure_becomes_delivery_error(self) -> None:
        with patch("auth.notifier.smtplib.SMTP", side_effect=smtplib.SMTPConnectError(421, b"busy")):
            with pytest.raises(DeliveryError):
                SmtpNotifier(host="mail.local", sender="no-reply@example.com").send(MAIL)

    def test_socket_failure_becomes_delivery_error(self) -> None:
        with patch("auth.notifier.smtplib.SMTP", side_effect=ConnectionRefusedError()):
            with pytest.raises(DeliveryError):
                SmtpNotifier(host="mail.local", sender="no-reply@example.com").send(MAIL)


class TestBuildNotifier:
    def test_without_smtp_host_logs_instead(self, caplog) -> None:
        notifier = build_notifier(get_settings())
        assert isinstance(notifier, RetryingNotifier)
        assert isinstance(notifier.inner, LoggingNotifier)

        with caplog.at_level("INFO", logger="teamgate.notify"):
            notifier.send(MAIL)
        assert "al***@example.com" in caplog.text
        assert "secret-token-123" not in caplog.text

    def test_with_smtp_host(self) -> None:
        settings = get_settings().model_copy(update={"smtp_host": "mail.local"})
        notifier = build_notifier(settings)
        assert isinstance(notifier.inner, SmtpNotifier)
        assert notifier.attempts == settings.notify_max_attempts
