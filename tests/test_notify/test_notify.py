"""Tests for report notifiers."""

import io
import smtplib
from datetime import date
from unittest.mock import MagicMock, patch

import pytest

from labpulse.errors import NotificationError
from labpulse.notify import ConsoleNotifier, EmailNotifier, notifier_from_settings


def make_notifier(**kwargs) -> EmailNotifier:
    defaults = dict(
        host="smtp.example.com",
        sender="labpulse@example.com",
        recipients=["doc@example.com", "nurse@example.com"],
    )
    defaults.update(kwargs)
    return EmailNotifier(**defaults)


class TestEmailNotifier:

    def test_requires_recipients(self):
        with pytest.raises(ValueError):
            make_notifier(recipients=[])

    def test_build_message(self):
        message = make_notifier().build_message("report body", today=date(2024, 1, 15))

        assert message["Subject"] == "Lab Reports on Mon Jan 15 2024"
        assert message["From"] == "labpulse@example.com"
        assert message["To"] == "doc@example.com, nurse@example.com"
        assert message.get_payload(decode=True).decode() == "report body"

    @pytest.mark.asyncio
    @patch("labpulse.notify.email.smtplib.SMTP")
    async def test_send(self, MockSMTP):
        smtp = MockSMTP.return_value.__enter__.return_value
        smtp.send_message.return_value = {}

        result = await make_notifier(username="user", password="pw").send("body")

        assert result.delivered is True
        MockSMTP.assert_called_once_with("smtp.example.com", 587, timeout=30.0)
        smtp.starttls.assert_called_once()
        smtp.login.assert_called_once_with("user", "pw")
        smtp.send_message.assert_called_once()

    @pytest.mark.asyncio
    @patch("labpulse.notify.email.smtplib.SMTP")
    async def test_no_login_without_credentials(self, MockSMTP):
        smtp = MockSMTP.return_value.__enter__.return_value
        smtp.send_message.return_value = {}

        await make_notifier(starttls=False).send("body")

        smtp.starttls.assert_not_called()
        smtp.login.assert_not_called()

    @pytest.mark.asyncio
    @patch("labpulse.notify.email.smtplib.SMTP")
    async def test_partial_refusal(self, MockSMTP):
        smtp = MockSMTP.return_value.__enter__.return_value
        smtp.send_message.return_value = {"nurse@example.com": (550, b"no such user")}

        result = await make_notifier().send("body")

        assert result.delivered is True
        assert "nurse@example.com" in result.detail

    @pytest.mark.asyncio
    @patch("labpulse.notify.email.smtplib.SMTP")
    async def test_smtp_failure(self, MockSMTP):
        smtp = MockSMTP.return_value.__enter__.return_value
        smtp.login.side_effect = smtplib.SMTPAuthenticationError(535, b"bad credentials")

        with pytest.raises(NotificationError):
            await make_notifier(username="user", password="pw").send("body")

    @pytest.mark.asyncio
    @patch("labpulse.notify.email.smtplib.SMTP")
    async def test_connection_refused(self, MockSMTP):
        MockSMTP.side_effect = ConnectionRefusedError("refused")

        with pytest.raises(NotificationError, match="refused"):
            await make_notifier().send("body")


class TestConsoleNotifier:

    @pytest.mark.asyncio
    async def test_writes_body(self):
        stream = io.StringIO()

        result = await ConsoleNotifier(stream=stream).send("report body")

        assert result.delivered is True
        assert stream.getvalue() == "report body\n"


class TestNotifierFromSettings:

    def test_console_without_smtp(self, settings):
        assert isinstance(notifier_from_settings(settings), ConsoleNotifier)

    def test_email_with_smtp(self, settings):
        configured = settings.model_copy(update={
            "smtp_host": "smtp.example.com",
            "email_to": "doc@example.com",
        })

        notifier = notifier_from_settings(configured)

        assert isinstance(notifier, EmailNotifier)
        assert notifier.recipients == ["doc@example.com"]

    def test_console_without_recipients(self, settings):
        configured = settings.model_copy(update={"smtp_host": "smtp.example.com"})
        assert isinstance(notifier_from_settings(configured), ConsoleNotifier)
