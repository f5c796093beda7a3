"""Report delivery for LabPulse.

- EmailNotifier: SMTP delivery
- ConsoleNotifier: prints the report (dry runs, no SMTP configured)
"""

from labpulse.config import Settings
from labpulse.notify.base import DeliveryResult, Notifier
from labpulse.notify.console import ConsoleNotifier
from labpulse.notify.email import EmailNotifier


def notifier_from_settings(settings: Settings) -> Notifier:
    """EmailNotifier when SMTP is configured, else ConsoleNotifier."""
    if settings.smtp_host and settings.recipients:
        return EmailNotifier.from_settings(settings)
    return ConsoleNotifier()


__all__ = [
    "DeliveryResult",
    "Notifier",
    "ConsoleNotifier",
    "EmailNotifier",
    "notifier_from_settings",
]
