"""Notification contract."""

from dataclasses import dataclass
from typing import Protocol


@dataclass(frozen=True)
class DeliveryResult:
    """Outcome reported back by a notifier."""

    delivered: bool
    detail: str = ""


class Notifier(Protocol):
    """Delivers a finished report body."""

    async def send(self, body: str) -> DeliveryResult:
        """Deliver body.

        Raises:
            NotificationError: If delivery fails
        """
        ...
