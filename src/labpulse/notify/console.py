"""Console notifier for dry runs and deployments without SMTP."""

import sys
from typing import TextIO

from labpulse.notify.base import DeliveryResult


class ConsoleNotifier:
    """Writes the report body to a text stream (default: stdout)."""

    def __init__(self, stream: TextIO | None = None) -> None:
        self.stream = stream

    async def send(self, body: str) -> DeliveryResult:
        stream = self.stream or sys.stdout
        stream.write(body)
        stream.write("\n")
        stream.flush()
        return DeliveryResult(delivered=True, detail="written to console")
