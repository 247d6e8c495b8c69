# swapwatch/ports/alerts.py
from __future__ import annotations

from typing import Protocol


class AlertSink(Protocol):
    """Port for delivering a formatted alert (chat bot, console...)."""

    async def send(self, text: str) -> None:
        """Deliver `text`. Implementations log and drop failures instead of raising."""
