from __future__ import annotations
import html, re

from rich.console import Console
from rich.panel import Panel
from rich.text import Text

from ..ports.alerts import AlertSink

_TAG = re.compile(r"<[^>]+>")

def html_to_plain(text: str) -> str:
    return html.unescape(_TAG.sub("", text))


class ConsoleAlertSink(AlertSink):
    """Prints alerts as rich panels; used when no chat bot is configured."""

    def __init__(self, console: Console | None = None) -> None:
        self.console = console or Console()
        self.sent = 0

    async def send(self, text: str) -> None:
        self.console.print(Panel(Text(html_to_plain(text)), border_style="cyan"))
        self.sent += 1
