from __future__ import annotations
import logging

import httpx

from ..ports.alerts import AlertSink

log = logging.getLogger(__name__)

TELEGRAM_API = "https://api.telegram.org"


class TelegramAlertSink(AlertSink):
    """Bot API sendMessage (HTML, no link previews). Failures are logged and dropped."""

    def __init__(self, bot_token: str, chat_id: str, timeout_s: float = 10,
                 transport: httpx.AsyncBaseTransport | None = None) -> None:
        self.bot_token = bot_token
        self.chat_id = chat_id
        self.client = httpx.AsyncClient(timeout=httpx.Timeout(timeout_s), transport=transport)

    @property
    def enabled(self) -> bool:
        return bool(self.bot_token and self.chat_id)

    async def send(self, text: str) -> None:
        if not self.enabled:
            log.debug("telegram sink not configured, skipping")
            return
        payload = {
            "chat_id": self.chat_id,
            "text": text,
            "parse_mode": "HTML",
            "disable_web_page_preview": True,
        }
        try:
            r = await self.client.post(f"{TELEGRAM_API}/bot{self.bot_token}/sendMessage", json=payload)
        except httpx.HTTPError as e:
            log.warning("telegram send failed: %s", e)
            return
        if r.status_code != 200:
            log.warning("telegram send failed: status=%s body=%s", r.status_code, r.text[:200])

    async def aclose(self) -> None:
        await self.client.aclose()
