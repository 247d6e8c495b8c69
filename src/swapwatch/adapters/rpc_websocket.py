from __future__ import annotations
import asyncio, json, logging
from collections import deque
from typing import Any, Callable, Sequence

import websockets
from websockets.exceptions import ConnectionClosed, InvalidHandshake, InvalidURI

from ..domain.decoding import hex_to_int
from ..domain.errors import MalformedData, RateLimited, TransientNetwork
from ..domain.models import HeadEvent, LogEvent
from ..domain.value_types import Topic0
from ..ports.rpc import LogSubscription
from .rpc_httpx import _classify_rpc_error, parse_log

log = logging.getLogger(__name__)

LOGS_REQ_ID = 1
HEADS_REQ_ID = 2


class WebsocketSubscription(LogSubscription):
    """
    eth_subscribe over one websocket: a `logs` filter on the given topic0s plus
    a `newHeads` heartbeat. Notifications are demultiplexed by subscription id.
    """

    def __init__(self, ws_url: str, open_timeout: float = 10, ping_interval: float | None = 20,
                 ping_timeout: float | None = 20, connect: Callable[..., Any] | None = None) -> None:
        self.endpoint = ws_url
        self.open_timeout = open_timeout
        self.ping_interval = ping_interval
        self.ping_timeout = ping_timeout
        self._connect = connect or websockets.connect
        self._ws: Any = None
        self._logs_sub: str | None = None
        self._heads_sub: str | None = None
        self._pending: deque[dict[str, Any]] = deque()

    async def subscribe(self, topic0s: Sequence[Topic0]) -> None:
        try:
            self._ws = await asyncio.wait_for(
                self._connect(self.endpoint, ping_interval=self.ping_interval,
                              ping_timeout=self.ping_timeout, max_size=10 * 1024 * 1024),
                timeout=self.open_timeout,
            )
        except (asyncio.TimeoutError, OSError, InvalidHandshake, InvalidURI) as e:
            raise TransientNetwork(f"websocket connect to {self.endpoint} failed: {e}") from e

        await self._send({"jsonrpc": "2.0", "id": LOGS_REQ_ID, "method": "eth_subscribe",
                          "params": ["logs", {"topics": [list(topic0s)]}]})
        await self._send({"jsonrpc": "2.0", "id": HEADS_REQ_ID, "method": "eth_subscribe",
                          "params": ["newHeads"]})

        answered: dict[int, str] = {}
        while len(answered) < 2:
            try:
                msg = await asyncio.wait_for(self._recv(), timeout=self.open_timeout)
            except asyncio.TimeoutError as e:
                raise TransientNetwork(f"eth_subscribe on {self.endpoint} timed out") from e
            rid = msg.get("id")
            if rid in (LOGS_REQ_ID, HEADS_REQ_ID):
                if "error" in msg:
                    raise _classify_rpc_error("eth_subscribe", msg["error"])
                answered[rid] = str(msg.get("result"))
            elif msg.get("method") == "eth_subscription":
                self._pending.append(msg)
        self._logs_sub, self._heads_sub = answered[LOGS_REQ_ID], answered[HEADS_REQ_ID]
        log.info("subscribed on %s (logs=%s heads=%s)", self.endpoint, self._logs_sub, self._heads_sub)

    async def next_event(self) -> LogEvent | HeadEvent:
        while True:
            msg = self._pending.popleft() if self._pending else await self._recv()
            if msg.get("method") != "eth_subscription":
                if "error" in msg:
                    raise _classify_rpc_error("eth_subscription", msg["error"])
                continue
            params = msg.get("params") or {}
            sub, result = params.get("subscription"), params.get("result")
            if not isinstance(result, dict):
                continue
            if sub == self._logs_sub:
                try:
                    return parse_log(result)
                except MalformedData as e:
                    log.warning("skipping log notification on %s: %s", self.endpoint, e)
                    continue
            if sub == self._heads_sub:
                return HeadEvent(number=hex_to_int(result.get("number")))
            log.debug("notification for unknown subscription %s", sub)

    async def aclose(self) -> None:
        ws, self._ws = self._ws, None
        self._pending.clear()
        if ws is not None:
            try:
                await ws.close()
            except (OSError, ConnectionClosed) as e:
                log.debug("websocket close on %s: %s", self.endpoint, e)

    # ─── wire ───

    async def _send(self, payload: dict[str, Any]) -> None:
        if self._ws is None:
            raise TransientNetwork("websocket not connected")
        try:
            await self._ws.send(json.dumps(payload))
        except (ConnectionClosed, OSError) as e:
            raise TransientNetwork(f"websocket send failed on {self.endpoint}: {e}") from e

    async def _recv(self) -> dict[str, Any]:
        if self._ws is None:
            raise TransientNetwork("websocket not connected")
        try:
            raw = await self._ws.recv()
        except ConnectionClosed as e:
            if e.rcvd is not None and e.rcvd.code == 1013:
                raise RateLimited(f"websocket closed by {self.endpoint}: try again later") from e
            raise TransientNetwork(f"websocket closed on {self.endpoint}: {e}") from e
        except OSError as e:
            raise TransientNetwork(f"websocket recv failed on {self.endpoint}: {e}") from e
        try:
            msg = json.loads(raw)
        except (TypeError, ValueError) as e:
            raise MalformedData(f"invalid JSON from {self.endpoint}") from e
        if not isinstance(msg, dict):
            raise MalformedData(f"unexpected frame from {self.endpoint}")
        return msg
