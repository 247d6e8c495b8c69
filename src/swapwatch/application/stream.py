from __future__ import annotations
import asyncio, logging, random, time
from dataclasses import dataclass
from typing import Callable, Sequence

from ..adapters.rpc_httpx import HttpxRPC
from ..adapters.rpc_websocket import WebsocketSubscription
from ..config import Endpoint
from ..domain.errors import FatalExhaustion, MalformedData, NotFound, RateLimited, TransientNetwork
from ..domain.models import HeadEvent, LogEvent
from ..domain.value_types import ConnectionState, StreamMode
from ..ports.rpc import LogSubscription, RPCClient
from .analyzer import TransactionAnalyzer

log = logging.getLogger(__name__)

RECOVERABLE = (TransientNetwork, MalformedData, asyncio.TimeoutError)
_IDLE = object()


@dataclass(slots=True)
class StreamStats:
    blocks: int = 0
    logs: int = 0
    heads: int = 0
    probes: int = 0
    reconnects: int = 0
    rotations: int = 0
    rate_limited: int = 0
    last_event_at: float | None = None


class ChainStream:
    """
    Block / log source with endpoint rotation.

    poll: every `poll_interval_s` process blocks (last, head], at most
          `max_batch_blocks` per tick; the pointer survives reconnects.
    push: eth_subscribe logs + newHeads heartbeat; an idle window triggers an
          eth_blockNumber probe and a failed probe reconnects.

    Transient failures count against `max_reconnect_attempts` per endpoint, then
    rotate; once every endpoint is spent within one cycle the stream raises
    FatalExhaustion. Rate limits rotate immediately after a cooldown and never
    count against that budget.
    """

    def __init__(
        self,
        endpoints: Sequence[Endpoint],
        analyzer: TransactionAnalyzer,
        *,
        mode: StreamMode = "poll",
        poll_interval_s: float = 15.0,
        max_batch_blocks: int = 5,
        start_block: int | None = None,
        idle_timeout_s: float = 30.0,
        probe_timeout_s: float = 10.0,
        max_reconnect_attempts: int = 3,
        backoff_base_s: float = 1.0,
        backoff_cap_s: float = 30.0,
        rate_limit_cooldown_s: float = 5.0,
        max_concurrent_handlers: int = 16,
        status_interval_s: float = 30.0,
        rpc_factory: Callable[[Endpoint], RPCClient] | None = None,
        subscription_factory: Callable[[Endpoint], LogSubscription] | None = None,
    ) -> None:
        if not endpoints:
            raise ValueError("ChainStream needs at least one endpoint")
        self.endpoints = list(endpoints)
        self.analyzer = analyzer
        self.mode = mode
        self.poll_interval_s = poll_interval_s
        self.max_batch_blocks = max_batch_blocks
        self.start_block = start_block
        self.idle_timeout_s = idle_timeout_s
        self.probe_timeout_s = probe_timeout_s
        self.max_reconnect_attempts = max_reconnect_attempts
        self.backoff_base_s = backoff_base_s
        self.backoff_cap_s = backoff_cap_s
        self.rate_limit_cooldown_s = rate_limit_cooldown_s
        self.status_interval_s = status_interval_s
        self.rpc_factory = rpc_factory or (lambda ep: HttpxRPC(ep.http_url))
        self.subscription_factory = subscription_factory or (lambda ep: WebsocketSubscription(ep.ws_url or ""))

        self.state = ConnectionState.DISCONNECTED
        self.last_block: int | None = None
        self.stats = StreamStats()
        self._idx = 0
        self._attempts = 0
        self._exhausted: set[int] = set()
        self._stop = asyncio.Event()
        self._sem = asyncio.Semaphore(max_concurrent_handlers)
        self._tasks: set[asyncio.Task] = set()
        self._handler_error: BaseException | None = None

    @property
    def endpoint(self) -> Endpoint:
        return self.endpoints[self._idx]

    # ─── lifecycle ───

    def stop(self) -> None:
        self._stop.set()

    @property
    def stopping(self) -> bool:
        return self._stop.is_set()

    def _set_state(self, new: ConnectionState) -> None:
        if new is self.state:
            return
        log.info("stream %s -> %s (%s)", self.state.value, new.value, self.endpoint.name)
        self.state = new

    def _mark_healthy(self) -> None:
        self._attempts = 0
        self._exhausted.clear()
        self._set_state(ConnectionState.LIVE)

    def _touch(self) -> None:
        self.stats.last_event_at = time.monotonic()

    def _rotate(self) -> None:
        prev = self.endpoint.name
        self._idx = (self._idx + 1) % len(self.endpoints)
        self._attempts = 0
        self.stats.rotations += 1
        log.warning("rotating endpoint %s -> %s", prev, self.endpoint.name)

    def _backoff(self, attempt: int) -> float:
        delay = min(self.backoff_cap_s, self.backoff_base_s * (2 ** max(0, attempt - 1)))
        return min(self.backoff_cap_s, delay + random.uniform(0, delay * 0.25))

    async def _sleep(self, seconds: float) -> None:
        """Sleep that returns early on stop()."""
        try:
            await asyncio.wait_for(self._stop.wait(), timeout=max(0.0, seconds))
        except asyncio.TimeoutError:
            pass

    async def run(self) -> None:
        """Drive the stream until stop(); raises FatalExhaustion when every endpoint failed."""
        status = asyncio.create_task(self._status_loop())
        first = True
        try:
            while not self.stopping:
                self._set_state(ConnectionState.CONNECTING if first else ConnectionState.RECONNECTING)
                first = False
                rpc = self.rpc_factory(self.endpoint)
                try:
                    if self.mode == "push":
                        await self._run_push(rpc)
                    else:
                        await self._run_polling(rpc)
                except RateLimited as e:
                    if self.stopping:
                        break
                    self._set_state(ConnectionState.DEGRADED)
                    self.stats.rate_limited += 1
                    self.stats.reconnects += 1
                    cooldown = max(self.rate_limit_cooldown_s, e.retry_after or 0.0)
                    log.warning("rate limited on %s (%s), cooling down %.1fs", self.endpoint.name, e, cooldown)
                    if len(self.endpoints) > 1:
                        self._rotate()
                    await self._sleep(cooldown)
                except RECOVERABLE as e:
                    if self.stopping:
                        break
                    self._set_state(ConnectionState.DEGRADED)
                    self.stats.reconnects += 1
                    self._failed(e)
                    await self._sleep(self._backoff(self._attempts or 1))
                finally:
                    await rpc.aclose()
        finally:
            status.cancel()
            await asyncio.gather(status, return_exceptions=True)
            if self.state is not ConnectionState.FATAL_FAILURE:
                self._set_state(ConnectionState.DISCONNECTED)

    def _failed(self, e: BaseException) -> None:
        self._attempts += 1
        log.warning("%s failure on %s (attempt %s/%s): %s", e.__class__.__name__, self.endpoint.name,
                    self._attempts, self.max_reconnect_attempts, e)
        if self._attempts < self.max_reconnect_attempts:
            return
        self._exhausted.add(self._idx)
        if len(self._exhausted) >= len(self.endpoints):
            self._set_state(ConnectionState.FATAL_FAILURE)
            names = ", ".join(ep.name for ep in self.endpoints)
            log.critical("all endpoints exhausted (%s); last error: %s", names, e)
            raise FatalExhaustion(f"all {len(self.endpoints)} endpoints failed; last error: {e}") from e
        self._rotate()

    # ─── polling ───

    async def _run_polling(self, rpc: RPCClient) -> None:
        while not self.stopping:
            await self.poll_once(rpc)
            self._mark_healthy()
            await self._sleep(self.poll_interval_s)

    async def poll_once(self, rpc: RPCClient) -> int:
        """One polling tick; returns the number of blocks the pointer moved."""
        head = await rpc.block_number()
        if self.last_block is None:
            first = self.start_block if self.start_block is not None else head
            self.last_block = first - 1
            log.info("polling from block %s (head %s)", first, head)
        if head <= self.last_block:
            return 0
        end = min(head, self.last_block + self.max_batch_blocks)
        moved = 0
        for n in range(self.last_block + 1, end + 1):
            try:
                await self.analyzer.process_block(rpc, n)
            except NotFound:
                log.debug("block %s not available yet on %s", n, self.endpoint.name)
                break
            except MalformedData as e:
                log.warning("block %s malformed, skipped: %s", n, e)
            self.last_block = n
            moved += 1
        self.stats.blocks += moved
        if moved:
            self._touch()
        return moved

    # ─── push ───

    async def _run_push(self, rpc: RPCClient) -> None:
        sub = self.subscription_factory(self.endpoint)
        try:
            await sub.subscribe(list(self.analyzer.topics))
            self._mark_healthy()
            self._touch()
            while not self.stopping:
                self._raise_handler_error()
                ev = await self._next_or_stop(sub)
                if ev is None:
                    break
                if ev is _IDLE:
                    await self._probe(rpc)
                    continue
                self._touch()
                if isinstance(ev, HeadEvent):
                    self.stats.heads += 1
                    self._mark_healthy()
                    continue
                self.stats.logs += 1
                self._spawn(rpc, ev)
        finally:
            await self._cancel_handlers()
            await sub.aclose()

    async def _next_or_stop(self, sub: LogSubscription) -> object:
        nxt = asyncio.ensure_future(sub.next_event())
        stopper = asyncio.ensure_future(self._stop.wait())
        try:
            done, _ = await asyncio.wait({nxt, stopper}, timeout=self.idle_timeout_s,
                                         return_when=asyncio.FIRST_COMPLETED)
        finally:
            stopper.cancel()
            if not nxt.done():
                nxt.cancel()
                await asyncio.gather(nxt, return_exceptions=True)
        if nxt in done:
            return nxt.result()
        if stopper in done:
            return None
        return _IDLE

    async def _probe(self, rpc: RPCClient) -> None:
        self.stats.probes += 1
        log.warning("no events for %.0fs on %s, probing", self.idle_timeout_s, self.endpoint.name)
        head = await asyncio.wait_for(rpc.block_number(), timeout=self.probe_timeout_s)
        log.info("probe ok on %s (head %s)", self.endpoint.name, head)

    def _spawn(self, rpc: RPCClient, ev: LogEvent) -> None:
        task = asyncio.create_task(self._handle(rpc, ev))
        self._tasks.add(task)
        task.add_done_callback(self._handler_done)

    async def _handle(self, rpc: RPCClient, ev: LogEvent) -> None:
        async with self._sem:
            await self.analyzer.process_log(rpc, ev)

    def _handler_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None and self._handler_error is None:
            self._handler_error = exc

    def _raise_handler_error(self) -> None:
        exc, self._handler_error = self._handler_error, None
        if exc is not None:
            raise exc

    async def _cancel_handlers(self) -> None:
        pending = list(self._tasks)
        for t in pending:
            t.cancel()
        await asyncio.gather(*pending, return_exceptions=True)
        self._tasks.clear()
        self._handler_error = None

    # ─── status ───

    def status_line(self) -> str:
        ago = "never"
        if self.stats.last_event_at is not None:
            ago = f"{time.monotonic() - self.stats.last_event_at:.0f}s ago"
        a = self.analyzer.stats
        return (f"state={self.state.value} endpoint={self.endpoint.name} block={self.last_block} "
                f"blocks={self.stats.blocks} logs={self.stats.logs} txs={a.txs} swaps={a.swaps} "
                f"alerts={a.alerts} skipped={a.skipped} last_event={ago}")

    async def _status_loop(self) -> None:
        while not self.stopping:
            await self._sleep(self.status_interval_s)
            if not self.stopping:
                log.info("status: %s", self.status_line())
