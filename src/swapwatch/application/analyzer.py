from __future__ import annotations
import logging
from collections import deque
from dataclasses import dataclass, field
from typing import Mapping, Sequence

from ..domain.classifier import classify, watched_transfers
from ..domain.correlation import SWAP_SIGNATURES, correlate
from ..domain.decoding import TRANSFER_T0, addr_from_topic
from ..domain.errors import DecodeMismatch, MalformedData, NotFound, TransientNetwork
from ..domain.models import (
    KnownRouter, LogEvent, RawTransaction, SwapRecord, TransactionContext, TransferRecord, WatchSet,
)
from ..domain.value_types import Topic0, TxHash, WatchMode
from ..ports.alerts import AlertSink
from ..ports.rpc import RPCClient
from .describe import call_tokens, describe_call, format_swap, format_transfer
from .token_metadata import TokenMetadataResolver

log = logging.getLogger(__name__)

SKIPPABLE = (NotFound, MalformedData, DecodeMismatch, TransientNetwork)


@dataclass(slots=True)
class Analysis:
    ctx: TransactionContext
    swap: SwapRecord | None = None
    transfers: list[TransferRecord] = field(default_factory=list)
    alerts: list[str] = field(default_factory=list)


@dataclass(slots=True)
class AnalyzerStats:
    txs: int = 0
    swaps: int = 0
    transfers: int = 0
    alerts: int = 0
    skipped: int = 0
    duplicates: int = 0


class TransactionAnalyzer:
    """
    Per-transaction pipeline: receipt -> correlate -> classify -> resolve
    metadata -> render -> sink. Used by both stream modes and the one-shot CLI.
    """

    def __init__(
        self,
        sink: AlertSink,
        resolver: TokenMetadataResolver,
        *,
        watch: WatchSet | None = None,
        watch_mode: WatchMode = "watched",
        routers: Mapping[str, KnownRouter] | None = None,
        wrapped_native: str | None = None,
        explorer_url: str = "https://bscscan.com",
        signatures: Sequence[Topic0] = SWAP_SIGNATURES,
        report_transfers: bool = True,
        dedupe_size: int = 4096,
    ) -> None:
        self.sink = sink
        self.resolver = resolver
        self.watch = watch if watch is not None else WatchSet()
        self.watch_mode = watch_mode
        self.routers = dict(routers or {})
        self.wrapped_native = wrapped_native
        self.explorer_url = explorer_url
        self.topics: tuple[Topic0, ...] = tuple(signatures)
        self.report_transfers = report_transfers
        self.stats = AnalyzerStats()
        self._recent: deque[TxHash] = deque(maxlen=dedupe_size)
        self._recent_set: set[TxHash] = set()

    # ─── filters ───

    def wants_tx(self, tx: RawTransaction) -> bool:
        return self.watch_mode == "all" or tx.sender in self.watch

    def wants_log(self, lg: LogEvent) -> bool:
        if lg.topic0 not in self.topics:
            return False
        if self.watch_mode == "all":
            return True
        if lg.topic0 != TRANSFER_T0 or len(lg.topics) < 3:
            return False
        return addr_from_topic(lg.topics[1]) in self.watch or addr_from_topic(lg.topics[2]) in self.watch

    def _seen(self, tx_hash: TxHash) -> bool:
        if tx_hash in self._recent_set:
            return True
        if len(self._recent) == self._recent.maxlen:
            self._recent_set.discard(self._recent[0])
        self._recent.append(tx_hash)
        self._recent_set.add(tx_hash)
        return False

    # ─── entry points ───

    async def process_block(self, rpc: RPCClient, number: int) -> int:
        """Analyze the relevant transactions of one block. NotFound / network errors on the block propagate."""
        block = await rpc.get_block(number, full_transactions=True)
        analyzed = 0
        for tx in block.transactions:
            if not self.wants_tx(tx):
                continue
            await self._analyze_safely(rpc, tx)
            analyzed += 1
        log.debug("block %s: %s/%s transactions analyzed", number, analyzed, len(block.transactions))
        return analyzed

    async def process_log(self, rpc: RPCClient, lg: LogEvent) -> bool:
        """Analyze the transaction behind a pushed log, once per transaction hash."""
        if not self.wants_log(lg):
            return False
        if self._seen(lg.tx_hash):
            self.stats.duplicates += 1
            return False
        try:
            tx = await rpc.get_transaction(lg.tx_hash)
        except SKIPPABLE as e:
            self.stats.skipped += 1
            log.warning("tx %s skipped: %s", lg.tx_hash, e)
            return False
        await self._analyze_safely(rpc, tx)
        return True

    async def _analyze_safely(self, rpc: RPCClient, tx: RawTransaction) -> Analysis | None:
        try:
            return await self.analyze_tx(rpc, tx)
        except SKIPPABLE as e:
            self.stats.skipped += 1
            log.warning("tx %s skipped: %s", tx.hash, e)
            return None

    async def analyze_tx(self, rpc: RPCClient, tx: RawTransaction, *, deliver: bool = True) -> Analysis:
        receipt = await rpc.get_receipt(tx.hash)
        ctx = TransactionContext.build(tx, receipt)
        self.stats.txs += 1
        out = Analysis(ctx=ctx)
        if receipt.status == 0:
            log.debug("tx %s reverted, ignored", tx.hash)
            return out

        logs = correlate(ctx, self.topics)
        swap = classify(ctx, logs, wrapped_native=self.wrapped_native)
        if swap is not None and (self.watch_mode == "all" or swap.actor in self.watch):
            out.swap = await self._swap_alert(rpc, ctx, swap, out)
        elif self.report_transfers and len(self.watch):
            out.transfers = watched_transfers(ctx, logs, self.watch)
            for rec in out.transfers:
                info = await self.resolver.resolve(rpc, rec.token)
                out.alerts.append(format_transfer(rec, info, explorer=self.explorer_url, watch=self.watch))
            self.stats.transfers += len(out.transfers)

        if deliver:
            for text in out.alerts:
                await self._deliver(text)
        return out

    async def _swap_alert(self, rpc: RPCClient, ctx: TransactionContext, swap: SwapRecord, out: Analysis) -> SwapRecord:
        legs = [leg.address for leg in (swap.spent, swap.received) if leg.kind == "token" and leg.address]
        wanted = legs + call_tokens(self.routers, ctx.to, ctx.call_data)
        tokens = await self.resolver.resolve_many(rpc, wanted)
        swap = swap.with_decimals({a: t.decimals for a, t in tokens.items()})
        call = describe_call(self.routers, ctx.to, ctx.call_data, tokens)
        out.alerts.append(format_swap(
            swap, tokens, native_symbol=self.resolver.native_symbol,
            explorer=self.explorer_url, watch=self.watch, call=call,
        ))
        self.stats.swaps += 1
        log.info("swap %s: %s %s -> %s %s", ctx.hash, swap.spent.amount, swap.spent.address or "native",
                 swap.received.amount, swap.received.address or "native")
        return swap

    async def _deliver(self, text: str) -> None:
        try:
            await self.sink.send(text)
        except Exception:
            log.exception("alert sink raised, alert dropped")
            return
        self.stats.alerts += 1
