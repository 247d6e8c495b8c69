from __future__ import annotations
import asyncio, signal
from typing import List, Optional

import click
import typer
from rich.console import Console
from rich.panel import Panel

from ..adapters.console_sink import ConsoleAlertSink, html_to_plain
from ..adapters.memory_cache import InMemoryMetadataCache
from ..adapters.rpc_httpx import HttpxRPC
from ..adapters.rpc_websocket import WebsocketSubscription
from ..adapters.telegram_sink import TelegramAlertSink
from ..application.analyzer import TransactionAnalyzer
from ..application.describe import describe_call
from ..application.stream import ChainStream
from ..application.token_metadata import TokenMetadataResolver
from ..config import Settings, load_settings
from ..domain.decoding import strip_0x
from ..domain.errors import ConfigError, FatalExhaustion, SwapWatchError
from ..domain.models import WatchSet
from ..logging_setup import setup_logging
from ..ports.alerts import AlertSink

app = typer.Typer(help="Watch an EVM chain for swaps and transfers of interest.", no_args_is_help=True)
console = Console()


def _settings(config: Optional[str], **overrides) -> Settings:
    try:
        return load_settings(config, **overrides)
    except ConfigError as e:
        console.print(f"[red]config error:[/red] {e}")
        raise typer.Exit(code=2) from e

def build_analyzer(s: Settings, sink: AlertSink) -> TransactionAnalyzer:
    resolver = TokenMetadataResolver(
        known_tokens=s.known_tokens, cache=InMemoryMetadataCache(),
        timeout_s=s.metadata_timeout_s, native_symbol=s.native_symbol,
    )
    return TransactionAnalyzer(
        sink, resolver,
        watch=WatchSet(s.watched), watch_mode=s.watch_mode, routers=s.known_routers,
        wrapped_native=s.wrapped_native, explorer_url=s.explorer_url,
        report_transfers=s.report_transfers,
    )

def build_stream(s: Settings, analyzer: TransactionAnalyzer) -> ChainStream:
    return ChainStream(
        s.stream_endpoints(), analyzer,
        mode=s.stream_mode, poll_interval_s=s.poll_interval_s, max_batch_blocks=s.max_batch_blocks,
        start_block=s.start_block, idle_timeout_s=s.idle_timeout_s, probe_timeout_s=s.probe_timeout_s,
        max_reconnect_attempts=s.max_reconnect_attempts, backoff_base_s=s.backoff_base_s,
        backoff_cap_s=s.backoff_cap_s, rate_limit_cooldown_s=s.rate_limit_cooldown_s,
        max_concurrent_handlers=s.max_concurrent_handlers, status_interval_s=s.status_interval_s,
        rpc_factory=lambda ep: HttpxRPC(ep.http_url, timeout_s=s.rpc_timeout_s),
        subscription_factory=lambda ep: WebsocketSubscription(ep.ws_url or "", open_timeout=s.probe_timeout_s),
    )


@app.command()
def watch(
    config: Optional[str] = typer.Option(None, "--config", "-c", help="JSON config file"),
    rpc: List[str] = typer.Option([], "--rpc", help="HTTP RPC endpoint (repeatable, rotation order)"),
    ws: List[str] = typer.Option([], "--ws", help="websocket endpoint paired with --rpc by position"),
    mode: Optional[str] = typer.Option(None, "--mode", help="poll | push"),
    all_: bool = typer.Option(False, "--all", help="report swaps of every sender"),
    watch_addr: List[str] = typer.Option([], "--watch", "-w", help="address to watch (repeatable)"),
    console_only: bool = typer.Option(False, "--console", help="print alerts instead of sending them"),
    start_block: Optional[int] = typer.Option(None, "--start-block"),
    log_level: str = typer.Option("INFO", "--log-level"),
    log_file: Optional[str] = typer.Option(None, "--log-file"),
):
    """Stream blocks (poll) or logs (push) and alert on classified swaps."""
    if mode is not None and mode not in ("poll", "push"):
        raise click.UsageError(f"--mode must be 'poll' or 'push', not {mode!r}")
    setup_logging(log_level, log_file)
    s = _settings(
        config,
        rpc_urls=rpc or None, ws_urls=ws or None, stream_mode=mode,
        watch_mode="all" if all_ else None, watched=watch_addr or None, start_block=start_block,
    )

    async def main() -> None:
        sink: AlertSink
        if console_only or not s.telegram_enabled:
            sink = ConsoleAlertSink(console)
        else:
            sink = TelegramAlertSink(s.telegram_bot_token or "", s.telegram_chat_id or "")
        stream = build_stream(s, build_analyzer(s, sink))
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, stream.stop)
            except (NotImplementedError, RuntimeError):
                pass  # not available on this platform
        console.print(Panel(
            f"mode={s.stream_mode} watch={s.watch_mode} ({len(s.watched)} addresses)\n"
            f"endpoints: {', '.join(ep.name for ep in s.stream_endpoints())}",
            title="swapwatch",
        ))
        try:
            await stream.run()
        finally:
            if isinstance(sink, TelegramAlertSink):
                await sink.aclose()
            console.print(f"stopped: {stream.status_line()}")

    try:
        asyncio.run(main())
    except FatalExhaustion as e:
        console.print(f"[red]fatal:[/red] {e}")
        raise typer.Exit(code=1) from e


@app.command("classify-tx")
def classify_tx(
    tx_hash: str,
    config: Optional[str] = typer.Option(None, "--config", "-c"),
    rpc: Optional[str] = typer.Option(None, "--rpc"),
    log_level: str = typer.Option("WARNING", "--log-level"),
):
    """Analyze one transaction and print the alert it would produce."""
    if len(strip_0x(tx_hash)) != 64:
        raise click.UsageError(f"not a transaction hash: {tx_hash}")
    setup_logging(log_level)
    s = _settings(config, rpc_urls=[rpc] if rpc else None, watch_mode="all")

    async def main() -> None:
        client = HttpxRPC(s.endpoints[0].http_url, timeout_s=s.rpc_timeout_s)
        try:
            analyzer = build_analyzer(s, ConsoleAlertSink(console))
            tx = await client.get_transaction(tx_hash.lower())
            res = await analyzer.analyze_tx(client, tx, deliver=False)
        finally:
            await client.aclose()
        if not res.alerts:
            console.print(Panel(f"no swap detected in {tx_hash}", border_style="yellow"))
        for text in res.alerts:
            console.print(Panel(html_to_plain(text), border_style="green"))

    try:
        asyncio.run(main())
    except SwapWatchError as e:
        console.print(f"[red]error:[/red] {e.__class__.__name__}: {e}")
        raise typer.Exit(code=1) from e


@app.command("decode-call")
def decode_call_cmd(
    to: str,
    calldata: str,
    config: Optional[str] = typer.Option(None, "--config", "-c"),
):
    """Decode router call data against the known-router table."""
    h = strip_0x(calldata)
    if len(h) < 8 or len(h) % 2 or any(c not in "0123456789abcdefABCDEF" for c in h):
        raise click.UsageError("CALLDATA must be 0x-prefixed hex with at least a 4-byte selector")
    s = _settings(config, watch_mode="all")
    text = describe_call(s.known_routers, to, "0x" + h, s.known_tokens)
    if text is None:
        console.print(Panel(f"unknown router or selector 0x{h[:8]} for {to}", border_style="yellow"))
        raise typer.Exit(code=1)
    console.print(Panel(text, title=to))


if __name__ == "__main__":
    app()
