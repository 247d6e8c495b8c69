from __future__ import annotations
import html
from typing import Any, Mapping

from ..domain.calldata import decode_call, decode_inner_calls, decode_v3_path, find_method
from ..domain.errors import DecodeMismatch
from ..domain.models import DecodedCall, KnownRouter, LegAmount, SwapRecord, TokenInfo, TransferRecord, WatchSet
from ..domain.amounts import short_amount
from ..domain.value_types import Address, normalize_address

esc = html.escape

def short_addr(a: str) -> str: return f"{a[:6]}...{a[-4:]}" if len(a) > 12 else a


# ─── links ───

def address_url(explorer: str, a: str) -> str: return f"{explorer.rstrip('/')}/address/{a}"
def token_url(explorer: str, a: str) -> str: return f"{explorer.rstrip('/')}/token/{a}"
def tx_url(explorer: str, h: str) -> str: return f"{explorer.rstrip('/')}/tx/{h}"

def _a(url: str, text: str) -> str:
    return f'<a href="{esc(url, quote=True)}">{esc(text)}</a>'

def wallet_ref(address: str, watch: WatchSet | None, explorer: str) -> str:
    label = watch.label(address) if watch is not None else ""
    return _a(address_url(explorer, address), label or short_addr(address))

def _leg(leg: LegAmount, tokens: Mapping[str, TokenInfo], native_symbol: str, explorer: str) -> str:
    if leg.kind == "native":
        return f"{esc(short_amount(leg.raw, leg.decimals))} {esc(native_symbol)}"
    info = tokens.get(leg.address or "")
    symbol = info.symbol if info else short_addr(leg.address or "")
    return f"{esc(short_amount(leg.raw, leg.decimals))} {_a(token_url(explorer, leg.address or ''), symbol)}"


# ─── alert texts (Telegram HTML) ───

def format_swap(rec: SwapRecord, tokens: Mapping[str, TokenInfo], *, native_symbol: str,
                explorer: str, watch: WatchSet | None = None, call: str | None = None) -> str:
    lines = [
        f"<b>Swap</b> by {wallet_ref(rec.actor, watch, explorer)}",
        f"Spent: {_leg(rec.spent, tokens, native_symbol, explorer)}",
        f"Received: {_leg(rec.received, tokens, native_symbol, explorer)}",
    ]
    if call:
        lines.append(f"Call: <code>{esc(call)}</code>")
    lines.append(_a(tx_url(explorer, rec.tx_hash), "View transaction"))
    return "\n".join(lines)

def format_transfer(rec: TransferRecord, token: TokenInfo, *, explorer: str, watch: WatchSet | None = None) -> str:
    verb = "sent" if rec.direction == "out" else "received"
    prep = "to" if rec.direction == "out" else "from"
    amount = short_amount(rec.raw, token.decimals)
    return "\n".join([
        f"<b>Transfer</b>: {wallet_ref(rec.watched, watch, explorer)} {verb} "
        f"{esc(amount)} {_a(token_url(explorer, rec.token), token.symbol)}",
        f"{prep.capitalize()}: {wallet_ref(rec.counterparty, watch, explorer)}",
        _a(tx_url(explorer, rec.tx_hash), "View transaction"),
    ])


# ─── router call descriptions ───

def _token_name(a: str, tokens: Mapping[str, TokenInfo]) -> str:
    info = tokens.get(normalize_address(a))
    return info.symbol if info else short_addr(a)

def _render(ftype: str, value: Any, tokens: Mapping[str, TokenInfo]) -> str | None:
    if ftype == "address":
        return _token_name(value, tokens)
    if ftype == "address[]":
        return " > ".join(_token_name(a, tokens) for a in value)
    if ftype == "bytes":
        try:
            hops, fees = decode_v3_path(value)
        except DecodeMismatch:
            return "0x" + value.hex() if len(value) <= 32 else f"<{len(value)} bytes>"
        parts = [_token_name(hops[0], tokens)]
        for fee, tok in zip(fees, hops[1:]):
            parts.append(f"({fee / 10_000:g}%) {_token_name(tok, tokens)}")
        return " > ".join(parts)
    if ftype == "bytes[]":
        return None
    return str(value)

def render_call(decoded: DecodedCall, tokens: Mapping[str, TokenInfo] | None = None) -> str:
    tokens = tokens or {}
    args = []
    for spec in decoded.method.fields:
        if spec.name not in decoded.fields:
            continue
        text = _render(spec.type, decoded.fields[spec.name], tokens)
        if text is not None:
            args.append(f"{spec.name}={text}")
    out = f"{decoded.method.name}({', '.join(args)})"
    if decoded.missing:
        out += f" [undecoded: {', '.join(decoded.missing)}]"
    return out

def describe_call(routers: Mapping[str, KnownRouter], to: str | None, call_data: str | None,
                  tokens: Mapping[str, TokenInfo] | None = None) -> str | None:
    """One-line description of a known router call, or None for unknown targets / selectors."""
    found = find_method(routers, to, call_data)
    if found is None:
        return None
    router, method = found
    decoded = decode_call(call_data or "0x", method)
    text = f"{router.name}: {render_call(decoded, tokens)}"
    inner = decode_inner_calls(decoded, router)
    if inner:
        text += " -> " + "; ".join(render_call(d, tokens) for d in inner)
    return text

def call_tokens(routers: Mapping[str, KnownRouter], to: str | None, call_data: str | None) -> list[Address]:
    """Token addresses referenced by a known router call (for symbol resolution before rendering)."""
    found = find_method(routers, to, call_data)
    if found is None:
        return []
    router, method = found
    calls = [decode_call(call_data or "0x", method)]
    calls += decode_inner_calls(calls[0], router)
    out: list[Address] = []
    for d in calls:
        for spec in d.method.fields:
            v = d.fields.get(spec.name)
            if v is None:
                continue
            if spec.type == "address[]":
                out.extend(v)
            elif spec.type == "address" and spec.name.startswith("token"):
                out.append(v)
            elif spec.type == "bytes":
                try:
                    out.extend(decode_v3_path(v)[0])
                except DecodeMismatch:
                    pass
    return list(dict.fromkeys(normalize_address(a) for a in out))
