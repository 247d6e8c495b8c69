"""
Swap classification.

Turns the correlated Transfer / Deposit / Withdrawal logs of one transaction into
at most one SwapRecord, seen from the transaction sender:

  1. native in, token out   Deposit(value == tx.value) then Transfer(-> sender)
  2. token in, native out   Transfer(sender ->) then Withdrawal(account == sender)
  3. token in, token out    Transfer(sender ->) and Transfer(-> sender), distinct tokens

Whenever several candidates qualify the first one by emission index wins.
Everything here is pure: same context in, same record out.
"""
from __future__ import annotations
from typing import Sequence

from .correlation import TransferView, deposits, has_multiple_contracts, transfers, withdrawals
from .models import LegAmount, LogEvent, SwapRecord, TransactionContext, TransferRecord, WatchSet
from .value_types import Address, normalize_address


def _native_in(ctx: TransactionContext, moves: list[TransferView], logs: Sequence[LogEvent],
               wrapped: Address | None) -> SwapRecord | None:
    if ctx.value <= 0:
        return None
    for dep in deposits(logs):
        if wrapped and dep.contract != wrapped:
            continue
        if dep.raw != ctx.value:
            continue
        for t in moves:
            if t.log_index > dep.log_index and t.dst == ctx.sender:
                return SwapRecord(
                    actor=ctx.sender,
                    spent=LegAmount.native(ctx.value),
                    received=LegAmount.token(t.token, t.raw),
                    tx_hash=ctx.hash,
                )
    return None

def _native_out(ctx: TransactionContext, moves: list[TransferView], logs: Sequence[LogEvent],
                wrapped: Address | None) -> SwapRecord | None:
    paid = [w for w in withdrawals(logs)
            if w.account == ctx.sender and (not wrapped or w.contract == wrapped)]
    if not paid:
        return None
    for t in moves:
        if t.src != ctx.sender or t.dst == ctx.sender:
            continue
        later = [w for w in paid if w.log_index > t.log_index]
        if not later:
            continue
        w = min(later, key=lambda x: x.log_index)
        return SwapRecord(
            actor=ctx.sender,
            spent=LegAmount.token(t.token, t.raw),
            received=LegAmount.native(w.raw),
            tx_hash=ctx.hash,
        )
    return None

def _token_to_token(ctx: TransactionContext, moves: list[TransferView]) -> SwapRecord | None:
    outs = [t for t in moves if t.src == ctx.sender and t.dst != ctx.sender]
    ins = [t for t in moves if t.dst == ctx.sender and t.src != ctx.sender]
    for o in outs:
        for i in ins:
            if i.token == o.token:
                continue
            return SwapRecord(
                actor=ctx.sender,
                spent=LegAmount.token(o.token, o.raw),
                received=LegAmount.token(i.token, i.raw),
                tx_hash=ctx.hash,
            )
    return None

def classify(ctx: TransactionContext, logs: Sequence[LogEvent], *, wrapped_native: str | None = None) -> SwapRecord | None:
    """
    `logs` is the correlated subsequence of `ctx.logs` (emission order).
    Token legs carry 18 decimals; callers rescale with SwapRecord.with_decimals.
    """
    ordered = sorted(logs, key=lambda lg: lg.log_index)
    if not has_multiple_contracts(ordered):
        return None
    wrapped = normalize_address(wrapped_native) if wrapped_native else None
    moves = transfers(ordered)
    for rule in (_native_in, _native_out):
        rec = rule(ctx, moves, ordered, wrapped)
        if rec is not None:
            return rec
    return _token_to_token(ctx, moves)

def watched_transfers(ctx: TransactionContext, logs: Sequence[LogEvent], watch: WatchSet) -> list[TransferRecord]:
    """Transfers touching a watched address, for plain-transfer notifications."""
    out: list[TransferRecord] = []
    for t in transfers(sorted(logs, key=lambda lg: lg.log_index)):
        if t.src == t.dst:
            continue
        if t.src in watch:
            out.append(TransferRecord(watched=t.src, direction="out", counterparty=t.dst,
                                      token=t.token, raw=t.raw, tx_hash=ctx.hash))
        if t.dst in watch:
            out.append(TransferRecord(watched=t.dst, direction="in", counterparty=t.src,
                                      token=t.token, raw=t.raw, tx_hash=ctx.hash))
    return out
