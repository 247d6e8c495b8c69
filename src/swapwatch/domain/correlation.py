from __future__ import annotations
from collections import defaultdict
from dataclasses import dataclass
from typing import Iterable, Sequence

from .decoding import (
    DEPOSIT_T0, REQUIRED_TOPICS, TRANSFER_T0, WITHDRAWAL_T0,
    addr_from_topic, first_word_int,
)
from .errors import MalformedData
from .models import LogEvent, TransactionContext
from .value_types import Address

SWAP_SIGNATURES: tuple[str, ...] = (TRANSFER_T0, DEPOSIT_T0, WITHDRAWAL_T0)


@dataclass(slots=True, frozen=True)
class TransferView:
    token: Address
    src: Address
    dst: Address
    raw: int
    log_index: int


@dataclass(slots=True, frozen=True)
class WrapView:
    """Deposit / Withdrawal on the wrapped-native contract."""
    contract: Address
    account: Address
    raw: int
    log_index: int


def correlate(ctx: TransactionContext, signatures: Iterable[str] = SWAP_SIGNATURES) -> list[LogEvent]:
    """
    Logs of `ctx` whose topic0 is one of `signatures`, in emission order.
    Logs carrying fewer topics than their signature needs are skipped.
    """
    wanted = {s.lower() for s in signatures}
    out: list[LogEvent] = []
    for lg in sorted(ctx.logs, key=lambda x: x.log_index):
        t0 = lg.topic0
        if t0 is None or t0 not in wanted:
            continue
        if len(lg.topics) < REQUIRED_TOPICS.get(t0, 1):
            continue
        out.append(lg)
    return out

def group_by_contract(logs: Iterable[LogEvent]) -> dict[Address, list[LogEvent]]:
    groups: dict[Address, list[LogEvent]] = defaultdict(list)
    for lg in logs:
        groups[lg.address].append(lg)
    return dict(groups)

def has_multiple_contracts(logs: Iterable[LogEvent]) -> bool:
    return len(group_by_contract(logs)) >= 2


# --------- parsed views -------------------------------------------------------

def _amount(lg: LogEvent) -> int | None:
    try:
        return first_word_int(lg.data_hex)
    except MalformedData:
        return None

def transfers(logs: Sequence[LogEvent]) -> list[TransferView]:
    out: list[TransferView] = []
    for lg in logs:
        if lg.topic0 != TRANSFER_T0 or len(lg.topics) < 3:
            continue
        raw = _amount(lg)
        if raw is None:
            continue  # ERC721 transfers carry no amount word
        out.append(TransferView(
            token=lg.address,
            src=addr_from_topic(lg.topics[1]),
            dst=addr_from_topic(lg.topics[2]),
            raw=raw,
            log_index=lg.log_index,
        ))
    return out

def _wraps(logs: Sequence[LogEvent], t0: str) -> list[WrapView]:
    out: list[WrapView] = []
    for lg in logs:
        if lg.topic0 != t0 or len(lg.topics) < 2:
            continue
        raw = _amount(lg)
        if raw is None:
            continue
        out.append(WrapView(contract=lg.address, account=addr_from_topic(lg.topics[1]), raw=raw, log_index=lg.log_index))
    return out

def deposits(logs: Sequence[LogEvent]) -> list[WrapView]:
    return _wraps(logs, DEPOSIT_T0)

def withdrawals(logs: Sequence[LogEvent]) -> list[WrapView]:
    return _wraps(logs, WITHDRAWAL_T0)
