from __future__ import annotations
from dataclasses import dataclass, field, replace
from typing import Any, Iterable, Iterator, Mapping

from .amounts import NATIVE_DECIMALS, DEFAULT_DECIMALS, format_units
from .value_types import Address, Direction, LegKind, TxHash, normalize_address


# ──────────────────────────────
# Chain data
# ──────────────────────────────

@dataclass(slots=True, frozen=True)
class LogEvent:
    address: Address
    topics: tuple[str, ...]            # lowercased with 0x
    data_hex: str                      # hex with 0x (or "0x")
    log_index: int
    tx_hash: TxHash
    block_number: int

    @property
    def topic0(self) -> str | None:
        return self.topics[0] if self.topics else None


@dataclass(slots=True, frozen=True)
class RawTransaction:
    hash: TxHash
    sender: Address
    to: Address | None                 # None for contract creation
    value: int
    input: str
    block_number: int | None = None


@dataclass(slots=True, frozen=True)
class Block:
    number: int
    transactions: tuple[RawTransaction, ...] = ()
    tx_hashes: tuple[TxHash, ...] = ()  # always filled; `transactions` only for full blocks


@dataclass(slots=True, frozen=True)
class Receipt:
    tx_hash: TxHash
    block_number: int
    logs: tuple[LogEvent, ...]
    status: int = 1


@dataclass(slots=True, frozen=True)
class HeadEvent:
    number: int


@dataclass(slots=True, frozen=True)
class TransactionContext:
    hash: TxHash
    sender: Address
    to: Address | None
    value: int
    call_data: str
    block_number: int
    logs: tuple[LogEvent, ...]

    @classmethod
    def build(cls, tx: RawTransaction, receipt: Receipt) -> "TransactionContext":
        return cls(
            hash=tx.hash,
            sender=tx.sender,
            to=tx.to,
            value=tx.value,
            call_data=tx.input,
            block_number=receipt.block_number if tx.block_number is None else tx.block_number,
            logs=tuple(sorted(receipt.logs, key=lambda lg: lg.log_index)),
        )


# ──────────────────────────────
# Tokens & swaps
# ──────────────────────────────

@dataclass(slots=True, frozen=True)
class TokenInfo:
    address: Address
    symbol: str
    decimals: int = DEFAULT_DECIMALS


@dataclass(slots=True, frozen=True)
class LegAmount:
    kind: LegKind
    address: Address | None            # None for the native asset
    raw: int                           # integer base units
    decimals: int = DEFAULT_DECIMALS

    @classmethod
    def native(cls, raw: int) -> "LegAmount":
        return cls(kind="native", address=None, raw=int(raw), decimals=NATIVE_DECIMALS)

    @classmethod
    def token(cls, address: str, raw: int, decimals: int = DEFAULT_DECIMALS) -> "LegAmount":
        return cls(kind="token", address=normalize_address(address), raw=int(raw), decimals=decimals)

    @property
    def amount(self) -> str:
        return format_units(self.raw, self.decimals)

    def same_asset(self, other: "LegAmount") -> bool:
        return self.kind == other.kind and self.address == other.address


@dataclass(slots=True, frozen=True)
class SwapRecord:
    actor: Address
    spent: LegAmount
    received: LegAmount
    tx_hash: TxHash

    def __post_init__(self) -> None:
        if self.spent.same_asset(self.received):
            raise ValueError(f"swap legs refer to the same asset ({self.spent.kind} {self.spent.address})")

    def with_decimals(self, decimals: Mapping[str, int]) -> "SwapRecord":
        """Re-scale token legs with resolved decimals; the native leg stays at 18."""
        def _leg(leg: LegAmount) -> LegAmount:
            if leg.kind != "token" or leg.address not in decimals:
                return leg
            return replace(leg, decimals=int(decimals[leg.address]))
        return replace(self, spent=_leg(self.spent), received=_leg(self.received))


@dataclass(slots=True, frozen=True)
class TransferRecord:
    watched: Address
    direction: Direction
    counterparty: Address
    token: Address
    raw: int
    tx_hash: TxHash


# ──────────────────────────────
# Watch set
# ──────────────────────────────

class WatchSet:
    """Case-insensitive address set with optional display labels."""

    def __init__(self, addresses: Iterable[str] | Mapping[str, str] = ()) -> None:
        self._labels: dict[Address, str] = {}
        if isinstance(addresses, Mapping):
            for a, label in addresses.items():
                self.add(a, label)
        else:
            for a in addresses:
                self.add(a)

    def add(self, address: str, label: str = "") -> None:
        self._labels[normalize_address(address)] = label or ""

    def __contains__(self, address: object) -> bool:
        if not isinstance(address, str) or not address:
            return False
        return normalize_address(address) in self._labels

    def __iter__(self) -> Iterator[Address]:
        return iter(self._labels)

    def __len__(self) -> int:
        return len(self._labels)

    def label(self, address: str) -> str:
        return self._labels.get(normalize_address(address)) or ""


# ──────────────────────────────
# Static router tables
# ──────────────────────────────

@dataclass(slots=True, frozen=True)
class FieldSpec:
    name: str
    type: str                          # address | uintN | intN | bool | address[] | bytes | bytes[]
    offset: int                        # byte offset of the head word, after the selector
    base: int = 0                      # dynamic fields: offsets are relative to this position


@dataclass(slots=True, frozen=True)
class RouterMethod:
    selector: str                      # 0x + 8 hex chars
    name: str
    fields: tuple[FieldSpec, ...] = ()


@dataclass(slots=True, frozen=True)
class KnownRouter:
    address: Address
    name: str
    type: str
    methods: Mapping[str, RouterMethod] = field(default_factory=dict)
    implementation: Address | None = None


@dataclass(slots=True, frozen=True)
class DecodedCall:
    method: RouterMethod
    fields: Mapping[str, Any]
    missing: tuple[str, ...] = ()

    @property
    def ok(self) -> bool:
        return not self.missing
