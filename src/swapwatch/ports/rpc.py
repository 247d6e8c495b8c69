# swapwatch/ports/rpc.py
from __future__ import annotations

from typing import Protocol, Sequence
from ..domain.models import Block, HeadEvent, LogEvent, RawTransaction, Receipt
from ..domain.value_types import Topic0


class RPCClient(Protocol):
    """Port defining the contract for an Ethereum JSON-RPC client (one endpoint)."""

    endpoint: str

    async def block_number(self) -> int:
        """Return the latest block number as an integer."""

    async def get_block(self, number: int, full_transactions: bool = True) -> Block:
        """Return the block with its transactions; NotFound if the node does not have it yet."""

    async def get_transaction(self, tx_hash: str) -> RawTransaction:
        """Return the transaction; NotFound when unknown."""

    async def get_receipt(self, tx_hash: str) -> Receipt:
        """Return the receipt with typed logs; NotFound when not mined."""

    async def call(self, to: str, data: str) -> bytes:
        """eth_call against latest; MalformedData on revert."""

    async def aclose(self) -> None:
        """Release the underlying connection pool."""


class LogSubscription(Protocol):
    """Port for push notifications: a log filter plus a new-heads heartbeat."""

    async def subscribe(self, topic0s: Sequence[Topic0]) -> None:
        """Open the connection and install both subscriptions."""

    async def next_event(self) -> LogEvent | HeadEvent:
        """Wait for the next notification (callers bound this with a timeout)."""

    async def aclose(self) -> None:
        """Tear down both subscriptions and the connection."""
