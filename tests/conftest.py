import asyncio
import logging
from typing import Any

import pytest

from swapwatch.domain.decoding import DEPOSIT_T0, TRANSFER_T0, WITHDRAWAL_T0
from swapwatch.domain.errors import MalformedData, NotFound
from swapwatch.domain.models import Block, LogEvent, RawTransaction, Receipt, TransactionContext


# Configure logging for tests
@pytest.fixture(autouse=True)
def configure_logging():
    logging.basicConfig(
        level=logging.DEBUG,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    yield


# ─── builders ───

SENDER = "0x" + "a1" * 20
ROUTER = "0x" + "b2" * 20
PAIR = "0x" + "c3" * 20
TOKEN_A = "0x" + "d4" * 20
TOKEN_B = "0x" + "e5" * 20
WBNB = "0xbb4cdb9cbd36b01bd1cbaebf2de08d9173bc095c"
TX = "0x" + "11" * 32


def topic_addr(a: str) -> str:
    return "0x" + "0" * 24 + a[2:].lower()

def word_hex(n: int) -> str:
    return "0x" + n.to_bytes(32, "big").hex()

def transfer(token: str, src: str, dst: str, raw: int, idx: int, tx: str = TX) -> LogEvent:
    return LogEvent(address=token.lower(), topics=(TRANSFER_T0, topic_addr(src), topic_addr(dst)),
                    data_hex=word_hex(raw), log_index=idx, tx_hash=tx, block_number=100)

def deposit(account: str, raw: int, idx: int, contract: str = WBNB, tx: str = TX) -> LogEvent:
    return LogEvent(address=contract, topics=(DEPOSIT_T0, topic_addr(account)),
                    data_hex=word_hex(raw), log_index=idx, tx_hash=tx, block_number=100)

def withdrawal(account: str, raw: int, idx: int, contract: str = WBNB, tx: str = TX) -> LogEvent:
    return LogEvent(address=contract, topics=(WITHDRAWAL_T0, topic_addr(account)),
                    data_hex=word_hex(raw), log_index=idx, tx_hash=tx, block_number=100)

def ctx_of(logs, value: int = 0, sender: str = SENDER, to: str = ROUTER, call_data: str = "0x", tx: str = TX) -> TransactionContext:
    return TransactionContext(hash=tx, sender=sender, to=to, value=value, call_data=call_data,
                              block_number=100, logs=tuple(logs))

def raw_tx(tx: str = TX, sender: str = SENDER, to: str = ROUTER, value: int = 0, block: int = 100) -> RawTransaction:
    return RawTransaction(hash=tx, sender=sender, to=to, value=value, input="0x", block_number=block)


# ─── fakes ───

class FakeRPC:
    """In-memory RPCClient. `errors` maps a method name to an exception (or list, consumed in order)."""

    def __init__(self, head: int = 100, endpoint: str = "fake://rpc") -> None:
        self.endpoint = endpoint
        self.head = head
        self.blocks: dict[int, Block] = {}
        self.txs: dict[str, RawTransaction] = {}
        self.receipts: dict[str, Receipt] = {}
        self.calls: dict[tuple[str, str], Any] = {}
        self.errors: dict[str, Any] = {}
        self.log: list[tuple[str, Any]] = []
        self.closed = False

    def _maybe_raise(self, method: str) -> None:
        err = self.errors.get(method)
        if isinstance(err, list):
            if err:
                e = err.pop(0)
                if e is not None:
                    raise e
            return
        if err is not None:
            raise err

    def add_tx(self, tx: RawTransaction, logs=(), status: int = 1) -> None:
        self.txs[tx.hash] = tx
        self.receipts[tx.hash] = Receipt(tx_hash=tx.hash, block_number=tx.block_number or 0,
                                         logs=tuple(logs), status=status)
        n = tx.block_number or 0
        prev = self.blocks.get(n, Block(number=n))
        self.blocks[n] = Block(number=n, transactions=prev.transactions + (tx,),
                               tx_hashes=prev.tx_hashes + (tx.hash,))

    async def block_number(self) -> int:
        self.log.append(("block_number", None))
        self._maybe_raise("block_number")
        return self.head

    async def get_block(self, number: int, full_transactions: bool = True) -> Block:
        self.log.append(("get_block", number))
        self._maybe_raise("get_block")
        if number > self.head:
            raise NotFound(f"block {number}")
        return self.blocks.get(number, Block(number=number))

    async def get_transaction(self, tx_hash: str) -> RawTransaction:
        self.log.append(("get_transaction", tx_hash))
        self._maybe_raise("get_transaction")
        if tx_hash not in self.txs:
            raise NotFound(tx_hash)
        return self.txs[tx_hash]

    async def get_receipt(self, tx_hash: str) -> Receipt:
        self.log.append(("get_receipt", tx_hash))
        self._maybe_raise("get_receipt")
        if tx_hash not in self.receipts:
            raise NotFound(tx_hash)
        return self.receipts[tx_hash]

    async def call(self, to: str, data: str) -> bytes:
        self.log.append(("call", (to, data)))
        self._maybe_raise("call")
        res = self.calls.get((to.lower(), data))
        if isinstance(res, Exception):
            raise res
        if res is None:
            raise MalformedData(f"eth_call to {to} returned no data")
        return res

    async def aclose(self) -> None:
        self.closed = True

    def count(self, method: str) -> int:
        return sum(1 for m, _ in self.log if m == method)


class FakeSubscription:
    """LogSubscription fed from a list of events; an Exception item is raised, None blocks forever."""

    def __init__(self, events=(), subscribe_error: Exception | None = None) -> None:
        self.events = list(events)
        self.subscribe_error = subscribe_error
        self.subscribed: list[list[str]] = []
        self.closed = False

    async def subscribe(self, topic0s) -> None:
        if self.subscribe_error is not None:
            raise self.subscribe_error
        self.subscribed.append(list(topic0s))

    async def next_event(self):
        if not self.events:
            await asyncio.Event().wait()
        ev = self.events.pop(0)
        if ev is None:
            await asyncio.Event().wait()
        if isinstance(ev, Exception):
            raise ev
        return ev

    async def aclose(self) -> None:
        self.closed = True


class RecordingSink:
    def __init__(self, fail: bool = False) -> None:
        self.sent: list[str] = []
        self.fail = fail

    async def send(self, text: str) -> None:
        if self.fail:
            raise RuntimeError("sink down")
        self.sent.append(text)


@pytest.fixture
def rpc() -> FakeRPC:
    return FakeRPC()

@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


