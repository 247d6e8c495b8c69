from __future__ import annotations
import itertools, logging
from typing import Any

import httpx

from ..domain.decoding import hex_to_bytes, hex_to_int
from ..domain.errors import MalformedData, NotFound, RateLimited, TransientNetwork
from ..domain.models import Block, LogEvent, RawTransaction, Receipt
from ..domain.value_types import TxHash, normalize_address
from ..ports.rpc import RPCClient

log = logging.getLogger(__name__)

RATE_LIMIT_CODES = {-32005, -32029, 429}
RATE_LIMIT_HINTS = ("rate limit", "too many requests", "limit exceeded", "request limit", "exceeded the quota")
NOT_FOUND_HINTS = ("header not found", "unknown block", "not found")

def _to_hex_block(n: int) -> str: return hex(int(n))
def _lower_hex(s: Any) -> str: return (s if isinstance(s, str) else bytes(s).hex()).lower()

def _retry_after(r: httpx.Response) -> float | None:
    ra = r.headers.get("Retry-After")
    return float(ra) if ra and ra.isdigit() else None

def _classify_rpc_error(method: str, err: Any) -> Exception:
    code = err.get("code") if isinstance(err, dict) else None
    msg = (err.get("message") if isinstance(err, dict) else str(err)) or ""
    low = msg.lower()
    text = f"{method} RPC error code={code} message={msg}"
    if code in RATE_LIMIT_CODES or any(h in low for h in RATE_LIMIT_HINTS):
        return RateLimited(text)
    if any(h in low for h in NOT_FOUND_HINTS):
        return NotFound(text)
    return MalformedData(text)


def parse_log(rl: dict[str, Any]) -> LogEvent:
    try:
        return LogEvent(
            address=normalize_address(rl["address"]),
            topics=tuple(_lower_hex(t) for t in rl.get("topics") or ()),
            data_hex=str(rl.get("data") or "0x"),
            log_index=hex_to_int(rl["logIndex"]),
            tx_hash=TxHash((rl.get("transactionHash") or "").lower()),
            block_number=hex_to_int(rl.get("blockNumber")),
        )
    except (KeyError, TypeError, ValueError, AttributeError) as e:
        raise MalformedData(f"malformed log: {e}") from e

def parse_transaction(t: dict[str, Any]) -> RawTransaction:
    try:
        to = t.get("to")
        bn = t.get("blockNumber")
        return RawTransaction(
            hash=TxHash(t["hash"].lower()),
            sender=normalize_address(t["from"]),
            to=normalize_address(to) if to else None,
            value=hex_to_int(t.get("value")),
            input=str(t.get("input") or t.get("data") or "0x"),
            block_number=hex_to_int(bn) if bn is not None else None,
        )
    except (KeyError, TypeError, ValueError, AttributeError) as e:
        raise MalformedData(f"malformed transaction: {e}") from e

def _parse_block_txs(number: int, raw_txs: list[Any]):
    for t in raw_txs:
        try:
            yield parse_transaction(t)
        except MalformedData as e:
            log.warning("block %s: skipping transaction: %s", number, e)


class HttpxRPC(RPCClient):
    def __init__(self, rpc_url: str, timeout_s: float = 20, max_conn: int = 64,
                 transport: httpx.AsyncBaseTransport | None = None) -> None:
        self.endpoint = rpc_url
        self._ids = itertools.count(1)
        self.client = httpx.AsyncClient(
            http2=transport is None,
            timeout=httpx.Timeout(timeout_s),
            limits=httpx.Limits(max_connections=max_conn, max_keepalive_connections=max_conn//2),
            transport=transport,
        )

    async def _request(self, method: str, params: list[Any]) -> Any:
        payload = {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": params}
        try:
            r = await self.client.post(self.endpoint, json=payload)
        except httpx.TimeoutException as e:
            raise TransientNetwork(f"{method} timed out on {self.endpoint}") from e
        except httpx.TransportError as e:
            raise TransientNetwork(f"{method} transport error on {self.endpoint}: {e}") from e
        if r.status_code == 429:
            raise RateLimited(f"{method} HTTP 429 from {self.endpoint}", retry_after=_retry_after(r))
        if r.status_code >= 500 or r.status_code in (401, 403):
            raise TransientNetwork(f"{method} HTTP {r.status_code} from {self.endpoint}")
        if r.status_code >= 400:
            raise MalformedData(f"{method} HTTP {r.status_code} from {self.endpoint}")
        try:
            data = r.json()
        except ValueError as e:
            raise MalformedData(f"{method} returned non-JSON body") from e
        if not isinstance(data, dict):
            raise MalformedData(f"{method} returned {type(data).__name__}")
        if "error" in data:
            raise _classify_rpc_error(method, data["error"])
        return data.get("result")

    async def block_number(self) -> int:
        res = await self._request("eth_blockNumber", [])
        if res is None:
            raise MalformedData("eth_blockNumber returned null")
        return hex_to_int(res)

    async def get_block(self, number: int, full_transactions: bool = True) -> Block:
        res = await self._request("eth_getBlockByNumber", [_to_hex_block(number), full_transactions])
        if res is None:
            raise NotFound(f"block {number} not found")
        if not isinstance(res, dict):
            raise MalformedData(f"block {number}: expected object, got {type(res).__name__}")
        raw_txs = res.get("transactions") or []
        if full_transactions:
            txs = tuple(_parse_block_txs(number, raw_txs))
            hashes = tuple(t.hash for t in txs)
        else:
            txs = ()
            hashes = tuple(TxHash(h.lower()) for h in raw_txs if isinstance(h, str))
        return Block(number=hex_to_int(res.get("number", number)), transactions=txs, tx_hashes=hashes)

    async def get_transaction(self, tx_hash: str) -> RawTransaction:
        res = await self._request("eth_getTransactionByHash", [tx_hash])
        if res is None:
            raise NotFound(f"transaction {tx_hash} not found")
        return parse_transaction(res)

    async def get_receipt(self, tx_hash: str) -> Receipt:
        res = await self._request("eth_getTransactionReceipt", [tx_hash])
        if res is None:
            raise NotFound(f"receipt {tx_hash} not found")
        if not isinstance(res, dict):
            raise MalformedData(f"receipt {tx_hash}: expected object, got {type(res).__name__}")
        try:
            return Receipt(
                tx_hash=TxHash(res["transactionHash"].lower()),
                block_number=hex_to_int(res.get("blockNumber")),
                logs=tuple(parse_log(rl) for rl in res.get("logs") or ()),
                status=hex_to_int(res.get("status", "0x1")),
            )
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise MalformedData(f"malformed receipt for {tx_hash}: {e}") from e

    async def call(self, to: str, data: str) -> bytes:
        res = await self._request("eth_call", [{"to": to, "data": data}, "latest"])
        out = hex_to_bytes(res) if isinstance(res, str) else b""
        if not out:
            raise MalformedData(f"eth_call to {to} returned no data")
        return out

    async def aclose(self) -> None:
        await self.client.aclose()
