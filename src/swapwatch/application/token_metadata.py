from __future__ import annotations
import asyncio, logging
from typing import Mapping

from ..adapters.memory_cache import InMemoryMetadataCache
from ..domain.amounts import DEFAULT_DECIMALS, NATIVE_DECIMALS
from ..domain.decoding import DECIMALS_SELECTOR, SYMBOL_SELECTOR, decode_abi_string, decode_abi_uint
from ..domain.errors import DecodeMismatch, MalformedData, NotFound, RateLimited, TransientNetwork
from ..domain.models import TokenInfo
from ..domain.value_types import Address, normalize_address
from ..ports.cache import MetadataCache
from ..ports.rpc import RPCClient

log = logging.getLogger(__name__)

MAX_DECIMALS = 77  # 10**77 still fits in a uint256

def fallback_symbol(address: str) -> str:
    return normalize_address(address)[:6] + "..."

def fallback_info(address: str) -> TokenInfo:
    a = normalize_address(address)
    return TokenInfo(address=a, symbol=fallback_symbol(a), decimals=DEFAULT_DECIMALS)


class TokenMetadataResolver:
    """
    Symbol / decimals lookup: static table, then cache, then live eth_call.
    Tokens that answer garbage (or revert) are cached under the fallback so they
    are not queried again; network trouble yields the fallback uncached.
    """

    def __init__(
        self,
        known_tokens: Mapping[str, TokenInfo] | None = None,
        cache: MetadataCache | None = None,
        timeout_s: float = 5.0,
        native_symbol: str = "BNB",
    ) -> None:
        self.known = {normalize_address(a): t for a, t in (known_tokens or {}).items()}
        self.cache = cache if cache is not None else InMemoryMetadataCache()
        self.timeout_s = timeout_s
        self.native_symbol = native_symbol
        self.live_lookups = 0

    def native(self) -> TokenInfo:
        return TokenInfo(address=Address("0x" + "0" * 40), symbol=self.native_symbol, decimals=NATIVE_DECIMALS)

    async def resolve(self, rpc: RPCClient, address: str) -> TokenInfo:
        a = normalize_address(address)
        if a in self.known:
            return self.known[a]
        hit = self.cache.get(a)
        if hit is not None:
            return hit

        self.live_lookups += 1
        try:
            symbol = decode_abi_string(await self._call(rpc, a, SYMBOL_SELECTOR))
            decimals = decode_abi_uint(await self._call(rpc, a, DECIMALS_SELECTOR))
        except (asyncio.TimeoutError, TransientNetwork, RateLimited, NotFound) as e:
            log.warning("metadata lookup for %s failed (%s), using fallback", a, e.__class__.__name__)
            return fallback_info(a)
        except (MalformedData, DecodeMismatch) as e:
            log.info("token %s has no usable metadata (%s), caching fallback", a, e)
            info = fallback_info(a)
            self.cache.put(info)
            return info

        if decimals > MAX_DECIMALS:
            log.info("token %s reports decimals=%s, using %s", a, decimals, DEFAULT_DECIMALS)
            decimals = DEFAULT_DECIMALS
        info = TokenInfo(address=a, symbol=symbol or fallback_symbol(a), decimals=int(decimals))
        self.cache.put(info)
        return info

    async def resolve_many(self, rpc: RPCClient, addresses: list[str]) -> dict[Address, TokenInfo]:
        uniq = list(dict.fromkeys(normalize_address(a) for a in addresses))
        infos = await asyncio.gather(*(self.resolve(rpc, a) for a in uniq))
        return dict(zip(uniq, infos))

    async def _call(self, rpc: RPCClient, to: Address, selector: str) -> bytes:
        return await asyncio.wait_for(rpc.call(to, selector), timeout=self.timeout_s)
