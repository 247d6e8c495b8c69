import asyncio

from conftest import FakeRPC
from swapwatch.adapters.memory_cache import InMemoryMetadataCache
from swapwatch.application.token_metadata import TokenMetadataResolver, fallback_symbol
from swapwatch.domain.decoding import DECIMALS_SELECTOR, SYMBOL_SELECTOR
from swapwatch.domain.errors import MalformedData, TransientNetwork
from swapwatch.domain.models import TokenInfo

TOKEN = "0x" + "d4" * 20
KNOWN = "0x55d398326f99059ff775485246999027b3197955"


def abi_string(s: str) -> bytes:
    raw = s.encode()
    padded = raw.ljust(((len(raw) + 31) // 32) * 32, b"\x00")
    return (32).to_bytes(32, "big") + len(raw).to_bytes(32, "big") + padded

def abi_uint(n: int) -> bytes:
    return n.to_bytes(32, "big")


def test_selectors():
    assert SYMBOL_SELECTOR == "0x95d89b41"
    assert DECIMALS_SELECTOR == "0x313ce567"


def test_static_table_wins_without_rpc():
    rpc = FakeRPC()
    r = TokenMetadataResolver({KNOWN: TokenInfo(address=KNOWN, symbol="USDT", decimals=18)})
    info = asyncio.run(r.resolve(rpc, KNOWN.upper().replace("0X", "0x")))
    assert info.symbol == "USDT"
    assert rpc.count("call") == 0


def test_live_lookup_is_cached():
    rpc = FakeRPC()
    rpc.calls[(TOKEN, SYMBOL_SELECTOR)] = abi_string("MEME")
    rpc.calls[(TOKEN, DECIMALS_SELECTOR)] = abi_uint(9)
    cache = InMemoryMetadataCache()
    r = TokenMetadataResolver(cache=cache)

    async def go():
        return await r.resolve(rpc, TOKEN), await r.resolve(rpc, TOKEN)

    first, second = asyncio.run(go())
    assert first == second == TokenInfo(address=TOKEN, symbol="MEME", decimals=9)
    assert rpc.count("call") == 2
    assert cache.get(TOKEN) == first


def test_bytes32_symbol():
    rpc = FakeRPC()
    rpc.calls[(TOKEN, SYMBOL_SELECTOR)] = b"MKR".ljust(32, b"\x00")
    rpc.calls[(TOKEN, DECIMALS_SELECTOR)] = abi_uint(18)
    info = asyncio.run(TokenMetadataResolver().resolve(rpc, TOKEN))
    assert info.symbol == "MKR"


def test_revert_falls_back_and_is_not_queried_again():
    rpc = FakeRPC()
    rpc.calls[(TOKEN, SYMBOL_SELECTOR)] = MalformedData("execution reverted")
    r = TokenMetadataResolver()

    async def go():
        return await r.resolve(rpc, TOKEN), await r.resolve(rpc, TOKEN)

    first, second = asyncio.run(go())
    assert first.symbol == fallback_symbol(TOKEN) == TOKEN[:6] + "..."
    assert first.decimals == 18
    assert second == first
    assert rpc.count("call") == 1


def test_network_failure_falls_back_without_caching():
    rpc = FakeRPC()
    rpc.errors["call"] = [TransientNetwork("down")]
    rpc.calls[(TOKEN, SYMBOL_SELECTOR)] = abi_string("OK")
    rpc.calls[(TOKEN, DECIMALS_SELECTOR)] = abi_uint(6)
    r = TokenMetadataResolver()

    async def go():
        return await r.resolve(rpc, TOKEN), await r.resolve(rpc, TOKEN)

    first, second = asyncio.run(go())
    assert first.symbol == fallback_symbol(TOKEN)
    assert second == TokenInfo(address=TOKEN, symbol="OK", decimals=6)


def test_slow_token_times_out_to_fallback():
    class SlowRPC(FakeRPC):
        async def call(self, to, data):
            await asyncio.sleep(1)
            return abi_uint(1)

    info = asyncio.run(TokenMetadataResolver(timeout_s=0.01).resolve(SlowRPC(), TOKEN))
    assert info.symbol == fallback_symbol(TOKEN)


def test_native_info():
    info = TokenMetadataResolver(native_symbol="BNB").native()
    assert info.symbol == "BNB" and info.decimals == 18
