import pytest

from swapwatch.application.describe import call_tokens, describe_call
from swapwatch.config import DEFAULT_ROUTERS, DEFAULT_TOKENS, PANCAKE_V3_ROUTER, WBNB
from swapwatch.domain.calldata import (
    decode_call, decode_inner_calls, decode_v3_path, find_method, find_router, method_from_signature, selector_of,
)
from swapwatch.domain.errors import DecodeMismatch

V2_ROUTER = "0x10ed43c718714eb63d5aa57b78b54704e256024e"
V3_PROXY = "0x75ff870a864b59f03ff3e67a65ef44dea64f0caf"
USDT = "0x55d398326f99059ff775485246999027b3197955"
TOKEN = "0x" + "d4" * 20
RECIPIENT = "0x" + "a1" * 20


def w(v) -> str:
    if isinstance(v, str):
        return v[2:].lower().rjust(64, "0")
    return int(v).to_bytes(32, "big").hex()

def by_name(router: str, name: str):
    return next(m for m in DEFAULT_ROUTERS[router].methods.values() if m.name == name)


def test_selector_for_known_v2_method():
    m = by_name(V2_ROUTER, "swapExactETHForTokens")
    assert m.selector == "0x7ff36ab5"
    assert [f.name for f in m.fields] == ["amountOutMin", "path", "to", "deadline"]


def test_exact_input_single_458_hex_chars():
    m = by_name(PANCAKE_V3_ROUTER, "exactInputSingle")
    amount_in = 5 * 10**18
    data = m.selector + "".join([w(WBNB), w(TOKEN), w(2500), w(RECIPIENT), w(amount_in), w(1234), w(0)])
    assert len(data) == 458

    d = decode_call(data, m)
    assert d.ok
    assert d.fields["tokenIn"] == WBNB
    assert d.fields["tokenOut"] == TOKEN
    assert d.fields["fee"] == 2500
    assert d.fields["recipient"] == RECIPIENT
    assert d.fields["amountIn"] == amount_in
    assert d.fields["amountOutMinimum"] == 1234
    # field i lives at hex offset 10 + 64 * i
    assert int(data[10 + 64 * 4: 10 + 64 * 5], 16) == amount_in


def test_v2_dynamic_path():
    m = by_name(V2_ROUTER, "swapExactTokensForTokens")
    head = [w(10**18), w(7), w(0xa0), w(RECIPIENT), w(1_700_000_000)]
    tail = [w(3), w(USDT), w(WBNB), w(TOKEN)]
    d = decode_call(m.selector + "".join(head + tail), m)
    assert d.ok
    assert d.fields["path"] == [USDT, WBNB, TOKEN]
    assert d.fields["to"] == RECIPIENT
    assert d.fields["deadline"] == 1_700_000_000


def test_short_call_data_fails_soft():
    m = by_name(V2_ROUTER, "swapExactTokensForTokens")
    d = decode_call(m.selector + w(10**18) + w(7), m)
    assert not d.ok
    assert d.fields["amountIn"] == 10**18
    assert set(d.missing) == {"path", "to", "deadline"}


def test_path_offset_pointing_outside_data_is_missing():
    m = by_name(V2_ROUTER, "swapExactTokensForTokens")
    head = [w(1), w(2), w(0xffff), w(RECIPIENT), w(3)]
    d = decode_call(m.selector + "".join(head), m)
    assert d.missing == ("path",)
    assert d.fields["to"] == RECIPIENT


def test_garbage_hex_does_not_raise():
    m = by_name(V2_ROUTER, "swapExactTokensForTokens")
    d = decode_call("0xzz", m)
    assert not d.ok and d.fields == {}


def _v3_path(*hops) -> bytes:
    out = bytes.fromhex(hops[0][2:])
    for fee, tok in zip(hops[1::2], hops[2::2]):
        out += fee.to_bytes(3, "big") + bytes.fromhex(tok[2:])
    return out


def test_decode_v3_path():
    path = _v3_path(USDT, 500, WBNB, 2500, TOKEN)
    tokens, fees = decode_v3_path(path)
    assert tokens == [USDT, WBNB, TOKEN]
    assert fees == [500, 2500]
    with pytest.raises(DecodeMismatch):
        decode_v3_path(path[:-1])


def test_exact_input_dynamic_struct():
    m = by_name(PANCAKE_V3_ROUTER, "exactInput")
    path = _v3_path(USDT, 100, TOKEN)
    padded = path.hex().ljust(128, "0")
    data = m.selector + w(0x20) + w(0x80) + w(RECIPIENT) + w(99) + w(1) + w(len(path)) + padded
    d = decode_call(data, m)
    assert d.ok, d.missing
    assert d.fields["path"] == path
    assert d.fields["amountIn"] == 99


def _exact_input_single_hex(amount: int) -> str:
    m = by_name(PANCAKE_V3_ROUTER, "exactInputSingle")
    return m.selector + "".join([w(USDT), w(TOKEN), w(100), w(RECIPIENT), w(amount), w(0), w(0)])


def test_multicall_inner_calls_decoded():
    inner = bytes.fromhex(_exact_input_single_hex(42)[2:])
    m = method_from_signature("multicall(uint256,bytes[])", ["deadline", "data"])
    padded = inner.hex().ljust(((len(inner) + 31) // 32) * 64, "0")
    data = m.selector + w(1_700_000_000) + w(0x40) + w(1) + w(0x20) + w(len(inner)) + padded
    found = find_method(DEFAULT_ROUTERS, PANCAKE_V3_ROUTER, data)
    assert found is not None
    router, method = found
    decoded = decode_call(data, method)
    assert decoded.ok
    assert decoded.fields["data"] == [inner]
    calls = decode_inner_calls(decoded, router)
    assert len(calls) == 1
    assert calls[0].method.name == "exactInputSingle"
    assert calls[0].fields["amountIn"] == 42


def test_proxy_router_uses_implementation_methods():
    router = find_router(DEFAULT_ROUTERS, V3_PROXY)
    assert router is not None and router.name.endswith("(Proxy)")
    found = find_method(DEFAULT_ROUTERS, V3_PROXY, _exact_input_single_hex(1))
    assert found is not None and found[1].name == "exactInputSingle"


def test_unknown_targets_and_selectors():
    assert find_method(DEFAULT_ROUTERS, "0x" + "00" * 20, _exact_input_single_hex(1)) is None
    assert find_method(DEFAULT_ROUTERS, V2_ROUTER, "0xdeadbeef") is None
    assert find_method(DEFAULT_ROUTERS, None, "0xdeadbeef") is None
    assert selector_of("0x12") is None


def test_describe_call_renders_symbols():
    text = describe_call(DEFAULT_ROUTERS, PANCAKE_V3_ROUTER, _exact_input_single_hex(42), DEFAULT_TOKENS)
    assert text is not None
    assert text.startswith("PancakeSwap V3 Router: exactInputSingle(")
    assert "tokenIn=USDT" in text
    assert "amountIn=42" in text
    assert call_tokens(DEFAULT_ROUTERS, PANCAKE_V3_ROUTER, _exact_input_single_hex(42)) == [USDT, TOKEN]


def test_method_from_signature_rejects_name_mismatch():
    with pytest.raises(ValueError):
        method_from_signature("transfer(address,uint256)", ["to"])


def test_odd_length_call_data_is_not_decoded():
    m = by_name(V2_ROUTER, "swapExactTokensForTokens")
    d = decode_call(m.selector + w(1) + w(2) + "0", m)
    assert not d.ok and d.fields == {}
    assert set(d.missing) == {f.name for f in m.fields}
