from __future__ import annotations
import logging
from typing import Any, Mapping, Sequence

from eth_utils import function_signature_to_4byte_selector

from .decoding import WORD, addr_from_word, hex_to_bytes, strip_0x, u256, word
from .errors import DecodeMismatch, MalformedData
from .models import DecodedCall, FieldSpec, KnownRouter, RouterMethod
from .value_types import Address, normalize_address

log = logging.getLogger(__name__)

DYNAMIC_TYPES = ("bytes", "string", "address[]", "uint256[]", "bytes[]")
V3_FEE_BYTES = 3
ADDR_BYTES = 20


# ──────────────────────────────
# Layout helpers (static tables)
# ──────────────────────────────

def _split_top_level(params: str) -> list[str]:
    out: list[str] = []
    depth = 0; cur = ""
    for ch in params:
        if ch == "," and depth == 0:
            out.append(cur); cur = ""; continue
        if ch == "(": depth += 1
        elif ch == ")": depth -= 1
        cur += ch
    if cur:
        out.append(cur)
    return [p.strip() for p in out if p.strip()]

def _is_dynamic(t: str) -> bool:
    return t in DYNAMIC_TYPES or t.endswith("[]")

def method_from_signature(signature: str, names: Sequence[str], display_name: str | None = None) -> RouterMethod:
    """
    Build a RouterMethod whose field layout follows the ABI head encoding of
    `signature`. A single struct argument is flattened: inline when it is fully
    static, behind one offset word (base=32) otherwise.
    """
    sig = signature.replace(" ", "")
    fn_name, _, rest = sig.partition("(")
    params = _split_top_level(rest[:-1])
    base = 0
    if len(params) == 1 and params[0].startswith("("):
        params = _split_top_level(params[0][1:-1])
        if any(_is_dynamic(p) for p in params):
            base = WORD
    if len(names) != len(params):
        raise ValueError(f"{signature}: {len(params)} params but {len(names)} names")
    fields = tuple(
        FieldSpec(name=n, type=t, offset=base + i * WORD, base=base)
        for i, (n, t) in enumerate(zip(names, params))
    )
    selector = "0x" + function_signature_to_4byte_selector(sig).hex()
    return RouterMethod(selector=selector, name=display_name or fn_name, fields=fields)


# ──────────────────────────────
# Decoder
# ──────────────────────────────

def selector_of(call_data: str | None) -> str | None:
    h = strip_0x(call_data or "")
    if len(h) < 8:
        return None
    return "0x" + h[:8].lower()

def _read_word(args: bytes, offset: int) -> bytes:
    w = args[offset:offset + WORD]
    if len(w) < WORD:
        raise DecodeMismatch(f"word at {offset} out of range ({len(args)} bytes)")
    return w

def _tail(args: bytes, spec: FieldSpec) -> tuple[int, int]:
    """(start of payload, length word) for a dynamic field."""
    ptr = spec.base + u256(_read_word(args, spec.offset))
    n = u256(_read_word(args, ptr))
    return ptr + WORD, n

def _decode_field(args: bytes, spec: FieldSpec) -> Any:
    t = spec.type
    if t == "address":
        return addr_from_word(_read_word(args, spec.offset))
    if t.startswith("uint"):
        return u256(_read_word(args, spec.offset))
    if t.startswith("int"):
        bits = int(t[3:] or 256)
        v = u256(_read_word(args, spec.offset)) & ((1 << bits) - 1)
        return v - (1 << bits) if v & (1 << (bits - 1)) else v
    if t == "bool":
        return u256(_read_word(args, spec.offset)) != 0
    if t == "bytes32":
        return "0x" + _read_word(args, spec.offset).hex()
    if t == "address[]":
        start, n = _tail(args, spec)
        if start + n * WORD > len(args):
            raise DecodeMismatch(f"{spec.name}: {n} items exceed call data")
        return [addr_from_word(word(args[start:], i)) for i in range(n)]
    if t == "bytes":
        start, n = _tail(args, spec)
        if start + n > len(args):
            raise DecodeMismatch(f"{spec.name}: {n} bytes exceed call data")
        return args[start:start + n]
    if t == "bytes[]":
        start, n = _tail(args, spec)
        if start + n * WORD > len(args):
            raise DecodeMismatch(f"{spec.name}: {n} items exceed call data")
        items: list[bytes] = []
        for i in range(n):
            # element offsets are relative to the first offset word
            item = FieldSpec(name=f"{spec.name}[{i}]", type="bytes", offset=start + i * WORD, base=start)
            p, m = _tail(args, item)
            if p + m > len(args):
                raise DecodeMismatch(f"{item.name}: {m} bytes exceed call data")
            items.append(args[p:p + m])
        return items
    raise DecodeMismatch(f"unsupported field type {t!r}")

def decode_call(call_data: str | bytes, method: RouterMethod) -> DecodedCall:
    """
    Extract every field of `method` from `call_data`. Never raises: fields that
    cannot be read (short or forged call data) are listed in `missing`.
    """
    try:
        raw = call_data if isinstance(call_data, bytes) else hex_to_bytes(call_data, strict=True)
    except MalformedData:
        return DecodedCall(method=method, fields={}, missing=tuple(f.name for f in method.fields))
    args = raw[4:]
    fields: dict[str, Any] = {}
    missing: list[str] = []
    for spec in method.fields:
        try:
            fields[spec.name] = _decode_field(args, spec)
        except DecodeMismatch as e:
            log.debug("decode %s.%s failed: %s", method.name, spec.name, e)
            missing.append(spec.name)
    return DecodedCall(method=method, fields=fields, missing=tuple(missing))

def decode_v3_path(path: bytes) -> tuple[list[Address], list[int]]:
    """Packed V3 path: token (20) | fee (3) | token (20) | ..."""
    step = ADDR_BYTES + V3_FEE_BYTES
    if len(path) < ADDR_BYTES or (len(path) - ADDR_BYTES) % step:
        raise DecodeMismatch(f"invalid v3 path length {len(path)}")
    tokens = [Address("0x" + path[:ADDR_BYTES].hex())]
    fees: list[int] = []
    o = ADDR_BYTES
    while o < len(path):
        fees.append(int.from_bytes(path[o:o + V3_FEE_BYTES], "big"))
        o += V3_FEE_BYTES
        tokens.append(Address("0x" + path[o:o + ADDR_BYTES].hex()))
        o += ADDR_BYTES
    return tokens, fees


# ──────────────────────────────
# Router lookup
# ──────────────────────────────

def find_router(routers: Mapping[str, KnownRouter], to: str | None) -> KnownRouter | None:
    """Router entry for `to`; proxies resolve to their implementation's methods."""
    if not to:
        return None
    router = routers.get(normalize_address(to))
    if router is None:
        return None
    if not router.methods and router.implementation:
        impl = routers.get(router.implementation)
        if impl is not None:
            return KnownRouter(address=router.address, name=router.name, type=router.type,
                               methods=impl.methods, implementation=router.implementation)
    return router

def find_method(routers: Mapping[str, KnownRouter], to: str | None, call_data: str | None) -> tuple[KnownRouter, RouterMethod] | None:
    router = find_router(routers, to)
    sel = selector_of(call_data)
    if router is None or sel is None:
        return None
    method = router.methods.get(sel)
    if method is None:
        return None
    return router, method

def decode_inner_calls(decoded: DecodedCall, router: KnownRouter, field: str = "data") -> list[DecodedCall]:
    """Decode each element of a multicall `bytes[]` field against the router's own methods."""
    out: list[DecodedCall] = []
    for inner in decoded.fields.get(field) or []:
        sel = "0x" + inner[:4].hex() if len(inner) >= 4 else None
        method = router.methods.get(sel) if sel else None
        if method is None:
            continue
        out.append(decode_call(inner, method))
    return out
