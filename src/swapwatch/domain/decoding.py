from __future__ import annotations

from eth_utils import event_signature_to_log_topic, function_signature_to_4byte_selector

from .errors import MalformedData
from .value_types import Address, Topic0


def _topic(sig: str) -> Topic0:
    return Topic0("0x" + event_signature_to_log_topic(sig).hex())

def _selector(sig: str) -> str:
    return "0x" + function_signature_to_4byte_selector(sig).hex()


# Topic0 constants (lowercase, with "0x")
TRANSFER_T0   = _topic("Transfer(address,address,uint256)")
DEPOSIT_T0    = _topic("Deposit(address,uint256)")
WITHDRAWAL_T0 = _topic("Withdrawal(address,uint256)")
SWAP_V2_T0    = _topic("Swap(address,uint256,uint256,uint256,uint256,address)")

# topics each signature must carry (topic0 included)
REQUIRED_TOPICS: dict[str, int] = {
    TRANSFER_T0: 3,
    DEPOSIT_T0: 2,
    WITHDRAWAL_T0: 2,
    SWAP_V2_T0: 3,
}

SYMBOL_SELECTOR   = _selector("symbol()")
DECIMALS_SELECTOR = _selector("decimals()")

WORD = 32


# --------- hex helpers --------------------------------------------------------

def strip_0x(s: str) -> str:
    return s[2:] if s[:2].lower() == "0x" else s

def hex_to_bytes(s: str | None, *, strict: bool = False) -> bytes:
    """Odd-length hex is left-padded unless `strict` (call data must be whole bytes)."""
    if not s:
        return b""
    h = strip_0x(s)
    if len(h) % 2:
        if strict:
            raise MalformedData(f"odd-length hex: {s[:20]}...")
        h = "0" + h
    try:
        return bytes.fromhex(h)
    except ValueError as e:
        raise MalformedData(f"invalid hex: {s[:20]}...") from e

def hex_to_int(s: str | int | None) -> int:
    """Handles 0x..., decimal strings and native ints; None -> 0."""
    if s is None:
        return 0
    if isinstance(s, int):
        return s
    t = s.strip().lower()
    if not t or t == "0x":
        return 0
    try:
        return int(t, 16) if t.startswith("0x") else int(t)
    except ValueError as e:
        raise MalformedData(f"invalid integer: {s!r}") from e


# --------- 32B word slicing (fast, no eth_abi) --------------------------------

def word(b: bytes, i: int) -> bytes:
    o = i * WORD; return b[o:o + WORD]

def u256(w: bytes) -> int:
    return int.from_bytes(w, "big")

def addr_from_word(w: bytes) -> Address:
    return Address("0x" + w[-20:].hex())

def addr_from_topic(t: str) -> Address:
    """Indexed address topic -> lowercase 0x address (last 20 bytes)."""
    return Address("0x" + strip_0x(t)[-40:].lower())

def first_word_int(data_hex: str) -> int | None:
    """uint256 in the first data word; None when data is shorter than one word."""
    b = hex_to_bytes(data_hex)
    if len(b) < WORD:
        return None
    return u256(word(b, 0))


# --------- eth_call return values ---------------------------------------------

def decode_abi_string(data: bytes) -> str:
    """
    Decode a `string` return value. Falls back to a right-padded bytes32
    (pre-standard tokens return their symbol that way).
    """
    if len(data) == WORD:
        return data.rstrip(b"\x00").decode("utf-8", errors="replace").strip()
    if len(data) < 2 * WORD:
        raise MalformedData(f"string return too short ({len(data)} bytes)")
    off = u256(word(data, 0))
    if off + WORD > len(data):
        raise MalformedData("string offset out of range")
    n = u256(data[off:off + WORD])
    raw = data[off + WORD: off + WORD + n]
    if len(raw) != n:
        raise MalformedData("string length out of range")
    return raw.decode("utf-8", errors="replace").strip("\x00").strip()

def decode_abi_uint(data: bytes) -> int:
    if len(data) < WORD:
        raise MalformedData(f"uint return too short ({len(data)} bytes)")
    return u256(word(data, 0))
