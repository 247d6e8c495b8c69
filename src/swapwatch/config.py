from __future__ import annotations
import json, os
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Iterable, Mapping

from dotenv import load_dotenv

from .domain.calldata import method_from_signature
from .domain.errors import ConfigError
from .domain.models import KnownRouter, RouterMethod, TokenInfo
from .domain.value_types import Address, StreamMode, WatchMode, normalize_address


@dataclass(slots=True, frozen=True)
class Endpoint:
    http_url: str
    ws_url: str | None = None

    @property
    def name(self) -> str:
        return self.http_url.split("//", 1)[-1].split("/", 1)[0]


# ──────────────────────────────
# BSC defaults
# ──────────────────────────────

WBNB = Address("0xbb4cdb9cbd36b01bd1cbaebf2de08d9173bc095c")

DEFAULT_ENDPOINTS: tuple[Endpoint, ...] = (
    Endpoint("https://bsc-dataseed1.binance.org", "wss://bsc.publicnode.com"),
    Endpoint("https://bsc-dataseed2.binance.org", "wss://bsc-mainnet.publicnode.com"),
    Endpoint("https://bsc-dataseed3.binance.org"),
    Endpoint("https://bsc-dataseed4.binance.org"),
)

def _tok(addr: str, symbol: str, decimals: int = 18) -> tuple[Address, TokenInfo]:
    a = normalize_address(addr)
    return a, TokenInfo(address=a, symbol=symbol, decimals=decimals)

DEFAULT_TOKENS: dict[Address, TokenInfo] = dict([
    _tok(WBNB, "WBNB"),
    _tok("0x55d398326f99059ff775485246999027b3197955", "USDT"),
    _tok("0xe9e7cea3dedca5984780bafc599bd69add087d56", "BUSD"),
    _tok("0x8ac76a51cc950d9822d68b83fe1ad97b32cd580d", "USDC"),
    _tok("0x0e09fabb73bd3ade0a17ecc321fd13a19e81ce82", "CAKE"),
    _tok("0x2170ed0880ac9a755fd29b2688956bd959f933f8", "ETH"),
    _tok("0x7130d2a12b9bcbfae4f2634d864a1ee1ce3ead9c", "BTCB"),
])

_V2_IN = ["amountIn", "amountOutMin", "path", "to", "deadline"]
_V2_OUT = ["amountOut", "amountInMax", "path", "to", "deadline"]
_V3_SINGLE_IN = ["tokenIn", "tokenOut", "fee", "recipient", "amountIn", "amountOutMinimum", "sqrtPriceLimitX96"]
_V3_SINGLE_OUT = ["tokenIn", "tokenOut", "fee", "recipient", "amountOut", "amountInMaximum", "sqrtPriceLimitX96"]
_V3_SINGLE = "((address,address,uint24,address,uint256,uint256,uint160))"
_V3_PATH = "((bytes,address,uint256,uint256))"

PANCAKE_V2_METHODS: tuple[tuple[str, list[str]], ...] = (
    ("swapExactETHForTokens(uint256,address[],address,uint256)", ["amountOutMin", "path", "to", "deadline"]),
    ("swapExactETHForTokensSupportingFeeOnTransferTokens(uint256,address[],address,uint256)", ["amountOutMin", "path", "to", "deadline"]),
    ("swapETHForExactTokens(uint256,address[],address,uint256)", ["amountOut", "path", "to", "deadline"]),
    ("swapExactTokensForTokens(uint256,uint256,address[],address,uint256)", _V2_IN),
    ("swapExactTokensForTokensSupportingFeeOnTransferTokens(uint256,uint256,address[],address,uint256)", _V2_IN),
    ("swapExactTokensForETH(uint256,uint256,address[],address,uint256)", _V2_IN),
    ("swapExactTokensForETHSupportingFeeOnTransferTokens(uint256,uint256,address[],address,uint256)", _V2_IN),
    ("swapTokensForExactETH(uint256,uint256,address[],address,uint256)", _V2_OUT),
    ("swapTokensForExactTokens(uint256,uint256,address[],address,uint256)", _V2_OUT),
)

PANCAKE_V3_METHODS: tuple[tuple[str, list[str]], ...] = (
    ("exactInputSingle" + _V3_SINGLE, _V3_SINGLE_IN),
    ("exactOutputSingle" + _V3_SINGLE, _V3_SINGLE_OUT),
    ("exactInput" + _V3_PATH, ["path", "recipient", "amountIn", "amountOutMinimum"]),
    ("exactOutput" + _V3_PATH, ["path", "recipient", "amountOut", "amountInMaximum"]),
    ("swapExactTokensForTokens(uint256,uint256,address[],address)", ["amountIn", "amountOutMin", "path", "to"]),
    ("swapTokensForExactTokens(uint256,uint256,address[],address)", ["amountOut", "amountInMax", "path", "to"]),
    ("multicall(uint256,bytes[])", ["deadline", "data"]),
    ("multicall(bytes32,bytes[])", ["previousBlockhash", "data"]),
    ("multicall(bytes[])", ["data"]),
)

def build_methods(specs: Iterable[tuple[str, list[str]]]) -> dict[str, RouterMethod]:
    out: dict[str, RouterMethod] = {}
    for sig, names in specs:
        m = method_from_signature(sig, names)
        out[m.selector] = m
    return out

def _router(addr: str, name: str, type_: str, methods: Mapping[str, RouterMethod] | None = None,
            implementation: str | None = None) -> tuple[Address, KnownRouter]:
    a = normalize_address(addr)
    impl = normalize_address(implementation) if implementation else None
    return a, KnownRouter(address=a, name=name, type=type_, methods=dict(methods or {}), implementation=impl)

PANCAKE_V3_ROUTER = Address("0x13f4ea83d0bd40e75c8222255bc855a974568dd4")

DEFAULT_ROUTERS: dict[Address, KnownRouter] = dict([
    _router("0x10ed43c718714eb63d5aa57b78b54704e256024e", "PancakeSwap V2 Router", "DEX", build_methods(PANCAKE_V2_METHODS)),
    _router(PANCAKE_V3_ROUTER, "PancakeSwap V3 Router", "DEX_V3", build_methods(PANCAKE_V3_METHODS)),
    _router("0x75ff870a864b59f03ff3e67a65ef44dea64f0caf", "PancakeSwap V3 Router (Proxy)", "DEX_V3_PROXY",
            implementation=PANCAKE_V3_ROUTER),
])


# ──────────────────────────────
# Settings
# ──────────────────────────────

@dataclass(slots=True, frozen=True)
class Settings:
    endpoints: tuple[Endpoint, ...] = DEFAULT_ENDPOINTS
    stream_mode: StreamMode = "poll"
    watch_mode: WatchMode = "watched"
    watched: Mapping[str, str] = field(default_factory=dict)      # address -> label

    poll_interval_s: float = 15.0
    max_batch_blocks: int = 5
    start_block: int | None = None
    idle_timeout_s: float = 30.0
    probe_timeout_s: float = 10.0
    max_reconnect_attempts: int = 3
    backoff_base_s: float = 1.0
    backoff_cap_s: float = 30.0
    rate_limit_cooldown_s: float = 5.0
    rpc_timeout_s: float = 20.0
    metadata_timeout_s: float = 5.0
    max_concurrent_handlers: int = 16
    status_interval_s: float = 30.0
    report_transfers: bool = True

    native_symbol: str = "BNB"
    wrapped_native: Address | None = WBNB
    explorer_url: str = "https://bscscan.com"
    known_tokens: Mapping[Address, TokenInfo] = field(default_factory=lambda: dict(DEFAULT_TOKENS))
    known_routers: Mapping[Address, KnownRouter] = field(default_factory=lambda: dict(DEFAULT_ROUTERS))

    telegram_bot_token: str | None = None
    telegram_chat_id: str | None = None

    @property
    def telegram_enabled(self) -> bool:
        return bool(self.telegram_bot_token and self.telegram_chat_id)

    def stream_endpoints(self) -> tuple[Endpoint, ...]:
        """Endpoints usable in the configured stream mode (push needs a websocket URL)."""
        if self.stream_mode == "push":
            return tuple(e for e in self.endpoints if e.ws_url)
        return self.endpoints


_SCALARS = {
    f.name for f in fields(Settings)
    if f.name not in ("endpoints", "watched", "known_tokens", "known_routers")
}
_POSITIVE = ("poll_interval_s", "max_batch_blocks", "idle_timeout_s", "probe_timeout_s",
             "max_reconnect_attempts", "rpc_timeout_s", "metadata_timeout_s",
             "max_concurrent_handlers", "status_interval_s")


def _split_urls(value: str | None) -> list[str]:
    return [u.strip() for u in (value or "").split(",") if u.strip()]

def endpoints_from(http_urls: Iterable[str], ws_urls: Iterable[str] = ()) -> tuple[Endpoint, ...]:
    https, wss = list(http_urls), list(ws_urls)
    if not https:
        raise ConfigError("at least one RPC URL is required")
    wss += [None] * (len(https) - len(wss))
    return tuple(Endpoint(h, w) for h, w in zip(https, wss))

def _watched(value: Any) -> dict[str, str]:
    if isinstance(value, Mapping):
        return {normalize_address(a): str(l or "") for a, l in value.items()}
    if isinstance(value, (list, tuple, set)):
        return {normalize_address(a): "" for a in value}
    raise ConfigError(f"watched must be a list or an address->label mapping, got {type(value).__name__}")

def _tokens(value: Mapping[str, Any]) -> dict[Address, TokenInfo]:
    out: dict[Address, TokenInfo] = {}
    for addr, t in value.items():
        a = normalize_address(addr)
        try:
            out[a] = TokenInfo(address=a, symbol=str(t["symbol"]), decimals=int(t.get("decimals", 18)))
        except (KeyError, TypeError, ValueError) as e:
            raise ConfigError(f"token {addr}: {e}") from e
    return out

def _routers(value: Mapping[str, Any]) -> dict[Address, KnownRouter]:
    out: dict[Address, KnownRouter] = {}
    for addr, r in value.items():
        try:
            specs = [(m["signature"], list(m["names"])) for m in r.get("methods", ())]
            methods = build_methods(specs)
            a, router = _router(addr, str(r["name"]), str(r.get("type", "DEX")), methods, r.get("implementation"))
        except (KeyError, TypeError, ValueError) as e:
            raise ConfigError(f"router {addr}: {e}") from e
        out[a] = router
    return out


def _from_file(path: str | Path) -> dict[str, Any]:
    p = Path(path)
    try:
        raw = json.loads(p.read_text(encoding="utf-8"))
    except FileNotFoundError as e:
        raise ConfigError(f"config file not found: {p}") from e
    except json.JSONDecodeError as e:
        raise ConfigError(f"{p}: invalid JSON ({e})") from e
    if not isinstance(raw, dict):
        raise ConfigError(f"{p}: top level must be an object")
    return raw

def _from_env() -> dict[str, Any]:
    load_dotenv()
    out: dict[str, Any] = {}
    if os.environ.get("SWAPWATCH_RPC_URLS"):
        out["rpc_urls"] = _split_urls(os.environ["SWAPWATCH_RPC_URLS"])
    if os.environ.get("SWAPWATCH_WS_URLS"):
        out["ws_urls"] = _split_urls(os.environ["SWAPWATCH_WS_URLS"])
    if os.environ.get("TELEGRAM_BOT_TOKEN"):
        out["telegram_bot_token"] = os.environ["TELEGRAM_BOT_TOKEN"]
    if os.environ.get("TELEGRAM_CHAT_ID"):
        out["telegram_chat_id"] = os.environ["TELEGRAM_CHAT_ID"]
    return out

def _apply(base: Settings, raw: Mapping[str, Any]) -> Settings:
    changes: dict[str, Any] = {}
    rpc_urls, ws_urls = raw.get("rpc_urls"), raw.get("ws_urls")
    if rpc_urls:
        changes["endpoints"] = endpoints_from(rpc_urls, ws_urls or ())
    elif ws_urls:
        changes["endpoints"] = endpoints_from([e.http_url for e in base.endpoints], ws_urls)
    if raw.get("watched") is not None:
        changes["watched"] = {**base.watched, **_watched(raw["watched"])}
    if raw.get("tokens"):
        changes["known_tokens"] = {**base.known_tokens, **_tokens(raw["tokens"])}
    if raw.get("routers"):
        changes["known_routers"] = {**base.known_routers, **_routers(raw["routers"])}
    telegram = raw.get("telegram")
    if isinstance(telegram, Mapping):
        changes["telegram_bot_token"] = telegram.get("bot_token") or base.telegram_bot_token
        changes["telegram_chat_id"] = telegram.get("chat_id") or base.telegram_chat_id
    for k, v in raw.items():
        if k in _SCALARS and v is not None:
            changes[k] = normalize_address(v) if k == "wrapped_native" else v
    unknown = set(raw) - _SCALARS - {"rpc_urls", "ws_urls", "watched", "tokens", "routers", "telegram"}
    if unknown:
        raise ConfigError(f"unknown config keys: {', '.join(sorted(unknown))}")
    return replace(base, **changes)

def validate(s: Settings) -> Settings:
    if s.stream_mode not in ("poll", "push"):
        raise ConfigError(f"stream_mode must be 'poll' or 'push', got {s.stream_mode!r}")
    if s.watch_mode not in ("watched", "all"):
        raise ConfigError(f"watch_mode must be 'watched' or 'all', got {s.watch_mode!r}")
    for name in _POSITIVE:
        v = getattr(s, name)
        if not isinstance(v, (int, float)) or isinstance(v, bool) or v <= 0:
            raise ConfigError(f"{name} must be a positive number, got {v!r}")
    if s.backoff_base_s < 0 or s.backoff_cap_s < s.backoff_base_s or s.rate_limit_cooldown_s < 0:
        raise ConfigError("backoff/cooldown values must be non-negative and cap >= base")
    if s.start_block is not None and s.start_block < 0:
        raise ConfigError("start_block must be >= 0")
    if not s.endpoints:
        raise ConfigError("no RPC endpoints configured")
    if s.stream_mode == "push" and not s.stream_endpoints():
        raise ConfigError("push mode needs at least one websocket URL (SWAPWATCH_WS_URLS or --ws)")
    if s.watch_mode == "watched" and not s.watched:
        raise ConfigError("watched mode needs at least one watched address (or use watch_mode 'all')")
    return s


def load_settings(path: str | Path | None = None, *, use_env: bool = True, **overrides: Any) -> Settings:
    """
    Defaults <- JSON config file <- environment / .env <- explicit overrides.
    Raises ConfigError on anything invalid.
    """
    s = Settings()
    if path is not None:
        s = _apply(s, _from_file(path))
    if use_env:
        s = _apply(s, _from_env())
    s = _apply(s, {k: v for k, v in overrides.items() if v is not None})
    return validate(s)
