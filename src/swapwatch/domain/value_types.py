from __future__ import annotations
from enum import Enum
from typing import NewType, Literal

Address = NewType("Address", str)   # 0x-prefixed, lowercase
Topic0  = NewType("Topic0", str)    # 66-char 0x-hash
TxHash  = NewType("TxHash", str)    # 0x-prefixed, lowercase
LegKind = Literal["native", "token"]
Direction = Literal["in", "out"]
StreamMode = Literal["poll", "push"]
WatchMode = Literal["watched", "all"]


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    LIVE = "live"
    DEGRADED = "degraded"
    RECONNECTING = "reconnecting"
    FATAL_FAILURE = "fatal_failure"


def normalize_address(addr: str) -> Address:
    s = str(addr).strip().lower()
    if not s.startswith("0x"):
        s = "0x" + s
    return Address(s)
