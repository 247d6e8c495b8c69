# swapwatch/ports/cache.py
from __future__ import annotations

from typing import Protocol
from ..domain.models import TokenInfo


class MetadataCache(Protocol):
    """Port for the token metadata cache owned by the resolver."""

    def get(self, address: str) -> TokenInfo | None:
        """Return the cached entry for a lowercase address, or None."""

    def put(self, info: TokenInfo) -> None:
        """Store `info`; writes are idempotent (same address, same value)."""
