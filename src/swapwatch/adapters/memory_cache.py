from __future__ import annotations

from ..domain.models import TokenInfo
from ..domain.value_types import Address, normalize_address
from ..ports.cache import MetadataCache


class InMemoryMetadataCache(MetadataCache):
    def __init__(self) -> None:
        self._items: dict[Address, TokenInfo] = {}

    def get(self, address: str) -> TokenInfo | None:
        return self._items.get(normalize_address(address))

    def put(self, info: TokenInfo) -> None:
        self._items.setdefault(normalize_address(info.address), info)

    def __len__(self) -> int:
        return len(self._items)
