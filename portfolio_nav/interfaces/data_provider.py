"""Data provider protocol — raw per-chain wallet and DeFi reports."""
from typing import Any, Protocol

from ..config import ChainConfig


class DataProvider(Protocol):
    """Abstract interface over a multi-chain wallet indexer.

    Responses are untyped provider payloads; normalisation happens in the
    fetchers.
    """

    async def get_wallet_tokens(
        self, address: str, chain: ChainConfig
    ) -> list[dict[str, Any]]: ...

    async def get_defi_positions(
        self, address: str, chain: ChainConfig
    ) -> list[dict[str, Any]]: ...
