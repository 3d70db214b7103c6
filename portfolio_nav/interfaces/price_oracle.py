"""Price oracle protocol — single-token USD price lookups."""
from typing import Protocol

from ..config import ChainConfig


class PriceOracle(Protocol):
    """Abstract interface for fetching a token's market price.

    Returns None when the token has no market price.
    """

    async def get_token_price(self, address: str, chain: ChainConfig) -> float | None: ...
