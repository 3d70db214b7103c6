"""Moralis Web3 Data API client — wallet balances, DeFi positions, token prices."""
from __future__ import annotations

import asyncio
import logging
import ssl
from typing import Any

import aiohttp
import certifi

from ...config import ChainConfig, ProviderConfig
from ...exceptions import ProviderError

logger = logging.getLogger(__name__)

# Upper bound on followed cursors per wallet/chain.
_MAX_PAGES = 20


class MoralisClient:
    """Explicitly started, shared HTTP client for the Moralis REST API.

    Construct once at the composition root, ``await start()`` once, share it
    across requests and ``await close()`` on shutdown (or use it as an async
    context manager).
    """

    def __init__(self, config: ProviderConfig) -> None:
        self.api_url = config.api_url.rstrip("/")
        self.api_key = config.api_key
        self.timeout = config.timeout
        self._session: aiohttp.ClientSession | None = None

    @property
    def started(self) -> bool:
        return self._session is not None

    async def start(self) -> None:
        """Open the HTTP session. Idempotent."""
        if self._session is not None:
            return
        if not self.api_key:
            raise RuntimeError("MORALIS_API_KEY is required to start the Moralis client")

        ssl_context = ssl.create_default_context(cafile=certifi.where())
        connector = aiohttp.TCPConnector(ssl=ssl_context)
        self._session = aiohttp.ClientSession(
            connector=connector,
            headers={"accept": "application/json", "X-API-Key": self.api_key},
            timeout=aiohttp.ClientTimeout(total=self.timeout),
        )
        logger.info("Moralis client started")

    async def close(self) -> None:
        if self._session is not None:
            await self._session.close()
            self._session = None

    async def __aenter__(self) -> MoralisClient:
        await self.start()
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()

    async def _get(self, path: str, params: dict[str, Any] | None = None) -> Any:
        if self._session is None:
            raise RuntimeError("MoralisClient.start() must be called before use")

        query = {k: v for k, v in (params or {}).items() if v is not None}
        url = f"{self.api_url}{path}"
        async with self._session.get(url, params=query) as response:
            if response.status != 200:
                body = await response.text()
                raise ProviderError(f"Moralis API {response.status}: {body[:200]}")
            return await response.json()

    # ------------------------------------------------------------------
    # Endpoints
    # ------------------------------------------------------------------

    async def get_wallet_tokens(
        self, address: str, chain: ChainConfig
    ) -> list[dict[str, Any]]:
        """All ERC20 + native balances with prices, following cursor pages."""
        tokens: list[dict[str, Any]] = []
        cursor: str | None = None

        for _ in range(_MAX_PAGES):
            data = await self._get(
                f"/wallets/{address}/tokens",
                {"chain": chain.provider_chain, "cursor": cursor},
            )
            if isinstance(data, list):
                tokens.extend(data)
                break
            tokens.extend(data.get("result") or [])
            cursor = data.get("cursor")
            if not cursor:
                break
        else:
            logger.warning(
                "Stopped after %d token pages for %s on %s", _MAX_PAGES, address, chain.name
            )

        logger.info("%s: fetched %d wallet tokens", chain.name, len(tokens))
        return tokens

    async def get_defi_positions(
        self, address: str, chain: ChainConfig
    ) -> list[dict[str, Any]]:
        """Protocol-level positions (supplied, staked, LP, rewards)."""
        data = await self._get(
            f"/wallets/{address}/defi/positions", {"chain": chain.provider_chain}
        )
        positions = data if isinstance(data, list) else data.get("result") or []
        logger.info("%s: fetched %d DeFi positions", chain.name, len(positions))
        return positions

    async def get_token_price(self, address: str, chain: ChainConfig) -> float | None:
        """Current USD price, or None when the token has no market price."""
        try:
            data = await self._get(
                f"/erc20/{address}/price", {"chain": chain.provider_chain}
            )
        except (ProviderError, aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.warning("No price for %s on %s: %s", address, chain.name, e)
            return None

        price = data.get("usdPrice") if isinstance(data, dict) else None
        try:
            price = float(price) if price is not None else None
        except (TypeError, ValueError):
            price = None
        if not price or price <= 0:
            return None
        return price
