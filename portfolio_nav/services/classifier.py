"""Spam filtering and price redirects for wallet holdings."""
from __future__ import annotations

import asyncio
import logging
from typing import Iterable

from ..config import ChainConfig, ClassifierConfig, PriceRedirectConfig
from ..interfaces.price_oracle import PriceOracle
from ..models import Holding

logger = logging.getLogger(__name__)


class TokenClassifier:
    """Flags scam airdrops and corrects known-bad market prices."""

    def __init__(
        self, config: ClassifierConfig, chains_by_id: dict[int, ChainConfig]
    ) -> None:
        self._spam_symbols = {
            chain_id: frozenset(s.upper() for s in symbols)
            for chain_id, symbols in config.spam_symbols.items()
        }
        self._patterns = config.spam_patterns
        self._chains = chains_by_id
        self._always: dict[tuple[int, str], PriceRedirectConfig] = {}
        self._fallback: dict[tuple[int, str], PriceRedirectConfig] = {}
        for redirect in config.price_redirects:
            table = self._always if redirect.mode == "always" else self._fallback
            table[(redirect.chain_id, redirect.address)] = redirect

    # ------------------------------------------------------------------
    # Spam
    # ------------------------------------------------------------------

    def is_spam(self, holding: Holding) -> bool:
        if holding.symbol.upper() in self._spam_symbols.get(holding.chain_id, ()):
            return True
        text = f"{holding.name or ''} {holding.symbol or ''}"
        return any(p.search(text) for p in self._patterns)

    def filter_spam(self, holdings: Iterable[Holding]) -> list[Holding]:
        """Drop spam holdings regardless of their value."""
        kept: list[Holding] = []
        removed = 0
        for holding in holdings:
            if self.is_spam(holding):
                removed += 1
                logger.info(
                    "Filtered spam: %s ($%.2f) on %s",
                    holding.symbol, holding.value or 0.0, holding.chain,
                )
            else:
                kept.append(holding)
        if removed:
            logger.info("Removed %d spam token(s)", removed)
        return kept

    # ------------------------------------------------------------------
    # Price redirects
    # ------------------------------------------------------------------

    async def _lookup(
        self, redirects: list[PriceRedirectConfig], oracle: PriceOracle
    ) -> dict[tuple[int, str], float]:
        """Fetch each distinct reference token's price once."""
        targets: list[tuple[int, str]] = []
        for r in redirects:
            key = (r.chain_id, r.lookup_address)
            if key not in targets and r.chain_id in self._chains:
                targets.append(key)

        results = await asyncio.gather(
            *(oracle.get_token_price(addr, self._chains[cid]) for cid, addr in targets),
            return_exceptions=True,
        )

        prices: dict[tuple[int, str], float] = {}
        for key, result in zip(targets, results):
            if isinstance(result, BaseException):
                logger.warning("Price redirect lookup for %s failed: %s", key[1], result)
            elif result is None:
                logger.warning("Price redirect lookup for %s returned no price", key[1])
            else:
                prices[key] = result
        return prices

    async def _redirect(
        self,
        holdings: list[Holding],
        oracle: PriceOracle,
        table: dict[tuple[int, str], PriceRedirectConfig],
        only_unpriced: bool,
    ) -> list[Holding]:
        matched = [
            table[(h.chain_id, h.address)]
            for h in holdings
            if (h.chain_id, h.address) in table and not (only_unpriced and h.price is not None)
        ]
        if not matched:
            return holdings

        prices = await self._lookup(matched, oracle)

        updated: list[Holding] = []
        for holding in holdings:
            redirect = table.get((holding.chain_id, holding.address))
            if redirect is None or (only_unpriced and holding.price is not None):
                updated.append(holding)
                continue
            price = prices.get((redirect.chain_id, redirect.lookup_address))
            if price is None:
                updated.append(holding)
                continue
            logger.info(
                "Price redirect: %s %s -> $%.4f (%s)",
                holding.symbol,
                f"${holding.price:.2f}" if holding.price is not None else "N/A",
                price,
                redirect.note,
            )
            updated.append(holding.with_price(price, "redirect"))
        return updated

    async def apply_price_redirects(
        self, holdings: list[Holding], oracle: PriceOracle
    ) -> list[Holding]:
        """Replace unreliable market prices with their reference token's price."""
        return await self._redirect(holdings, oracle, self._always, only_unpriced=False)

    async def apply_fallback_redirects(
        self, holdings: list[Holding], oracle: PriceOracle
    ) -> list[Holding]:
        """Price still-unpriced receipt tokens off their reference token."""
        return await self._redirect(holdings, oracle, self._fallback, only_unpriced=True)
