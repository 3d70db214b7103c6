"""Valuation orchestration — wires fetchers, classifier, merger, NAV and aggregation."""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any

from ..chains.evm import EvmClient
from ..config import AppConfig
from ..interfaces.chain import ContractReader
from ..interfaces.data_provider import DataProvider
from ..interfaces.price_oracle import PriceOracle
from ..models import DeFiPosition, Portfolio, ProtocolSummary, SourceError
from ..providers.moralis import MoralisClient
from .aggregator import build_portfolio
from .classifier import TokenClassifier
from .fetchers import fetch_defi_positions, fetch_wallet_balances, validate_address
from .merger import (
    defi_positions_to_holdings,
    merge_holdings,
    summarize_positions,
    tag_protocol_tokens,
)
from .nav import NavResolver

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DeFiSummary:
    address: str
    positions: tuple[DeFiPosition, ...]
    protocols: tuple[ProtocolSummary, ...]
    errors: tuple[SourceError, ...] = ()

    @property
    def total_value(self) -> float:
        return sum(p.total_value for p in self.positions)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "address": self.address,
            "totalUsdValue": self.total_value,
            "positionCount": len(self.positions),
            "protocols": [p.to_dict() for p in self.protocols],
            "positions": [p.to_dict() for p in self.positions],
        }
        if self.errors:
            data["errors"] = [e.to_dict() for e in self.errors]
        return data


class PortfolioValuator:
    """Composition root: builds collaborators from AppConfig and values wallets.

    Every collaborator can be injected; by default a single MoralisClient
    serves as both data provider and price oracle, and one EvmClient is
    built per chain that has RPC endpoints.
    """

    def __init__(
        self,
        config: AppConfig,
        provider: DataProvider | None = None,
        oracle: PriceOracle | None = None,
        readers: dict[int, ContractReader] | None = None,
    ) -> None:
        self._config = config
        self._chains = list(config.chains.values())
        self._chains_by_id = {c.chain_id: c for c in self._chains}

        self._client: MoralisClient | None = None
        if provider is None or oracle is None:
            self._client = MoralisClient(config.provider)
        self._provider: DataProvider = provider or self._client
        self._oracle: PriceOracle = oracle or self._client

        if readers is None:
            readers = {
                c.chain_id: EvmClient(c) for c in self._chains if c.rpc_endpoints
            }
        self._readers = readers

        self._classifier = TokenClassifier(config.classifier, self._chains_by_id)
        self._nav = NavResolver(
            config.composite_tokens,
            self._readers,
            self._oracle,
            self._chains_by_id,
            config.valuation,
        )

    async def start(self) -> None:
        """One-time provider initialisation."""
        if self._client is not None:
            await self._client.start()

    async def close(self) -> None:
        if self._client is not None:
            await self._client.close()

    async def __aenter__(self) -> PortfolioValuator:
        await self.start()
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------------

    async def value_portfolio(self, address: str) -> Portfolio:
        """Value one wallet across all configured chains.

        Only a malformed address raises; every other failure is collected
        into ``Portfolio.errors`` alongside the best-effort result.
        """
        address = validate_address(address)
        valuation = self._config.valuation
        logger.info("Valuing %s across %d chains", address, len(self._chains))

        balances, positions = await asyncio.gather(
            fetch_wallet_balances(self._provider, address, self._chains),
            fetch_defi_positions(
                self._provider, self._oracle, address, self._chains, valuation
            ),
        )
        errors: list[SourceError] = [*balances.errors, *positions.errors]

        wallet = self._classifier.filter_spam(balances.holdings)
        wallet = await self._classifier.apply_price_redirects(wallet, self._oracle)
        wallet = tag_protocol_tokens(
            wallet, self._config.protocol_tokens, positions.positions
        )

        defi = defi_positions_to_holdings(positions.positions, valuation.dust_threshold_usd)
        merged = merge_holdings(wallet, defi)

        holdings, nav_errors = await self._nav.apply(merged.holdings, overrides={})
        errors.extend(nav_errors)

        holdings = await self._classifier.apply_fallback_redirects(holdings, self._oracle)

        return build_portfolio(address, holdings, errors, valuation.dust_threshold_usd)

    async def defi_summary(self, address: str) -> DeFiSummary:
        """DeFi positions only, grouped by protocol."""
        address = validate_address(address)
        result = await fetch_defi_positions(
            self._provider, self._oracle, address, self._chains, self._config.valuation
        )
        return DeFiSummary(
            address=address,
            positions=result.positions,
            protocols=tuple(summarize_positions(result.positions)),
            errors=result.errors,
        )
