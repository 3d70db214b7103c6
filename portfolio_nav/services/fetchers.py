"""Per-chain balance and position fetchers with isolated failures."""
from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass, replace
from typing import Iterable

from ..config import ChainConfig, ValuationConfig
from ..exceptions import InvalidAddressError
from ..interfaces.data_provider import DataProvider
from ..interfaces.price_oracle import PriceOracle
from ..models import DeFiPosition, DeFiToken, Holding, SourceError
from ..providers.moralis import parser
from .batching import batched_requests

logger = logging.getLogger(__name__)

_ADDRESS_RE = re.compile(r"0x[0-9a-fA-F]{40}")


@dataclass(frozen=True)
class BalanceFetchResult:
    holdings: tuple[Holding, ...] = ()
    errors: tuple[SourceError, ...] = ()


@dataclass(frozen=True)
class PositionFetchResult:
    positions: tuple[DeFiPosition, ...] = ()
    errors: tuple[SourceError, ...] = ()


def validate_address(address: str) -> str:
    """Return the lower-cased address or raise InvalidAddressError."""
    if not isinstance(address, str) or not _ADDRESS_RE.fullmatch(address):
        raise InvalidAddressError(
            f"Valid EVM address required (0x + 40 hex chars), got {address!r}"
        )
    return address.lower()


def _error_message(exc: BaseException) -> str:
    return str(exc) or exc.__class__.__name__


async def _chain_balances(
    provider: DataProvider, address: str, chain: ChainConfig
) -> list[Holding]:
    raw_tokens = await provider.get_wallet_tokens(address, chain)
    holdings: list[Holding] = []
    for raw in raw_tokens:
        holding = parser.normalize_wallet_token(raw, chain)
        if holding is not None:
            holdings.append(holding)
    return holdings


async def _chain_positions(
    provider: DataProvider, address: str, chain: ChainConfig
) -> list[DeFiPosition]:
    raw_positions = await provider.get_defi_positions(address, chain)
    return [parser.normalize_defi_position(raw, chain) for raw in raw_positions]


async def fetch_wallet_balances(
    provider: DataProvider, address: str, chains: Iterable[ChainConfig]
) -> BalanceFetchResult:
    """Fetch wallet balances on every chain concurrently."""
    address = validate_address(address)
    chains = list(chains)

    results = await asyncio.gather(
        *(_chain_balances(provider, address, chain) for chain in chains),
        return_exceptions=True,
    )

    holdings: list[Holding] = []
    errors: list[SourceError] = []
    for chain, result in zip(chains, results):
        if isinstance(result, BaseException):
            logger.error("Failed to fetch balances for %s: %s", chain.name, result)
            errors.append(
                SourceError(source="balances", chain=chain.name, error=_error_message(result))
            )
        else:
            holdings.extend(result)

    logger.info(
        "Fetched %d wallet tokens across %d chains (%d failed)",
        len(holdings), len(chains), len(errors),
    )
    return BalanceFetchResult(holdings=tuple(holdings), errors=tuple(errors))


async def fetch_defi_positions(
    provider: DataProvider,
    oracle: PriceOracle,
    address: str,
    chains: Iterable[ChainConfig],
    valuation: ValuationConfig | None = None,
) -> PositionFetchResult:
    """Fetch DeFi positions on every chain concurrently, then price gaps."""
    address = validate_address(address)
    chains = list(chains)
    valuation = valuation or ValuationConfig()

    results = await asyncio.gather(
        *(_chain_positions(provider, address, chain) for chain in chains),
        return_exceptions=True,
    )

    positions: list[DeFiPosition] = []
    errors: list[SourceError] = []
    for chain, result in zip(chains, results):
        if isinstance(result, BaseException):
            logger.error("DeFi positions failed for %s: %s", chain.name, result)
            errors.append(
                SourceError(source="defi", chain=chain.name, error=_error_message(result))
            )
        else:
            positions.extend(result)

    positions = await enrich_position_prices(
        positions, oracle, {c.chain_id: c for c in chains}, valuation
    )
    return PositionFetchResult(positions=tuple(positions), errors=tuple(errors))


async def enrich_position_prices(
    positions: list[DeFiPosition],
    oracle: PriceOracle,
    chains_by_id: dict[int, ChainConfig],
    valuation: ValuationConfig,
) -> list[DeFiPosition]:
    """Price constituent tokens the provider reported without a price.

    Lookups are de-duplicated per (chain, address) and issued in bounded
    batches; a failed lookup leaves its tokens unpriced.
    """
    wanted: list[tuple[int, str]] = []
    for pos in positions:
        if pos.chain_id not in chains_by_id:
            continue
        for token in pos.tokens:
            key = (pos.chain_id, token.address or "")
            if token.price is None and token.address and key not in wanted:
                wanted.append(key)

    if not wanted:
        return positions

    logger.info("Pricing %d DeFi tokens via price lookups", len(wanted))
    factories = [
        (lambda cid=cid, addr=addr: oracle.get_token_price(addr, chains_by_id[cid]))
        for cid, addr in wanted
    ]
    results = await batched_requests(
        factories, valuation.price_batch_size, valuation.price_batch_delay
    )

    prices: dict[tuple[int, str], float] = {}
    for key, result in zip(wanted, results):
        if isinstance(result, BaseException):
            logger.warning("Price lookup for %s failed: %s", key[1], result)
        elif result is not None:
            prices[key] = result

    if not prices:
        return positions

    enriched: list[DeFiPosition] = []
    for pos in positions:
        changed = False
        tokens: list[DeFiToken] = []
        for token in pos.tokens:
            price = prices.get((pos.chain_id, token.address or ""))
            if token.price is None and price is not None:
                token = replace(
                    token,
                    price=price,
                    value=token.balance_formatted * price,
                    price_source="defi-enrichment",
                )
                changed = True
            tokens.append(token)
        if changed:
            # Re-derive the total from the now-priced constituents.
            pos = replace(pos, tokens=tuple(tokens), reported_total_value=None)
        enriched.append(pos)
    return enriched
