"""NAV resolver — prices registered composite tokens from their on-chain baskets."""
from __future__ import annotations

import asyncio
import logging
from typing import Iterable, Sequence

from ..config import ChainConfig, CompositeTokenConfig, ValuationConfig
from ..exceptions import CircularBasketError, ContractCallError
from ..interfaces.chain import ContractReader
from ..interfaces.price_oracle import PriceOracle
from ..models import BasketQuote, BasketToken, Holding, PriceOverrideMap, SourceError
from ..registry import (
    BASKET_DIRECT,
    BASKET_INDIRECT,
    CompositeKey,
    composite_key,
    order_composites,
    with_dependencies,
)

logger = logging.getLogger(__name__)

ROUND_FLOOR = 0
FIX_ONE = 10**18

DEFAULT_DECIMALS = 18
UNKNOWN_SYMBOL = "UNKNOWN"

BASKET_STATUS = {0: "SOUND", 1: "IFFY", 2: "DISABLED"}
DIRECT_STATUS = "DIRECT"


class NavResolver:
    """Resolves per-unit NAV for composite tokens, dependencies first.

    The override map is request-scoped: callers pass a fresh dict per
    valuation and every accepted NAV is written to it before the next token
    is resolved.
    """

    def __init__(
        self,
        composites: Iterable[CompositeTokenConfig],
        readers: dict[int, ContractReader],
        oracle: PriceOracle,
        chains_by_id: dict[int, ChainConfig],
        valuation: ValuationConfig | None = None,
    ) -> None:
        self._ordered = order_composites(list(composites))
        self._by_key = {composite_key(t.chain_id, t.address): t for t in self._ordered}
        self._readers = readers
        self._oracle = oracle
        self._chains = chains_by_id
        self._valuation = valuation or ValuationConfig()

    @property
    def composites(self) -> list[CompositeTokenConfig]:
        return list(self._ordered)

    def is_composite(self, chain_id: int, address: str) -> bool:
        return composite_key(chain_id, address) in self._by_key

    def _reader(self, chain_id: int) -> ContractReader:
        reader = self._readers.get(chain_id)
        if reader is None:
            raise ContractCallError(f"No RPC endpoint configured for chain {chain_id}")
        return reader

    # ------------------------------------------------------------------
    # Basket pricing
    # ------------------------------------------------------------------

    async def _underlying_metadata(
        self, reader: ContractReader, address: str
    ) -> tuple[str, int]:
        symbol_res, decimals_res = await asyncio.gather(
            reader.call_function(address, "symbol()", returns=("string",)),
            reader.call_function(address, "decimals()", returns=("uint8",)),
            return_exceptions=True,
        )
        if isinstance(symbol_res, BaseException) or isinstance(decimals_res, BaseException):
            logger.debug("Metadata read failed for %s, using defaults", address)
            return UNKNOWN_SYMBOL, DEFAULT_DECIMALS
        return str(symbol_res[0]), int(decimals_res[0])

    async def _price_basket(
        self,
        token: CompositeTokenConfig,
        assets: Sequence[str],
        amounts: Sequence[int],
        status: str,
        overrides: PriceOverrideMap,
    ) -> BasketQuote | None:
        if not assets:
            logger.warning("Empty basket for %s (%s)", token.symbol, token.address)
            return None

        reader = self._reader(token.chain_id)
        chain = self._chains.get(token.chain_id)
        delay = self._valuation.basket_call_delay

        basket: list[BasketToken] = []
        nav = 0.0
        for i, (asset, raw_amount) in enumerate(zip(assets, amounts)):
            address = str(asset).lower()
            symbol, decimals = await self._underlying_metadata(reader, address)
            quantity = int(raw_amount) / (10**decimals)

            price = overrides.get(address)
            if price is not None:
                logger.info("  %s: using override price $%.4f", symbol, price)
            elif chain is not None:
                price = await self._oracle.get_token_price(address, chain)
                if i < len(assets) - 1 and delay > 0:
                    await asyncio.sleep(delay)

            value = quantity * price if price is not None else None
            if value is None:
                logger.warning(
                    "  No price for %s (%s); NAV may be incomplete", symbol, address
                )
            else:
                nav += value
            basket.append(
                BasketToken(
                    address=address,
                    symbol=symbol,
                    decimals=decimals,
                    quantity_per_unit=quantity,
                    price=price,
                    value=value,
                )
            )

        if nav <= 0:
            logger.warning("NAV is $0 for %s (%s)", token.symbol, token.address)
            return None

        priced = sum(1 for b in basket if b.value is not None)
        logger.info(
            "%s NAV = $%.4f (%d/%d priced, basket %s)",
            token.symbol, nav, priced, len(basket), status,
        )
        return BasketQuote(
            address=token.address.lower(),
            chain_id=token.chain_id,
            nav_per_unit=nav,
            basket=tuple(basket),
            all_underlying_priced=priced == len(basket),
            basket_status=status,
            priced_count=priced,
            total_underlying=len(basket),
        )

    # ------------------------------------------------------------------
    # Strategies
    # ------------------------------------------------------------------

    async def resolve_direct(
        self, token: CompositeTokenConfig, overrides: PriceOverrideMap
    ) -> BasketQuote | None:
        """Quote one unit straight from the token's ``toAssets`` view."""
        reader = self._reader(token.chain_id)
        (decimals,) = await reader.call_function(token.address, "decimals()", returns=("uint8",))
        assets, amounts = await reader.call_function(
            token.address,
            "toAssets(uint256,uint8)",
            (10 ** int(decimals), ROUND_FLOOR),
            ("address[]", "uint256[]"),
        )
        logger.info("%s direct basket has %d underlying tokens", token.symbol, len(assets))
        return await self._price_basket(token, assets, amounts, DIRECT_STATUS, overrides)

    async def resolve_indirect(
        self, token: CompositeTokenConfig, overrides: PriceOverrideMap
    ) -> BasketQuote | None:
        """Quote one unit via main() -> basketHandler(); a DISABLED basket is unpriceable."""
        reader = self._reader(token.chain_id)
        (main,) = await reader.call_function(token.address, "main()", returns=("address",))
        (handler,) = await reader.call_function(main, "basketHandler()", returns=("address",))
        (raw_status,) = await reader.call_function(handler, "status()", returns=("uint8",))

        status = BASKET_STATUS.get(int(raw_status), "UNKNOWN")
        if status == "DISABLED":
            logger.warning("Basket is DISABLED for %s (%s)", token.symbol, token.address)
            return None

        assets, amounts = await reader.call_function(
            handler,
            "quote(uint192,uint8)",
            (FIX_ONE, ROUND_FLOOR),
            ("address[]", "uint256[]"),
        )
        logger.info("%s indirect basket has %d underlying tokens", token.symbol, len(assets))
        return await self._price_basket(token, assets, amounts, status, overrides)

    async def resolve(
        self, token: CompositeTokenConfig, overrides: PriceOverrideMap
    ) -> BasketQuote | None:
        """Resolve by declared type; undeclared tokens try direct, then indirect."""
        if token.type == BASKET_DIRECT:
            return await self.resolve_direct(token, overrides)
        if token.type == BASKET_INDIRECT:
            return await self.resolve_indirect(token, overrides)
        try:
            return await self.resolve_direct(token, overrides)
        except ContractCallError as e:
            logger.debug("Direct quote failed for %s (%s), trying indirect", token.symbol, e)
            return await self.resolve_indirect(token, overrides)

    # ------------------------------------------------------------------
    # Ordered resolution
    # ------------------------------------------------------------------

    def _composite_edges(
        self, token: CompositeTokenConfig, quote: BasketQuote, overrides: PriceOverrideMap
    ) -> set[CompositeKey]:
        edges: set[CompositeKey] = set()
        for underlying in quote.basket:
            key = composite_key(token.chain_id, underlying.address)
            if key not in self._by_key:
                continue
            edges.add(key)
            if underlying.address not in overrides:
                logger.warning(
                    "%s basket contains composite %s which was not resolved first; "
                    "it was resolved out of order",
                    token.symbol, self._by_key[key].symbol,
                )
        return edges

    @staticmethod
    def _find_cycle(
        start: CompositeKey, edges: dict[CompositeKey, set[CompositeKey]]
    ) -> list[CompositeKey] | None:
        """Return the keys on a path from ``start`` back to itself, if any."""
        stack: list[tuple[CompositeKey, list[CompositeKey]]] = [(start, [start])]
        seen: set[CompositeKey] = set()
        while stack:
            node, path = stack.pop()
            for nxt in edges.get(node, ()):
                if nxt == start:
                    return path
                if nxt not in seen:
                    seen.add(nxt)
                    stack.append((nxt, path + [nxt]))
        return None

    async def resolve_in_order(
        self,
        tokens: Sequence[CompositeTokenConfig],
        overrides: PriceOverrideMap,
    ) -> tuple[dict[CompositeKey, BasketQuote], list[SourceError]]:
        """Resolve ``tokens`` strictly one after another, in the given order.

        Each accepted NAV is recorded in ``overrides`` immediately. A failure
        for one token is logged and collected; the remaining tokens still run.
        """
        quotes: dict[CompositeKey, BasketQuote] = {}
        errors: list[SourceError] = []
        edges: dict[CompositeKey, set[CompositeKey]] = {}
        # composites whose accepted NAV fed each quote via ``overrides``
        consumed: dict[CompositeKey, set[CompositeKey]] = {}

        for token in tokens:
            key = composite_key(token.chain_id, token.address)
            try:
                quote = await self.resolve(token, overrides)
                if quote is None:
                    logger.info("%s could not be priced from its basket", token.symbol)
                    continue

                edges[key] = self._composite_edges(token, quote, overrides)
                cycle = self._find_cycle(key, edges)
                if cycle is not None:
                    errors.extend(self._discard(set(cycle), quotes, overrides, consumed))
                    symbols = " -> ".join(self._by_key[m].symbol for m in cycle + [key])
                    raise CircularBasketError(f"Circular basket dependency: {symbols}")

                consumed[key] = {dep for dep in edges[key] if dep in quotes}
                quotes[key] = quote
                overrides[key[1]] = quote.nav_per_unit
            except Exception as e:
                logger.error("%s NAV calculation failed: %s", token.symbol, e)
                errors.append(
                    self._nav_error(token, f"{token.symbol}: {str(e) or e.__class__.__name__}")
                )

        return quotes, errors

    def _nav_error(self, token: CompositeTokenConfig, message: str) -> SourceError:
        chain = self._chains.get(token.chain_id)
        return SourceError(
            source="nav",
            chain=chain.name if chain else str(token.chain_id),
            error=message,
        )

    def _discard(
        self,
        cycle: set[CompositeKey],
        quotes: dict[CompositeKey, BasketQuote],
        overrides: PriceOverrideMap,
        consumed: dict[CompositeKey, set[CompositeKey]],
    ) -> list[SourceError]:
        """Drop cycle members and, transitively, every quote priced from one."""
        for member in cycle:
            quotes.pop(member, None)
            overrides.pop(member[1], None)

        errors: list[SourceError] = []
        removed = set(cycle)
        changed = True
        while changed:
            changed = False
            for key in list(quotes):
                tainted = consumed.get(key, set()) & removed
                if not tainted:
                    continue
                token = self._by_key[key]
                source = self._by_key[min(tainted)].symbol
                logger.error(
                    "%s NAV discarded: priced from %s, which is in a circular basket",
                    token.symbol, source,
                )
                quotes.pop(key)
                overrides.pop(key[1], None)
                removed.add(key)
                errors.append(
                    self._nav_error(
                        token,
                        f"{token.symbol}: priced from {source}, "
                        "which is in a circular basket dependency",
                    )
                )
                changed = True
        return errors

    async def apply(
        self,
        holdings: Sequence[Holding],
        overrides: PriceOverrideMap | None = None,
    ) -> tuple[list[Holding], list[SourceError]]:
        """Price null-priced holdings that are registered composites."""
        overrides = {} if overrides is None else overrides

        wanted: set[CompositeKey] = set()
        for holding in holdings:
            if holding.price is not None or holding.is_native or not holding.address:
                continue
            key = composite_key(holding.chain_id, holding.address)
            if key not in self._by_key:
                continue
            if holding.chain_id not in self._readers:
                logger.warning(
                    "No RPC endpoint for chain %s; skipping NAV for %s",
                    holding.chain, holding.symbol,
                )
                continue
            wanted.add(key)

        if not wanted:
            return list(holdings), []

        needed = with_dependencies(wanted, self._ordered)
        tokens = [
            t for t in self._ordered
            if composite_key(t.chain_id, t.address) in needed and t.chain_id in self._readers
        ]
        logger.info(
            "%d composite holdings with null price; resolving %d composites",
            len(wanted), len(tokens),
        )

        quotes, errors = await self.resolve_in_order(tokens, overrides)

        priced: list[Holding] = []
        for holding in holdings:
            quote = None
            if holding.price is None and holding.address:
                quote = quotes.get(composite_key(holding.chain_id, holding.address))
            if quote is None:
                priced.append(holding)
            else:
                priced.append(
                    holding.with_price(quote.nav_per_unit, "nav", nav_details=quote)
                )
        return priced, errors
