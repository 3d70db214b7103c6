"""Data models — all frozen (immutable); pipeline stages return updated copies."""
from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, Literal

# Sentinel address for a chain's native asset (ETH on Ethereum / Base).
NATIVE_TOKEN = "native"

PriceSource = Literal["market", "nav", "redirect", "defi-enrichment"]
HoldingOrigin = Literal["wallet", "defi"]

# Lower-case token address -> freshly computed NAV per unit. Request-scoped.
PriceOverrideMap = dict[str, float]


@dataclass(frozen=True)
class BasketToken:
    """One underlying asset backing one unit of a composite token."""

    address: str
    symbol: str
    decimals: int
    quantity_per_unit: float
    price: float | None
    value: float | None

    def to_dict(self) -> dict[str, Any]:
        return {
            "address": self.address,
            "symbol": self.symbol,
            "decimals": self.decimals,
            "quantityPerUnit": self.quantity_per_unit,
            "usdPrice": self.price,
            "usdValue": self.value,
        }


@dataclass(frozen=True)
class BasketQuote:
    """Result of resolving one composite token's NAV."""

    address: str
    chain_id: int
    nav_per_unit: float
    basket: tuple[BasketToken, ...]
    all_underlying_priced: bool
    basket_status: str
    priced_count: int = 0
    total_underlying: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "basketTokens": [b.to_dict() for b in self.basket],
            "allUnderlyingPriced": self.all_underlying_priced,
            "basketStatus": self.basket_status,
            "pricedCount": self.priced_count,
            "totalUnderlying": self.total_underlying,
        }


@dataclass(frozen=True)
class Holding:
    """One priced position in the portfolio."""

    chain_id: int
    chain: str
    address: str
    symbol: str
    name: str
    decimals: int
    balance: str
    balance_formatted: float
    price: float | None = None
    value: float | None = None
    price_source: PriceSource | None = None
    logo: str | None = None
    is_native: bool = False
    origin: HoldingOrigin = "wallet"
    portfolio_percentage: float = 0.0
    is_defi_position: bool = False
    defi_protocol: str | None = None
    defi_protocol_logo: str | None = None
    defi_position_label: str | None = None
    nav_details: BasketQuote | None = None

    @property
    def dedup_key(self) -> tuple[int, str]:
        return (self.chain_id, self.symbol)

    def with_price(
        self, price: float | None, source: PriceSource | None, **changes: Any
    ) -> Holding:
        """Return a copy priced at ``price``; a null price always nulls the value."""
        if price is None:
            return replace(self, price=None, value=None, price_source=None, **changes)
        return replace(
            self,
            price=price,
            value=self.balance_formatted * price,
            price_source=source,
            **changes,
        )

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "chain": self.chain,
            "chainId": self.chain_id,
            "tokenAddress": None if self.is_native else self.address,
            "symbol": self.symbol,
            "name": self.name,
            "decimals": self.decimals,
            "balance": self.balance,
            "balanceFormatted": self.balance_formatted,
            "usdPrice": self.price,
            "usdValue": self.value,
            "priceSource": self.price_source,
            "logo": self.logo,
            "nativeToken": self.is_native,
            "portfolioPercentage": self.portfolio_percentage,
        }
        if self.is_defi_position:
            data.update(
                isDefiPosition=True,
                defiProtocol=self.defi_protocol,
                defiProtocolLogo=self.defi_protocol_logo,
                defiPositionType=self.defi_position_label,
            )
        if self.nav_details is not None:
            data["navDetails"] = self.nav_details.to_dict()
        return data


@dataclass(frozen=True)
class DeFiToken:
    """One constituent token of a protocol-reported position."""

    token_type: str
    symbol: str
    name: str
    address: str | None
    decimals: int
    balance: str
    balance_formatted: float
    price: float | None = None
    value: float | None = None
    price_source: PriceSource | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "tokenType": self.token_type,
            "symbol": self.symbol,
            "name": self.name,
            "address": self.address,
            "decimals": self.decimals,
            "balance": self.balance,
            "balanceFormatted": self.balance_formatted,
            "usdPrice": self.price,
            "usdValue": self.value,
            "priceSource": self.price_source,
        }


@dataclass(frozen=True)
class DeFiPosition:
    """A protocol-level (lending / staking / LP) position on one chain."""

    chain_id: int
    chain: str
    protocol_name: str
    label: str
    tokens: tuple[DeFiToken, ...] = ()
    protocol_id: str | None = None
    protocol_logo: str | None = None
    reported_total_value: float | None = None

    @property
    def total_value(self) -> float:
        """Provider-reported total, or known constituent values net of borrows."""
        if self.reported_total_value is not None:
            return self.reported_total_value
        return sum(
            -t.value if t.token_type == "borrow" else t.value
            for t in self.tokens
            if t.value is not None
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "chain": self.chain,
            "chainId": self.chain_id,
            "protocolName": self.protocol_name,
            "protocolId": self.protocol_id,
            "protocolLogo": self.protocol_logo,
            "label": self.label,
            "totalUsdValue": self.total_value,
            "tokens": [t.to_dict() for t in self.tokens],
        }


@dataclass(frozen=True)
class ProtocolSummary:
    """DeFi positions grouped by protocol."""

    protocol_name: str
    protocol_id: str | None
    protocol_logo: str | None
    chains: tuple[str, ...]
    position_count: int
    total_value: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "protocolName": self.protocol_name,
            "protocolId": self.protocol_id,
            "protocolLogo": self.protocol_logo,
            "chains": list(self.chains),
            "positionCount": self.position_count,
            "totalUsdValue": self.total_value,
        }


@dataclass(frozen=True)
class SourceError:
    """A recoverable failure collected during a valuation run."""

    source: str
    error: str
    chain: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"source": self.source, "error": self.error}
        if self.chain is not None:
            data["chain"] = self.chain
        return data


@dataclass(frozen=True)
class Breakdown:
    wallet_tokens_value: float = 0.0
    defi_positions_value: float = 0.0
    nav_priced_value: float = 0.0


@dataclass(frozen=True)
class Portfolio:
    """The final valuation artifact for one wallet."""

    address: str
    total_usd_value: float
    breakdown: Breakdown
    tokens: tuple[Holding, ...] = ()
    errors: tuple[SourceError, ...] = field(default_factory=tuple)

    @property
    def token_count(self) -> int:
        return len(self.tokens)

    @property
    def defi_positions_included(self) -> bool:
        """False when DeFi positions failed on any chain."""
        return not any(e.source == "defi" for e in self.errors)

    @property
    def nav_pricing_applied(self) -> bool:
        return any(t.price_source == "nav" for t in self.tokens)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "address": self.address,
            "totalUsdValue": self.total_usd_value,
            "breakdown": {
                "walletTokensValue": self.breakdown.wallet_tokens_value,
                "defiPositionsValue": self.breakdown.defi_positions_value,
                "navPricedValue": self.breakdown.nav_priced_value,
            },
            "tokenCount": self.token_count,
            "tokens": [t.to_dict() for t in self.tokens],
            "defiPositionsIncluded": self.defi_positions_included,
            "navPricingApplied": self.nav_pricing_applied,
        }
        if self.errors:
            data["errors"] = [e.to_dict() for e in self.errors]
        return data
