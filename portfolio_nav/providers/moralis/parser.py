"""Pure normalisation of Moralis payloads into Holding / DeFiPosition (no I/O).

Provider responses are treated as untyped input: fields may be snake_case or
camelCase, nested or flat, and any of them may be missing. A missing price or
value stays None; it is never coerced to zero.
"""
from __future__ import annotations

import logging
from typing import Any

from ...config import ChainConfig
from ...models import NATIVE_TOKEN, DeFiPosition, DeFiToken, Holding

logger = logging.getLogger(__name__)

DEFAULT_DECIMALS = 18

# Provider token_type spellings -> canonical constituent type.
TOKEN_TYPES: dict[str, str] = {
    "supply": "supply",
    "supplied": "supply",
    "deposit": "deposit",
    "deposited": "deposit",
    "defi-token": "deposit",
    "staked": "staked",
    "stake": "staked",
    "staking": "staked",
    "lp": "lp",
    "lp_token": "lp",
    "lp-token": "lp",
    "liquidity": "lp",
    "reward": "reward",
    "rewards": "reward",
    "borrow": "borrow",
    "borrowed": "borrow",
    "debt": "borrow",
}


def first(raw: dict[str, Any], *names: str, default: Any = None) -> Any:
    """Return the first key in ``names`` present with a non-None value."""
    for name in names:
        value = raw.get(name)
        if value is not None:
            return value
    return default


def to_float(value: Any) -> float | None:
    if value is None or value == "":
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def to_int(value: Any, default: int) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def canonical_token_type(raw_type: Any) -> str:
    key = str(raw_type or "").strip().lower()
    return TOKEN_TYPES.get(key, key or "unknown")


def reconcile_price(
    balance: float, price: float | None
) -> tuple[float | None, float | None]:
    """Enforce ``value = balance * price`` and "no price, no value".

    A non-positive price counts as unknown. Provider-reported values are never
    used: without a price the holding stays unpriced for NAV and redirects.
    """
    if price is not None and price > 0:
        return price, balance * price
    return None, None


def formatted_balance(raw_balance: Any, formatted: Any, decimals: int) -> float:
    parsed = to_float(formatted)
    if parsed is not None:
        return parsed
    raw = to_float(raw_balance)
    return raw / (10**decimals) if raw is not None else 0.0


def normalize_wallet_token(raw: dict[str, Any], chain: ChainConfig) -> Holding | None:
    """Map one wallet-token record to a Holding (None when it has no address)."""
    is_native = bool(first(raw, "native_token", "nativeToken", default=False))
    token_address = first(raw, "token_address", "tokenAddress", "address")

    if is_native:
        address = NATIVE_TOKEN
    elif token_address:
        address = str(token_address).lower()
    else:
        logger.debug("Skipping token without address on %s: %s", chain.name, raw.get("symbol"))
        return None

    decimals = to_int(first(raw, "decimals"), DEFAULT_DECIMALS)
    balance = str(first(raw, "balance", default="0"))
    balance_formatted = formatted_balance(
        balance, first(raw, "balance_formatted", "balanceFormatted"), decimals
    )
    price, value = reconcile_price(
        balance_formatted,
        to_float(first(raw, "usd_price", "usdPrice")),
    )

    return Holding(
        chain_id=chain.chain_id,
        chain=chain.name,
        address=address,
        symbol=str(first(raw, "symbol", default="UNKNOWN")),
        name=str(first(raw, "name", default="")),
        decimals=decimals,
        balance=balance,
        balance_formatted=balance_formatted,
        price=price,
        value=value,
        price_source="market" if price is not None else None,
        logo=first(raw, "logo", "thumbnail"),
        is_native=is_native,
        origin="wallet",
    )


def normalize_defi_token(raw: dict[str, Any]) -> DeFiToken:
    decimals = to_int(first(raw, "decimals"), DEFAULT_DECIMALS)
    balance = str(first(raw, "balance", default="0"))
    balance_formatted = formatted_balance(
        balance, first(raw, "balance_formatted", "balanceFormatted"), decimals
    )
    price, value = reconcile_price(
        balance_formatted,
        to_float(first(raw, "usd_price", "usdPrice", "price")),
    )
    address = first(raw, "contract_address", "token_address", "tokenAddress", "address")

    return DeFiToken(
        token_type=canonical_token_type(first(raw, "token_type", "tokenType")),
        symbol=str(first(raw, "symbol", default="UNKNOWN")),
        name=str(first(raw, "name", default="")),
        address=str(address).lower() if address else None,
        decimals=decimals,
        balance=balance,
        balance_formatted=balance_formatted,
        price=price,
        value=value,
        price_source="market" if price is not None else None,
    )


def normalize_defi_position(raw: dict[str, Any], chain: ChainConfig) -> DeFiPosition:
    """Map one protocol position; the token list may sit under ``position``."""
    pos = raw.get("position") or raw
    protocol = raw.get("protocol") if isinstance(raw.get("protocol"), dict) else {}

    tokens = tuple(
        normalize_defi_token(t) for t in (first(pos, "tokens") or raw.get("tokens") or [])
    )
    # A reported total of 0 is treated as missing so it falls back to the sum.
    reported = to_float(
        first(pos, "balance_usd", "balanceUsd", "total_usd_value", "totalUsdValue")
        or first(raw, "total_usd_value", "totalUsdValue", "usd_value", "usdValue")
    )

    return DeFiPosition(
        chain_id=chain.chain_id,
        chain=chain.name,
        protocol_name=str(
            first(raw, "protocol_name", "protocolName")
            or protocol.get("name")
            or "Unknown"
        ),
        protocol_id=first(raw, "protocol_id", "protocolId"),
        protocol_logo=first(raw, "protocol_logo", "protocolLogo") or protocol.get("logo"),
        label=str(
            first(pos, "label") or first(raw, "label", "position_type", "positionType")
            or "Position"
        ),
        tokens=tokens,
        reported_total_value=reported or None,
    )
