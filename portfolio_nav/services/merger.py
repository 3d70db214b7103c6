"""Merge wallet balances with DeFi-position tokens without double counting."""
from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Iterable

from ..models import DeFiPosition, Holding, ProtocolSummary

logger = logging.getLogger(__name__)

# Constituent types that represent value the wallet owns. Borrows are debt.
OWNED_TOKEN_TYPES = frozenset({"supply", "deposit", "staked", "lp", "reward"})

RECEIPT_TOKEN_LABEL = "staking"


@dataclass(frozen=True)
class MergeResult:
    holdings: tuple[Holding, ...]
    wallet_count: int
    defi_count: int
    duplicates_removed: int


def defi_positions_to_holdings(
    positions: Iterable[DeFiPosition], dust_threshold: float
) -> list[Holding]:
    """Flatten DeFi positions into holding-shaped records.

    Known-value dust is dropped; unknown (None) values are kept so the NAV
    resolver can still price them.
    """
    holdings: list[Holding] = []
    for pos in positions:
        for token in pos.tokens:
            if token.token_type not in OWNED_TOKEN_TYPES:
                logger.debug(
                    "Skipping %s %s in %s", token.token_type, token.symbol, pos.protocol_name
                )
                continue
            if token.value is not None and token.value < dust_threshold:
                continue
            holdings.append(
                Holding(
                    chain_id=pos.chain_id,
                    chain=pos.chain,
                    address=token.address or "",
                    symbol=token.symbol,
                    name=token.name,
                    decimals=token.decimals,
                    balance=token.balance,
                    balance_formatted=token.balance_formatted,
                    price=token.price,
                    value=token.value,
                    price_source=token.price_source if token.price is not None else None,
                    origin="defi",
                    is_defi_position=True,
                    defi_protocol=pos.protocol_name,
                    defi_protocol_logo=pos.protocol_logo,
                    defi_position_label=pos.label,
                )
            )
    return holdings


def tag_protocol_tokens(
    wallet: Iterable[Holding],
    protocol_tokens: dict[str, dict[int, tuple[str, ...]]],
    positions: Iterable[DeFiPosition] = (),
) -> list[Holding]:
    """Mark wallet holdings that are known protocol receipt tokens as DeFi positions."""
    logos = {p.protocol_name: p.protocol_logo for p in positions if p.protocol_logo}

    tagged: list[Holding] = []
    for holding in wallet:
        for protocol, chains in protocol_tokens.items():
            if holding.address in chains.get(holding.chain_id, ()):
                holding = replace(
                    holding,
                    is_defi_position=True,
                    defi_protocol=protocol,
                    defi_protocol_logo=logos.get(protocol),
                    defi_position_label=RECEIPT_TOKEN_LABEL,
                )
                logger.info(
                    "Tagged %s ($%.2f) as %s %s position",
                    holding.symbol, holding.value or 0.0, protocol, RECEIPT_TOKEN_LABEL,
                )
                break
        tagged.append(holding)
    return tagged


def merge_holdings(
    wallet: Iterable[Holding], defi_holdings: Iterable[Holding]
) -> MergeResult:
    """Concatenate wallet and DeFi holdings, dropping DeFi duplicates.

    A DeFi-derived holding whose (chain_id, symbol) is already present as a
    tagged wallet holding is the same economic position and is dropped.
    """
    wallet = list(wallet)
    defi_holdings = list(defi_holdings)

    tagged_keys = {h.dedup_key for h in wallet if h.is_defi_position}
    deduped = [h for h in defi_holdings if h.dedup_key not in tagged_keys]
    removed = len(defi_holdings) - len(deduped)
    if removed:
        logger.info(
            "Deduped: removed %d DeFi holdings already present as wallet tokens", removed
        )

    merged = tuple(wallet + deduped)
    logger.info(
        "Merged: %d wallet + %d DeFi = %d total",
        len(wallet), len(defi_holdings), len(merged),
    )
    return MergeResult(
        holdings=merged,
        wallet_count=len(wallet),
        defi_count=len(deduped),
        duplicates_removed=removed,
    )


def summarize_positions(positions: Iterable[DeFiPosition]) -> list[ProtocolSummary]:
    """Group positions by protocol, largest total first."""
    groups: dict[str, list[DeFiPosition]] = {}
    for pos in positions:
        groups.setdefault(pos.protocol_id or pos.protocol_name, []).append(pos)

    summaries = [
        ProtocolSummary(
            protocol_name=group[0].protocol_name,
            protocol_id=group[0].protocol_id,
            protocol_logo=next((p.protocol_logo for p in group if p.protocol_logo), None),
            chains=tuple(sorted({p.chain for p in group})),
            position_count=len(group),
            total_value=sum(p.total_value for p in group),
        )
        for group in groups.values()
    ]
    summaries.sort(key=lambda s: s.total_value, reverse=True)
    return summaries
