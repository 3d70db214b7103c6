"""Final holding list: dust filter, percentages, ordering and breakdown."""
from __future__ import annotations

import logging
from dataclasses import replace
from typing import Iterable

from ..models import Breakdown, Holding, Portfolio, SourceError

logger = logging.getLogger(__name__)


def filter_dust(holdings: Iterable[Holding], threshold: float) -> list[Holding]:
    """Drop holdings with a known value below ``threshold``; keep unknown values."""
    return [h for h in holdings if h.value is None or h.value >= threshold]


def total_value(holdings: Iterable[Holding]) -> float:
    return sum(h.value for h in holdings if h.value is not None)


def recalculate_percentages(holdings: Iterable[Holding]) -> list[Holding]:
    holdings = list(holdings)
    total = total_value(holdings)
    return [
        replace(
            h,
            portfolio_percentage=(
                h.value / total * 100 if h.value is not None and total > 0 else 0.0
            ),
        )
        for h in holdings
    ]


def sort_holdings(holdings: Iterable[Holding]) -> list[Holding]:
    """Value descending, unknown values last."""
    return sorted(
        holdings,
        key=lambda h: (h.value is None, -(h.value or 0.0)),
    )


def compute_breakdown(holdings: Iterable[Holding]) -> Breakdown:
    wallet = defi = nav = 0.0
    for h in holdings:
        if h.value is None:
            continue
        if h.origin == "defi" or h.is_defi_position:
            defi += h.value
        else:
            wallet += h.value
        if h.price_source == "nav":
            nav += h.value
    return Breakdown(
        wallet_tokens_value=wallet,
        defi_positions_value=defi,
        nav_priced_value=nav,
    )


def build_portfolio(
    address: str,
    holdings: Iterable[Holding],
    errors: Iterable[SourceError] = (),
    dust_threshold: float = 1.0,
) -> Portfolio:
    """Finalize holdings into a Portfolio."""
    holdings = list(holdings)
    kept = filter_dust(holdings, dust_threshold)
    if len(kept) < len(holdings):
        logger.info("Dust filter removed %d holding(s)", len(holdings) - len(kept))

    final = sort_holdings(recalculate_percentages(kept))
    total = total_value(final)
    logger.info("Portfolio %s: $%.2f across %d tokens", address, total, len(final))

    return Portfolio(
        address=address,
        total_usd_value=total,
        breakdown=compute_breakdown(final),
        tokens=tuple(final),
        errors=tuple(errors),
    )
