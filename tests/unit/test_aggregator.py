"""Unit tests for the final aggregation step."""
from __future__ import annotations

import pytest

from portfolio_nav.models import SourceError
from portfolio_nav.services.aggregator import (
    build_portfolio,
    compute_breakdown,
    filter_dust,
    recalculate_percentages,
    sort_holdings,
)


class TestFilterDust:
    def test_drops_known_small_values(self, make_holding) -> None:
        holdings = [make_holding("A", 0.99), make_holding("B", 1.0), make_holding("C", None)]
        assert [h.symbol for h in filter_dust(holdings, 1.0)] == ["B", "C"]

    def test_idempotent(self, make_holding) -> None:
        holdings = [make_holding("A", 0.5), make_holding("B", 5.0), make_holding("C", None)]
        once = filter_dust(holdings, 1.0)
        assert filter_dust(once, 1.0) == once


class TestPercentages:
    def test_sum_to_100(self, make_holding) -> None:
        holdings = recalculate_percentages(
            [make_holding("A", 33.3), make_holding("B", 66.6), make_holding("C", 0.1),
             make_holding("D", None)]
        )
        total = sum(h.portfolio_percentage for h in holdings if h.value is not None)
        assert total == pytest.approx(100.0)

    def test_null_value_gets_zero(self, make_holding) -> None:
        (_, unpriced) = recalculate_percentages([make_holding("A", 10.0), make_holding("B", None)])
        assert unpriced.portfolio_percentage == 0.0

    def test_empty_total(self, make_holding) -> None:
        (h,) = recalculate_percentages([make_holding("A", None)])
        assert h.portfolio_percentage == 0.0


class TestSort:
    def test_value_desc_nulls_last(self, make_holding) -> None:
        holdings = [make_holding("A", 5.0), make_holding("N", None), make_holding("B", 50.0)]
        assert [h.symbol for h in sort_holdings(holdings)] == ["B", "A", "N"]


class TestBreakdown:
    def test_categories(self, make_holding) -> None:
        holdings = [
            make_holding("ETH", 1000.0),
            make_holding("weETH", 500.0, is_defi_position=True),
            make_holding("USDC", 200.0, origin="defi", is_defi_position=True),
            make_holding("ixETH", 300.0, price_source="nav"),
            make_holding("X", None),
        ]
        b = compute_breakdown(holdings)
        assert b.wallet_tokens_value == pytest.approx(1300.0)
        assert b.defi_positions_value == pytest.approx(700.0)
        assert b.nav_priced_value == pytest.approx(300.0)


class TestBuildPortfolio:
    def test_build(self, make_holding) -> None:
        errors = [SourceError(source="balances", chain="base", error="boom")]
        p = build_portfolio(
            "0xabc",
            [make_holding("A", 10.0), make_holding("B", 0.2), make_holding("C", 90.0)],
            errors,
            dust_threshold=1.0,
        )
        assert [t.symbol for t in p.tokens] == ["C", "A"]
        assert p.total_usd_value == pytest.approx(100.0)
        assert p.tokens[0].portfolio_percentage == pytest.approx(90.0)
        assert p.errors == tuple(errors)
        assert p.token_count == 2

    def test_value_equals_balance_times_price(self, make_holding) -> None:
        p = build_portfolio("0xabc", [make_holding("A", 12.0, balance=3.0)])
        for h in p.tokens:
            assert h.value == pytest.approx(h.balance_formatted * h.price)
