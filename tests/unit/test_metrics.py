"""Unit tests for CAGR, Sharpe ratio and PnL."""
from __future__ import annotations

import math

import pytest

from portfolio_nav.services.metrics import (
    calculate_cagr,
    calculate_metrics,
    calculate_pnl,
    calculate_sharpe_ratio,
)


def _series(drift: float, n: int = 40) -> list[float]:
    """Deterministic zig-zag around a compounding trend."""
    return [100.0 * (1 + drift) ** i * (1 + 0.02 * (-1) ** i) for i in range(n)]


def _annual_return(values: list[float]) -> float:
    logs = [math.log(b / a) for a, b in zip(values, values[1:])]
    return sum(logs) / len(logs) * 252


class TestCagr:
    def test_doubling_over_two_years(self) -> None:
        assert calculate_cagr(1000, 2000, 2) == pytest.approx(math.sqrt(2) - 1)
        assert calculate_cagr(1000, 2000, 2) == pytest.approx(0.4142, abs=1e-4)

    def test_zero_beginning(self) -> None:
        assert calculate_cagr(0, 100, 1) == 0

    def test_zero_years(self) -> None:
        assert calculate_cagr(100, 200, 0) == 0

    def test_negative_beginning(self) -> None:
        assert calculate_cagr(-5, 100, 1) == 0

    def test_loss(self) -> None:
        assert calculate_cagr(100, 50, 1) == pytest.approx(-0.5)


class TestSharpe:
    def test_single_return_is_none(self) -> None:
        assert calculate_sharpe_ratio([100, 100]) is None

    def test_empty_is_none(self) -> None:
        assert calculate_sharpe_ratio([]) is None

    def test_flat_series_is_none(self) -> None:
        assert calculate_sharpe_ratio([100.0] * 30) is None

    def test_non_positive_pairs_skipped(self) -> None:
        # Only 100->105 is valid: below the two-return minimum.
        assert calculate_sharpe_ratio([100, 105, 0, -3]) is None

    def test_rising_series_positive(self) -> None:
        values = _series(0.01)
        sharpe = calculate_sharpe_ratio(values)
        assert sharpe is not None and math.isfinite(sharpe)
        assert _annual_return(values) > 0.045
        assert sharpe > 0

    def test_falling_series_negative(self) -> None:
        values = _series(-0.01)
        sharpe = calculate_sharpe_ratio(values)
        assert sharpe is not None and math.isfinite(sharpe)
        assert _annual_return(values) < 0.045
        assert sharpe < 0

    def test_reference_series(self) -> None:
        values = [100, 105, 98, 110, 120] + [120 + (i % 5) * 2 - 4 for i in range(30)]
        sharpe = calculate_sharpe_ratio(values)
        assert sharpe is not None and math.isfinite(sharpe)
        assert (sharpe > 0) == (_annual_return(values) > 0.045)

    def test_risk_free_rate_shifts_result(self) -> None:
        values = _series(0.01)
        assert calculate_sharpe_ratio(values, 0.0) > calculate_sharpe_ratio(values, 0.5)

    def test_known_value(self) -> None:
        values = [100.0, 110.0, 99.0]
        r = [math.log(1.1), math.log(0.9)]
        mean = sum(r) / 2
        std = math.sqrt(sum((x - mean) ** 2 for x in r) / 1)
        expected = (mean * 252 - 0.045) / (std * math.sqrt(252))
        assert calculate_sharpe_ratio(values) == pytest.approx(expected)


class TestPnl:
    def test_gain(self) -> None:
        pnl = calculate_pnl(1500.0, 1000.0)
        assert pnl.unrealized == 500.0
        assert pnl.unrealized_percent == pytest.approx(50.0)

    def test_zero_cost_basis(self) -> None:
        assert calculate_pnl(100.0, 0.0).unrealized_percent is None


class TestCalculateMetrics:
    def test_combined(self) -> None:
        m = calculate_metrics(2000.0, 1000.0, 2, history=[100, 100])
        assert m.cagr == pytest.approx(math.sqrt(2) - 1)
        assert m.sharpe_ratio is None
        data = m.to_dict()
        assert data["unrealizedPnL"] == 1000.0
        assert data["sharpeRatio"] is None
