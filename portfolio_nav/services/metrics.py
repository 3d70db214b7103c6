"""Portfolio performance metrics: CAGR, Sharpe ratio, unrealised PnL."""
from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Sequence

TRADING_DAYS = 252
DEFAULT_RISK_FREE_RATE = 0.045


def calculate_cagr(beginning: float, ending: float, years: float) -> float:
    """Compound annual growth rate; 0 for a non-positive start or period."""
    if beginning <= 0 or years <= 0:
        return 0.0
    return (ending / beginning) ** (1 / years) - 1


def calculate_sharpe_ratio(
    values: Sequence[float], risk_free_rate: float = DEFAULT_RISK_FREE_RATE
) -> float | None:
    """Annualised Sharpe ratio of a chronological series of portfolio values.

    Log returns are taken only between consecutive positive values. Returns
    None with fewer than two returns or a zero annualised deviation.
    """
    returns = [
        math.log(cur / prev)
        for prev, cur in zip(values, values[1:])
        if prev > 0 and cur > 0
    ]
    if len(returns) < 2:
        return None

    n = len(returns)
    mean = sum(returns) / n
    variance = sum((r - mean) ** 2 for r in returns) / (n - 1)

    annual_return = mean * TRADING_DAYS
    annual_std = math.sqrt(variance) * math.sqrt(TRADING_DAYS)
    if annual_std == 0:
        return None
    return (annual_return - risk_free_rate) / annual_std


@dataclass(frozen=True)
class PnL:
    unrealized: float
    unrealized_percent: float | None


def calculate_pnl(total_value: float, cost_basis: float) -> PnL:
    gain = total_value - cost_basis
    percent = gain / cost_basis * 100 if cost_basis > 0 else None
    return PnL(unrealized=gain, unrealized_percent=percent)


@dataclass(frozen=True)
class PortfolioMetrics:
    total_value: float
    cost_basis: float
    pnl: PnL
    cagr: float
    sharpe_ratio: float | None

    def to_dict(self) -> dict[str, Any]:
        return {
            "totalValue": self.total_value,
            "costBasis": self.cost_basis,
            "unrealizedPnL": self.pnl.unrealized,
            "unrealizedPnLPercent": self.pnl.unrealized_percent,
            "cagr": self.cagr,
            "sharpeRatio": self.sharpe_ratio,
        }


def calculate_metrics(
    total_value: float,
    cost_basis: float,
    years: float,
    history: Sequence[float] = (),
    risk_free_rate: float = DEFAULT_RISK_FREE_RATE,
) -> PortfolioMetrics:
    """Combine PnL, CAGR (cost basis to current value) and Sharpe over ``history``."""
    return PortfolioMetrics(
        total_value=total_value,
        cost_basis=cost_basis,
        pnl=calculate_pnl(total_value, cost_basis),
        cagr=calculate_cagr(cost_basis, total_value, years),
        sharpe_ratio=calculate_sharpe_ratio(history, risk_free_rate),
    )
