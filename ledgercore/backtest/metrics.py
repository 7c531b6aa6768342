"""Backtest performance metrics over the exit trades of a run."""

from __future__ import annotations

import math
from collections.abc import Sequence

import numpy as np

from ledgercore.store.models import BacktestMetrics, BacktestTrade, TradeAction

TRADING_DAYS = 252
# profit factor reported when there are wins but no losses
PROFIT_FACTOR_CAP = 999.0


def win_rate(profits: Sequence[float]) -> float:
    """Percent of closed trades with profit > 0."""
    if not profits:
        return 0.0
    return sum(1 for p in profits if p > 0) / len(profits) * 100


def max_drawdown(balances: Sequence[float]) -> float:
    """Largest peak-to-trough decline of the balance curve, in percent."""
    peak = -math.inf
    worst = 0.0
    for b in balances:
        peak = max(peak, b)
        if peak > 0:
            worst = max(worst, (peak - b) / peak)
    return worst * 100


def sharpe_ratio(returns: Sequence[float]) -> float:
    """mean/std of per-trade returns annualized by sqrt(252).

    Population std. Zero with fewer than two trades or no variance.
    """
    if len(returns) < 2:
        return 0.0
    arr = np.asarray(returns, dtype=float)
    std = float(arr.std())
    if std == 0:
        return 0.0
    return float(arr.mean()) / std * math.sqrt(TRADING_DAYS)


def profit_factor(profits: Sequence[float]) -> float:
    gross_profit = sum(p for p in profits if p > 0)
    gross_loss = abs(sum(p for p in profits if p < 0))
    if gross_loss == 0:
        return PROFIT_FACTOR_CAP if gross_profit > 0 else 0.0
    return gross_profit / gross_loss


def compute_metrics(
    trade_log: Sequence[BacktestTrade], balance_curve: Sequence[float]
) -> BacktestMetrics:
    exits = [t for t in trade_log if t.action == TradeAction.EXIT]
    profits = [t.profit or 0.0 for t in exits]
    returns = [(t.return_pct or 0.0) / 100 for t in exits]
    return BacktestMetrics(
        win_rate=win_rate(profits),
        max_drawdown=max_drawdown(balance_curve),
        sharpe_ratio=sharpe_ratio(returns),
        profit_factor=profit_factor(profits),
    )
