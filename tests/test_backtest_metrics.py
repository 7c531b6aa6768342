"""Tests for backtest metrics."""

from __future__ import annotations

import math

import pytest

from ledgercore.backtest.metrics import (
    PROFIT_FACTOR_CAP,
    compute_metrics,
    max_drawdown,
    profit_factor,
    sharpe_ratio,
    win_rate,
)
from ledgercore.store.models import BacktestTrade, TradeAction


class TestWinRate:
    def test_percent(self):
        assert win_rate([10, -5, 3, 0]) == 50.0

    def test_empty(self):
        assert win_rate([]) == 0.0


class TestMaxDrawdown:
    def test_peak_to_trough(self):
        assert max_drawdown([100, 120, 90, 130, 117]) == pytest.approx(25.0)

    def test_monotonic_rise(self):
        assert max_drawdown([100, 110, 120]) == 0.0


class TestSharpe:
    def test_population_std_annualized(self):
        returns = [0.1, -0.05, 0.2]
        mean = sum(returns) / 3
        std = math.sqrt(sum((r - mean) ** 2 for r in returns) / 3)
        assert sharpe_ratio(returns) == pytest.approx(mean / std * math.sqrt(252))

    def test_single_trade_is_zero(self):
        assert sharpe_ratio([0.4]) == 0.0

    def test_zero_variance_is_zero(self):
        assert sharpe_ratio([0.1, 0.1, 0.1]) == 0.0


class TestProfitFactor:
    def test_ratio(self):
        assert profit_factor([30, -10, 20, -15]) == pytest.approx(2.0)

    def test_no_losses_sentinel(self):
        assert profit_factor([5, 10]) == PROFIT_FACTOR_CAP

    def test_no_trades(self):
        assert profit_factor([]) == 0.0

    def test_only_losses(self):
        assert profit_factor([-5]) == 0.0


def test_compute_metrics_uses_exits_only():
    log = [
        BacktestTrade(TradeAction.ENTER, 30, None, 100.0, 1.0, 0.0),
        BacktestTrade(TradeAction.EXIT, 31, None, 110.0, 1.0, 110.0, profit=10.0, return_pct=10.0),
        BacktestTrade(TradeAction.ENTER, 32, None, 110.0, 1.0, 0.0),
        BacktestTrade(TradeAction.EXIT, 33, None, 99.0, 1.0, 99.0, profit=-11.0, return_pct=-10.0),
    ]
    m = compute_metrics(log, [100.0, 110.0, 99.0, 99.0])
    assert m.win_rate == 50.0
    assert m.max_drawdown == pytest.approx(10.0)
    assert m.profit_factor == pytest.approx(10 / 11)
    assert m.sharpe_ratio == pytest.approx(0.0)
