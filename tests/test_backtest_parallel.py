"""Tests for parallel backtests and backtest persistence."""

from __future__ import annotations

import threading

import pytest

from ledgercore.backtest.parallel import BacktestJob, run_backtests
from ledgercore.backtest.strategy import StrategyConfig
from ledgercore.store.db import get_backtest_run, save_backtest_run
from tests.helpers import make_candles, scenario_closes


def _job(job_id: str, closes=None, strategy_id: str = "rsi_reversal") -> BacktestJob:
    return BacktestJob(
        job_id=job_id,
        candles=tuple(make_candles(closes or scenario_closes())),
        config=StrategyConfig(strategy_id=strategy_id),
    )


class TestRunBacktests:
    def test_runs_all_jobs(self):
        result = run_backtests([_job("a"), _job("b", strategy_id="rsi_macd")], max_workers=2)
        assert set(result.results) == {"a", "b"}
        assert result.errors == {}
        assert result.success_rate == 1.0
        assert result.results["a"].final_balance == pytest.approx(14_000.0)

    def test_failed_job_does_not_abort_batch(self):
        result = run_backtests([_job("ok"), _job("short", closes=[1.0] * 5)], max_workers=2)
        assert "ok" in result.results
        assert result.errors["short"].startswith("InsufficientDataError")
        assert result.success_rate == 0.5

    def test_unknown_rule_is_reported(self):
        result = run_backtests([_job("x", strategy_id="nope")], max_workers=1)
        assert "TradeValidationError" in result.errors["x"]

    def test_best(self):
        rising = [130.0 - i for i in range(30)] + [100.0 + 20 * i for i in range(10)]
        result = run_backtests([_job("base"), _job("rising", closes=rising)], max_workers=2)
        best_id, _ = result.best()
        assert best_id == "rising"

    def test_cancelled_event_marks_jobs(self):
        event = threading.Event()
        event.set()
        result = run_backtests([_job("a"), _job("b")], max_workers=1, cancel_event=event)
        assert result.results == {}
        assert set(result.errors) == {"a", "b"}

    def test_empty(self):
        assert run_backtests([]).total_jobs == 0

    def test_progress_callback(self):
        seen = []
        run_backtests([_job("a"), _job("b")], max_workers=1, progress_callback=lambda d, t: seen.append((d, t)))
        assert seen[-1] == (2, 2)


class TestPersistence:
    def test_save_and_load(self, db_path):
        run = run_backtests([_job("a")], max_workers=1).results["a"]
        run_id = save_backtest_run(run, db_path=db_path)
        loaded = get_backtest_run(run_id, db_path=db_path)
        assert loaded == run

    def test_missing(self, db_path):
        assert get_backtest_run(999, db_path=db_path) is None
