#!/usr/bin/env python3
"""Backtest one or more built-in strategies on historical candles.

Usage:
    python scripts/run_backtest.py --symbol BTC/USDT --timeframe 1d --limit 365
    python scripts/run_backtest.py --strategy rsi_reversal rsi_macd --save
"""

import argparse
import sys
from dataclasses import replace
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

import logging

log = logging.getLogger(__name__)


def _config(base, args):
    overrides = {}
    if args.stop_loss is not None:
        overrides["stop_loss_pct"] = args.stop_loss or None
    if args.take_profit is not None:
        overrides["take_profit_pct"] = args.take_profit or None
    return replace(base, **overrides)


def main() -> None:
    from ledgercore.backtest.parallel import BacktestJob, run_backtests
    from ledgercore.backtest.strategy import RULES, StrategyConfig
    from ledgercore.connectors.price_feed import BinancePriceFeed
    from ledgercore.logging_config import setup_logging
    from ledgercore.store.db import save_backtest_run
    from ledgercore.store.db_path import resolve_db_path

    parser = argparse.ArgumentParser(description="Strategy backtester")
    parser.add_argument("--symbol", default="BTC/USDT")
    parser.add_argument("--timeframe", default="1d")
    parser.add_argument("--limit", type=int, default=365)
    parser.add_argument("--balance", type=float, default=10_000.0)
    parser.add_argument(
        "--strategy", nargs="+", choices=sorted(RULES), default=sorted(RULES),
    )
    parser.add_argument("--stop-loss", type=float, default=None, help="Percent; 0 disables (default: settings)")
    parser.add_argument("--take-profit", type=float, default=None, help="Percent; 0 disables (default: settings)")
    parser.add_argument("--processes", action="store_true", help="Use a process pool")
    parser.add_argument("--save", action="store_true", help="Persist runs to the DB")
    args = parser.parse_args()

    setup_logging()
    candles = tuple(BinancePriceFeed().historical_candles(args.symbol, args.timeframe, args.limit))

    jobs = [
        BacktestJob(
            job_id=name,
            candles=candles,
            config=_config(StrategyConfig.from_settings(name), args),
            initial_balance=args.balance,
        )
        for name in args.strategy
    ]
    result = run_backtests(jobs, use_processes=args.processes)

    db_path = resolve_db_path() if args.save else None
    print(f"{args.symbol} {args.timeframe} x{len(candles)}")
    for job_id, run in sorted(result.results.items()):
        m = run.metrics
        print(
            f"  {job_id:14s} final={run.final_balance:>12,.2f} ret={run.total_return_pct:+7.2f}% "
            f"trades={run.exit_count:3d} win={m.win_rate:5.1f}% mdd={m.max_drawdown:5.2f}% "
            f"sharpe={m.sharpe_ratio:6.2f} pf={m.profit_factor:6.2f}"
        )
        if db_path:
            run_id = save_backtest_run(run, db_path=db_path)
            log.info("Saved %s as run %d", job_id, run_id)
    for job_id, err in result.errors.items():
        print(f"  {job_id:14s} ERROR {err}")


if __name__ == "__main__":
    main()
