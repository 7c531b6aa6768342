#!/usr/bin/env python3
"""SIP sweep tick: execute every due recurring investment plan.

Usage:
    # One tick (cron, hourly)
    python scripts/run_sweep.py

    # Long-running loop at settings.sip_sweep_interval_sec
    python scripts/run_sweep.py --loop

    # Analytics for one plan
    python scripts/run_sweep.py --report 12

    # Suggestions for an owner
    python scripts/run_sweep.py --recommend alice
"""

import argparse
import sys
import threading
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

import logging

log = logging.getLogger(__name__)


def _print_report(scheduler, plan_id: int) -> None:
    from ledgercore.sip.performance import (
        future_projections,
        investment_consistency,
        lump_sum_comparison,
        monthly_breakdown,
    )
    from ledgercore.store.db import get_plan, get_plan_executions
    from ledgercore.store.models import ExecutionStatus

    plan = get_plan(plan_id, db_path=scheduler.db_path)
    if plan is None:
        print(f"Plan {plan_id} not found")
        return
    executions = get_plan_executions(plan_id, ExecutionStatus.COMPLETED, db_path=scheduler.db_path)
    perf = scheduler.performance(plan_id)
    now = scheduler.clock()
    price = perf.current_value / perf.total_asset_qty if perf.total_asset_qty else None

    print(f"SIP #{plan.id} {plan.asset} {plan.frequency} {plan.amount} {plan.currency} [{plan.status}]")
    print(f"  invested={perf.total_invested} value={perf.current_value:.2f} "
          f"return={perf.percentage_return:.2f}% xirr={perf.xirr}")
    c = investment_consistency(plan, executions, now)
    print(f"  consistency={c.score:.1f}% ({c.actual}/{c.expected}, missed {c.missed})")
    if price is not None:
        cmp = lump_sum_comparison(plan, executions, price)
        if cmp:
            print(f"  vs lump sum: {cmp.sip_advantage:+.2f} ({cmp.sip_advantage_pct:+.2f}%)")
    for m in monthly_breakdown(executions):
        print(f"  {m.month}: {m.execution_count}x invested={m.total_invested} avg={m.average_price:.2f}")
    for p in future_projections(plan.amount, plan.frequency):
        scen = ", ".join(f"{s.name}={s.future_value:,.0f}" for s in p.scenarios)
        print(f"  {p.years}y invest {p.total_investment:,.0f}: {scen}")


def main() -> None:
    from ledgercore.config import settings
    from ledgercore.connectors.payment import PaperPaymentGateway
    from ledgercore.connectors.price_feed import BinancePriceFeed
    from ledgercore.ledger.engine import LedgerEngine
    from ledgercore.logging_config import setup_logging
    from ledgercore.notifications.telegram import (
        LoggingNotificationSink,
        TelegramNotificationSink,
    )
    from ledgercore.sip.scheduler import RecurringInvestmentScheduler
    from ledgercore.store.db_path import resolve_db_path

    parser = argparse.ArgumentParser(description="SIP sweep tick")
    parser.add_argument("--no-notify", action="store_true", help="Log notifications instead of sending them")
    parser.add_argument("--db-path", type=str, default=None, help="Override DB path")
    parser.add_argument("--loop", action="store_true", help="Sweep forever at the configured interval")
    parser.add_argument("--report", type=int, default=None, metavar="PLAN_ID", help="Print plan analytics")
    parser.add_argument("--recommend", default=None, metavar="OWNER", help="Print SIP suggestions for an owner")
    parser.add_argument("--risk-profile", default=None, help="Owner risk profile for --recommend")
    args = parser.parse_args()

    run_id = setup_logging()
    db_path = resolve_db_path(args.db_path)
    log.info("=== SIP sweep (run=%s, paper payments) ===", run_id)
    log.info("DB path: %s", db_path)

    notifier = (
        TelegramNotificationSink()
        if settings.telegram_bot_token and not args.no_notify
        else LoggingNotificationSink()
    )
    scheduler = RecurringInvestmentScheduler(
        LedgerEngine(db_path),
        BinancePriceFeed(),
        PaperPaymentGateway(),
        notifier,
        db_path=db_path,
    )
    try:
        if args.report is not None:
            _print_report(scheduler, args.report)
        elif args.recommend is not None:
            for rec in scheduler.recommendations(args.recommend, args.risk_profile):
                print(f"[{rec.priority}] {rec.type}: {rec.title} ({rec.reasoning})")
        elif args.loop:
            scheduler.run_forever(stop_event=threading.Event())
        else:
            results = scheduler.sweep()
            executed = sum(1 for r in results if r.status == "executed")
            failed = sum(1 for r in results if r.status == "failed")
            log.info("Sweep done: %d executed, %d failed, %d skipped",
                     executed, failed, len(results) - executed - failed)
    finally:
        scheduler.close()


if __name__ == "__main__":
    main()
