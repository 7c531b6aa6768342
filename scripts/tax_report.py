#!/usr/bin/env python3
"""Yearly capital-gains report for one owner.

Usage:
    python scripts/tax_report.py --owner alice --year 2025
    python scripts/tax_report.py --owner alice --jurisdiction US --harvest
"""

import argparse
import sys
from datetime import datetime, timezone
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

import logging

log = logging.getLogger(__name__)


def main() -> None:
    from ledgercore.config import settings
    from ledgercore.connectors.price_feed import BinancePriceFeed
    from ledgercore.errors import PriceUnavailableError
    from ledgercore.ledger.engine import LedgerEngine
    from ledgercore.ledger.tax_report import (
        TaxRates,
        find_harvest_candidates,
        long_term_date,
        lots_nearing_long_term,
        summarize_tax_year,
    )
    from ledgercore.logging_config import setup_logging
    from ledgercore.store.db_path import resolve_db_path

    now = datetime.now(timezone.utc)
    parser = argparse.ArgumentParser(description="Capital-gains report")
    parser.add_argument("--owner", required=True)
    parser.add_argument("--year", type=int, default=now.year)
    parser.add_argument("--jurisdiction", default=settings.tax_jurisdiction)
    parser.add_argument("--harvest", action="store_true", help="Mark positions and list loss-harvest candidates")
    parser.add_argument("--db-path", type=str, default=None)
    args = parser.parse_args()

    setup_logging()
    engine = LedgerEngine(resolve_db_path(args.db_path))
    rates = TaxRates.for_jurisdiction(args.jurisdiction)
    summary = summarize_tax_year(engine.get_realized_gains(args.owner, args.year), args.year, rates)

    print(f"Tax year {summary.year} ({summary.jurisdiction}) for {args.owner}: {summary.event_count} events")
    print(f"  short-term gains {summary.short_term_gains}  losses {summary.short_term_losses}")
    print(f"  long-term gains  {summary.long_term_gains}  losses {summary.long_term_losses}")
    print(f"  net {summary.net_gains}  liability {summary.tax_liability:.2f}")

    positions = engine.list_positions(args.owner)
    for p in positions:
        for lot, days in lots_nearing_long_term(engine.get_open_lots(args.owner, p.asset), now, settings.long_term_holding_days):
            print(f"  lot #{lot.id} {p.asset} {lot.open_amount} turns long-term in {days}d "
                  f"({long_term_date(lot, settings.long_term_holding_days):%Y-%m-%d})")

    if args.harvest:
        feed = BinancePriceFeed()
        prices = {}
        for p in positions:
            try:
                prices[p.asset] = feed.current_price(p.asset)
            except PriceUnavailableError:
                log.warning("No price for %s, skipping", p.asset)
        for c in find_harvest_candidates(engine.list_positions(args.owner, prices), rates):
            print(f"  harvest {c.position.asset}@{c.position.venue}: loss {c.unrealized_loss:.2f} "
                  f"saves ~{c.estimated_saving:.2f}")


if __name__ == "__main__":
    main()
