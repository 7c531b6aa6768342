#!/usr/bin/env python3
"""Ledger reconciliation: open tax lots must sum to position amounts.

Exit code 1 and a Telegram alert on mismatch.

Usage:
    python scripts/reconcile.py
    python scripts/reconcile.py --owner alice --db-path data/ledger.db
"""

import argparse
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

import logging

log = logging.getLogger(__name__)


def main() -> int:
    from ledgercore.errors import ReconciliationError
    from ledgercore.ledger.engine import LedgerEngine
    from ledgercore.logging_config import setup_logging
    from ledgercore.notifications.telegram import format_reconciliation_alert, send_message
    from ledgercore.store.db_path import resolve_db_path

    parser = argparse.ArgumentParser(description="Ledger reconciliation check")
    parser.add_argument("--owner", default=None)
    parser.add_argument("--db-path", type=str, default=None)
    args = parser.parse_args()

    setup_logging()
    db_path = resolve_db_path(args.db_path)
    engine = LedgerEngine(db_path)
    try:
        engine.assert_reconciled(args.owner)
    except ReconciliationError as e:
        send_message(format_reconciliation_alert(e.issues))
        return 1
    log.info("Ledger reconciled (%s)", db_path)
    return 0


if __name__ == "__main__":
    sys.exit(main())
