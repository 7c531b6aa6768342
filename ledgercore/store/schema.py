"""Database schema DDL, connection and transaction helpers.

Decimals are stored as TEXT and timestamps as fixed-width UTC ISO-8601 so
that string comparison in SQL matches chronological order.
"""

from __future__ import annotations

import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone
from decimal import Decimal
from pathlib import Path

DEFAULT_DB_PATH = Path(__file__).resolve().parent.parent.parent / "data" / "ledger.db"

BUSY_TIMEOUT_MS = 10_000

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS positions (
    owner         TEXT NOT NULL,
    asset         TEXT NOT NULL,
    venue         TEXT NOT NULL,
    amount        TEXT NOT NULL,
    average_cost  TEXT NOT NULL,
    created_at    TEXT NOT NULL,
    updated_at    TEXT NOT NULL,
    PRIMARY KEY (owner, asset, venue)
);

CREATE TABLE IF NOT EXISTS tax_lots (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    owner           TEXT NOT NULL,
    asset           TEXT NOT NULL,
    venue           TEXT NOT NULL,
    open_amount     TEXT NOT NULL,
    original_amount TEXT NOT NULL,
    unit_cost       TEXT NOT NULL,
    opened_at       TEXT NOT NULL,
    closed_at       TEXT
);
CREATE INDEX IF NOT EXISTS idx_tax_lots_queue
    ON tax_lots (owner, asset, closed_at, opened_at, id);

CREATE TABLE IF NOT EXISTS realized_gains (
    id                  INTEGER PRIMARY KEY AUTOINCREMENT,
    owner               TEXT NOT NULL,
    asset               TEXT NOT NULL,
    venue               TEXT NOT NULL,
    lot_id              INTEGER NOT NULL REFERENCES tax_lots(id),
    amount              TEXT NOT NULL,
    buy_price           TEXT NOT NULL,
    sell_price          TEXT NOT NULL,
    opened_at           TEXT NOT NULL,
    sold_at             TEXT NOT NULL,
    holding_period_days INTEGER NOT NULL,
    is_long_term        INTEGER NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_realized_gains_owner ON realized_gains (owner, sold_at);
"""

SIP_SQL = """
CREATE TABLE IF NOT EXISTS sip_plans (
    id               INTEGER PRIMARY KEY AUTOINCREMENT,
    owner            TEXT NOT NULL,
    asset            TEXT NOT NULL,
    venue            TEXT NOT NULL,
    amount           TEXT NOT NULL,
    currency         TEXT NOT NULL,
    frequency        TEXT NOT NULL,
    next_execution   TEXT NOT NULL,
    status           TEXT NOT NULL DEFAULT 'ACTIVE',
    total_invested   TEXT NOT NULL DEFAULT '0',
    total_asset_qty  TEXT NOT NULL DEFAULT '0',
    average_price    TEXT NOT NULL DEFAULT '0',
    failure_count    INTEGER NOT NULL DEFAULT 0,
    payer_ref        TEXT NOT NULL,
    goal_amount      TEXT,
    mandate_ref      TEXT,
    claimed_until    TEXT,
    last_execution   TEXT,
    created_at       TEXT NOT NULL,
    updated_at       TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_sip_plans_due ON sip_plans (status, next_execution);

CREATE TABLE IF NOT EXISTS sip_executions (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    plan_id         INTEGER NOT NULL REFERENCES sip_plans(id),
    status          TEXT NOT NULL,
    amount          TEXT NOT NULL,
    asset_qty       TEXT,
    price           TEXT,
    payment_ref     TEXT,
    failure_reason  TEXT,
    scheduled_for   TEXT NOT NULL,
    executed_at     TEXT NOT NULL
);
CREATE UNIQUE INDEX IF NOT EXISTS idx_sip_executions_completed
    ON sip_executions (plan_id, scheduled_for) WHERE status = 'COMPLETED';
"""

BACKTEST_SQL = """
CREATE TABLE IF NOT EXISTS backtest_runs (
    id               INTEGER PRIMARY KEY AUTOINCREMENT,
    strategy_id      TEXT NOT NULL,
    start_date       TEXT,
    end_date         TEXT,
    initial_balance  REAL NOT NULL,
    final_balance    REAL NOT NULL,
    total_return_pct REAL NOT NULL,
    win_rate         REAL NOT NULL,
    max_drawdown     REAL NOT NULL,
    sharpe_ratio     REAL NOT NULL,
    profit_factor    REAL NOT NULL,
    exit_count       INTEGER NOT NULL,
    created_at       TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS backtest_trades (
    id            INTEGER PRIMARY KEY AUTOINCREMENT,
    run_id        INTEGER NOT NULL REFERENCES backtest_runs(id),
    seq           INTEGER NOT NULL,
    action        TEXT NOT NULL,
    step          INTEGER NOT NULL,
    timestamp     TEXT,
    price         REAL NOT NULL,
    quantity      REAL NOT NULL,
    balance_after REAL NOT NULL,
    profit        REAL,
    return_pct    REAL,
    reason        TEXT NOT NULL DEFAULT 'signal',
    UNIQUE(run_id, seq)
);
"""


def to_iso(dt: datetime) -> str:
    """Fixed-width UTC ISO-8601 (always with microseconds)."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat(timespec="microseconds")


def from_iso(value: str | None) -> datetime | None:
    if not value:
        return None
    dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def to_dec(value: str | None) -> Decimal | None:
    if value is None:
        return None
    return Decimal(value)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _connect(db_path: Path | str = DEFAULT_DB_PATH) -> sqlite3.Connection:
    """Open (or create) the SQLite database and ensure schema exists."""
    db_path = Path(db_path)
    db_path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(str(db_path), timeout=BUSY_TIMEOUT_MS / 1000)
    conn.row_factory = sqlite3.Row
    conn.execute(f"PRAGMA busy_timeout = {BUSY_TIMEOUT_MS}")
    conn.execute("PRAGMA foreign_keys = ON")
    conn.executescript(SCHEMA_SQL)
    conn.executescript(SIP_SQL)
    conn.executescript(BACKTEST_SQL)
    conn.commit()
    return conn


@contextmanager
def transaction(db_path: Path | str = DEFAULT_DB_PATH) -> Iterator[sqlite3.Connection]:
    """Single-writer transaction: BEGIN IMMEDIATE, commit on success, rollback on error."""
    conn = _connect(db_path)
    try:
        conn.execute("BEGIN IMMEDIATE")
        try:
            yield conn
        except BaseException:
            conn.rollback()
            raise
        conn.commit()
    finally:
        conn.close()
