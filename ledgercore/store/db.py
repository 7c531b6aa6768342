"""SQLite store for positions, tax lots, realized gains, SIP plans and backtests.

Functions taking ``conn`` run inside a caller-owned transaction
(see ``schema.transaction``). Functions taking ``db_path`` open their own
connection and are read-only or single-statement.
"""

from __future__ import annotations

import sqlite3
from datetime import datetime
from decimal import Decimal
from pathlib import Path

from ledgercore.store.models import (
    BacktestMetrics,
    BacktestRun,
    BacktestTrade,
    ExecutionStatus,
    Frequency,
    PlanExecution,
    PlanStatus,
    Position,
    RealizedGainEvent,
    RecurringInvestmentPlan,
    TaxLot,
    TradeAction,
)
from ledgercore.store.schema import (
    DEFAULT_DB_PATH,
    _connect,
    from_iso,
    to_dec,
    to_iso,
    utcnow,
)

# ---------------------------------------------------------------------------
# Row mappers
# ---------------------------------------------------------------------------


def _row_to_position(row: sqlite3.Row) -> Position:
    return Position(
        owner=row["owner"],
        asset=row["asset"],
        venue=row["venue"],
        amount=Decimal(row["amount"]),
        average_cost=Decimal(row["average_cost"]),
        created_at=from_iso(row["created_at"]),
        updated_at=from_iso(row["updated_at"]),
    )


def _row_to_lot(row: sqlite3.Row) -> TaxLot:
    return TaxLot(
        id=row["id"],
        owner=row["owner"],
        asset=row["asset"],
        venue=row["venue"],
        open_amount=Decimal(row["open_amount"]),
        original_amount=Decimal(row["original_amount"]),
        unit_cost=Decimal(row["unit_cost"]),
        opened_at=from_iso(row["opened_at"]),
        closed_at=from_iso(row["closed_at"]),
    )


def _row_to_gain(row: sqlite3.Row) -> RealizedGainEvent:
    return RealizedGainEvent(
        owner=row["owner"],
        asset=row["asset"],
        venue=row["venue"],
        lot_id=row["lot_id"],
        amount=Decimal(row["amount"]),
        buy_price=Decimal(row["buy_price"]),
        sell_price=Decimal(row["sell_price"]),
        opened_at=from_iso(row["opened_at"]),
        sold_at=from_iso(row["sold_at"]),
        holding_period_days=row["holding_period_days"],
        is_long_term=bool(row["is_long_term"]),
    )


def _row_to_plan(row: sqlite3.Row) -> RecurringInvestmentPlan:
    return RecurringInvestmentPlan(
        id=row["id"],
        owner=row["owner"],
        asset=row["asset"],
        venue=row["venue"],
        amount=Decimal(row["amount"]),
        currency=row["currency"],
        frequency=Frequency(row["frequency"]),
        next_execution=from_iso(row["next_execution"]),
        status=PlanStatus(row["status"]),
        total_invested=Decimal(row["total_invested"]),
        total_asset_qty=Decimal(row["total_asset_qty"]),
        average_price=Decimal(row["average_price"]),
        failure_count=row["failure_count"],
        payer_ref=row["payer_ref"],
        created_at=from_iso(row["created_at"]),
        updated_at=from_iso(row["updated_at"]),
        goal_amount=to_dec(row["goal_amount"]),
        mandate_ref=row["mandate_ref"],
        claimed_until=from_iso(row["claimed_until"]),
        last_execution=from_iso(row["last_execution"]),
    )


def _row_to_execution(row: sqlite3.Row) -> PlanExecution:
    return PlanExecution(
        id=row["id"],
        plan_id=row["plan_id"],
        status=ExecutionStatus(row["status"]),
        amount=Decimal(row["amount"]),
        scheduled_for=from_iso(row["scheduled_for"]),
        executed_at=from_iso(row["executed_at"]),
        asset_qty=to_dec(row["asset_qty"]),
        price=to_dec(row["price"]),
        payment_ref=row["payment_ref"],
        failure_reason=row["failure_reason"],
    )


def _str_or_none(value: Decimal | None) -> str | None:
    return None if value is None else str(value)


# ---------------------------------------------------------------------------
# Positions
# ---------------------------------------------------------------------------


def fetch_position(
    conn: sqlite3.Connection, owner: str, asset: str, venue: str
) -> Position | None:
    row = conn.execute(
        "SELECT * FROM positions WHERE owner = ? AND asset = ? AND venue = ?",
        (owner, asset, venue),
    ).fetchone()
    return _row_to_position(row) if row else None


def save_position(conn: sqlite3.Connection, position: Position) -> None:
    """Insert or update a position row (amount/average_cost/updated_at)."""
    conn.execute(
        """INSERT INTO positions
           (owner, asset, venue, amount, average_cost, created_at, updated_at)
           VALUES (?, ?, ?, ?, ?, ?, ?)
           ON CONFLICT(owner, asset, venue) DO UPDATE SET
               amount = excluded.amount,
               average_cost = excluded.average_cost,
               updated_at = excluded.updated_at""",
        (
            position.owner,
            position.asset,
            position.venue,
            str(position.amount),
            str(position.average_cost),
            to_iso(position.created_at),
            to_iso(position.updated_at),
        ),
    )


def get_position(
    owner: str, asset: str, venue: str, db_path: Path | str = DEFAULT_DB_PATH
) -> Position | None:
    conn = _connect(db_path)
    try:
        return fetch_position(conn, owner, asset, venue)
    finally:
        conn.close()


def get_positions(
    owner: str | None = None, db_path: Path | str = DEFAULT_DB_PATH
) -> list[Position]:
    """Return positions (optionally for one owner) ordered by owner, asset, venue."""
    conn = _connect(db_path)
    try:
        if owner is None:
            rows = conn.execute(
                "SELECT * FROM positions ORDER BY owner, asset, venue"
            ).fetchall()
        else:
            rows = conn.execute(
                "SELECT * FROM positions WHERE owner = ? ORDER BY asset, venue",
                (owner,),
            ).fetchall()
        return [_row_to_position(r) for r in rows]
    finally:
        conn.close()


# ---------------------------------------------------------------------------
# Tax lots / realized gains
# ---------------------------------------------------------------------------


def fetch_open_lots(conn: sqlite3.Connection, owner: str, asset: str) -> list[TaxLot]:
    """Open lots for (owner, asset) in FIFO order."""
    rows = conn.execute(
        """SELECT * FROM tax_lots
           WHERE owner = ? AND asset = ? AND closed_at IS NULL
           ORDER BY opened_at ASC, id ASC""",
        (owner, asset),
    ).fetchall()
    return [_row_to_lot(r) for r in rows]


def insert_lot(
    conn: sqlite3.Connection,
    *,
    owner: str,
    asset: str,
    venue: str,
    amount: Decimal,
    unit_cost: Decimal,
    opened_at: datetime,
) -> int:
    cur = conn.execute(
        """INSERT INTO tax_lots
           (owner, asset, venue, open_amount, original_amount, unit_cost, opened_at)
           VALUES (?, ?, ?, ?, ?, ?, ?)""",
        (owner, asset, venue, str(amount), str(amount), str(unit_cost), to_iso(opened_at)),
    )
    return cur.lastrowid  # type: ignore[return-value]


def update_lot(
    conn: sqlite3.Connection,
    lot_id: int,
    open_amount: Decimal,
    closed_at: datetime | None = None,
) -> None:
    conn.execute(
        "UPDATE tax_lots SET open_amount = ?, closed_at = ? WHERE id = ?",
        (str(open_amount), to_iso(closed_at) if closed_at else None, lot_id),
    )


def insert_realized_gain(conn: sqlite3.Connection, event: RealizedGainEvent) -> int:
    cur = conn.execute(
        """INSERT INTO realized_gains
           (owner, asset, venue, lot_id, amount, buy_price, sell_price,
            opened_at, sold_at, holding_period_days, is_long_term)
           VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
        (
            event.owner,
            event.asset,
            event.venue,
            event.lot_id,
            str(event.amount),
            str(event.buy_price),
            str(event.sell_price),
            to_iso(event.opened_at),
            to_iso(event.sold_at),
            event.holding_period_days,
            int(event.is_long_term),
        ),
    )
    return cur.lastrowid  # type: ignore[return-value]


def get_open_lots(
    owner: str, asset: str, db_path: Path | str = DEFAULT_DB_PATH
) -> list[TaxLot]:
    conn = _connect(db_path)
    try:
        return fetch_open_lots(conn, owner, asset)
    finally:
        conn.close()


def get_realized_gains(
    owner: str,
    year: int | None = None,
    db_path: Path | str = DEFAULT_DB_PATH,
) -> list[RealizedGainEvent]:
    """Realized gain events for an owner, optionally limited to one calendar year (UTC)."""
    conn = _connect(db_path)
    try:
        if year is None:
            rows = conn.execute(
                "SELECT * FROM realized_gains WHERE owner = ? ORDER BY sold_at, id",
                (owner,),
            ).fetchall()
        else:
            rows = conn.execute(
                """SELECT * FROM realized_gains
                   WHERE owner = ? AND sold_at LIKE ?
                   ORDER BY sold_at, id""",
                (owner, f"{year:04d}-%"),
            ).fetchall()
        return [_row_to_gain(r) for r in rows]
    finally:
        conn.close()


def get_lot_and_position_totals(
    owner: str | None = None,
    db_path: Path | str = DEFAULT_DB_PATH,
) -> list[tuple[str, str, Decimal, Decimal]]:
    """Return (owner, asset, position_total, open_lot_total) for every (owner, asset).

    Sums are computed in Python so TEXT decimals keep full precision.
    """
    conn = _connect(db_path)
    try:
        params: tuple = ()
        where = ""
        if owner is not None:
            where = "WHERE owner = ?"
            params = (owner,)
        totals: dict[tuple[str, str], list[Decimal]] = {}
        for row in conn.execute(f"SELECT owner, asset, amount FROM positions {where}", params):
            key = (row["owner"], row["asset"])
            totals.setdefault(key, [Decimal(0), Decimal(0)])[0] += Decimal(row["amount"])
        lot_where = "WHERE closed_at IS NULL" + (" AND owner = ?" if owner is not None else "")
        for row in conn.execute(
            f"SELECT owner, asset, open_amount FROM tax_lots {lot_where}", params
        ):
            key = (row["owner"], row["asset"])
            totals.setdefault(key, [Decimal(0), Decimal(0)])[1] += Decimal(row["open_amount"])
        return [(o, a, pos, lots) for (o, a), (pos, lots) in sorted(totals.items())]
    finally:
        conn.close()


# ---------------------------------------------------------------------------
# SIP plans
# ---------------------------------------------------------------------------


def insert_plan(
    *,
    owner: str,
    asset: str,
    venue: str,
    amount: Decimal,
    currency: str,
    frequency: Frequency,
    next_execution: datetime,
    payer_ref: str,
    goal_amount: Decimal | None = None,
    mandate_ref: str | None = None,
    db_path: Path | str = DEFAULT_DB_PATH,
) -> int:
    """Insert an ACTIVE plan and return its id."""
    now = to_iso(utcnow())
    conn = _connect(db_path)
    try:
        cur = conn.execute(
            """INSERT INTO sip_plans
               (owner, asset, venue, amount, currency, frequency, next_execution,
                status, payer_ref, goal_amount, mandate_ref, created_at, updated_at)
               VALUES (?, ?, ?, ?, ?, ?, ?, 'ACTIVE', ?, ?, ?, ?, ?)""",
            (
                owner,
                asset,
                venue,
                str(amount),
                currency,
                str(frequency),
                to_iso(next_execution),
                payer_ref,
                _str_or_none(goal_amount),
                mandate_ref,
                now,
                now,
            ),
        )
        conn.commit()
        return cur.lastrowid  # type: ignore[return-value]
    finally:
        conn.close()


def fetch_plan(conn: sqlite3.Connection, plan_id: int) -> RecurringInvestmentPlan | None:
    row = conn.execute("SELECT * FROM sip_plans WHERE id = ?", (plan_id,)).fetchone()
    return _row_to_plan(row) if row else None


def get_plan(plan_id: int, db_path: Path | str = DEFAULT_DB_PATH) -> RecurringInvestmentPlan | None:
    conn = _connect(db_path)
    try:
        return fetch_plan(conn, plan_id)
    finally:
        conn.close()


def get_plans(
    owner: str | None = None,
    status: PlanStatus | None = None,
    db_path: Path | str = DEFAULT_DB_PATH,
) -> list[RecurringInvestmentPlan]:
    clauses = []
    params: list = []
    if owner is not None:
        clauses.append("owner = ?")
        params.append(owner)
    if status is not None:
        clauses.append("status = ?")
        params.append(str(status))
    where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
    conn = _connect(db_path)
    try:
        rows = conn.execute(f"SELECT * FROM sip_plans {where} ORDER BY id", params).fetchall()
        return [_row_to_plan(r) for r in rows]
    finally:
        conn.close()


def get_due_plans(
    now: datetime, db_path: Path | str = DEFAULT_DB_PATH
) -> list[RecurringInvestmentPlan]:
    """ACTIVE plans with next_execution <= now, oldest due first."""
    conn = _connect(db_path)
    try:
        rows = conn.execute(
            """SELECT * FROM sip_plans
               WHERE status = 'ACTIVE' AND next_execution <= ?
               ORDER BY next_execution ASC, id ASC""",
            (to_iso(now),),
        ).fetchall()
        return [_row_to_plan(r) for r in rows]
    finally:
        conn.close()


def claim_plan(
    plan_id: int,
    now: datetime,
    lease_until: datetime,
    db_path: Path | str = DEFAULT_DB_PATH,
) -> bool:
    """Take the execution lease on a due plan. Returns False if another worker holds it."""
    conn = _connect(db_path)
    try:
        now_iso = to_iso(now)
        cur = conn.execute(
            """UPDATE sip_plans
               SET claimed_until = ?, updated_at = ?
               WHERE id = ?
                 AND status = 'ACTIVE'
                 AND next_execution <= ?
                 AND (claimed_until IS NULL OR claimed_until <= ?)""",
            (to_iso(lease_until), now_iso, plan_id, now_iso, now_iso),
        )
        conn.commit()
        return cur.rowcount == 1
    finally:
        conn.close()


def release_claim(plan_id: int, db_path: Path | str = DEFAULT_DB_PATH) -> None:
    conn = _connect(db_path)
    try:
        conn.execute("UPDATE sip_plans SET claimed_until = NULL WHERE id = ?", (plan_id,))
        conn.commit()
    finally:
        conn.close()


def save_plan_progress(conn: sqlite3.Connection, plan: RecurringInvestmentPlan) -> None:
    """Persist the mutable fields of a plan and release its lease."""
    conn.execute(
        """UPDATE sip_plans
           SET next_execution = ?, status = ?, total_invested = ?,
               total_asset_qty = ?, average_price = ?, failure_count = ?,
               last_execution = ?, claimed_until = NULL, updated_at = ?
           WHERE id = ?""",
        (
            to_iso(plan.next_execution),
            str(plan.status),
            str(plan.total_invested),
            str(plan.total_asset_qty),
            str(plan.average_price),
            plan.failure_count,
            to_iso(plan.last_execution) if plan.last_execution else None,
            to_iso(utcnow()),
            plan.id,
        ),
    )


def update_plan_status(
    conn: sqlite3.Connection,
    plan_id: int,
    status: PlanStatus,
    *,
    next_execution: datetime | None = None,
    reset_failures: bool = False,
) -> None:
    conn.execute(
        """UPDATE sip_plans
           SET status = ?,
               next_execution = COALESCE(?, next_execution),
               failure_count = CASE WHEN ? THEN 0 ELSE failure_count END,
               updated_at = ?
           WHERE id = ?""",
        (
            str(status),
            to_iso(next_execution) if next_execution else None,
            int(reset_failures),
            to_iso(utcnow()),
            plan_id,
        ),
    )


def insert_execution(
    conn: sqlite3.Connection,
    *,
    plan_id: int,
    status: ExecutionStatus,
    amount: Decimal,
    scheduled_for: datetime,
    executed_at: datetime,
    asset_qty: Decimal | None = None,
    price: Decimal | None = None,
    payment_ref: str | None = None,
    failure_reason: str | None = None,
) -> int:
    cur = conn.execute(
        """INSERT INTO sip_executions
           (plan_id, status, amount, asset_qty, price, payment_ref,
            failure_reason, scheduled_for, executed_at)
           VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)""",
        (
            plan_id,
            str(status),
            str(amount),
            _str_or_none(asset_qty),
            _str_or_none(price),
            payment_ref,
            failure_reason,
            to_iso(scheduled_for),
            to_iso(executed_at),
        ),
    )
    return cur.lastrowid  # type: ignore[return-value]


def get_plan_executions(
    plan_id: int,
    status: ExecutionStatus | None = None,
    db_path: Path | str = DEFAULT_DB_PATH,
) -> list[PlanExecution]:
    """Executions for a plan in execution order."""
    conn = _connect(db_path)
    try:
        if status is None:
            rows = conn.execute(
                "SELECT * FROM sip_executions WHERE plan_id = ? ORDER BY executed_at, id",
                (plan_id,),
            ).fetchall()
        else:
            rows = conn.execute(
                """SELECT * FROM sip_executions
                   WHERE plan_id = ? AND status = ?
                   ORDER BY executed_at, id""",
                (plan_id, str(status)),
            ).fetchall()
        return [_row_to_execution(r) for r in rows]
    finally:
        conn.close()


# ---------------------------------------------------------------------------
# Backtest runs (insert-only)
# ---------------------------------------------------------------------------


def save_backtest_run(run: BacktestRun, db_path: Path | str = DEFAULT_DB_PATH) -> int:
    """Persist a BacktestRun and its trade log. Returns the run id."""
    conn = _connect(db_path)
    try:
        cur = conn.execute(
            """INSERT INTO backtest_runs
               (strategy_id, start_date, end_date, initial_balance, final_balance,
                total_return_pct, win_rate, max_drawdown, sharpe_ratio,
                profit_factor, exit_count, created_at)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
            (
                run.strategy_id,
                to_iso(run.start_date) if run.start_date else None,
                to_iso(run.end_date) if run.end_date else None,
                run.initial_balance,
                run.final_balance,
                run.total_return_pct,
                run.metrics.win_rate,
                run.metrics.max_drawdown,
                run.metrics.sharpe_ratio,
                run.metrics.profit_factor,
                run.exit_count,
                to_iso(utcnow()),
            ),
        )
        run_id = cur.lastrowid
        conn.executemany(
            """INSERT INTO backtest_trades
               (run_id, seq, action, step, timestamp, price, quantity,
                balance_after, profit, return_pct, reason)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
            [
                (
                    run_id,
                    seq,
                    str(t.action),
                    t.step,
                    to_iso(t.timestamp) if t.timestamp else None,
                    t.price,
                    t.quantity,
                    t.balance_after,
                    t.profit,
                    t.return_pct,
                    t.reason,
                )
                for seq, t in enumerate(run.trade_log)
            ],
        )
        conn.commit()
        return run_id  # type: ignore[return-value]
    finally:
        conn.close()


def get_backtest_run(run_id: int, db_path: Path | str = DEFAULT_DB_PATH) -> BacktestRun | None:
    conn = _connect(db_path)
    try:
        row = conn.execute("SELECT * FROM backtest_runs WHERE id = ?", (run_id,)).fetchone()
        if not row:
            return None
        trades = conn.execute(
            "SELECT * FROM backtest_trades WHERE run_id = ? ORDER BY seq", (run_id,)
        ).fetchall()
        return BacktestRun(
            strategy_id=row["strategy_id"],
            start_date=from_iso(row["start_date"]),
            end_date=from_iso(row["end_date"]),
            initial_balance=row["initial_balance"],
            final_balance=row["final_balance"],
            trade_log=tuple(
                BacktestTrade(
                    action=TradeAction(t["action"]),
                    step=t["step"],
                    timestamp=from_iso(t["timestamp"]),
                    price=t["price"],
                    quantity=t["quantity"],
                    balance_after=t["balance_after"],
                    profit=t["profit"],
                    return_pct=t["return_pct"],
                    reason=t["reason"],
                )
                for t in trades
            ),
            metrics=BacktestMetrics(
                win_rate=row["win_rate"],
                max_drawdown=row["max_drawdown"],
                sharpe_ratio=row["sharpe_ratio"],
                profit_factor=row["profit_factor"],
            ),
        )
    finally:
        conn.close()
