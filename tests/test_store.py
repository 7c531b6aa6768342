"""Tests for the SQLite store helpers."""

from __future__ import annotations

import sqlite3
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from ledgercore.store.db import (
    claim_plan,
    get_due_plans,
    get_plan,
    get_plans,
    insert_execution,
    insert_plan,
    release_claim,
)
from ledgercore.store.models import ExecutionStatus, Frequency, PlanStatus
from ledgercore.store.schema import _connect, from_iso, to_iso, transaction
from tests.helpers import T0

D = Decimal


def _insert(db_path, **overrides) -> int:
    kwargs = {
        "owner": "alice",
        "asset": "BTC",
        "venue": "binance",
        "amount": D("500"),
        "currency": "INR",
        "frequency": Frequency.WEEKLY,
        "next_execution": T0,
        "payer_ref": "upi:alice",
        "db_path": db_path,
    }
    kwargs.update(overrides)
    return insert_plan(**kwargs)


class TestTimestamps:
    def test_iso_is_fixed_width_utc(self):
        ist = timezone(timedelta(hours=5, minutes=30))
        s = to_iso(datetime(2025, 1, 1, 14, 30, tzinfo=ist))
        assert s == "2025-01-01T09:00:00.000000+00:00"

    def test_naive_treated_as_utc(self):
        assert from_iso("2025-01-01T09:00:00") == T0
        assert from_iso("2025-01-01T09:00:00Z") == T0
        assert from_iso(None) is None

    def test_lexical_order_is_chronological(self):
        a = to_iso(T0)
        b = to_iso(T0 + timedelta(microseconds=1))
        c = to_iso(T0 + timedelta(days=1))
        assert a < b < c


class TestSchema:
    def test_tables_created(self, db_path):
        conn = _connect(db_path)
        names = {r[0] for r in conn.execute("SELECT name FROM sqlite_master WHERE type='table'")}
        conn.close()
        assert {
            "positions", "tax_lots", "realized_gains", "sip_plans",
            "sip_executions", "backtest_runs", "backtest_trades",
        } <= names

    def test_transaction_rolls_back(self, db_path):
        plan_id = _insert(db_path)
        with pytest.raises(RuntimeError):
            with transaction(db_path) as conn:
                conn.execute("UPDATE sip_plans SET failure_count = 9 WHERE id = ?", (plan_id,))
                raise RuntimeError("boom")
        assert get_plan(plan_id, db_path=db_path).failure_count == 0


class TestPlans:
    def test_roundtrip_decimal_fields(self, db_path):
        plan_id = _insert(db_path, amount=D("123.456789"), goal_amount=D("1e6"), mandate_ref="m-1")
        plan = get_plan(plan_id, db_path=db_path)
        assert plan.amount == D("123.456789")
        assert plan.goal_amount == D("1e6")
        assert plan.mandate_ref == "m-1"
        assert plan.status == PlanStatus.ACTIVE
        assert plan.next_execution == T0

    def test_due_plans_ordering_and_filter(self, db_path):
        late = _insert(db_path, next_execution=T0 - timedelta(hours=1))
        early = _insert(db_path, next_execution=T0 - timedelta(hours=2))
        _insert(db_path, next_execution=T0 + timedelta(seconds=1))
        assert [p.id for p in get_due_plans(T0, db_path=db_path)] == [early, late]

    def test_get_plans_filters(self, db_path):
        _insert(db_path)
        _insert(db_path, owner="bob")
        assert len(get_plans(db_path=db_path)) == 2
        assert [p.owner for p in get_plans(owner="bob", db_path=db_path)] == ["bob"]
        assert get_plans(status=PlanStatus.PAUSED, db_path=db_path) == []

    def test_claim_is_exclusive_until_released(self, db_path):
        plan_id = _insert(db_path)
        lease = T0 + timedelta(minutes=5)
        assert claim_plan(plan_id, T0, lease, db_path=db_path) is True
        assert claim_plan(plan_id, T0, lease, db_path=db_path) is False
        release_claim(plan_id, db_path=db_path)
        assert claim_plan(plan_id, T0, lease, db_path=db_path) is True

    def test_claim_requires_due(self, db_path):
        plan_id = _insert(db_path, next_execution=T0 + timedelta(hours=1))
        assert claim_plan(plan_id, T0, T0 + timedelta(minutes=5), db_path=db_path) is False

    def test_completed_execution_unique_per_schedule(self, db_path):
        plan_id = _insert(db_path)
        kwargs = {
            "plan_id": plan_id,
            "status": ExecutionStatus.COMPLETED,
            "amount": D(500),
            "scheduled_for": T0,
            "executed_at": T0,
        }
        with transaction(db_path) as conn:
            insert_execution(conn, **kwargs)
        with pytest.raises(sqlite3.IntegrityError):
            with transaction(db_path) as conn:
                insert_execution(conn, **kwargs)
        with transaction(db_path) as conn:
            insert_execution(conn, **{**kwargs, "status": ExecutionStatus.FAILED})
            insert_execution(conn, **{**kwargs, "status": ExecutionStatus.FAILED})
