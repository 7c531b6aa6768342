"""Tests for SIP schedule arithmetic."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from ledgercore.sip.schedule import advance, advance_past, monthly_equivalent
from ledgercore.store.models import Frequency


def _dt(y, m, d, h=9):
    return datetime(y, m, d, h, tzinfo=timezone.utc)


class TestAdvance:
    def test_daily_weekly(self):
        assert advance(_dt(2025, 1, 1), Frequency.DAILY) == _dt(2025, 1, 2)
        assert advance(_dt(2025, 1, 1), "WEEKLY") == _dt(2025, 1, 8)

    def test_monthly_calendar(self):
        assert advance(_dt(2025, 1, 15), Frequency.MONTHLY) == _dt(2025, 2, 15)

    def test_month_end_clamps(self):
        assert advance(_dt(2025, 1, 31), Frequency.MONTHLY) == _dt(2025, 2, 28)
        assert advance(_dt(2024, 1, 31), Frequency.MONTHLY) == _dt(2024, 2, 29)


class TestAdvancePast:
    def test_always_moves_forward(self):
        ts = _dt(2025, 1, 1)
        assert advance_past(ts, Frequency.DAILY, ts - timedelta(days=5)) == _dt(2025, 1, 2)

    def test_skips_missed_periods(self):
        assert advance_past(_dt(2025, 1, 1), Frequency.WEEKLY, _dt(2025, 1, 20)) == _dt(2025, 1, 22)

    def test_monthly_keeps_anchor_day(self):
        # Jan 31 -> (Feb 28 skipped) -> Mar 31, not Mar 28
        assert advance_past(_dt(2025, 1, 31), Frequency.MONTHLY, _dt(2025, 3, 1)) == _dt(2025, 3, 31)

    def test_strictly_after_now(self):
        now = _dt(2025, 1, 3)
        assert advance_past(_dt(2025, 1, 1), Frequency.DAILY, now) == _dt(2025, 1, 4)


@pytest.mark.parametrize(
    "frequency,expected",
    [(Frequency.DAILY, Decimal("3000")), (Frequency.WEEKLY, Decimal("433.00")), (Frequency.MONTHLY, Decimal("100"))],
)
def test_monthly_equivalent(frequency, expected):
    assert monthly_equivalent(Decimal("100"), frequency) == expected
