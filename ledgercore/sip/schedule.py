"""SIP schedule arithmetic."""

from __future__ import annotations

from datetime import datetime, timedelta
from decimal import Decimal

from dateutil.relativedelta import relativedelta

from ledgercore.store.models import Frequency

# executions per month used to normalise plan amounts
MONTHLY_MULTIPLIER: dict[Frequency, Decimal] = {
    Frequency.DAILY: Decimal("30"),
    Frequency.WEEKLY: Decimal("4.33"),
    Frequency.MONTHLY: Decimal("1"),
}


def period(frequency: Frequency) -> timedelta | relativedelta:
    if frequency == Frequency.DAILY:
        return timedelta(days=1)
    if frequency == Frequency.WEEKLY:
        return timedelta(weeks=1)
    return relativedelta(months=1)


def advance(ts: datetime, frequency: Frequency | str) -> datetime:
    """One period after ``ts``. Month-end dates clamp (Jan 31 -> Feb 28/29)."""
    return ts + period(Frequency(frequency))


def advance_past(ts: datetime, frequency: Frequency | str, now: datetime) -> datetime:
    """Advance ``ts`` by whole periods until it is strictly after ``now``.

    Always advances at least once. Month steps are taken from the original
    anchor so a 31st-of-month plan does not drift to the 28th.
    """
    frequency = Frequency(frequency)
    if frequency == Frequency.MONTHLY:
        n = 1
        nxt = ts + relativedelta(months=n)
        while nxt <= now:
            n += 1
            nxt = ts + relativedelta(months=n)
        return nxt
    nxt = advance(ts, frequency)
    while nxt <= now:
        nxt = advance(nxt, frequency)
    return nxt


def monthly_equivalent(amount: Decimal, frequency: Frequency | str) -> Decimal:
    return amount * MONTHLY_MULTIPLIER[Frequency(frequency)]
