"""Tests for SIP recommendations and market volatility."""

from __future__ import annotations

import math
from datetime import datetime, timezone
from decimal import Decimal

import pytest

from ledgercore.errors import PriceUnavailableError
from ledgercore.sip.recommendations import (
    DEFAULT_VOLATILITY,
    RecommendationType,
    market_volatility,
    recommendations,
    total_monthly_amount,
)
from ledgercore.sip.scheduler import RecurringInvestmentScheduler
from ledgercore.store.models import Frequency, PlanStatus, RecurringInvestmentPlan
from tests.helpers import FakePaymentGateway, FakePriceFeed, make_candles

D = Decimal
START = datetime(2024, 1, 1, tzinfo=timezone.utc)


def _plan(amount="1000", frequency=Frequency.MONTHLY, status=PlanStatus.ACTIVE, goal=None):
    return RecurringInvestmentPlan(
        id=1,
        owner="alice",
        asset="BTC",
        venue="binance",
        amount=D(amount),
        currency="INR",
        frequency=frequency,
        next_execution=START,
        status=status,
        total_invested=D(0),
        total_asset_qty=D(0),
        average_price=D(0),
        failure_count=0,
        payer_ref="upi:alice",
        created_at=START,
        updated_at=START,
        goal_amount=goal,
    )


def _types(recs):
    return [r.type for r in recs]


FLAT = make_candles([100.0] * 30)
CHOPPY = make_candles([100.0, 110.0] * 15)


class TestMarketVolatility:
    def test_known_value(self):
        vol = market_volatility(make_candles([100.0, 110.0, 99.0]))
        assert vol == pytest.approx(0.1 * math.sqrt(365))

    def test_flat_market(self):
        assert market_volatility(FLAT) == 0.0

    def test_short_history_uses_default(self):
        assert market_volatility(make_candles([100.0])) == DEFAULT_VOLATILITY
        assert market_volatility([]) == DEFAULT_VOLATILITY

    def test_only_last_window_counts(self):
        candles = make_candles([100.0, 200.0] * 20 + [100.0] * 30)
        assert market_volatility(candles) == 0.0


class TestRecommendations:
    def test_new_owner(self):
        recs = recommendations([], FLAT)
        assert _types(recs) == [RecommendationType.FIRST_SIP, RecommendationType.SET_GOAL]
        assert recs[0].suggested_amount == D(1000)
        assert recs[0].suggested_frequency == Frequency.MONTHLY

    def test_small_plans_suggest_increase(self):
        recs = recommendations([_plan("500", Frequency.WEEKLY)], FLAT)
        increase = next(r for r in recs if r.type == RecommendationType.INCREASE_AMOUNT)
        # 500 x 4.33 = 2165 per month, x1.5
        assert increase.suggested_amount == D("3247.500")

    def test_increase_only_below_threshold(self):
        recs = recommendations([_plan("4900")], FLAT)
        increase = next(r for r in recs if r.type == RecommendationType.INCREASE_AMOUNT)
        assert increase.suggested_amount == D(7350)
        recs = recommendations([_plan("200", Frequency.DAILY)], FLAT)
        assert RecommendationType.INCREASE_AMOUNT not in _types(recs)

    def test_conservative_profile_skips_increase(self):
        recs = recommendations([_plan("500")], FLAT, risk_profile="conservative")
        assert RecommendationType.INCREASE_AMOUNT not in _types(recs)

    def test_high_volatility_suggests_daily(self):
        recs = recommendations([_plan("6000", goal=D(100000))], CHOPPY)
        assert _types(recs) == [RecommendationType.FREQUENCY_CHANGE]
        assert recs[0].suggested_frequency == Frequency.DAILY

    def test_paused_plans_ignored(self):
        recs = recommendations([_plan(status=PlanStatus.PAUSED, goal=D(1))], FLAT)
        assert _types(recs) == [RecommendationType.FIRST_SIP, RecommendationType.SET_GOAL]

    def test_total_monthly_amount(self):
        plans = [_plan("100", Frequency.DAILY), _plan("100", Frequency.WEEKLY), _plan("100")]
        assert total_monthly_amount(plans) == D("3533.00")


class _BrokenHistoryFeed(FakePriceFeed):
    def historical_candles(self, symbol, timeframe, limit):
        raise PriceUnavailableError("klines down")


class TestSchedulerRecommendations:
    def test_uses_owner_plans(self, engine):
        scheduler = RecurringInvestmentScheduler(engine, FakePriceFeed("100"), FakePaymentGateway())
        try:
            scheduler.create_plan("alice", "BTC", "20000", "MONTHLY", payer_ref="upi:alice", goal_amount="1e6")
            assert scheduler.recommendations("alice") == []
            assert RecommendationType.FIRST_SIP in _types(scheduler.recommendations("bob"))
        finally:
            scheduler.close()

    def test_feed_outage_falls_back_to_default_volatility(self, engine):
        scheduler = RecurringInvestmentScheduler(engine, _BrokenHistoryFeed("100"), FakePaymentGateway())
        try:
            recs = scheduler.recommendations("bob")
        finally:
            scheduler.close()
        assert RecommendationType.FREQUENCY_CHANGE not in _types(recs)
