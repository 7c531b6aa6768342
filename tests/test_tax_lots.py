"""Tests for FIFO tax-lot matching."""

from __future__ import annotations

from datetime import timedelta
from decimal import Decimal

import pytest

from ledgercore.errors import UnreconciledSaleError
from ledgercore.ledger.tax_lots import TaxLotMatcher, holding_period_days
from ledgercore.store.models import TaxLot
from tests.helpers import T0

D = Decimal


def _lot(lot_id: int, amount: str, cost: str, days_ago: int = 0) -> TaxLot:
    return TaxLot(
        id=lot_id,
        owner="alice",
        asset="BTC",
        venue="binance",
        open_amount=D(amount),
        original_amount=D(amount),
        unit_cost=D(cost),
        opened_at=T0 - timedelta(days=days_ago),
    )


class TestConsume:
    def test_fifo_order(self):
        lots = [_lot(1, "10", "100"), _lot(2, "10", "200")]
        matcher = TaxLotMatcher(long_term_days=365)
        events = matcher.consume(lots, D(12), D(150), T0)

        assert [(e.lot_id, e.amount, e.gain_loss) for e in events] == [
            (1, D(10), D(500)),
            (2, D(2), D(-100)),
        ]
        assert sum(e.gain_loss for e in events) == D(400)
        assert matcher.closed_lot_ids == [1]
        assert len(lots) == 1
        assert lots[0].open_amount == D(8)

    def test_exact_fill_closes_lot(self):
        lots = [_lot(1, "3", "100")]
        matcher = TaxLotMatcher(long_term_days=365)
        matcher.consume(lots, D(3), D(90), T0)
        assert lots == []
        assert matcher.closed_lot_ids == [1]

    def test_partial_fill_keeps_lot_open(self):
        lots = [_lot(1, "3", "100")]
        matcher = TaxLotMatcher(long_term_days=365)
        matcher.consume(lots, D("0.5"), D(90), T0)
        assert lots[0].open_amount == D("2.5")
        assert lots[0].closed_at is None
        assert matcher.closed_lot_ids == []

    def test_sell_exceeding_lots_raises_and_leaves_queue(self):
        lots = [_lot(1, "1", "100"), _lot(2, "1", "100")]
        matcher = TaxLotMatcher(long_term_days=365)
        with pytest.raises(UnreconciledSaleError) as exc:
            matcher.consume(lots, D(3), D(150), T0)
        assert exc.value.covered == D(2)
        assert [lot.open_amount for lot in lots] == [D(1), D(1)]

    def test_empty_queue(self):
        with pytest.raises(UnreconciledSaleError):
            TaxLotMatcher(long_term_days=365).consume([], D(1), D(1), T0)


class TestHoldingPeriod:
    def test_floor_of_days(self):
        assert holding_period_days(T0, T0 + timedelta(days=2, hours=23)) == 2

    @pytest.mark.parametrize("days,long_term", [(364, False), (365, True), (800, True)])
    def test_long_term_boundary(self, days, long_term):
        lots = [_lot(1, "1", "100", days_ago=days)]
        (event,) = TaxLotMatcher(long_term_days=365).consume(lots, D(1), D(120), T0)
        assert event.holding_period_days == days
        assert event.is_long_term is long_term

    def test_threshold_from_settings(self, monkeypatch):
        monkeypatch.setattr("ledgercore.ledger.tax_lots.settings.long_term_holding_days", 30)
        lots = [_lot(1, "1", "100", days_ago=31)]
        (event,) = TaxLotMatcher().consume(lots, D(1), D(120), T0)
        assert event.is_long_term is True
