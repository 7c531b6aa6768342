"""Tests for technical indicators."""

from __future__ import annotations

import pandas as pd
import pytest

from ledgercore.indicators import bollinger_bands, compute_indicators, macd, rsi


class TestRSI:
    def test_only_gains(self):
        assert rsi([float(i) for i in range(1, 31)]) == 100.0

    def test_only_losses(self):
        assert rsi([float(i) for i in range(30, 0, -1)]) == pytest.approx(0.0)

    def test_flat(self):
        assert rsi([50.0] * 30) == 50.0

    def test_too_short_is_neutral(self):
        assert rsi([1.0, 2.0, 3.0]) == 50.0

    def test_bounded(self):
        closes = [100, 102, 101, 105, 103, 108, 107, 110, 104, 106, 109, 111, 108, 112, 115, 113]
        assert 0 < rsi(closes) < 100

    def test_one_gain_after_losses(self):
        # 28 unit losses then a +10 gain: Wilder averages 10/14 vs 13/14
        closes = [128.0 - i for i in range(29)] + [110.0]
        assert rsi(closes) == pytest.approx(100 - 100 / (1 + (10 / 14) / (13 / 14)))

    def test_accepts_series(self):
        assert rsi(pd.Series([float(i) for i in range(1, 31)], index=range(100, 130))) == 100.0


class TestMACD:
    def test_constant_series_is_zero(self):
        m = macd([10.0] * 40)
        assert m.macd == pytest.approx(0.0)
        assert m.signal == pytest.approx(0.0)
        assert m.histogram == pytest.approx(0.0)

    def test_uptrend_positive(self):
        m = macd([float(i) for i in range(1, 41)])
        assert m.macd > 0
        assert m.histogram == pytest.approx(m.macd - m.signal)

    def test_single_value(self):
        assert macd([5.0]).macd == 0.0


class TestBollinger:
    def test_constant_series_collapses(self):
        b = bollinger_bands([10.0] * 25)
        assert b.upper == b.middle == b.lower == 10.0

    def test_short_input_collapses_on_last(self):
        b = bollinger_bands([1.0, 2.0, 3.0])
        assert (b.upper, b.middle, b.lower) == (3.0, 3.0, 3.0)

    def test_band_width(self):
        closes = [float(i % 5) for i in range(30)]
        b = bollinger_bands(closes)
        window = pd.Series(closes[-20:])
        assert b.middle == pytest.approx(window.mean())
        assert b.upper - b.middle == pytest.approx(2 * window.std())
        assert b.middle - b.lower == pytest.approx(2 * window.std())


def test_compute_indicators_snapshot():
    closes = [float(i) for i in range(1, 31)]
    snap = compute_indicators(closes)
    assert snap.close == 30.0
    assert snap.rsi == 100.0
    assert snap.bollinger.middle == pytest.approx(sum(closes[-20:]) / 20)
