"""Technical indicators over a close-price sequence.

Each function returns the value at the last element of the input. Inputs
too short for an indicator produce a neutral value instead of NaN.
"""

from __future__ import annotations

import math
from collections.abc import Sequence
from dataclasses import dataclass

import pandas as pd

RSI_PERIOD = 14
MACD_FAST = 12
MACD_SLOW = 26
MACD_SIGNAL = 9
BB_PERIOD = 20
BB_STD = 2.0


@dataclass(frozen=True)
class MACDValue:
    macd: float
    signal: float
    histogram: float


@dataclass(frozen=True)
class BollingerValue:
    upper: float
    middle: float
    lower: float


@dataclass(frozen=True)
class IndicatorSnapshot:
    rsi: float
    macd: MACDValue
    bollinger: BollingerValue
    close: float


def _series(closes: Sequence[float] | pd.Series) -> pd.Series:
    if isinstance(closes, pd.Series):
        return closes.astype(float).reset_index(drop=True)
    return pd.Series(list(closes), dtype=float)


def ema(series: pd.Series, span: int) -> pd.Series:
    return series.ewm(span=span, adjust=False).mean()


def rsi(closes: Sequence[float] | pd.Series, period: int = RSI_PERIOD) -> float:
    """Wilder RSI of the last close.

    100 when the window has gains and no losses, 50 when it is flat or too short.
    """
    s = _series(closes)
    delta = s.diff().dropna()
    if len(delta) < period:
        return 50.0
    gain = delta.clip(lower=0)
    loss = (-delta).clip(lower=0)
    avg_gain = gain.ewm(alpha=1 / period, adjust=False, min_periods=period).mean().iloc[-1]
    avg_loss = loss.ewm(alpha=1 / period, adjust=False, min_periods=period).mean().iloc[-1]
    if avg_loss == 0:
        return 100.0 if avg_gain > 0 else 50.0
    rs = avg_gain / avg_loss
    return float(100 - 100 / (1 + rs))


def macd(
    closes: Sequence[float] | pd.Series,
    fast: int = MACD_FAST,
    slow: int = MACD_SLOW,
    signal: int = MACD_SIGNAL,
) -> MACDValue:
    s = _series(closes)
    if len(s) < 2:
        return MACDValue(0.0, 0.0, 0.0)
    macd_line = ema(s, fast) - ema(s, slow)
    signal_line = ema(macd_line, signal)
    m = float(macd_line.iloc[-1])
    sig = float(signal_line.iloc[-1])
    return MACDValue(macd=m, signal=sig, histogram=m - sig)


def bollinger_bands(
    closes: Sequence[float] | pd.Series,
    period: int = BB_PERIOD,
    num_std: float = BB_STD,
) -> BollingerValue:
    s = _series(closes)
    if s.empty:
        return BollingerValue(0.0, 0.0, 0.0)
    if len(s) < period:
        last = float(s.iloc[-1])
        return BollingerValue(last, last, last)
    middle = float(s.rolling(window=period, min_periods=period).mean().iloc[-1])
    std = float(s.rolling(window=period, min_periods=period).std().iloc[-1])
    if math.isnan(std):
        std = 0.0
    return BollingerValue(
        upper=middle + num_std * std,
        middle=middle,
        lower=middle - num_std * std,
    )


def compute_indicators(closes: Sequence[float] | pd.Series) -> IndicatorSnapshot:
    """RSI-14, MACD(12,26,9) and Bollinger(20,2) of the window's last close."""
    s = _series(closes)
    return IndicatorSnapshot(
        rsi=rsi(s),
        macd=macd(s),
        bollinger=bollinger_bands(s),
        close=float(s.iloc[-1]) if not s.empty else 0.0,
    )
