"""Strategy configuration and built-in signal rules.

A rule maps an IndicatorSnapshot and the current open position (or None)
to a Decision. Rules are plain functions so they pickle for process pools.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from enum import StrEnum
from functools import partial

from ledgercore.config import settings
from ledgercore.errors import TradeValidationError
from ledgercore.indicators import IndicatorSnapshot


class Decision(StrEnum):
    ENTER = "ENTER"
    EXIT = "EXIT"
    HOLD = "HOLD"


@dataclass(frozen=True)
class OpenPosition:
    """The simulator's single open position."""

    entry_price: float
    quantity: float
    entry_step: int


@dataclass(frozen=True)
class StrategyConfig:
    strategy_id: str = "rsi_reversal"
    stop_loss_pct: float | None = None  # percent below entry, None disables
    take_profit_pct: float | None = None  # percent above entry, None disables
    rsi_oversold: float = 30.0
    rsi_overbought: float = 70.0

    def __post_init__(self) -> None:
        if not self.strategy_id:
            raise TradeValidationError("strategy_id must be non-empty")
        for name in ("stop_loss_pct", "take_profit_pct"):
            value = getattr(self, name)
            if value is not None and value <= 0:
                raise TradeValidationError(f"{name} must be > 0 or None, got {value}")
        if not 0 <= self.rsi_oversold < self.rsi_overbought <= 100:
            raise TradeValidationError(
                f"RSI thresholds must satisfy 0 <= oversold < overbought <= 100, "
                f"got {self.rsi_oversold}/{self.rsi_overbought}"
            )

    @classmethod
    def from_settings(cls, strategy_id: str = "rsi_macd") -> StrategyConfig:
        """Config with stop-loss/take-profit taken from settings."""
        return cls(
            strategy_id=strategy_id,
            stop_loss_pct=settings.backtest_stop_loss_pct or None,
            take_profit_pct=settings.backtest_take_profit_pct or None,
        )


Rule = Callable[[IndicatorSnapshot, "OpenPosition | None"], Decision]


def rsi_reversal_rule(
    ind: IndicatorSnapshot,
    position: OpenPosition | None,
    oversold: float = 30.0,
    overbought: float = 70.0,
) -> Decision:
    """ENTER when RSI < oversold, EXIT when RSI > overbought."""
    if position is None and ind.rsi < oversold:
        return Decision.ENTER
    if position is not None and ind.rsi > overbought:
        return Decision.EXIT
    return Decision.HOLD


def rsi_macd_rule(
    ind: IndicatorSnapshot,
    position: OpenPosition | None,
    oversold: float = 30.0,
    overbought: float = 70.0,
) -> Decision:
    """ENTER on oversold RSI confirmed by a positive MACD histogram, EXIT on overbought RSI."""
    if position is None and ind.rsi < oversold and ind.macd.histogram > 0:
        return Decision.ENTER
    if position is not None and ind.rsi > overbought:
        return Decision.EXIT
    return Decision.HOLD


RULES: dict[str, Callable[..., Decision]] = {
    "rsi_reversal": rsi_reversal_rule,
    "rsi_macd": rsi_macd_rule,
}


def build_rule(config: StrategyConfig, name: str | None = None) -> Rule:
    """Bind a named rule to the config's RSI thresholds."""
    name = name or config.strategy_id
    if name not in RULES:
        raise TradeValidationError(f"Unknown strategy rule {name!r}; known: {sorted(RULES)}")
    return partial(RULES[name], oversold=config.rsi_oversold, overbought=config.rsi_overbought)
