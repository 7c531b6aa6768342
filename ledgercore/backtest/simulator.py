"""Single-position strategy simulation over an OHLCV series.

At each step i >= WARMUP the indicators are computed over the trailing
WARMUP closes (candles i-WARMUP .. i-1) and any trade fills at close[i].
Stop-loss / take-profit is checked against the entry price before the rule.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Sequence

from ledgercore.backtest.metrics import compute_metrics
from ledgercore.backtest.strategy import Decision, OpenPosition, Rule, StrategyConfig
from ledgercore.connectors.base import Candle
from ledgercore.errors import BacktestCancelledError, InsufficientDataError, TradeValidationError
from ledgercore.indicators import compute_indicators
from ledgercore.store.models import BacktestRun, BacktestTrade, TradeAction

logger = logging.getLogger(__name__)

WARMUP = 30


class StrategySimulator:
    def __init__(self, warmup: int = WARMUP) -> None:
        self.warmup = warmup

    def run(
        self,
        candles: Sequence[Candle],
        rule: Rule,
        initial_balance: float,
        *,
        config: StrategyConfig | None = None,
        cancel_event: threading.Event | None = None,
    ) -> BacktestRun:
        """Simulate ``rule`` over ``candles`` starting from ``initial_balance`` cash.

        Raises InsufficientDataError for fewer than ``warmup`` candles and
        BacktestCancelledError when ``cancel_event`` is set between steps.
        """
        if len(candles) < self.warmup:
            raise InsufficientDataError(
                f"Need at least {self.warmup} candles, got {len(candles)}"
            )
        if initial_balance <= 0:
            raise TradeValidationError(f"initial_balance must be > 0, got {initial_balance}")
        config = config or StrategyConfig()

        closes = [float(c.close) for c in candles]
        balance = float(initial_balance)
        position: OpenPosition | None = None
        entry_cost = 0.0
        trades: list[BacktestTrade] = []
        balance_curve = [balance]

        def close_position(open_pos: OpenPosition, step: int, price: float, reason: str) -> None:
            nonlocal balance, position
            proceeds = open_pos.quantity * price
            profit = proceeds - entry_cost
            ret_pct = (price - open_pos.entry_price) / open_pos.entry_price * 100
            balance = proceeds
            trades.append(
                BacktestTrade(
                    action=TradeAction.EXIT,
                    step=step,
                    timestamp=candles[step].timestamp,
                    price=price,
                    quantity=open_pos.quantity,
                    balance_after=balance,
                    profit=profit,
                    return_pct=ret_pct,
                    reason=reason,
                )
            )
            balance_curve.append(balance)
            logger.debug("EXIT step=%d price=%.6f profit=%.2f reason=%s", step, price, profit, reason)
            position = None

        for i in range(self.warmup, len(candles)):
            if cancel_event is not None and cancel_event.is_set():
                logger.info("Backtest %s cancelled at step %d", config.strategy_id, i)
                raise BacktestCancelledError(f"{config.strategy_id} cancelled at step {i}")

            price = closes[i]

            if position is not None:
                change_pct = (price - position.entry_price) / position.entry_price * 100
                if config.stop_loss_pct is not None and change_pct <= -config.stop_loss_pct:
                    close_position(position, i, price, "stop_loss")
                    continue
                if config.take_profit_pct is not None and change_pct >= config.take_profit_pct:
                    close_position(position, i, price, "take_profit")
                    continue

            indicators = compute_indicators(closes[i - self.warmup:i])
            decision = rule(indicators, position)

            if decision == Decision.ENTER and position is None and balance > 0:
                qty = balance / price
                entry_cost = balance
                position = OpenPosition(entry_price=price, quantity=qty, entry_step=i)
                balance = 0.0
                trades.append(
                    BacktestTrade(
                        action=TradeAction.ENTER,
                        step=i,
                        timestamp=candles[i].timestamp,
                        price=price,
                        quantity=qty,
                        balance_after=balance,
                    )
                )
                logger.debug("ENTER step=%d price=%.6f qty=%.8f", i, price, qty)
            elif decision == Decision.EXIT and position is not None:
                close_position(position, i, price, "signal")

        final_balance = balance
        if position is not None:
            final_balance = position.quantity * closes[-1]
        balance_curve.append(final_balance)

        run = BacktestRun(
            strategy_id=config.strategy_id,
            start_date=candles[0].timestamp,
            end_date=candles[-1].timestamp,
            initial_balance=float(initial_balance),
            final_balance=final_balance,
            trade_log=tuple(trades),
            metrics=compute_metrics(trades, balance_curve),
        )
        logger.info(
            "Backtest %s: %d trades, final=%.2f (%.2f%%), win_rate=%.1f%%, mdd=%.2f%%",
            run.strategy_id, len(trades), final_balance, run.total_return_pct,
            run.metrics.win_rate, run.metrics.max_drawdown,
        )
        return run
