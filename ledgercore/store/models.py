"""Data models for the SQLite store.

Dataclasses only, no DB access. Ledger and SIP money fields are Decimal.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import StrEnum


class Side(StrEnum):
    BUY = "BUY"
    SELL = "SELL"


class PlanStatus(StrEnum):
    ACTIVE = "ACTIVE"
    PAUSED = "PAUSED"
    CANCELLED = "CANCELLED"
    GOAL_ACHIEVED = "GOAL_ACHIEVED"


class Frequency(StrEnum):
    DAILY = "DAILY"
    WEEKLY = "WEEKLY"
    MONTHLY = "MONTHLY"


class ExecutionStatus(StrEnum):
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


@dataclass
class Position:
    owner: str
    asset: str
    venue: str
    amount: Decimal
    average_cost: Decimal
    created_at: datetime
    updated_at: datetime
    # mark supplied by the caller at read time; never persisted
    current_price: Decimal | None = None

    @property
    def cost_basis(self) -> Decimal:
        return self.amount * self.average_cost

    @property
    def market_value(self) -> Decimal | None:
        if self.current_price is None:
            return None
        return self.amount * self.current_price

    @property
    def unrealized_pnl(self) -> Decimal | None:
        if self.current_price is None:
            return None
        return (self.current_price - self.average_cost) * self.amount

    @property
    def unrealized_pnl_pct(self) -> Decimal | None:
        if self.current_price is None or self.average_cost == 0:
            return None
        return (self.current_price - self.average_cost) / self.average_cost * 100


@dataclass
class TaxLot:
    id: int
    owner: str
    asset: str
    venue: str
    open_amount: Decimal
    original_amount: Decimal
    unit_cost: Decimal
    opened_at: datetime
    closed_at: datetime | None = None


@dataclass(frozen=True)
class RealizedGainEvent:
    owner: str
    asset: str
    venue: str
    lot_id: int
    amount: Decimal
    buy_price: Decimal
    sell_price: Decimal
    opened_at: datetime
    sold_at: datetime
    holding_period_days: int
    is_long_term: bool

    @property
    def gain_loss(self) -> Decimal:
        return (self.sell_price - self.buy_price) * self.amount


@dataclass
class TradeResult:
    """Outcome of LedgerEngine.apply_trade."""

    position: Position
    side: Side
    quantity: Decimal
    price: Decimal
    executed_at: datetime
    lot_id: int | None = None  # set on BUY
    realized: list[RealizedGainEvent] = field(default_factory=list)

    @property
    def realized_pnl(self) -> Decimal:
        return sum((e.gain_loss for e in self.realized), Decimal(0))


@dataclass
class RecurringInvestmentPlan:
    id: int
    owner: str
    asset: str
    venue: str
    amount: Decimal
    currency: str
    frequency: Frequency
    next_execution: datetime
    status: PlanStatus
    total_invested: Decimal
    total_asset_qty: Decimal
    average_price: Decimal
    failure_count: int
    payer_ref: str
    created_at: datetime
    updated_at: datetime
    goal_amount: Decimal | None = None
    mandate_ref: str | None = None
    claimed_until: datetime | None = None
    last_execution: datetime | None = None


@dataclass
class PlanExecution:
    id: int
    plan_id: int
    status: ExecutionStatus
    amount: Decimal
    scheduled_for: datetime
    executed_at: datetime
    asset_qty: Decimal | None = None
    price: Decimal | None = None
    payment_ref: str | None = None
    failure_reason: str | None = None


@dataclass
class ReconciliationIssue:
    owner: str
    asset: str
    position_amount: Decimal
    open_lot_amount: Decimal

    @property
    def difference(self) -> Decimal:
        return self.position_amount - self.open_lot_amount


# ---------------------------------------------------------------------------
# Backtest artifacts (float domain, immutable once computed)
# ---------------------------------------------------------------------------


class TradeAction(StrEnum):
    ENTER = "ENTER"
    EXIT = "EXIT"


@dataclass(frozen=True)
class BacktestTrade:
    action: TradeAction
    step: int  # candle index the trade executed on
    timestamp: datetime | None
    price: float
    quantity: float
    balance_after: float  # cash after the trade
    profit: float | None = None  # EXIT only
    return_pct: float | None = None  # EXIT only
    reason: str = "signal"  # signal | stop_loss | take_profit


@dataclass(frozen=True)
class BacktestMetrics:
    win_rate: float  # percent of exits with profit > 0
    max_drawdown: float  # percent
    sharpe_ratio: float
    profit_factor: float


@dataclass(frozen=True)
class BacktestRun:
    strategy_id: str
    start_date: datetime | None
    end_date: datetime | None
    initial_balance: float
    final_balance: float
    trade_log: tuple[BacktestTrade, ...]
    metrics: BacktestMetrics

    @property
    def total_return_pct(self) -> float:
        if self.initial_balance == 0:
            return 0.0
        return (self.final_balance - self.initial_balance) / self.initial_balance * 100

    @property
    def exit_count(self) -> int:
        return sum(1 for t in self.trade_log if t.action == TradeAction.EXIT)
