"""SIP performance analytics.

Pure functions over a plan and its COMPLETED executions. Money is Decimal
except rates (XIRR, projections), which are float.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

from scipy.optimize import brentq

from ledgercore.sip.schedule import monthly_equivalent
from ledgercore.store.models import Frequency, PlanExecution, RecurringInvestmentPlan

logger = logging.getLogger(__name__)

DAYS_PER_YEAR = 365.0
PROJECTION_YEARS = (1, 3, 5)
PROJECTION_SCENARIOS = (
    ("Conservative", 0.15),
    ("Moderate", 0.25),
    ("Optimistic", 0.40),
)


@dataclass(frozen=True)
class SIPPerformance:
    total_invested: Decimal
    current_value: Decimal
    absolute_return: Decimal
    percentage_return: Decimal
    xirr: float | None  # percent, None when it cannot be solved
    average_price: Decimal
    total_asset_qty: Decimal


@dataclass(frozen=True)
class MonthlyBreakdown:
    month: str  # YYYY-MM
    total_invested: Decimal
    asset_purchased: Decimal
    average_price: Decimal
    execution_count: int


@dataclass(frozen=True)
class Consistency:
    expected: int
    actual: int
    score: float  # percent

    @property
    def missed(self) -> int:
        return max(self.expected - self.actual, 0)


@dataclass(frozen=True)
class LumpSumComparison:
    sip_value: Decimal
    lump_sum_value: Decimal

    @property
    def sip_advantage(self) -> Decimal:
        return self.sip_value - self.lump_sum_value

    @property
    def sip_advantage_pct(self) -> Decimal:
        if self.lump_sum_value == 0:
            return Decimal(0)
        return self.sip_advantage / self.lump_sum_value * 100


@dataclass(frozen=True)
class ProjectionScenario:
    name: str
    annual_return: float
    future_value: float
    profit: float
    profit_pct: float


@dataclass(frozen=True)
class Projection:
    years: int
    total_investment: float
    scenarios: tuple[ProjectionScenario, ...]


def xirr(cash_flows: list[tuple[datetime, float]]) -> float | None:
    """Annualized internal rate of return (fraction) for dated cash flows.

    Investments are negative, the terminal value positive. Returns None when
    the flows do not bracket a root.
    """
    if len(cash_flows) < 2:
        return None
    flows = sorted(cash_flows, key=lambda cf: cf[0])
    t0 = flows[0][0]
    years = [(d - t0).total_seconds() / 86400 / DAYS_PER_YEAR for d, _ in flows]
    amounts = [a for _, a in flows]
    if not any(a > 0 for a in amounts) or not any(a < 0 for a in amounts):
        return None
    if years[-1] == 0:
        return None

    def npv(rate: float) -> float:
        return sum(a / (1 + rate) ** t for a, t in zip(amounts, years))

    try:
        return float(brentq(npv, -0.9999, 1e6, maxiter=500))
    except ValueError:
        logger.warning("XIRR did not converge for %d cash flows", len(flows))
        return None


def calculate_performance(
    plan: RecurringInvestmentPlan,
    executions: list[PlanExecution],
    current_price: Decimal,
    as_of: datetime,
) -> SIPPerformance:
    current_value = plan.total_asset_qty * current_price
    invested = plan.total_invested
    absolute = current_value - invested
    pct = absolute / invested * 100 if invested > 0 else Decimal(0)

    flows = [(e.executed_at, -float(e.amount)) for e in executions]
    rate = None
    if flows:
        flows.append((as_of, float(current_value)))
        rate = xirr(flows)
    return SIPPerformance(
        total_invested=invested,
        current_value=current_value,
        absolute_return=absolute,
        percentage_return=pct,
        xirr=rate * 100 if rate is not None else None,
        average_price=plan.average_price,
        total_asset_qty=plan.total_asset_qty,
    )


def monthly_breakdown(executions: list[PlanExecution]) -> list[MonthlyBreakdown]:
    buckets: dict[str, list[PlanExecution]] = {}
    for e in executions:
        buckets.setdefault(e.executed_at.strftime("%Y-%m"), []).append(e)
    out = []
    for month in sorted(buckets):
        rows = buckets[month]
        invested = sum((e.amount for e in rows), Decimal(0))
        qty = sum((e.asset_qty or Decimal(0) for e in rows), Decimal(0))
        out.append(
            MonthlyBreakdown(
                month=month,
                total_invested=invested,
                asset_purchased=qty,
                average_price=invested / qty if qty else Decimal(0),
                execution_count=len(rows),
            )
        )
    return out


def expected_executions(frequency: Frequency, start: datetime, end: datetime) -> int:
    days = (end - start).total_seconds() / 86400
    if days <= 0:
        return 0
    if frequency == Frequency.DAILY:
        return int(days)
    if frequency == Frequency.WEEKLY:
        return int(days // 7)
    return int(days // 30)


def investment_consistency(
    plan: RecurringInvestmentPlan, executions: list[PlanExecution], as_of: datetime
) -> Consistency:
    expected = expected_executions(plan.frequency, plan.created_at, as_of)
    actual = len(executions)
    score = actual / expected * 100 if expected > 0 else 100.0
    return Consistency(expected=expected, actual=actual, score=score)


def lump_sum_comparison(
    plan: RecurringInvestmentPlan,
    executions: list[PlanExecution],
    current_price: Decimal,
) -> LumpSumComparison | None:
    """Compare the plan with investing ``total_invested`` at the first execution price."""
    first = next((e for e in executions if e.price), None)
    if first is None:
        return None
    lump_qty = plan.total_invested / first.price  # type: ignore[operator]
    return LumpSumComparison(
        sip_value=plan.total_asset_qty * current_price,
        lump_sum_value=lump_qty * current_price,
    )


def sip_future_value(monthly_amount: float, annual_return: float, months: int) -> float:
    """Future value of investing ``monthly_amount`` at the start of each month."""
    r = annual_return / 12
    value = 0.0
    for _ in range(months):
        value = (value + monthly_amount) * (1 + r)
    return value


def future_projections(
    amount: Decimal, frequency: Frequency
) -> list[Projection]:
    monthly = float(monthly_equivalent(amount, frequency))
    out = []
    for years in PROJECTION_YEARS:
        months = years * 12
        invested = monthly * months
        scenarios = []
        for name, annual in PROJECTION_SCENARIOS:
            fv = sip_future_value(monthly, annual, months)
            scenarios.append(
                ProjectionScenario(
                    name=name,
                    annual_return=annual,
                    future_value=fv,
                    profit=fv - invested,
                    profit_pct=(fv - invested) / invested * 100 if invested else 0.0,
                )
            )
        out.append(Projection(years=years, total_investment=invested, scenarios=tuple(scenarios)))
    return out
