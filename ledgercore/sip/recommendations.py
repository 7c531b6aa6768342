"""Rule-based SIP suggestions for one owner.

Inputs are the owner's plans and recent daily candles of the reference
market; the caller fetches both.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Sequence
from dataclasses import dataclass
from decimal import Decimal
from enum import StrEnum

import numpy as np

from ledgercore.connectors.base import Candle
from ledgercore.sip.schedule import monthly_equivalent
from ledgercore.store.models import Frequency, PlanStatus, RecurringInvestmentPlan

logger = logging.getLogger(__name__)

VOLATILITY_WINDOW = 30  # daily candles
DEFAULT_VOLATILITY = 0.5
HIGH_VOLATILITY = 0.6

FIRST_SIP_AMOUNT = Decimal("1000")
INCREASE_BELOW = Decimal("5000")  # total monthly-equivalent amount
INCREASE_FACTOR = Decimal("1.5")
INCREASE_CAP = Decimal("10000")
SUGGESTED_GOAL = Decimal("1000000")

CONSERVATIVE = "CONSERVATIVE"


class RecommendationType(StrEnum):
    FIRST_SIP = "FIRST_SIP"
    INCREASE_AMOUNT = "INCREASE_AMOUNT"
    FREQUENCY_CHANGE = "FREQUENCY_CHANGE"
    SET_GOAL = "SET_GOAL"


class Priority(StrEnum):
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"


@dataclass(frozen=True)
class Recommendation:
    type: RecommendationType
    title: str
    reasoning: str
    priority: Priority
    suggested_amount: Decimal | None = None
    suggested_frequency: Frequency | None = None
    suggested_goal: Decimal | None = None


def market_volatility(candles: Sequence[Candle]) -> float:
    """Annualised volatility of daily close-to-close returns (population std x sqrt(365)).

    Falls back to DEFAULT_VOLATILITY when fewer than two closes are available.
    """
    closes = np.array([float(c.close) for c in candles[-VOLATILITY_WINDOW:]], dtype=float)
    if len(closes) < 2 or np.any(closes[:-1] <= 0):
        logger.info("Not enough price history for volatility, using %.2f", DEFAULT_VOLATILITY)
        return DEFAULT_VOLATILITY
    returns = np.diff(closes) / closes[:-1]
    return float(np.std(returns) * math.sqrt(365))


def total_monthly_amount(plans: Sequence[RecurringInvestmentPlan]) -> Decimal:
    return sum((monthly_equivalent(p.amount, p.frequency) for p in plans), Decimal(0))


def recommendations(
    plans: Sequence[RecurringInvestmentPlan],
    candles: Sequence[Candle],
    risk_profile: str | None = None,
) -> list[Recommendation]:
    """Suggestions for an owner, highest priority first.

    Only ACTIVE plans count. ``risk_profile`` CONSERVATIVE suppresses the
    increase-amount suggestion.
    """
    active = [p for p in plans if p.status == PlanStatus.ACTIVE]
    recs: list[Recommendation] = []

    if not active:
        recs.append(
            Recommendation(
                type=RecommendationType.FIRST_SIP,
                title="Start your first SIP",
                reasoning="A small monthly amount builds a position with manageable risk",
                priority=Priority.HIGH,
                suggested_amount=FIRST_SIP_AMOUNT,
                suggested_frequency=Frequency.MONTHLY,
            )
        )

    total = total_monthly_amount(active)
    if active and total < INCREASE_BELOW and (risk_profile or "").upper() != CONSERVATIVE:
        recs.append(
            Recommendation(
                type=RecommendationType.INCREASE_AMOUNT,
                title="Consider increasing your SIP amount",
                reasoning=f"Current monthly commitment is {total}",
                priority=Priority.MEDIUM,
                suggested_amount=min(total * INCREASE_FACTOR, INCREASE_CAP),
            )
        )

    volatility = market_volatility(candles)
    if volatility > HIGH_VOLATILITY:
        recs.append(
            Recommendation(
                type=RecommendationType.FREQUENCY_CHANGE,
                title="Consider a daily SIP during high volatility",
                reasoning=f"Annualised volatility {volatility:.0%} favours daily averaging",
                priority=Priority.MEDIUM,
                suggested_frequency=Frequency.DAILY,
            )
        )

    if not any(p.goal_amount is not None for p in active):
        recs.append(
            Recommendation(
                type=RecommendationType.SET_GOAL,
                title="Set an investment goal",
                reasoning="A target amount lets the plan stop itself once reached",
                priority=Priority.LOW,
                suggested_goal=SUGGESTED_GOAL,
            )
        )

    logger.debug("%d recommendation(s), volatility=%.3f, monthly=%s", len(recs), volatility, total)
    return recs
