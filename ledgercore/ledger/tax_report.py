"""Yearly capital-gains summary and tax-planning hints."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal

from ledgercore.errors import TradeValidationError
from ledgercore.ledger.tax_lots import holding_period_days
from ledgercore.store.models import Position, RealizedGainEvent, TaxLot

logger = logging.getLogger(__name__)

# jurisdiction -> (short-term rate, long-term rate)
JURISDICTION_RATES: dict[str, tuple[Decimal, Decimal]] = {
    "IN": (Decimal("0.30"), Decimal("0.20")),
    "US": (Decimal("0.25"), Decimal("0.15")),
}


@dataclass(frozen=True)
class TaxRates:
    jurisdiction: str
    short_term: Decimal
    long_term: Decimal

    @classmethod
    def for_jurisdiction(cls, code: str) -> TaxRates:
        code = code.upper()
        if code not in JURISDICTION_RATES:
            raise TradeValidationError(f"Unknown tax jurisdiction {code!r}")
        short_term, long_term = JURISDICTION_RATES[code]
        return cls(jurisdiction=code, short_term=short_term, long_term=long_term)


@dataclass(frozen=True)
class TaxSummary:
    year: int
    jurisdiction: str
    total_gains: Decimal
    total_losses: Decimal
    short_term_gains: Decimal
    long_term_gains: Decimal
    short_term_losses: Decimal
    long_term_losses: Decimal
    tax_liability: Decimal
    event_count: int

    @property
    def net_gains(self) -> Decimal:
        return self.total_gains - self.total_losses


def summarize_tax_year(
    events: list[RealizedGainEvent], year: int, rates: TaxRates
) -> TaxSummary:
    """Aggregate the realized events sold in ``year``.

    Losses are reported as positive magnitudes. Tax is charged on gains only,
    and only when the year nets out positive.
    """
    zero = Decimal(0)
    st_gains = lt_gains = st_losses = lt_losses = zero
    count = 0
    for e in events:
        if e.sold_at.year != year:
            continue
        count += 1
        gl = e.gain_loss
        if gl > 0:
            if e.is_long_term:
                lt_gains += gl
            else:
                st_gains += gl
        elif gl < 0:
            if e.is_long_term:
                lt_losses += -gl
            else:
                st_losses += -gl

    total_gains = st_gains + lt_gains
    total_losses = st_losses + lt_losses
    liability = zero
    if total_gains - total_losses > 0:
        liability = st_gains * rates.short_term + lt_gains * rates.long_term

    return TaxSummary(
        year=year,
        jurisdiction=rates.jurisdiction,
        total_gains=total_gains,
        total_losses=total_losses,
        short_term_gains=st_gains,
        long_term_gains=lt_gains,
        short_term_losses=st_losses,
        long_term_losses=lt_losses,
        tax_liability=liability,
        event_count=count,
    )


@dataclass(frozen=True)
class HarvestCandidate:
    position: Position
    unrealized_loss: Decimal  # positive magnitude
    estimated_saving: Decimal


def find_harvest_candidates(
    positions: list[Position], rates: TaxRates | None = None
) -> list[HarvestCandidate]:
    """Marked positions sitting on an unrealized loss, largest loss first.

    Unmarked positions are skipped. The saving estimate applies the
    short-term rate to the loss.
    """
    rate = rates.short_term if rates else Decimal(0)
    out = []
    for p in positions:
        pnl = p.unrealized_pnl
        if pnl is None or pnl >= 0 or p.amount == 0:
            continue
        out.append(HarvestCandidate(position=p, unrealized_loss=-pnl, estimated_saving=-pnl * rate))
    out.sort(key=lambda c: c.unrealized_loss, reverse=True)
    return out


def lots_nearing_long_term(
    lots: list[TaxLot],
    as_of: datetime,
    long_term_days: int = 365,
    window_days: int = 65,
) -> list[tuple[TaxLot, int]]:
    """Open short-term lots within ``window_days`` of long-term treatment.

    Returns (lot, days_remaining) pairs, soonest first.
    """
    out = []
    for lot in lots:
        held = holding_period_days(lot.opened_at, as_of)
        remaining = long_term_days - held
        if 0 < remaining <= window_days:
            out.append((lot, remaining))
    out.sort(key=lambda pair: pair[1])
    return out


def long_term_date(lot: TaxLot, long_term_days: int = 365) -> datetime:
    return lot.opened_at + timedelta(days=long_term_days)
