"""FIFO tax-lot matching.

Consumes the oldest open lots first and emits one RealizedGainEvent per lot
touched by a sell. Lots are mutated in place; fully consumed lots are popped
from the queue and their ids collected in ``closed_lot_ids``.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from decimal import Decimal

from ledgercore.config import settings
from ledgercore.errors import UnreconciledSaleError
from ledgercore.store.models import RealizedGainEvent, TaxLot

logger = logging.getLogger(__name__)


def holding_period_days(opened_at: datetime, sold_at: datetime) -> int:
    """Whole days between purchase and sale (floored)."""
    return (sold_at - opened_at) // timedelta(days=1)


class TaxLotMatcher:
    def __init__(self, long_term_days: int | None = None) -> None:
        self.long_term_days = (
            long_term_days if long_term_days is not None else settings.long_term_holding_days
        )
        self.closed_lot_ids: list[int] = []

    def consume(
        self,
        lots: list[TaxLot],
        sell_quantity: Decimal,
        sell_price: Decimal,
        sell_date: datetime,
    ) -> list[RealizedGainEvent]:
        """Consume ``sell_quantity`` from ``lots`` (oldest first).

        Raises UnreconciledSaleError, leaving ``lots`` untouched, when the open
        lots cannot cover the sell.
        """
        covered = sum((lot.open_amount for lot in lots), Decimal(0))
        if covered < sell_quantity:
            owner = lots[0].owner if lots else "?"
            asset = lots[0].asset if lots else "?"
            logger.error(
                "Unreconciled sale: %s/%s sell %s but open lots cover %s",
                owner, asset, sell_quantity, covered,
            )
            raise UnreconciledSaleError(owner, asset, sell_quantity, covered)

        events: list[RealizedGainEvent] = []
        remaining = sell_quantity
        while remaining > 0:
            lot = lots[0]
            consumed = min(remaining, lot.open_amount)
            days = holding_period_days(lot.opened_at, sell_date)
            events.append(
                RealizedGainEvent(
                    owner=lot.owner,
                    asset=lot.asset,
                    venue=lot.venue,
                    lot_id=lot.id,
                    amount=consumed,
                    buy_price=lot.unit_cost,
                    sell_price=sell_price,
                    opened_at=lot.opened_at,
                    sold_at=sell_date,
                    holding_period_days=days,
                    is_long_term=days >= self.long_term_days,
                )
            )
            lot.open_amount -= consumed
            remaining -= consumed
            if lot.open_amount == 0:
                lot.closed_at = sell_date
                self.closed_lot_ids.append(lot.id)
                lots.pop(0)

        return events
