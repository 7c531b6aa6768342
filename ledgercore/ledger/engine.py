"""Position accounting with FIFO tax lots.

Every trade updates the Position row, the tax-lot queue and the realized
gains inside one SQLite transaction.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterable
from datetime import datetime, timezone
from decimal import ROUND_DOWN, Decimal, InvalidOperation, localcontext
from pathlib import Path
from typing import Any

from ledgercore.config import settings
from ledgercore.errors import (
    InsufficientHoldingsError,
    ReconciliationError,
    TradeValidationError,
)
from ledgercore.ledger.tax_lots import TaxLotMatcher
from ledgercore.store import db
from ledgercore.store.models import (
    Position,
    RealizedGainEvent,
    ReconciliationIssue,
    Side,
    TaxLot,
    TradeResult,
)
from ledgercore.store.schema import DEFAULT_DB_PATH, transaction, utcnow

logger = logging.getLogger(__name__)

ExtraWrites = Callable[[Any, TradeResult], None]

# fixed scale for quantities and prices; sums of values at this scale stay exact
QUANTUM = Decimal("1e-18")
LEDGER_PRECISION = 60


def quantize(value: Decimal) -> Decimal:
    """Round down to the ledger scale."""
    with localcontext() as ctx:
        ctx.prec = LEDGER_PRECISION
        return value.quantize(QUANTUM, rounding=ROUND_DOWN)


def to_decimal(value: Any, field_name: str) -> Decimal:
    if isinstance(value, bool):
        raise TradeValidationError(f"{field_name} must be numeric, got {value!r}")
    try:
        dec = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError) as e:
        raise TradeValidationError(f"{field_name} must be numeric, got {value!r}") from e
    if not dec.is_finite():
        raise TradeValidationError(f"{field_name} must be finite, got {value!r}")
    return dec


class LedgerEngine:
    def __init__(
        self,
        db_path: Path | str = DEFAULT_DB_PATH,
        *,
        known_assets: Iterable[str] | None = None,
        clock: Callable[[], datetime] = utcnow,
        long_term_days: int | None = None,
    ) -> None:
        self.db_path = db_path
        self.known_assets = frozenset(known_assets) if known_assets is not None else None
        self.clock = clock
        self.long_term_days = (
            long_term_days if long_term_days is not None else settings.long_term_holding_days
        )
        self._locks: dict[tuple[str, str], threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def _lock_for(self, owner: str, asset: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get((owner, asset))
            if lock is None:
                lock = self._locks[(owner, asset)] = threading.Lock()
            return lock

    def _validate(
        self, owner: str, asset: str, venue: str, side: Any, quantity: Any, price: Any
    ) -> tuple[Side, Decimal, Decimal]:
        for name, value in (("owner", owner), ("asset", asset), ("venue", venue)):
            if not isinstance(value, str) or not value.strip():
                raise TradeValidationError(f"{name} must be a non-empty string")
        try:
            side = Side(str(side).upper())
        except ValueError as e:
            raise TradeValidationError(f"Unknown side {side!r}") from e
        if self.known_assets is not None and asset not in self.known_assets:
            raise TradeValidationError(f"Unknown asset {asset!r}")
        qty = quantize(to_decimal(quantity, "quantity"))
        px = quantize(to_decimal(price, "price"))
        if qty <= 0:
            raise TradeValidationError(f"quantity must be > 0, got {qty}")
        if px <= 0:
            raise TradeValidationError(f"price must be > 0, got {px}")
        return side, qty, px

    def apply_trade(
        self,
        owner: str,
        asset: str,
        venue: str,
        side: Side | str,
        quantity: Decimal | int | str,
        price: Decimal | int | str,
        *,
        executed_at: datetime | None = None,
        extra_writes: ExtraWrites | None = None,
    ) -> TradeResult:
        """Apply a BUY or SELL and return the updated position.

        ``extra_writes(conn, result)`` runs inside the same transaction after
        the ledger writes; if it raises, the whole trade is rolled back.
        """
        side, qty, px = self._validate(owner, asset, venue, side, quantity, price)
        executed_at = executed_at or self.clock()
        if executed_at.tzinfo is None:
            executed_at = executed_at.replace(tzinfo=timezone.utc)

        with self._lock_for(owner, asset), localcontext() as ctx:
            ctx.prec = LEDGER_PRECISION
            with transaction(self.db_path) as conn:
                position = db.fetch_position(conn, owner, asset, venue)
                if side == Side.BUY:
                    result = self._buy(conn, position, owner, asset, venue, qty, px, executed_at)
                else:
                    result = self._sell(conn, position, owner, asset, venue, qty, px, executed_at)
                if extra_writes is not None:
                    extra_writes(conn, result)

        logger.info(
            "%s %s %s@%s qty=%s price=%s -> amount=%s avg_cost=%s realized=%s",
            side, owner, asset, venue, qty, px,
            result.position.amount, result.position.average_cost, result.realized_pnl,
        )
        return result

    def _buy(
        self, conn, position: Position | None, owner: str, asset: str, venue: str,
        qty: Decimal, px: Decimal, executed_at: datetime,
    ) -> TradeResult:
        if position is None:
            position = Position(
                owner=owner,
                asset=asset,
                venue=venue,
                amount=qty,
                average_cost=px,
                created_at=executed_at,
                updated_at=executed_at,
            )
        else:
            new_amount = position.amount + qty
            position.average_cost = (
                position.amount * position.average_cost + qty * px
            ) / new_amount
            position.amount = new_amount
            position.updated_at = executed_at
        db.save_position(conn, position)
        lot_id = db.insert_lot(
            conn,
            owner=owner,
            asset=asset,
            venue=venue,
            amount=qty,
            unit_cost=px,
            opened_at=executed_at,
        )
        return TradeResult(
            position=position, side=Side.BUY, quantity=qty, price=px,
            executed_at=executed_at, lot_id=lot_id,
        )

    def _sell(
        self, conn, position: Position | None, owner: str, asset: str, venue: str,
        qty: Decimal, px: Decimal, executed_at: datetime,
    ) -> TradeResult:
        available = position.amount if position is not None else Decimal(0)
        if position is None or qty > available:
            raise InsufficientHoldingsError(owner, asset, venue, qty, available)

        lots = db.fetch_open_lots(conn, owner, asset)
        by_id = {lot.id: lot for lot in lots}
        matcher = TaxLotMatcher(self.long_term_days)
        events = matcher.consume(lots, qty, px, executed_at)

        closed = set(matcher.closed_lot_ids)
        for lot_id in {e.lot_id for e in events}:
            closed_at = executed_at if lot_id in closed else None
            db.update_lot(conn, lot_id, by_id[lot_id].open_amount, closed_at)
        for event in events:
            db.insert_realized_gain(conn, event)

        position.amount -= qty
        position.updated_at = executed_at
        db.save_position(conn, position)
        return TradeResult(
            position=position, side=Side.SELL, quantity=qty, price=px,
            executed_at=executed_at, realized=events,
        )

    # -- reads ---------------------------------------------------------------

    def get_position(
        self,
        owner: str,
        asset: str,
        venue: str,
        current_price: Decimal | None = None,
    ) -> Position | None:
        position = db.get_position(owner, asset, venue, db_path=self.db_path)
        if position is not None and current_price is not None:
            position.current_price = Decimal(current_price)
        return position

    def list_positions(
        self, owner: str, prices: dict[str, Decimal] | None = None
    ) -> list[Position]:
        """Positions for ``owner``, marked with ``prices`` (keyed by asset) when given."""
        positions = db.get_positions(owner, db_path=self.db_path)
        if prices:
            for p in positions:
                if p.asset in prices:
                    p.current_price = Decimal(prices[p.asset])
        return positions

    def get_open_lots(self, owner: str, asset: str) -> list[TaxLot]:
        return db.get_open_lots(owner, asset, db_path=self.db_path)

    def get_realized_gains(self, owner: str, year: int | None = None) -> list[RealizedGainEvent]:
        return db.get_realized_gains(owner, year, db_path=self.db_path)

    # -- reconciliation ------------------------------------------------------

    def reconcile(self, owner: str | None = None) -> list[ReconciliationIssue]:
        """Compare open-lot totals with position totals per (owner, asset)."""
        issues = [
            ReconciliationIssue(
                owner=o, asset=a, position_amount=pos, open_lot_amount=lots
            )
            for o, a, pos, lots in db.get_lot_and_position_totals(owner, db_path=self.db_path)
            if pos != lots
        ]
        for issue in issues:
            logger.error(
                "Lot/position mismatch %s/%s: position=%s open_lots=%s",
                issue.owner, issue.asset, issue.position_amount, issue.open_lot_amount,
            )
        return issues

    def assert_reconciled(self, owner: str | None = None) -> None:
        issues = self.reconcile(owner)
        if issues:
            logger.critical("Ledger reconciliation failed: %d mismatch(es)", len(issues))
            raise ReconciliationError(issues)
