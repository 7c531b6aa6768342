"""Recurring investment (SIP) scheduler.

A fixed-interval sweep picks ACTIVE plans whose next_execution is due,
claims each with a lease and executes it once:

    quote price -> charge payer -> ledger BUY + plan update (one transaction)

Price feed and payment failures are absorbed into plan state: retry in
``retry_delay``, PAUSED after ``max_failures`` consecutive failures.
"""

from __future__ import annotations

import logging
import sqlite3
import threading
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeout
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from decimal import Decimal
from pathlib import Path
from typing import Any

from ledgercore.config import settings
from ledgercore.connectors.base import NotificationSink, PaymentGateway, PriceFeed
from ledgercore.errors import (
    ExternalServiceError,
    LedgerCoreError,
    PaymentFailedError,
    PlanStateError,
    PriceUnavailableError,
    TradeValidationError,
)
from ledgercore.ledger.engine import LedgerEngine, quantize, to_decimal
from ledgercore.sip.performance import SIPPerformance, calculate_performance
from ledgercore.sip.recommendations import VOLATILITY_WINDOW, Recommendation, recommendations
from ledgercore.sip.schedule import advance_past
from ledgercore.store import db
from ledgercore.store.models import (
    ExecutionStatus,
    Frequency,
    PlanStatus,
    RecurringInvestmentPlan,
    Side,
    TradeResult,
)
from ledgercore.store.schema import to_iso, transaction, utcnow

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS: dict[PlanStatus, frozenset[PlanStatus]] = {
    PlanStatus.ACTIVE: frozenset(
        {PlanStatus.PAUSED, PlanStatus.CANCELLED, PlanStatus.GOAL_ACHIEVED}
    ),
    PlanStatus.PAUSED: frozenset({PlanStatus.ACTIVE, PlanStatus.CANCELLED}),
    PlanStatus.CANCELLED: frozenset(),
    PlanStatus.GOAL_ACHIEVED: frozenset(),
}


@dataclass
class ExecutionResult:
    """Outcome of one plan in a sweep."""

    plan_id: int
    status: str  # executed, failed, skipped
    plan_status: PlanStatus | None = None
    asset_qty: Decimal | None = None
    price: Decimal | None = None
    payment_ref: str | None = None
    error: str | None = None


class RecurringInvestmentScheduler:
    def __init__(
        self,
        ledger: LedgerEngine,
        price_feed: PriceFeed,
        payment_gateway: PaymentGateway,
        notifier: NotificationSink | None = None,
        *,
        db_path: Path | str | None = None,
        clock: Callable[[], datetime] = utcnow,
        call_timeout_sec: float | None = None,
        retry_delay: timedelta | None = None,
        max_failures: int | None = None,
        lease_sec: float | None = None,
    ) -> None:
        self.ledger = ledger
        self.price_feed = price_feed
        self.payment_gateway = payment_gateway
        self.notifier = notifier
        self.db_path = db_path if db_path is not None else ledger.db_path
        self.clock = clock
        self.call_timeout_sec = (
            call_timeout_sec if call_timeout_sec is not None else settings.external_call_timeout_sec
        )
        self.retry_delay = retry_delay or timedelta(minutes=settings.sip_retry_delay_min)
        self.max_failures = max_failures if max_failures is not None else settings.sip_max_failures
        self.lease = timedelta(
            seconds=lease_sec if lease_sec is not None else settings.sip_claim_lease_sec
        )
        self._io_pool = ThreadPoolExecutor(max_workers=4, thread_name_prefix="sip-io")
        self._plan_locks: dict[int, threading.Lock] = {}
        self._plan_locks_guard = threading.Lock()

    def close(self) -> None:
        self._io_pool.shutdown(wait=False, cancel_futures=True)

    # -- plan lifecycle ------------------------------------------------------

    def create_plan(
        self,
        owner: str,
        asset: str,
        amount: Decimal | int | str,
        frequency: Frequency | str,
        *,
        payer_ref: str,
        venue: str | None = None,
        currency: str | None = None,
        start_at: datetime | None = None,
        goal_amount: Decimal | int | str | None = None,
        mandate_ref: str | None = None,
    ) -> RecurringInvestmentPlan:
        if not owner or not asset or not payer_ref:
            raise TradeValidationError("owner, asset and payer_ref are required")
        amount = to_decimal(amount, "amount")
        if amount <= 0:
            raise TradeValidationError(f"SIP amount must be > 0, got {amount}")
        try:
            frequency = Frequency(str(frequency).upper())
        except ValueError as e:
            raise TradeValidationError(f"Unknown frequency {frequency!r}") from e
        goal = to_decimal(goal_amount, "goal_amount") if goal_amount is not None else None
        if goal is not None and goal <= 0:
            raise TradeValidationError(f"goal_amount must be > 0, got {goal}")

        plan_id = db.insert_plan(
            owner=owner,
            asset=asset,
            venue=venue or settings.default_venue,
            amount=amount,
            currency=currency or settings.default_currency,
            frequency=frequency,
            next_execution=start_at or self.clock(),
            payer_ref=payer_ref,
            goal_amount=goal,
            mandate_ref=mandate_ref,
            db_path=self.db_path,
        )
        logger.info(
            "Created SIP #%d: %s %s %s of %s for %s",
            plan_id, frequency, amount, currency or settings.default_currency, asset, owner,
        )
        return db.get_plan(plan_id, db_path=self.db_path)  # type: ignore[return-value]

    def _transition(
        self,
        plan_id: int,
        target: PlanStatus,
        *,
        next_execution: Callable[[RecurringInvestmentPlan], datetime] | None = None,
        reset_failures: bool = False,
    ) -> RecurringInvestmentPlan:
        with transaction(self.db_path) as conn:
            plan = db.fetch_plan(conn, plan_id)
            if plan is None:
                raise PlanStateError(f"SIP plan {plan_id} not found")
            if target not in ALLOWED_TRANSITIONS[plan.status]:
                raise PlanStateError(f"SIP #{plan_id}: {plan.status} -> {target} not allowed")
            db.update_plan_status(
                conn,
                plan_id,
                target,
                next_execution=next_execution(plan) if next_execution else None,
                reset_failures=reset_failures,
            )
            updated = db.fetch_plan(conn, plan_id)
        logger.info("SIP #%d: %s -> %s", plan_id, plan.status, target)
        return updated  # type: ignore[return-value]

    def pause_plan(self, plan_id: int) -> RecurringInvestmentPlan:
        return self._transition(plan_id, PlanStatus.PAUSED)

    def resume_plan(self, plan_id: int, now: datetime | None = None) -> RecurringInvestmentPlan:
        now = now or self.clock()
        return self._transition(
            plan_id,
            PlanStatus.ACTIVE,
            next_execution=lambda p: max(p.next_execution, now),
            reset_failures=True,
        )

    def cancel_plan(self, plan_id: int) -> RecurringInvestmentPlan:
        plan = self._transition(plan_id, PlanStatus.CANCELLED)
        if plan.mandate_ref:
            try:
                self._call(self.payment_gateway.cancel_mandate, plan.mandate_ref, error_cls=PaymentFailedError)
            except ExternalServiceError as e:
                logger.error("SIP #%d: mandate %s cancel failed: %s", plan_id, plan.mandate_ref, e)
        return plan

    # -- sweep ---------------------------------------------------------------

    def _lock_for(self, plan_id: int) -> threading.Lock:
        with self._plan_locks_guard:
            lock = self._plan_locks.get(plan_id)
            if lock is None:
                lock = self._plan_locks[plan_id] = threading.Lock()
            return lock

    def sweep(self, now: datetime | None = None) -> list[ExecutionResult]:
        """Execute every due ACTIVE plan once. Never raises for a single plan."""
        now = now or self.clock()
        due = db.get_due_plans(now, db_path=self.db_path)
        if due:
            logger.info("SIP sweep at %s: %d due plan(s)", to_iso(now), len(due))
        results = []
        for plan in due:
            lock = self._lock_for(plan.id)
            if not lock.acquire(blocking=False):
                logger.info("SIP #%d already executing in this process, skipping", plan.id)
                results.append(ExecutionResult(plan.id, "skipped", error="locked"))
                continue
            try:
                if not db.claim_plan(plan.id, now, now + self.lease, db_path=self.db_path):
                    logger.info("SIP #%d claimed elsewhere, skipping", plan.id)
                    results.append(ExecutionResult(plan.id, "skipped", error="claimed"))
                    continue
                fresh = db.get_plan(plan.id, db_path=self.db_path) or plan
                results.append(self.execute_once(fresh, now))
            except Exception as e:
                logger.exception("SIP #%d: unexpected error during sweep", plan.id)
                db.release_claim(plan.id, db_path=self.db_path)
                results.append(ExecutionResult(plan.id, "failed", error=str(e)))
            finally:
                lock.release()
        return results

    def run_forever(
        self,
        interval_sec: float | None = None,
        stop_event: threading.Event | None = None,
    ) -> None:
        interval = interval_sec if interval_sec is not None else settings.sip_sweep_interval_sec
        stop_event = stop_event or threading.Event()
        logger.info("SIP scheduler started (interval=%ss)", interval)
        while not stop_event.is_set():
            try:
                self.sweep()
            except Exception:
                logger.exception("SIP sweep failed")
            stop_event.wait(interval)
        logger.info("SIP scheduler stopped")

    # -- execution -----------------------------------------------------------

    def _call(self, fn: Callable[..., Any], *args: Any, error_cls: type[ExternalServiceError]) -> Any:
        """Run a blocking collaborator call with a bounded timeout."""
        future = self._io_pool.submit(fn, *args)
        try:
            return future.result(timeout=self.call_timeout_sec)
        except FuturesTimeout as e:
            future.cancel()
            raise error_cls(
                f"{getattr(fn, '__name__', 'call')} timed out after {self.call_timeout_sec}s"
            ) from e
        except ExternalServiceError:
            raise
        except Exception as e:
            raise error_cls(f"{type(e).__name__}: {e}") from e

    def execute_once(self, plan: RecurringInvestmentPlan, now: datetime) -> ExecutionResult:
        """Quote, charge and record one execution of ``plan``."""
        scheduled_for = plan.next_execution
        key = f"sip-{plan.id}-{to_iso(scheduled_for)}"
        payment_ref = None
        try:
            price = self._call(self.price_feed.current_price, plan.asset, error_cls=PriceUnavailableError)
            price = Decimal(str(price))
            if price <= 0:
                raise PriceUnavailableError(f"non-positive price {price} for {plan.asset}")
            payment = self._call(
                self.payment_gateway.charge_once,
                plan.payer_ref,
                plan.amount,
                plan.currency,
                key,
                error_cls=PaymentFailedError,
            )
            if not payment.success:
                raise PaymentFailedError(payment.reason or "payment declined")
            payment_ref = payment.payment_ref
        except ExternalServiceError as e:
            logger.warning("SIP #%d: %s", plan.id, e)
            return self._handle_failure(plan, now, str(e))

        qty = quantize(plan.amount / price)
        updated: list[RecurringInvestmentPlan] = []

        def record_plan(conn: sqlite3.Connection, _: TradeResult) -> None:
            fresh = db.fetch_plan(conn, plan.id) or plan
            total_invested = fresh.total_invested + plan.amount
            total_qty = fresh.total_asset_qty + qty
            status = fresh.status
            if (
                status == PlanStatus.ACTIVE
                and fresh.goal_amount is not None
                and total_qty * price >= fresh.goal_amount
            ):
                status = PlanStatus.GOAL_ACHIEVED
            new = replace(
                fresh,
                total_invested=total_invested,
                total_asset_qty=total_qty,
                average_price=total_invested / total_qty,
                failure_count=0,
                next_execution=advance_past(scheduled_for, fresh.frequency, now),
                last_execution=now,
                status=status,
            )
            db.save_plan_progress(conn, new)
            db.insert_execution(
                conn,
                plan_id=plan.id,
                status=ExecutionStatus.COMPLETED,
                amount=plan.amount,
                scheduled_for=scheduled_for,
                executed_at=now,
                asset_qty=qty,
                price=price,
                payment_ref=payment_ref,
            )
            updated.append(new)

        try:
            self.ledger.apply_trade(
                plan.owner,
                plan.asset,
                plan.venue,
                Side.BUY,
                qty,
                price,
                executed_at=now,
                extra_writes=record_plan,
            )
        except sqlite3.IntegrityError:
            logger.warning("SIP #%d: execution for %s already recorded", plan.id, to_iso(scheduled_for))
            db.release_claim(plan.id, db_path=self.db_path)
            return ExecutionResult(plan.id, "skipped", error="duplicate")
        except (LedgerCoreError, sqlite3.Error) as e:
            logger.error(
                "SIP #%d: ledger write failed after charge %s: %s", plan.id, payment_ref, e
            )
            return self._handle_failure(plan, now, f"ledger: {e}", payment_ref=payment_ref)

        new = updated[0]
        logger.info(
            "SIP #%d executed: %s %s @ %s (next %s)",
            plan.id, qty, plan.asset, price, to_iso(new.next_execution),
        )
        self._notify(
            plan.owner,
            "SIP_SUCCESS",
            {
                "plan_id": plan.id,
                "asset": plan.asset,
                "amount": str(plan.amount),
                "currency": plan.currency,
                "asset_qty": str(qty),
                "price": str(price),
                "payment_ref": payment_ref,
                "next_execution": to_iso(new.next_execution),
            },
        )
        if new.status == PlanStatus.GOAL_ACHIEVED:
            logger.info("SIP #%d reached goal %s", plan.id, new.goal_amount)
            self._notify(
                plan.owner,
                "GOAL_ACHIEVED",
                {
                    "plan_id": plan.id,
                    "asset": plan.asset,
                    "goal_amount": str(new.goal_amount),
                    "current_value": str(new.total_asset_qty * price),
                },
            )
        return ExecutionResult(
            plan.id, "executed", plan_status=new.status, asset_qty=qty, price=price,
            payment_ref=payment_ref,
        )

    def _handle_failure(
        self,
        plan: RecurringInvestmentPlan,
        now: datetime,
        reason: str,
        payment_ref: str | None = None,
    ) -> ExecutionResult:
        with transaction(self.db_path) as conn:
            fresh = db.fetch_plan(conn, plan.id) or plan
            failure_count = fresh.failure_count + 1
            status = fresh.status
            if status == PlanStatus.ACTIVE and failure_count >= self.max_failures:
                status = PlanStatus.PAUSED
            new = replace(
                fresh,
                failure_count=failure_count,
                next_execution=now + self.retry_delay,
                status=status,
            )
            db.save_plan_progress(conn, new)
            db.insert_execution(
                conn,
                plan_id=plan.id,
                status=ExecutionStatus.FAILED,
                amount=plan.amount,
                scheduled_for=plan.next_execution,
                executed_at=now,
                payment_ref=payment_ref,
                failure_reason=reason,
            )

        logger.warning(
            "SIP #%d failed (%d/%d): %s; retry at %s",
            plan.id, failure_count, self.max_failures, reason, to_iso(new.next_execution),
        )
        self._notify(
            plan.owner,
            "SIP_FAILED",
            {
                "plan_id": plan.id,
                "asset": plan.asset,
                "reason": reason,
                "failure_count": failure_count,
                "next_execution": to_iso(new.next_execution),
            },
        )
        if status == PlanStatus.PAUSED and fresh.status != PlanStatus.PAUSED:
            logger.warning("SIP #%d paused after %d consecutive failures", plan.id, failure_count)
            self._notify(
                plan.owner,
                "SIP_PAUSED",
                {
                    "plan_id": plan.id,
                    "asset": plan.asset,
                    "failure_count": failure_count,
                    "reason": "Multiple consecutive failures",
                },
            )
        return ExecutionResult(plan.id, "failed", plan_status=status, payment_ref=payment_ref, error=reason)

    def _notify(self, owner: str, event_type: str, payload: dict[str, Any]) -> None:
        if self.notifier is None:
            return
        try:
            if not self.notifier.notify(owner, event_type, payload):
                logger.warning("Notification %s for %s not delivered", event_type, owner)
        except Exception:
            logger.exception("Notification %s for %s failed", event_type, owner)

    # -- analytics -----------------------------------------------------------

    def performance(self, plan_id: int, now: datetime | None = None) -> SIPPerformance:
        """Performance of a plan marked at the feed's current price."""
        plan = db.get_plan(plan_id, db_path=self.db_path)
        if plan is None:
            raise PlanStateError(f"SIP plan {plan_id} not found")
        executions = db.get_plan_executions(
            plan_id, ExecutionStatus.COMPLETED, db_path=self.db_path
        )
        price = self._call(self.price_feed.current_price, plan.asset, error_cls=PriceUnavailableError)
        return calculate_performance(plan, executions, Decimal(str(price)), now or self.clock())

    def recommendations(self, owner: str, risk_profile: str | None = None) -> list[Recommendation]:
        """Suggestions for ``owner``; a feed outage falls back to default volatility."""
        plans = db.get_plans(owner=owner, db_path=self.db_path)
        try:
            candles = self._call(
                self.price_feed.historical_candles,
                settings.sip_volatility_symbol,
                "1d",
                VOLATILITY_WINDOW,
                error_cls=PriceUnavailableError,
            )
        except PriceUnavailableError as e:
            logger.warning("Volatility candles unavailable: %s", e)
            candles = []
        return recommendations(plans, candles, risk_profile)
