"""Shared test helpers — import in test files: from tests.helpers import FakePriceFeed."""

from __future__ import annotations

import threading
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any

from ledgercore.connectors.base import (
    Candle,
    NotificationSink,
    PaymentGateway,
    PaymentResult,
    PriceFeed,
)
from ledgercore.errors import PriceUnavailableError

T0 = datetime(2025, 1, 1, 9, 0, tzinfo=timezone.utc)


def make_candles(
    closes: list[float],
    start: datetime = datetime(2024, 1, 1, tzinfo=timezone.utc),
    step: timedelta = timedelta(days=1),
) -> list[Candle]:
    """Daily candles whose open/high/low equal the close."""
    return [
        Candle(timestamp=start + i * step, open=c, high=c, low=c, close=c, volume=1.0)
        for i, c in enumerate(closes)
    ]


def scenario_closes() -> list[float]:
    """30 falling closes (130 -> 101), then 100, 110, 120, ... (40 total)."""
    falling = [130.0 - i for i in range(30)]
    rising = [100.0 + 10 * i for i in range(10)]
    return falling + rising


class FakePriceFeed(PriceFeed):
    def __init__(self, price: Decimal | str = "100", fail: bool = False, delay: float = 0.0) -> None:
        self.price = Decimal(price)
        self.fail = fail
        self.delay = delay
        self.calls: list[str] = []

    def current_price(self, symbol: str) -> Decimal:
        self.calls.append(symbol)
        if self.delay:
            threading.Event().wait(self.delay)
        if self.fail:
            raise PriceUnavailableError(f"no price for {symbol}")
        return self.price

    def historical_candles(self, symbol: str, timeframe: str, limit: int) -> list[Candle]:
        return make_candles([float(self.price)] * limit)


class FakePaymentGateway(PaymentGateway):
    """Scripted gateway: pops one outcome per charge (True/False/Exception), defaulting to success."""

    def __init__(self, outcomes: list[Any] | None = None, delay: float = 0.0) -> None:
        self.outcomes = list(outcomes or [])
        self.delay = delay
        self.charges: list[tuple[str, Decimal, str, str]] = []
        self.cancelled: list[str] = []
        self.cancel_error: Exception | None = None

    def charge_once(
        self, payer_ref: str, amount: Decimal, currency: str, idempotency_key: str
    ) -> PaymentResult:
        self.charges.append((payer_ref, amount, currency, idempotency_key))
        if self.delay:
            threading.Event().wait(self.delay)
        outcome = self.outcomes.pop(0) if self.outcomes else True
        if isinstance(outcome, Exception):
            raise outcome
        if outcome:
            return PaymentResult(success=True, payment_ref=f"pay-{len(self.charges)}")
        return PaymentResult(success=False, reason="card declined")

    def cancel_mandate(self, mandate_ref: str) -> None:
        if self.cancel_error is not None:
            raise self.cancel_error
        self.cancelled.append(mandate_ref)


class RecordingNotificationSink(NotificationSink):
    def __init__(self, raise_error: bool = False) -> None:
        self.events: list[tuple[str, str, dict]] = []
        self.raise_error = raise_error

    def notify(self, owner_id: str, event_type: str, payload: dict[str, Any]) -> bool:
        self.events.append((owner_id, event_type, payload))
        if self.raise_error:
            raise RuntimeError("notification backend down")
        return True

    @property
    def types(self) -> list[str]:
        return [e[1] for e in self.events]
