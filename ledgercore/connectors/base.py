"""Collaborator interfaces consumed by the core."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any


@dataclass(frozen=True)
class Candle:
    timestamp: datetime | None
    open: float
    high: float
    low: float
    close: float
    volume: float = 0.0


@dataclass(frozen=True)
class PaymentResult:
    success: bool
    payment_ref: str | None = None
    reason: str | None = None


class PriceFeed(ABC):
    """Market data for one venue. Failures raise PriceUnavailableError."""

    @abstractmethod
    def current_price(self, symbol: str) -> Decimal: ...

    @abstractmethod
    def historical_candles(self, symbol: str, timeframe: str, limit: int) -> list[Candle]: ...


class PaymentGateway(ABC):
    @abstractmethod
    def charge_once(
        self, payer_ref: str, amount: Decimal, currency: str, idempotency_key: str
    ) -> PaymentResult:
        """Charge once. Retrying with the same idempotency_key must not charge twice."""

    @abstractmethod
    def cancel_mandate(self, mandate_ref: str) -> None: ...


class NotificationSink(ABC):
    """Fire-and-forget user notifications."""

    @abstractmethod
    def notify(self, owner_id: str, event_type: str, payload: dict[str, Any]) -> bool: ...
