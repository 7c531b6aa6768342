"""Public REST price feed (Binance spot API)."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation

import httpx

from ledgercore.config import settings
from ledgercore.connectors.base import Candle, PriceFeed
from ledgercore.errors import PriceUnavailableError

logger = logging.getLogger(__name__)

TIMEFRAMES = {"1m", "5m", "15m", "30m", "1h", "4h", "1d", "1w"}
MAX_KLINES = 1000


def to_venue_symbol(symbol: str) -> str:
    """'BTC/USDT' -> 'BTCUSDT'."""
    return symbol.replace("/", "").replace("-", "").upper()


class BinancePriceFeed(PriceFeed):
    def __init__(
        self,
        base_url: str | None = None,
        timeout: float | None = None,
        client: httpx.Client | None = None,
    ) -> None:
        self.base_url = (base_url or settings.price_feed_base_url).rstrip("/")
        self.timeout = timeout if timeout is not None else settings.external_call_timeout_sec
        self._client = client or httpx.Client(timeout=self.timeout)

    def _get(self, path: str, params: dict) -> object:
        try:
            resp = self._client.get(f"{self.base_url}{path}", params=params, timeout=self.timeout)
            resp.raise_for_status()
            return resp.json()
        except httpx.TimeoutException as e:
            logger.warning("Price feed timeout on %s %s", path, params)
            raise PriceUnavailableError(f"timeout on {path}") from e
        except httpx.HTTPStatusError as e:
            logger.warning("Price feed HTTP %d on %s %s", e.response.status_code, path, params)
            raise PriceUnavailableError(f"HTTP {e.response.status_code} on {path}") from e
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("Price feed error on %s: %s", path, e)
            raise PriceUnavailableError(str(e)) from e

    def current_price(self, symbol: str) -> Decimal:
        data = self._get("/api/v3/ticker/price", {"symbol": to_venue_symbol(symbol)})
        try:
            price = Decimal(str(data["price"]))  # type: ignore[index]
        except (KeyError, TypeError, InvalidOperation) as e:
            raise PriceUnavailableError(f"Malformed ticker for {symbol}: {data!r}") from e
        if price <= 0:
            raise PriceUnavailableError(f"Non-positive price for {symbol}: {price}")
        return price

    def historical_candles(self, symbol: str, timeframe: str = "1d", limit: int = 100) -> list[Candle]:
        if timeframe not in TIMEFRAMES:
            raise ValueError(f"Unsupported timeframe {timeframe!r}")
        data = self._get(
            "/api/v3/klines",
            {
                "symbol": to_venue_symbol(symbol),
                "interval": timeframe,
                "limit": max(1, min(limit, MAX_KLINES)),
            },
        )
        candles = []
        try:
            for row in data:  # type: ignore[union-attr]
                candles.append(
                    Candle(
                        timestamp=datetime.fromtimestamp(row[0] / 1000, tz=timezone.utc),
                        open=float(row[1]),
                        high=float(row[2]),
                        low=float(row[3]),
                        close=float(row[4]),
                        volume=float(row[5]),
                    )
                )
        except (TypeError, IndexError, ValueError) as e:
            raise PriceUnavailableError(f"Malformed klines for {symbol}") from e
        logger.info("Fetched %d %s candles for %s", len(candles), timeframe, symbol)
        return candles

    def close(self) -> None:
        self._client.close()
