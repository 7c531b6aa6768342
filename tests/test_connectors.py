"""Tests for the price feed and paper payment gateway."""

from __future__ import annotations

from decimal import Decimal

import httpx
import pytest

from ledgercore.connectors.payment import PaperPaymentGateway
from ledgercore.connectors.price_feed import BinancePriceFeed, to_venue_symbol
from ledgercore.errors import PriceUnavailableError


def _feed(handler) -> BinancePriceFeed:
    client = httpx.Client(transport=httpx.MockTransport(handler))
    return BinancePriceFeed(base_url="https://api.test", timeout=1.0, client=client)


class TestBinancePriceFeed:
    def test_symbol_mapping(self):
        assert to_venue_symbol("btc/usdt") == "BTCUSDT"
        assert to_venue_symbol("ETH-USDT") == "ETHUSDT"

    def test_current_price(self):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/api/v3/ticker/price"
            assert request.url.params["symbol"] == "BTCUSDT"
            return httpx.Response(200, json={"symbol": "BTCUSDT", "price": "43250.12000000"})

        assert _feed(handler).current_price("BTC/USDT") == Decimal("43250.12000000")

    def test_http_error(self):
        feed = _feed(lambda request: httpx.Response(503))
        with pytest.raises(PriceUnavailableError, match="503"):
            feed.current_price("BTC/USDT")

    def test_timeout(self):
        def handler(request):
            raise httpx.ReadTimeout("slow", request=request)

        with pytest.raises(PriceUnavailableError, match="timeout"):
            _feed(handler).current_price("BTC/USDT")

    def test_malformed_ticker(self):
        feed = _feed(lambda request: httpx.Response(200, json={"symbol": "BTCUSDT"}))
        with pytest.raises(PriceUnavailableError):
            feed.current_price("BTC/USDT")

    def test_historical_candles(self):
        rows = [
            [1704067200000, "100.0", "110.0", "95.0", "105.0", "12.5", 1704153599999],
            [1704153600000, "105.0", "115.0", "100.0", "112.0", "8.0", 1704239999999],
        ]

        def handler(request):
            assert request.url.params["interval"] == "1d"
            assert request.url.params["limit"] == "2"
            return httpx.Response(200, json=rows)

        candles = _feed(handler).historical_candles("BTC/USDT", "1d", 2)
        assert [c.close for c in candles] == [105.0, 112.0]
        assert candles[0].timestamp.isoformat() == "2024-01-01T00:00:00+00:00"
        assert candles[0].volume == 12.5

    def test_unsupported_timeframe(self):
        with pytest.raises(ValueError):
            _feed(lambda r: httpx.Response(200, json=[])).historical_candles("BTC/USDT", "7m", 10)


class TestPaperPaymentGateway:
    def test_idempotent_reference(self):
        gw = PaperPaymentGateway()
        a = gw.charge_once("upi:alice", Decimal(100), "INR", "sip-1-x")
        b = gw.charge_once("upi:alice", Decimal(100), "INR", "sip-1-x")
        c = gw.charge_once("upi:alice", Decimal(100), "INR", "sip-1-y")
        assert a.success and b.success and c.success
        assert a.payment_ref == b.payment_ref != c.payment_ref
        assert len(gw.charges) == 2

    def test_cancel_mandate(self):
        gw = PaperPaymentGateway()
        gw.cancel_mandate("m-1")
        assert gw.cancelled_mandates == ["m-1"]
