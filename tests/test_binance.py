"""Tests for the Binance signed client and the per-symbol trade probe."""

import hashlib
import hmac
import itertools
import logging
from datetime import datetime, timezone

import httpx
import pytest

from journal_sync.connectors.base import Side
from journal_sync.connectors.binance import BinanceClient, BinanceConnector
from journal_sync.errors import AuthenticationError, SyncValidationError

WINDOW = (datetime(2023, 1, 1, tzinfo=timezone.utc), datetime(2024, 1, 1, tzinfo=timezone.utc))

BTC_FILL = {
    "symbol": "BTCUSDT", "id": 28457, "orderId": 100234, "price": "37000.50", "qty": "0.0150",
    "commission": "0.00001500", "commissionAsset": "BTC", "time": 1700000000000,
    "isBuyer": True, "isMaker": False,
}


def _binance_handler(requests: list, trade_status: dict[str, int] | None = None):
    trade_status = trade_status or {}

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        path = request.url.path
        if path == "/api/v3/ping":
            return httpx.Response(200, json={})
        if path == "/api/v3/account":
            return httpx.Response(200, json={
                "accountType": "SPOT", "uid": 354937868,
                "balances": [
                    {"asset": "USDT", "free": "1500.25", "locked": "100.00"},
                    {"asset": "BTC", "free": "0.5", "locked": "0"},
                ],
            })
        if path == "/api/v3/myTrades":
            symbol = request.url.params["symbol"]
            status = trade_status.get(symbol, 200)
            if status == 400:
                return httpx.Response(400, json={"code": -1121, "msg": "Invalid symbol."})
            if status == 500:
                return httpx.Response(500, json={"code": -1000, "msg": "An unknown error occurred."})
            return httpx.Response(200, json=[BTC_FILL] if symbol == "BTCUSDT" else [])
        return httpx.Response(404)

    return handler


def _client(handler, **kwargs) -> BinanceClient:
    http = httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url="https://binance.test/api")
    return BinanceClient("api-key", "api-secret", client=http, **kwargs)


# ---------------------------------------------------------------------------
# 1. Signing
# ---------------------------------------------------------------------------

class TestSigning:
    def test_signature_covers_exact_query(self):
        client = BinanceClient("k", "secret", clock=lambda: 1700000000.5, recv_window=5000)
        query = client.build_query({"symbol": "BTCUSDT", "limit": 500}, signed=True)

        unsigned, signature = query.split("&signature=")
        assert unsigned == "symbol=BTCUSDT&limit=500&recvWindow=5000&timestamp=1700000000500"
        expected = hmac.new(b"secret", unsigned.encode(), hashlib.sha256).hexdigest()
        assert signature == expected

    def test_timestamp_regenerated_per_call(self):
        ticks = itertools.count(1700000000)
        client = BinanceClient("k", "secret", clock=lambda: float(next(ticks)))

        first = client.build_query({}, signed=True)
        second = client.build_query({}, signed=True)

        assert "timestamp=1700000000000" in first
        assert "timestamp=1700000001000" in second

    def test_unsigned_query_has_no_signature(self):
        client = BinanceClient("k", "secret")
        assert client.build_query({"symbol": "ETHUSDT"}) == "symbol=ETHUSDT"

    @pytest.mark.asyncio
    async def test_api_key_header_sent(self):
        requests = []
        client = _client(_binance_handler(requests))
        await client.account()

        request = requests[0]
        assert request.headers["X-MBX-APIKEY"] == "api-key"
        assert "signature" in request.url.params
        assert "timestamp" in request.url.params


# ---------------------------------------------------------------------------
# 2. Symbol probing
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_probe_swallows_client_errors_and_logs_server_errors(caplog):
    caplog.set_level(logging.DEBUG, logger="journal_sync.connectors.binance")
    requests = []
    client = _client(_binance_handler(requests, {"ETHUSDT": 400, "BNBUSDT": 500}))
    connector = BinanceConnector(
        "api-key", "api-secret", client=client,
        symbols=["BTCUSDT", "ETHUSDT", "BNBUSDT", "SOLUSDT"], poll_interval=0,
    )

    await connector.connect()
    trades = await connector.request_trade_history(*WINDOW)

    assert [t.external_id for t in trades] == ["28457"]
    errors = [r for r in caplog.records if r.levelno == logging.ERROR]
    assert len(errors) == 1
    assert "BNBUSDT" in errors[0].getMessage()
    assert not any("ETHUSDT" in r.getMessage() for r in errors)
    probed = [r.url.params["symbol"] for r in requests if r.url.path.endswith("/myTrades")]
    assert probed == ["BTCUSDT", "ETHUSDT", "BNBUSDT", "SOLUSDT"]

    await connector.disconnect()


@pytest.mark.asyncio
async def test_account_snapshot_uses_usdt_balance():
    connector = BinanceConnector("api-key", "api-secret", client=_client(_binance_handler([])), poll_interval=0)
    await connector.connect()

    account = connector.get_account_info()
    assert account.balance == pytest.approx(1600.25)
    assert account.currency == "USDT"
    assert account.account_id == "354937868"
    await connector.disconnect()


def test_fill_conversion():
    connector = BinanceConnector("api-key", "api-secret", client=_client(_binance_handler([])))
    trade = connector.parse_trade(BTC_FILL)

    assert trade.side == Side.LONG
    assert trade.quantity == 0.015
    assert trade.entry_price == trade.exit_price == 37000.5
    assert trade.exit_time == datetime(2023, 11, 14, 22, 13, 20, tzinfo=timezone.utc)
    assert trade.fingerprint == "Binance Trade ID: 28457"

    seller = connector.parse_trade({**BTC_FILL, "isBuyer": False})
    assert seller.side == Side.SHORT


@pytest.mark.asyncio
async def test_rejected_key_is_authentication_error():
    def handler(request):
        if request.url.path == "/api/v3/ping":
            return httpx.Response(200, json={})
        return httpx.Response(401, json={"code": -2015, "msg": "Invalid API-key, IP, or permissions for action."})

    connector = BinanceConnector("api-key", "api-secret", client=_client(handler), poll_interval=0)
    with pytest.raises(AuthenticationError):
        await connector.connect()


@pytest.mark.asyncio
async def test_missing_secret_is_validation_error():
    connector = BinanceConnector("api-key", "", client=_client(_binance_handler([])), poll_interval=0)
    with pytest.raises(SyncValidationError):
        await connector.connect()
