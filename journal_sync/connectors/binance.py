"""Binance spot connector.

Binance has no "all my trades" endpoint, so history is assembled by probing
``/v3/myTrades`` for each candidate symbol. A 400-class answer for a symbol
means the account never traded that pair and is ignored; anything else is
logged as a fault and the remaining symbols are still probed.

Signed requests carry a fresh ``timestamp`` and a ``recvWindow`` (the
server's clock-skew tolerance) and are signed with HMAC-SHA256 over the
exact query string.
"""

import hashlib
import hmac
import logging
import time
from datetime import datetime, timedelta, timezone
from typing import Any, Callable
from urllib.parse import urlencode

import httpx

from journal_sync.config import settings
from journal_sync.connectors.base import (
    AccountSnapshot,
    CanonicalTrade,
    Side,
    in_window,
    parse_timestamp,
)
from journal_sync.connectors.rest_base import PollingConnector
from journal_sync.errors import (
    AuthenticationError,
    PlatformConnectionError,
    SyncValidationError,
)
from journal_sync.utils.constants import PLATFORM_BINANCE

logger = logging.getLogger(__name__)

# API-key / signature rejection codes
AUTH_ERROR_CODES = {-2014, -2015, -1022}


class BinanceAPIError(PlatformConnectionError):
    def __init__(self, http_status: int, message: str, code: int | None = None):
        super().__init__(f"Binance API error {http_status}: {message}")
        self.http_status = http_status
        self.code = code

    @property
    def is_client_error(self) -> bool:
        return 400 <= self.http_status < 500


class BinanceClient:
    """Minimal signed REST client for the Binance spot API."""

    def __init__(
        self,
        api_key: str,
        api_secret: str,
        testnet: bool = False,
        base_url: str | None = None,
        client: httpx.AsyncClient | None = None,
        recv_window: int | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self.api_key = api_key
        self.api_secret = api_secret
        self.base_url = base_url or (settings.binance_testnet_url if testnet else settings.binance_base_url)
        self.recv_window = recv_window or settings.binance_recv_window_ms
        self._clock = clock
        self._client = client
        self._owns_client = client is None

    def sign(self, query_string: str) -> str:
        return hmac.new(
            self.api_secret.encode("utf-8"),
            query_string.encode("utf-8"),
            hashlib.sha256,
        ).hexdigest()

    def build_query(self, params: dict[str, Any] | None = None, signed: bool = False) -> str:
        params = dict(params or {})
        if signed:
            params["recvWindow"] = self.recv_window
            # Regenerated on every call; a cached timestamp falls outside recvWindow
            params["timestamp"] = int(self._clock() * 1000)
        query = urlencode(params)
        if signed:
            query = f"{query}&signature={self.sign(query)}"
        return query

    async def request(self, path: str, params: dict[str, Any] | None = None, signed: bool = False) -> Any:
        query = self.build_query(params, signed)
        url = f"{path}?{query}" if query else path
        logger.debug(f"Binance API request: GET {path}")

        try:
            response = await self._http().get(url, headers={"X-MBX-APIKEY": self.api_key})
        except httpx.TimeoutException:
            raise PlatformConnectionError(f"Binance: request to {path} timed out")
        except httpx.HTTPError as e:
            raise PlatformConnectionError(f"Binance: request to {path} failed: {e}")

        if response.status_code >= 400:
            code, message = self._error_details(response)
            if response.status_code == 401 or code in AUTH_ERROR_CODES:
                raise AuthenticationError(f"Binance rejected the API key: {message}")
            raise BinanceAPIError(response.status_code, message, code)

        try:
            return response.json()
        except ValueError:
            raise PlatformConnectionError(f"Binance: non-JSON response from {path}")

    async def ping(self):
        await self.request("/v3/ping")

    async def account(self) -> dict:
        return await self.request("/v3/account", signed=True)

    async def my_trades(self, symbol: str, limit: int = 500) -> list[dict]:
        return await self.request("/v3/myTrades", {"symbol": symbol, "limit": limit}, signed=True)

    async def trading_symbols(self) -> list[str]:
        info = await self.request("/v3/exchangeInfo")
        return [s["symbol"] for s in info.get("symbols", []) if s.get("status") == "TRADING"]

    async def close(self):
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    def _http(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(base_url=self.base_url, timeout=settings.http_timeout_seconds)
            self._owns_client = True
        return self._client

    @staticmethod
    def _error_details(response: httpx.Response) -> tuple[int | None, str]:
        try:
            body = response.json()
        except ValueError:
            return None, response.text[:200]
        if isinstance(body, dict):
            return body.get("code"), body.get("msg") or str(body)
        return None, str(body)


class BinanceConnector(PollingConnector):
    def __init__(
        self,
        api_key: str,
        api_secret: str,
        testnet: bool = False,
        symbols: list[str] | None = None,
        client: BinanceClient | None = None,
        poll_interval: float | None = None,
        trailing_window: timedelta = timedelta(hours=1),
        trades_per_symbol: int = 500,
    ):
        self.client = client or BinanceClient(api_key, api_secret, testnet=testnet)
        super().__init__(
            PLATFORM_BINANCE,
            self.client.base_url,
            settings.binance_poll_seconds if poll_interval is None else poll_interval,
        )
        self.api_key = api_key
        self.api_secret = api_secret
        self.symbols = symbols or list(settings.binance_symbols)
        self.trailing_window = trailing_window
        self.trades_per_symbol = trades_per_symbol

    async def authenticate(self):
        if not self.api_key or not self.api_secret:
            raise SyncValidationError("Binance: API key and secret are required")
        await self.client.ping()
        info = await self.client.account()
        logger.info(f"Binance account verified: {info.get('accountType')}")
        self._notify_account(self.parse_account(info))

    async def request_trade_history(self, from_time: datetime, to_time: datetime) -> list[CanonicalTrade]:
        if not self.is_connected:
            raise PlatformConnectionError("Binance: not connected")
        fills = await self.fetch_all_trades()
        return in_window(self._parse_many(fills, self.parse_trade), from_time, to_time)

    async def fetch_all_trades(self) -> list[dict]:
        """Probe every candidate symbol; per-symbol failures never abort the batch."""
        fills: list[dict] = []
        for symbol in self.symbols:
            try:
                symbol_trades = await self.client.my_trades(symbol, self.trades_per_symbol)
            except BinanceAPIError as e:
                if e.is_client_error:
                    logger.debug(f"Binance: no trades for {symbol} ({e.http_status})")
                else:
                    logger.error(f"Binance: error getting trades for {symbol}: {e}")
                continue
            except PlatformConnectionError as e:
                logger.error(f"Binance: error getting trades for {symbol}: {e}")
                continue

            if symbol_trades:
                logger.info(f"Binance: found {len(symbol_trades)} trades for {symbol}")
                fills.extend(symbol_trades)

        logger.info(f"Binance: total trades found: {len(fills)}")
        return fills

    async def poll(self):
        now = datetime.now(timezone.utc)
        for trade in await self.request_trade_history(now - self.trailing_window, now):
            self._notify_trade(trade)

    async def _close_transport(self):
        await self.client.close()

    def parse_account(self, info: dict) -> AccountSnapshot:
        quote = 0.0
        for balance in info.get("balances", []):
            if balance.get("asset") == "USDT":
                quote = float(balance.get("free") or 0) + float(balance.get("locked") or 0)
        return AccountSnapshot(
            account_id=str(info.get("uid") or info.get("accountType") or "binance"),
            name=f"Binance {info.get('accountType', 'SPOT')}",
            server="Binance",
            currency="USDT",
            balance=quote,
            equity=quote,
            platform=self.platform,
        )

    def parse_trade(self, fill: dict) -> CanonicalTrade:
        if "isBuyer" in fill:
            side = Side.LONG if fill["isBuyer"] else Side.SHORT
        else:
            side = Side.LONG if str(fill.get("side", "")).upper() == "BUY" else Side.SHORT
        qty = float(fill.get("qty") or fill.get("executedQty") or 0)
        price = float(fill["price"])
        executed_at = parse_timestamp(int(fill["time"]))
        trade_id = fill.get("id") if fill.get("id") is not None else fill.get("orderId")
        return CanonicalTrade(
            external_id=str(trade_id) if trade_id is not None else "",
            symbol=fill["symbol"],
            side=side,
            quantity=qty,
            # A spot fill is a single execution
            entry_price=price,
            exit_price=price,
            entry_time=executed_at,
            exit_time=executed_at,
            commission=float(fill.get("commission") or 0),
            platform=self.platform,
        )
