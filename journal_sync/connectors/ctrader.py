"""cTrader Open API connector (bearer-token REST)."""

import logging
from datetime import datetime, timedelta, timezone

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
from journal_sync.errors import PlatformConnectionError, SyncValidationError
from journal_sync.utils.constants import PLATFORM_CTRADER

logger = logging.getLogger(__name__)

# cTrader reports volume in units; 100 000 units = 1 standard lot
UNITS_PER_LOT = 100_000


class CTraderConnector(PollingConnector):
    def __init__(
        self,
        access_token: str,
        base_url: str | None = None,
        client: httpx.AsyncClient | None = None,
        poll_interval: float | None = None,
        trailing_window: timedelta = timedelta(hours=1),
    ):
        super().__init__(
            PLATFORM_CTRADER,
            base_url or settings.ctrader_base_url,
            settings.ctrader_poll_seconds if poll_interval is None else poll_interval,
            client=client,
        )
        self.access_token = access_token
        self.trailing_window = trailing_window

    async def authenticate(self):
        if not self.access_token:
            raise SyncValidationError("cTrader: access token is required")
        data = await self._get("/v3/accounts/me", what="account lookup")
        self._notify_account(self.parse_account(data.get("data") or {}))

    async def request_trade_history(self, from_time: datetime, to_time: datetime) -> list[CanonicalTrade]:
        if not self.is_connected:
            raise PlatformConnectionError("cTrader: not connected")
        data = await self._get(
            "/v3/accounts/me/positions/history",
            params={"from": from_time.isoformat(), "to": to_time.isoformat()},
            what="position history",
        )
        return in_window(self._parse_many(data.get("data"), self.parse_trade), from_time, to_time)

    async def poll(self):
        now = datetime.now(timezone.utc)
        for trade in await self.request_trade_history(now - self.trailing_window, now):
            self._notify_trade(trade)

    async def _get(self, path: str, params: dict | None = None, what: str = "request") -> dict:
        response = await self._request(
            "GET",
            path,
            params=params,
            headers={"Authorization": f"Bearer {self.access_token}"},
        )
        self._check_response(response, what)
        return self._json(response)

    def parse_account(self, data: dict) -> AccountSnapshot:
        if "id" not in data:
            raise PlatformConnectionError("cTrader: account response has no id")
        return AccountSnapshot(
            account_id=str(data["id"]),
            name=data.get("name", ""),
            server=data.get("server") or "cTrader",
            currency=data.get("currency", "USD"),
            balance=float(data.get("balance", 0)),
            equity=float(data.get("equity", 0)),
            platform=self.platform,
        )

    def parse_trade(self, data: dict) -> CanonicalTrade:
        return CanonicalTrade(
            external_id=str(data["id"]),
            symbol=data["symbol"],
            side=Side.LONG if str(data["side"]).upper() == "BUY" else Side.SHORT,
            quantity=float(data["volume"]) / UNITS_PER_LOT,
            entry_price=float(data["entryPrice"]),
            exit_price=float(data["closePrice"]),
            entry_time=parse_timestamp(data["createTime"]),
            exit_time=parse_timestamp(data["closeTime"]),
            profit=float(data.get("grossProfit") or 0),
            commission=float(data.get("commission") or 0),
            swap=float(data.get("swap") or 0),
            comment=data.get("comment") or None,
            platform=self.platform,
        )
