"""MT5 WebTerminal gateway connector.

Talks to a WebTerminal HTTP gateway: ping, session login, account, history
and a "new trades since" endpoint polled every few seconds.
"""

import logging
from datetime import datetime, timedelta, timezone

import httpx

from journal_sync.config import settings
from journal_sync.connectors.base import (
    AccountSnapshot,
    CanonicalTrade,
    from_unix_seconds,
    in_window,
    side_from_code,
)
from journal_sync.connectors.rest_base import PollingConnector
from journal_sync.errors import (
    AuthenticationError,
    PlatformConnectionError,
    SyncValidationError,
)
from journal_sync.utils.constants import PLATFORM_MT5_WEB

logger = logging.getLogger(__name__)

# The gateway reports volume in hundredths of a lot
VOLUME_DIVISOR = 100


class MT5WebTerminalConnector(PollingConnector):
    def __init__(
        self,
        api_url: str | None = None,
        login: str | None = None,
        password: str | None = None,
        server: str | None = None,
        client: httpx.AsyncClient | None = None,
        poll_interval: float | None = None,
    ):
        super().__init__(
            PLATFORM_MT5_WEB,
            api_url or settings.mt5_webterminal_url,
            settings.webterminal_poll_seconds if poll_interval is None else poll_interval,
            client=client,
        )
        self.login = login
        self.password = password
        self.server = server
        self.session_id: str | None = None
        self.last_trade_time: datetime | None = None

    async def authenticate(self):
        response = await self._request("GET", "/api/ping")
        if response.status_code >= 400:
            raise PlatformConnectionError(
                f"MT5 WebTerminal: gateway at {self.base_url} unavailable ({response.status_code})"
            )
        if self.login:
            await self.open_session(self.login, self.password or "", self.server or "")

    async def open_session(self, login: str, password: str, server: str):
        """Log in to the terminal and load the account snapshot."""
        try:
            login_number = int(login)
        except ValueError:
            raise SyncValidationError(f"MT5 WebTerminal: login must be numeric, got {login!r}")

        response = await self._request(
            "POST", "/api/auth",
            json={"login": login_number, "password": password, "server": server},
        )
        result = self._json(response)
        if response.status_code >= 400 or not result.get("success"):
            raise AuthenticationError(result.get("message") or "MT5 WebTerminal: authentication failed")

        self.session_id = result.get("sessionId")
        account = await self.fetch_account()
        if account is not None:
            self._notify_account(account)

    async def disconnect(self):
        await super().disconnect()
        self.session_id = None

    async def fetch_account(self) -> AccountSnapshot | None:
        if not self.session_id:
            return None
        response = await self._request("GET", "/api/account", headers=self._session_headers())
        result = self._json(response)
        if response.status_code >= 400 or not result.get("success"):
            logger.warning(f"MT5 WebTerminal: account lookup failed: {result.get('message')}")
            return None
        account = result["account"]
        return AccountSnapshot(
            account_id=str(account["login"]),
            name=account.get("name", ""),
            server=account.get("server", self.server or ""),
            currency=account.get("currency", "USD"),
            balance=float(account.get("balance", 0)),
            equity=float(account.get("equity", 0)),
            platform=self.platform,
            leverage=account.get("leverage"),
        )

    async def request_trade_history(self, from_time: datetime, to_time: datetime) -> list[CanonicalTrade]:
        if not self.is_connected or not self.session_id:
            raise PlatformConnectionError("MT5 WebTerminal: no active session")

        response = await self._request(
            "POST", "/api/history",
            headers=self._session_headers(),
            json={"from": int(from_time.timestamp()), "to": int(to_time.timestamp())},
        )
        result = self._json(response)
        if response.status_code in (401, 403):
            raise AuthenticationError(result.get("message") or "MT5 WebTerminal: session rejected")
        if response.status_code >= 400 or not result.get("success"):
            raise PlatformConnectionError(result.get("message") or "MT5 WebTerminal: history request failed")

        return in_window(self._parse_many(result.get("trades"), self.parse_trade), from_time, to_time)

    async def poll(self):
        """Emit trades closed since the last one seen (or the last minute)."""
        if not self.session_id:
            return
        since = self.last_trade_time or (datetime.now(timezone.utc) - timedelta(minutes=1))
        response = await self._request(
            "POST", "/api/trades/new",
            headers=self._session_headers(),
            json={"from": int(since.timestamp())},
        )
        result = self._json(response)
        if response.status_code >= 400 or not result.get("success"):
            return

        for trade in self._parse_many(result.get("trades"), self.parse_trade):
            self._notify_trade(trade)
            if self.last_trade_time is None or trade.exit_time > self.last_trade_time:
                self.last_trade_time = trade.exit_time

    async def get_open_positions(self) -> list[dict]:
        """Raw open positions; not importable until closed."""
        if not self.session_id:
            return []
        response = await self._request("GET", "/api/positions", headers=self._session_headers())
        result = self._json(response)
        if response.status_code >= 400 or not result.get("success"):
            return []
        return result.get("positions") or []

    def _session_headers(self) -> dict:
        return {"Session-Id": self.session_id or ""}

    def parse_trade(self, trade: dict) -> CanonicalTrade:
        ticket = trade.get("ticket") if trade.get("ticket") is not None else trade.get("position")
        fill_price = trade.get("price")
        return CanonicalTrade(
            external_id=str(ticket) if ticket is not None else "",
            symbol=trade["symbol"],
            side=side_from_code(trade["type"]),
            quantity=float(trade["volume"]) / VOLUME_DIVISOR,
            entry_price=float(trade.get("price_open") or fill_price),
            exit_price=float(trade.get("price_close") or fill_price),
            entry_time=from_unix_seconds(trade.get("time_open") or trade["time"]),
            exit_time=from_unix_seconds(trade.get("time_close") or trade["time"]),
            profit=float(trade.get("profit") or 0),
            commission=float(trade.get("commission") or 0),
            swap=float(trade.get("swap") or 0),
            fee=float(trade.get("fee") or 0),
            comment=trade.get("comment") or None,
            platform=self.platform,
        )
