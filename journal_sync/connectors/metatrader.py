"""MetaTrader 4/5 terminal bridge connectors.

Both bridges speak the same envelope, ``{"type": ..., "payload": ...}``,
with Unix-second timestamps. They differ only in trade field names:

    MT4: ticket, cmd (0=BUY, 1=SELL), lots, open_price, close_price,
         open_time, close_time
    MT5: ticket, type (0=BUY, 1=SELL), volume, price_open, price_close,
         time_open, time_close
"""

import logging
from datetime import datetime

from journal_sync.config import settings
from journal_sync.connectors.base import (
    AccountSnapshot,
    CanonicalTrade,
    from_unix_seconds,
    side_from_code,
)
from journal_sync.connectors.socket_base import SocketPushConnector
from journal_sync.utils.constants import PLATFORM_MT4, PLATFORM_MT5

logger = logging.getLogger(__name__)


class MetaTraderBridgeConnector(SocketPushConnector):
    """Message dispatch shared by the MT4 and MT5 bridges."""

    def account_request(self) -> dict:
        return {"type": "get_account_info"}

    def history_request(self, from_time: datetime, to_time: datetime) -> dict:
        return {
            "type": "get_trade_history",
            "from": int(from_time.timestamp()),
            "to": int(to_time.timestamp()),
        }

    def handle_message(self, data: dict):
        kind = data.get("type")
        payload = data.get("payload")

        if kind in ("account_info", "account_update") and not isinstance(payload, dict):
            logger.warning(f"{self.platform}: dropping {kind} without an account payload")
            return

        if kind == "account_info":
            self._notify_account(self.parse_account(payload))
        elif kind == "account_update":
            if self._account is None:
                self._notify_account(self.parse_account(payload))
            else:
                self._notify_account(self._account.merged(self._account_fields(payload)))
        elif kind == "trade_closed":
            self._emit_trade(payload)
        elif kind == "trade_history":
            self._resolve_history(payload)
        elif kind == "trade_opened":
            # Only closed trades are importable
            logger.debug(f"{self.platform}: trade opened {payload.get('ticket') if isinstance(payload, dict) else ''}")
        else:
            logger.info(f"{self.platform}: unknown message type: {kind}")

    def parse_account(self, payload: dict) -> AccountSnapshot:
        return AccountSnapshot(
            account_id=str(payload["login"]),
            name=payload.get("name", ""),
            server=payload.get("server", ""),
            currency=payload.get("currency", "USD"),
            balance=float(payload.get("balance", 0)),
            equity=float(payload.get("equity", 0)),
            platform=self.platform,
            leverage=payload.get("leverage"),
            margin=payload.get("margin"),
            free_margin=payload.get("freeMargin", payload.get("free_margin")),
        )

    def _account_fields(self, payload: dict) -> dict:
        mapping = {
            "balance": "balance",
            "equity": "equity",
            "currency": "currency",
            "margin": "margin",
            "freeMargin": "free_margin",
            "free_margin": "free_margin",
            "leverage": "leverage",
            "name": "name",
        }
        return {mapping[k]: v for k, v in payload.items() if k in mapping}


class MT4Connector(MetaTraderBridgeConnector):
    def __init__(self, url: str | None = None, **kwargs):
        super().__init__(PLATFORM_MT4, url or settings.mt4_bridge_url, **kwargs)

    def parse_trade(self, payload: dict) -> CanonicalTrade:
        return CanonicalTrade(
            external_id=str(payload["ticket"]),
            symbol=payload["symbol"],
            side=side_from_code(payload["cmd"]),
            quantity=float(payload["lots"]),
            entry_price=float(payload["open_price"]),
            exit_price=float(payload["close_price"]),
            entry_time=from_unix_seconds(payload["open_time"]),
            exit_time=from_unix_seconds(payload["close_time"]),
            profit=float(payload.get("profit", 0)),
            commission=float(payload.get("commission", 0)),
            swap=float(payload.get("swap", 0)),
            comment=payload.get("comment") or None,
            platform=self.platform,
        )


class MT5Connector(MetaTraderBridgeConnector):
    def __init__(self, url: str | None = None, **kwargs):
        super().__init__(PLATFORM_MT5, url or settings.mt5_bridge_url, **kwargs)

    def parse_trade(self, payload: dict) -> CanonicalTrade:
        return CanonicalTrade(
            external_id=str(payload["ticket"]),
            symbol=payload["symbol"],
            side=side_from_code(payload["type"]),
            quantity=float(payload["volume"]),
            entry_price=float(payload["price_open"]),
            exit_price=float(payload["price_close"]),
            entry_time=from_unix_seconds(payload["time_open"]),
            exit_time=from_unix_seconds(payload["time_close"]),
            profit=float(payload.get("profit", 0)),
            commission=float(payload.get("commission", 0)),
            swap=float(payload.get("swap", 0)),
            fee=float(payload.get("fee", 0)),
            comment=payload.get("comment") or None,
            platform=self.platform,
        )
