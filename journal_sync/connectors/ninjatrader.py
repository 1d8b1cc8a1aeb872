"""NinjaTrader add-on bridge connector.

The bridge tags messages with ``command`` rather than ``type``, reports
executions (single fills) instead of round-trip trades, and uses ISO time
strings. An execution therefore carries the same price as entry and exit.
"""

import logging
from datetime import datetime

from journal_sync.config import settings
from journal_sync.connectors.base import (
    AccountSnapshot,
    CanonicalTrade,
    Side,
    parse_timestamp,
)
from journal_sync.connectors.socket_base import SocketPushConnector
from journal_sync.utils.constants import PLATFORM_NINJATRADER

logger = logging.getLogger(__name__)


class NinjaTraderConnector(SocketPushConnector):
    def __init__(self, url: str | None = None, account: str | None = None, **kwargs):
        super().__init__(PLATFORM_NINJATRADER, url or settings.ninjatrader_bridge_url, **kwargs)
        self.account = account or settings.ninjatrader_account

    def account_request(self) -> dict:
        return {"command": "ACCOUNTDATA", "parameters": {"account": self.account}}

    def subscribe_messages(self) -> list[dict]:
        return [
            {"command": "SUBSCRIBEACCOUNTDATA", "parameters": {"account": self.account}},
            {"command": "SUBSCRIBEEXECUTIONS", "parameters": {"account": self.account}},
        ]

    def history_request(self, from_time: datetime, to_time: datetime) -> dict:
        return {
            "command": "GETEXECUTIONS",
            "parameters": {
                "account": self.account,
                "fromDate": from_time.isoformat(),
                "toDate": to_time.isoformat(),
            },
        }

    def handle_message(self, data: dict):
        command = data.get("command")

        if command == "ACCOUNTUPDATE":
            self._notify_account(self.parse_account(data))
        elif command == "EXECUTION":
            if data.get("orderState") == "Filled":
                self._emit_trade(data)
        elif command == "EXECUTIONS":
            executions = data.get("executions")
            self._resolve_history(executions if isinstance(executions, list) else [])
        else:
            logger.info(f"{self.platform}: unknown message: {command}")

    def parse_account(self, data: dict) -> AccountSnapshot:
        cash = float(data.get("cashValue") or 0)
        return AccountSnapshot(
            account_id=str(data["account"]),
            name=str(data["account"]),
            server="NinjaTrader",
            currency=data.get("currency") or "USD",
            balance=cash,
            equity=float(data.get("netLiquidation") or cash),
            platform=self.platform,
        )

    def parse_trade(self, payload: dict) -> CanonicalTrade:
        executed_at = parse_timestamp(payload["time"])
        price = float(payload["price"])
        return CanonicalTrade(
            external_id=str(payload.get("executionId") or payload.get("orderId") or ""),
            symbol=payload["instrument"],
            side=Side.LONG if str(payload.get("orderAction", "")).upper() in ("BUY", "BUYTOCOVER") else Side.SHORT,
            quantity=float(payload["quantity"]),
            entry_price=price,
            exit_price=price,
            entry_time=executed_at,
            exit_time=executed_at,
            profit=float(payload.get("profit") or 0),
            commission=float(payload.get("commission") or 0),
            comment=payload.get("name") or None,
            platform=self.platform,
        )
