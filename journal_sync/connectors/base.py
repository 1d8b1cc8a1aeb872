"""Platform connector contract and the canonical trade shape.

Every broker integration (terminal bridges, REST brokerage APIs, file
reports) produces ``CanonicalTrade`` records. Conversion into persisted
journal fields happens in exactly one place, ``to_trade_fields``.
"""

import asyncio
import inspect
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable

from journal_sync.errors import TradeValidationError
from journal_sync.models.trade import calculate_pnl
from journal_sync.utils.constants import PLATFORM_BINANCE

logger = logging.getLogger(__name__)


class Side(str, Enum):
    LONG = "LONG"
    SHORT = "SHORT"


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"
    FAILED = "failed"  # gave up reconnecting


@dataclass(frozen=True)
class CanonicalTrade:
    external_id: str
    symbol: str
    side: Side
    quantity: float  # platform units (lots, coins, contracts); not normalized
    entry_price: float
    exit_price: float
    entry_time: datetime
    exit_time: datetime
    platform: str
    profit: float = 0.0  # informational; pnl is recomputed on import
    commission: float = 0.0
    swap: float = 0.0
    fee: float = 0.0
    comment: str | None = None

    def validate(self) -> "CanonicalTrade":
        if not self.external_id:
            raise TradeValidationError("trade has no external id")
        if not self.symbol:
            raise TradeValidationError(f"trade {self.external_id} has no symbol")
        if not self.quantity > 0:
            raise TradeValidationError(f"trade {self.external_id}: quantity must be positive, got {self.quantity}")
        if not self.entry_price > 0:
            raise TradeValidationError(f"trade {self.external_id}: entry price must be positive, got {self.entry_price}")
        if not self.exit_price > 0:
            raise TradeValidationError(f"trade {self.external_id}: exit price must be positive, got {self.exit_price}")
        return self

    @property
    def total_fees(self) -> float:
        return abs(self.commission) + abs(self.swap) + abs(self.fee)

    @property
    def fingerprint(self) -> str:
        return fingerprint_for(self.platform, self.external_id)


@dataclass
class AccountSnapshot:
    account_id: str
    name: str
    server: str
    currency: str
    balance: float
    equity: float
    platform: str
    leverage: float | None = None
    margin: float | None = None
    free_margin: float | None = None

    def merged(self, update: dict[str, Any]) -> "AccountSnapshot":
        known = {k: v for k, v in update.items() if k in self.__dataclass_fields__ and v is not None}
        return replace(self, **known)


@dataclass
class ConnectorStatus:
    connected: bool
    platform: str
    state: ConnectionState
    last_update: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    error: str | None = None


# ---------------------------------------------------------------------------
# Shared conversion rule
# ---------------------------------------------------------------------------

def platform_label(platform: str) -> str:
    if platform.upper() == PLATFORM_BINANCE:
        return "Binance"
    return platform.upper()


def fingerprint_for(platform: str, external_id: str) -> str:
    """Text embedded in trade notes that identifies an imported trade."""
    if platform.upper() == PLATFORM_BINANCE:
        return f"Binance Trade ID: {external_id}"
    return f"{platform.upper()} Ticket: {external_id}"


def to_trade_fields(
    trade: CanonicalTrade,
    strategy: str | None = None,
    tags: str | None = None,
    notes_suffix: str | None = None,
) -> dict[str, Any]:
    """Convert a canonical trade into persisted Trade column values."""
    label = platform_label(trade.platform)
    fees = trade.total_fees
    notes = trade.fingerprint
    if notes_suffix:
        notes += f" | {notes_suffix}"
    if trade.comment:
        notes += f" - {trade.comment}"
    return {
        "date": trade.exit_time,
        "symbol": trade.symbol,
        "side": trade.side.value,
        "qty": trade.quantity,
        "entry_price": trade.entry_price,
        "exit_price": trade.exit_price,
        "fees": fees,
        "pnl": calculate_pnl(trade.side.value, trade.quantity, trade.entry_price, trade.exit_price, fees),
        "notes": notes,
        "strategy": strategy or f"{label} Auto Import",
        "tags": tags or f"{trade.platform.lower()},auto-import",
        "platform": trade.platform.upper(),
        "external_id": trade.external_id,
        "fingerprint": trade.fingerprint,
    }


def side_from_code(code: Any) -> Side:
    """Map MetaTrader-style 0/1 or BUY/SELL codes onto a side."""
    if isinstance(code, str):
        text = code.strip().upper()
        if text.isdigit():
            return Side.LONG if int(text) == 0 else Side.SHORT
        return Side.LONG if "BUY" in text or text == "LONG" else Side.SHORT
    return Side.LONG if code == 0 else Side.SHORT


def from_unix_seconds(value: Any) -> datetime:
    return datetime.fromtimestamp(float(value), tz=timezone.utc)


def parse_timestamp(value: Any) -> datetime:
    """Parse epoch seconds, epoch milliseconds or an ISO-8601 string as UTC."""
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, (int, float)):
        seconds = value / 1000 if value > 1e11 else value
        return datetime.fromtimestamp(seconds, tz=timezone.utc)
    else:
        dt = datetime.fromisoformat(str(value).strip().replace("Z", "+00:00"))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def in_window(trades: list[CanonicalTrade], from_time: datetime, to_time: datetime) -> list[CanonicalTrade]:
    """Keep trades whose exit time falls inside [from_time, to_time]."""
    return [t for t in trades if from_time <= t.exit_time <= to_time]


# ---------------------------------------------------------------------------
# Connector contract
# ---------------------------------------------------------------------------

TradeCallback = Callable[[CanonicalTrade], Any]
AccountCallback = Callable[[AccountSnapshot], Any]
StatusCallback = Callable[[ConnectorStatus], Any]


class PlatformConnector(ABC):
    """Contract every platform integration implements."""

    def __init__(self, platform: str):
        self.platform = platform
        self.state = ConnectionState.DISCONNECTED
        self.last_error: str | None = None
        self.last_update = datetime.now(timezone.utc)
        self._account: AccountSnapshot | None = None
        self._on_trade: TradeCallback | None = None
        self._on_account: AccountCallback | None = None
        self._on_status: StatusCallback | None = None
        self._muted = False  # set by disconnect(); no callbacks afterwards
        self._callback_tasks: set[asyncio.Task] = set()

    @abstractmethod
    async def connect(self) -> bool:
        """Open a session. Raises PlatformConnectionError, AuthenticationError or SyncValidationError."""

    @abstractmethod
    async def disconnect(self):
        """Release the session. Idempotent."""

    @abstractmethod
    async def request_trade_history(self, from_time: datetime, to_time: datetime) -> list[CanonicalTrade]:
        """Closed trades with exit time in [from_time, to_time]."""

    @property
    def is_connected(self) -> bool:
        return self.state == ConnectionState.CONNECTED

    def get_account_info(self) -> AccountSnapshot | None:
        return self._account

    async def wait_for_account(self, timeout: float | None = None) -> AccountSnapshot | None:
        """Account snapshot once the platform has reported one.

        Connectors that fetch the account during ``connect()`` already hold it,
        so this returns immediately and ``timeout`` is unused. Socket connectors
        override it to wait up to ``timeout`` seconds for the first push.
        """
        return self._account

    def get_status(self) -> ConnectorStatus:
        return ConnectorStatus(
            connected=self.is_connected,
            platform=self.platform,
            state=self.state,
            last_update=self.last_update,
            error=self.last_error,
        )

    def on_trade(self, callback: TradeCallback):
        self._on_trade = callback

    def on_account_update(self, callback: AccountCallback):
        self._on_account = callback

    def on_status_change(self, callback: StatusCallback):
        self._on_status = callback

    # -- helpers for subclasses -------------------------------------------

    def _set_state(self, state: ConnectionState, error: str | None = None):
        self.state = state
        self.last_error = error
        self.last_update = datetime.now(timezone.utc)
        self._emit(self._on_status, self.get_status())

    def _notify_trade(self, trade: CanonicalTrade):
        self.last_update = datetime.now(timezone.utc)
        self._emit(self._on_trade, trade)

    def _notify_account(self, account: AccountSnapshot):
        self._account = account
        self.last_update = datetime.now(timezone.utc)
        self._emit(self._on_account, account)

    def _emit(self, callback: Callable[[Any], Any] | None, payload: Any):
        if callback is None or self._muted:
            return
        try:
            result = callback(payload)
        except Exception as e:
            logger.error(f"{self.platform}: callback {getattr(callback, '__name__', callback)} failed: {e}", exc_info=True)
            return
        if inspect.isawaitable(result):
            task = asyncio.ensure_future(result)
            self._callback_tasks.add(task)
            task.add_done_callback(self._callback_done)

    def _callback_done(self, task: asyncio.Task):
        self._callback_tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"{self.platform}: async callback failed: {task.exception()}")
