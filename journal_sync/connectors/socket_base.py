"""WebSocket push connectors: shared connection state machine.

Desktop-terminal bridges (an EA or add-on running next to MT4/MT5/NinjaTrader)
expose a local WebSocket. The connector dials it, asks for account info, and
then receives trade events as the terminal pushes them. When the socket drops
it reconnects with a linear backoff (attempt n waits base × n) and gives up
after a fixed number of attempts.

Subclasses only translate the wire format; they implement the request
builders and ``handle_message``.
"""

import asyncio
import json
import logging
from abc import abstractmethod
from datetime import datetime
from typing import Any, Awaitable, Callable

import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

from journal_sync.config import settings
from journal_sync.connectors.base import (
    AccountSnapshot,
    CanonicalTrade,
    ConnectionState,
    PlatformConnector,
    in_window,
)
from journal_sync.errors import (
    AuthenticationError,
    PlatformConnectionError,
    TradeValidationError,
)
from journal_sync.utils.constants import MAX_RECONNECT_MESSAGE

logger = logging.getLogger(__name__)

Dialer = Callable[[str], Awaitable[Any]]


async def _default_dial(url: str):
    return await websockets.connect(url, open_timeout=settings.socket_open_timeout_seconds)


class SocketPushConnector(PlatformConnector):
    """Base class for terminal bridges reached over a WebSocket."""

    def __init__(
        self,
        platform: str,
        url: str,
        expected_account: str | None = None,
        dial: Dialer | None = None,
        max_reconnect_attempts: int | None = None,
        reconnect_base_delay: float | None = None,
        open_timeout: float | None = None,
        reply_timeout: float | None = None,
    ):
        super().__init__(platform)
        self.url = url
        self.expected_account = expected_account
        self.max_reconnect_attempts = (
            settings.reconnect_max_attempts if max_reconnect_attempts is None else max_reconnect_attempts
        )
        self.reconnect_base_delay = (
            settings.reconnect_base_delay_seconds if reconnect_base_delay is None else reconnect_base_delay
        )
        self.open_timeout = open_timeout or settings.socket_open_timeout_seconds
        self.reply_timeout = reply_timeout or settings.socket_reply_timeout_seconds
        self._dial = dial or _default_dial
        self._sleep = asyncio.sleep

        self._ws = None
        self._reader_task: asyncio.Task | None = None
        self._reconnect_task: asyncio.Task | None = None
        self._reconnect_attempts = 0
        self._closing = False
        self._history_lock = asyncio.Lock()
        self._history_waiter: asyncio.Future | None = None
        self._account_event = asyncio.Event()

    # -- wire format hooks ----------------------------------------------------

    @abstractmethod
    def account_request(self) -> dict:
        """Message asking the bridge for account info."""

    @abstractmethod
    def history_request(self, from_time: datetime, to_time: datetime) -> dict:
        """Message asking the bridge for closed trades in a window."""

    @abstractmethod
    def handle_message(self, data: dict):
        """Dispatch one decoded inbound message by its kind tag."""

    @abstractmethod
    def parse_trade(self, payload: dict) -> CanonicalTrade:
        """Translate one wire trade into a canonical trade."""

    def subscribe_messages(self) -> list[dict]:
        """Extra messages sent right after the socket opens."""
        return []

    # -- public contract ------------------------------------------------------

    async def connect(self) -> bool:
        self._closing = False
        self._muted = False
        self._reconnect_attempts = 0
        try:
            await self._open()
        except PlatformConnectionError as e:
            logger.warning(f"{self.platform}: connect failed: {e}")
            self._set_state(ConnectionState.DISCONNECTED, str(e))
            self._schedule_reconnect()
            raise
        return True

    async def disconnect(self):
        self._closing = True
        current = asyncio.current_task()
        tasks = [
            t for t in (self._reconnect_task, self._reader_task)
            if t is not None and not t.done() and t is not current
        ]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._reconnect_task = None
        self._reader_task = None

        ws, self._ws = self._ws, None
        if ws is not None:
            try:
                await ws.close()
            except (WebSocketException, OSError) as e:
                logger.debug(f"{self.platform}: error while closing socket: {e}")

        self._fail_history_waiter(PlatformConnectionError(f"{self.platform}: disconnected"))
        if self.state != ConnectionState.DISCONNECTED:
            self._set_state(ConnectionState.DISCONNECTED)
            logger.info(f"{self.platform}: disconnected")
        self._muted = True

    async def request_trade_history(self, from_time: datetime, to_time: datetime) -> list[CanonicalTrade]:
        if not self.is_connected or self._ws is None:
            raise PlatformConnectionError(f"{self.platform}: not connected")

        async with self._history_lock:
            self._history_waiter = asyncio.get_running_loop().create_future()
            try:
                await self._send(self.history_request(from_time, to_time))
                payload = await asyncio.wait_for(self._history_waiter, timeout=self.reply_timeout)
            except asyncio.TimeoutError:
                raise PlatformConnectionError(
                    f"{self.platform}: no trade history reply within {self.reply_timeout:.0f}s"
                )
            finally:
                self._history_waiter = None

        trades = []
        for item in payload or []:
            trade = self._parse_valid(item)
            if trade is not None:
                trades.append(trade)
        return in_window(trades, from_time, to_time)

    async def wait_for_account(self, timeout: float | None = None) -> AccountSnapshot:
        """Wait for the bridge's first account report and check the login."""
        try:
            await asyncio.wait_for(self._account_event.wait(), timeout=timeout or self.reply_timeout)
        except asyncio.TimeoutError:
            raise PlatformConnectionError(f"{self.platform}: no account info from terminal")
        account = self._account
        if self.expected_account and account.account_id != str(self.expected_account):
            raise AuthenticationError(
                f"{self.platform}: terminal is logged in as {account.account_id}, "
                f"expected {self.expected_account}"
            )
        return account

    # -- connection lifecycle -------------------------------------------------

    async def _open(self):
        self._set_state(ConnectionState.CONNECTING)
        try:
            ws = await asyncio.wait_for(self._dial(self.url), timeout=self.open_timeout)
        except asyncio.TimeoutError:
            raise PlatformConnectionError(f"{self.platform}: timed out connecting to {self.url}")
        except (OSError, WebSocketException) as e:
            raise PlatformConnectionError(f"{self.platform}: cannot reach {self.url}: {e}")

        self._ws = ws
        self._reconnect_attempts = 0
        self._set_state(ConnectionState.CONNECTED)
        logger.info(f"{self.platform}: connected to {self.url}")

        try:
            await self._send(self.account_request())
            for message in self.subscribe_messages():
                await self._send(message)
        except PlatformConnectionError:
            self._ws = None
            raise

        # Started last so a reconnect task calling _open() is already done
        # by the time the reader can observe a dropped socket.
        self._reader_task = asyncio.create_task(self._read_loop(ws))

    async def _read_loop(self, ws):
        error = None
        try:
            async for raw in ws:
                self._handle_raw(raw)
        except ConnectionClosed as e:
            error = f"connection closed: {e}"
        except (OSError, WebSocketException) as e:
            error = f"socket error: {e}"
        except Exception as e:
            logger.error(f"{self.platform}: reader stopped: {e}", exc_info=True)
            error = f"reader error: {e}"

        if self._closing or ws is not self._ws:
            return
        self._connection_lost(error)

    def _connection_lost(self, error: str | None):
        logger.warning(f"{self.platform}: connection closed{f' ({error})' if error else ''}")
        self._ws = None
        self._fail_history_waiter(PlatformConnectionError(f"{self.platform}: connection closed"))
        self._set_state(ConnectionState.DISCONNECTED, error)
        self._schedule_reconnect()

    def _schedule_reconnect(self):
        if self._closing:
            return
        if self._reconnect_task is not None and not self._reconnect_task.done():
            return
        self._reconnect_task = asyncio.create_task(self._reconnect_loop())

    async def _reconnect_loop(self):
        while self._reconnect_attempts < self.max_reconnect_attempts:
            self._reconnect_attempts += 1
            delay = self.reconnect_base_delay * self._reconnect_attempts
            self._set_state(ConnectionState.RECONNECTING, self.last_error)
            logger.info(
                f"{self.platform}: reconnecting in {delay:.0f}s "
                f"({self._reconnect_attempts}/{self.max_reconnect_attempts})"
            )
            await self._sleep(delay)
            if self._closing:
                return
            try:
                await self._open()
                return
            except PlatformConnectionError as e:
                logger.warning(f"{self.platform}: reconnect attempt {self._reconnect_attempts} failed: {e}")
                self.last_error = str(e)

        logger.error(f"{self.platform}: {MAX_RECONNECT_MESSAGE}")
        self._set_state(ConnectionState.FAILED, MAX_RECONNECT_MESSAGE)

    # -- messaging ------------------------------------------------------------

    async def _send(self, message: dict):
        ws = self._ws
        if ws is None:
            raise PlatformConnectionError(f"{self.platform}: not connected")
        try:
            await ws.send(json.dumps(message))
        except (ConnectionClosed, OSError) as e:
            raise PlatformConnectionError(f"{self.platform}: send failed: {e}")

    def _handle_raw(self, raw: str | bytes):
        try:
            data = json.loads(raw)
        except ValueError as e:
            logger.warning(f"{self.platform}: dropping undecodable message: {e}")
            return
        if not isinstance(data, dict):
            logger.warning(f"{self.platform}: dropping non-object message: {data!r}")
            return
        try:
            self.handle_message(data)
        except (KeyError, TypeError, ValueError) as e:
            logger.warning(f"{self.platform}: dropping malformed message: {e}")
        except Exception as e:
            logger.warning(f"{self.platform}: error handling message: {e}", exc_info=True)

    def _parse_valid(self, payload: Any) -> CanonicalTrade | None:
        try:
            return self.parse_trade(payload).validate()
        except TradeValidationError as e:
            logger.warning(f"{self.platform}: rejected trade: {e}")
        except (KeyError, TypeError, ValueError, OverflowError, OSError) as e:
            logger.warning(f"{self.platform}: unparseable trade payload: {e}")
        return None

    def _emit_trade(self, payload: Any):
        trade = self._parse_valid(payload)
        if trade is not None:
            self._notify_trade(trade)

    def _resolve_history(self, payload: list | None):
        waiter = self._history_waiter
        if waiter is not None and not waiter.done():
            waiter.set_result(payload or [])
            return
        # Unsolicited history batch: deliver as live trades
        for item in payload or []:
            self._emit_trade(item)

    def _fail_history_waiter(self, error: Exception):
        waiter = self._history_waiter
        if waiter is not None and not waiter.done():
            waiter.set_exception(error)

    def _notify_account(self, account: AccountSnapshot):
        super()._notify_account(account)
        self._account_event.set()
