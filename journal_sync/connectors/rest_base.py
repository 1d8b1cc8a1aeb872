"""REST polling connectors: shared HTTP plumbing and the poll loop.

``connect()`` runs the platform's authenticating request(s) and then starts a
background poll that re-fetches a short trailing window every
``poll_interval`` seconds and emits what it finds through ``on_trade``.
Duplicates across polls are expected; the reconciler drops them.

A tick that finds the previous poll still running is skipped rather than run
in parallel.
"""

import asyncio
import logging
from abc import abstractmethod
from typing import Any

import httpx

from journal_sync.config import settings
from journal_sync.connectors.base import CanonicalTrade, ConnectionState, PlatformConnector
from journal_sync.errors import (
    AuthenticationError,
    PlatformConnectionError,
    SyncError,
    TradeValidationError,
)

logger = logging.getLogger(__name__)


class PollingConnector(PlatformConnector):
    def __init__(
        self,
        platform: str,
        base_url: str,
        poll_interval: float,
        client: httpx.AsyncClient | None = None,
        timeout: float | None = None,
    ):
        super().__init__(platform)
        self.base_url = base_url.rstrip("/")
        self.poll_interval = poll_interval
        self.timeout = timeout or settings.http_timeout_seconds
        self._client = client
        self._owns_client = client is None
        self._sleep = asyncio.sleep
        self._poll_task: asyncio.Task | None = None
        self._poll_lock = asyncio.Lock()
        self._poll_runs: set[asyncio.Task] = set()

    @abstractmethod
    async def authenticate(self):
        """Authenticating request(s) run by connect(); raise on failure."""

    @abstractmethod
    async def poll(self):
        """Fetch the trailing window and emit new trades."""

    # -- public contract ------------------------------------------------------

    async def connect(self) -> bool:
        self._muted = False
        self._set_state(ConnectionState.CONNECTING)
        try:
            await self.authenticate()
        except SyncError as e:
            logger.warning(f"{self.platform}: connect failed: {e}")
            self._set_state(ConnectionState.DISCONNECTED, e.message)
            raise
        self._set_state(ConnectionState.CONNECTED)
        logger.info(f"{self.platform}: connected")
        self._start_polling()
        return True

    async def disconnect(self):
        current = asyncio.current_task()
        tasks = [
            t for t in [self._poll_task, *self._poll_runs]
            if t is not None and not t.done() and t is not current
        ]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._poll_task = None
        self._poll_runs.clear()

        await self._close_transport()
        if self.state != ConnectionState.DISCONNECTED:
            self._set_state(ConnectionState.DISCONNECTED)
            logger.info(f"{self.platform}: disconnected")
        self._muted = True

    # -- polling --------------------------------------------------------------

    def _start_polling(self):
        if self.poll_interval <= 0:
            return
        if self._poll_task is not None and not self._poll_task.done():
            return
        self._poll_task = asyncio.create_task(self._poll_loop())

    async def _poll_loop(self):
        while True:
            await self._sleep(self.poll_interval)
            task = asyncio.create_task(self._run_poll())
            self._poll_runs.add(task)
            task.add_done_callback(self._poll_runs.discard)

    async def _run_poll(self):
        """Run one poll, skipping if a prior poll is still in-flight."""
        if self._poll_lock.locked():
            logger.warning(f"{self.platform}: skipping poll, previous poll still running")
            return
        async with self._poll_lock:
            try:
                await self.poll()
            except SyncError as e:
                logger.warning(f"{self.platform}: poll failed: {e}")
            except Exception as e:
                logger.error(f"{self.platform}: unexpected poll error: {e}", exc_info=True)

    # -- HTTP helpers ---------------------------------------------------------

    def _http(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(base_url=self.base_url, timeout=self.timeout)
            self._owns_client = True
        return self._client

    async def _close_transport(self):
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        try:
            return await self._http().request(method, path, **kwargs)
        except httpx.TimeoutException:
            raise PlatformConnectionError(f"{self.platform}: request to {path} timed out")
        except httpx.HTTPError as e:
            raise PlatformConnectionError(f"{self.platform}: request to {path} failed: {e}")

    def _check_response(self, response: httpx.Response, what: str):
        if response.status_code in (401, 403):
            raise AuthenticationError(f"{self.platform}: {what} rejected ({response.status_code})")
        if response.status_code >= 400:
            raise PlatformConnectionError(
                f"{self.platform}: {what} failed: {response.status_code} {response.reason_phrase}"
            )

    def _json(self, response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError:
            raise PlatformConnectionError(f"{self.platform}: non-JSON response from {response.request.url.path}")

    def _parse_many(self, items: list | None, parse) -> list[CanonicalTrade]:
        trades = []
        for item in items or []:
            try:
                trades.append(parse(item).validate())
            except TradeValidationError as e:
                logger.warning(f"{self.platform}: rejected trade: {e}")
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"{self.platform}: unparseable trade payload: {e}")
        return trades
