"""One-shot broker sync: connect, fetch history, reconcile, record status.

Used by the sync endpoints and the scheduler. The connector is always
disconnected afterwards, whether the sync succeeded or not.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable

from journal_sync.config import settings
from journal_sync.connectors.base import AccountSnapshot, PlatformConnector
from journal_sync.connectors.factory import connector_for_broker
from journal_sync.engine.reconciler import ImportSummary, TradeReconciler
from journal_sync.errors import BrokerNotFoundError, SyncError
from journal_sync.models.broker import Broker
from journal_sync.services.trade_store import TradeStore

logger = logging.getLogger(__name__)


@dataclass
class SyncResult:
    account: AccountSnapshot | None
    summary: ImportSummary

    def account_info(self) -> dict | None:
        if self.account is None:
            return None
        return {
            "accountId": self.account.account_id,
            "accountName": self.account.name,
            "server": self.account.server,
            "currency": self.account.currency,
            "balance": self.account.balance,
            "equity": self.account.equity,
            "platform": self.account.platform,
        }

    def to_response(self) -> dict:
        return {
            "success": True,
            "accountInfo": self.account_info(),
            "tradesImported": self.summary.imported,
            "totalTrades": self.summary.total_seen,
            "duplicatesSkipped": self.summary.skipped,
            "rejected": self.summary.rejected,
            "message": self.summary.message,
        }


def default_window_start(now: datetime | None = None) -> datetime:
    now = now or datetime.now(timezone.utc)
    return now - timedelta(days=settings.sync_lookback_days)


class BrokerSyncService:
    def __init__(
        self,
        store: TradeStore,
        reconciler: TradeReconciler,
        connector_factory: Callable[[Broker], PlatformConnector] = connector_for_broker,
    ):
        self.store = store
        self.reconciler = reconciler
        self.connector_factory = connector_factory
        self._broker_locks: dict[int, asyncio.Lock] = {}

    async def sync_connector(
        self,
        connector: PlatformConnector,
        user_id: str,
        from_time: datetime | None = None,
        to_time: datetime | None = None,
        broker_id: int | None = None,
        strategy: str | None = None,
        tags: str | None = None,
    ) -> SyncResult:
        to_time = to_time or datetime.now(timezone.utc)
        from_time = from_time or default_window_start(to_time)
        try:
            await connector.connect()
            account = await connector.wait_for_account()
            trades = await connector.request_trade_history(from_time, to_time)
        finally:
            await connector.disconnect()

        logger.info(f"{connector.platform}: fetched {len(trades)} trades between {from_time:%Y-%m-%d} and {to_time:%Y-%m-%d}")
        summary = await self.reconciler.reconcile(trades, user_id, broker_id=broker_id, strategy=strategy, tags=tags)
        return SyncResult(account=account, summary=summary)

    async def sync_broker(
        self,
        broker_id: int,
        user_id: str | None = None,
        from_time: datetime | None = None,
    ) -> SyncResult:
        """Sync a stored broker, skipping if a sync for it is already running."""
        lock = self._broker_locks.setdefault(broker_id, asyncio.Lock())
        if lock.locked():
            logger.warning(f"[broker_{broker_id}] Skipping overlapping sync")
            raise SyncError(f"A sync for broker {broker_id} is already running")

        async with lock:
            broker = self.store.find_broker(broker_id)
            if broker is None or (user_id is not None and broker.user_id != user_id):
                raise BrokerNotFoundError(f"Broker {broker_id} not found")
            return await self._sync_stored(broker, from_time)

    async def _sync_stored(self, broker: Broker, from_time: datetime | None) -> SyncResult:
        self.store.update_broker_status(broker.id, "connecting")
        try:
            connector = self.connector_factory(broker)
            result = await self.sync_connector(
                connector,
                broker.user_id,
                from_time=from_time or default_window_start(),
                broker_id=broker.id,
            )
        except SyncError as e:
            logger.warning(f"[broker_{broker.id}] Sync failed: {e.message}")
            self.store.update_broker_status(broker.id, "error", error=e.message)
            raise
        except Exception as e:
            logger.error(f"[broker_{broker.id}] Unexpected sync error: {e}", exc_info=True)
            self.store.update_broker_status(broker.id, "error", error=str(e))
            raise

        self.store.update_broker_status(broker.id, "connected", last_sync=datetime.now(timezone.utc))
        if result.account is not None:
            self._refresh_account(broker.id, result.account)
        return result

    def _refresh_account(self, broker_id: int, account: AccountSnapshot):
        broker = self.store.find_broker(broker_id)
        if broker is None:
            return
        broker.currency = account.currency or broker.currency
        if account.leverage:
            broker.leverage = account.leverage
        self.store.save_broker(broker)
