"""Long-lived connector sessions for stored brokers.

A live session keeps a connector open and reconciles every trade it pushes
(socket bridges) or polls (REST platforms) as it arrives. Connector state
changes are mirrored onto the broker's stored status.
"""

import logging
from typing import Callable

from journal_sync.connectors.base import (
    AccountSnapshot,
    CanonicalTrade,
    ConnectionState,
    ConnectorStatus,
    PlatformConnector,
)
from journal_sync.connectors.factory import connector_for_broker
from journal_sync.engine.reconciler import ImportStatus, TradeReconciler
from journal_sync.errors import BrokerNotFoundError, SyncError
from journal_sync.models.broker import Broker
from journal_sync.services.trade_store import TradeStore

logger = logging.getLogger(__name__)

BROKER_STATUS_FOR_STATE = {
    ConnectionState.CONNECTED: "connected",
    ConnectionState.CONNECTING: "connecting",
    ConnectionState.RECONNECTING: "connecting",
    ConnectionState.DISCONNECTED: "disconnected",
    ConnectionState.FAILED: "error",
}


class LiveSessionManager:
    def __init__(
        self,
        store: TradeStore,
        reconciler: TradeReconciler,
        connector_factory: Callable[[Broker], PlatformConnector] = connector_for_broker,
    ):
        self.store = store
        self.reconciler = reconciler
        self.connector_factory = connector_factory
        self._sessions: dict[int, PlatformConnector] = {}

    def get(self, broker_id: int) -> PlatformConnector | None:
        return self._sessions.get(broker_id)

    def statuses(self) -> dict[int, ConnectorStatus]:
        return {broker_id: c.get_status() for broker_id, c in self._sessions.items()}

    async def start(self, broker_id: int, user_id: str | None = None) -> ConnectorStatus:
        """(Re)open the live session for a broker."""
        broker = self.store.find_broker(broker_id)
        if broker is None or (user_id is not None and broker.user_id != user_id):
            raise BrokerNotFoundError(f"Broker {broker_id} not found")

        await self.stop(broker_id)
        connector = self.connector_factory(broker)
        connector.on_trade(self._trade_handler(broker))
        connector.on_status_change(self._status_handler(broker.id))
        connector.on_account_update(self._account_handler(broker.id))

        try:
            await connector.connect()
        except SyncError as e:
            await connector.disconnect()
            self.store.update_broker_status(broker.id, "error", error=e.message)
            raise

        self._sessions[broker.id] = connector
        logger.info(f"[broker_{broker.id}] Live session started ({connector.platform})")
        return connector.get_status()

    async def stop(self, broker_id: int) -> bool:
        connector = self._sessions.pop(broker_id, None)
        if connector is None:
            return False
        await connector.disconnect()
        self.store.update_broker_status(broker_id, "disconnected")
        logger.info(f"[broker_{broker_id}] Live session stopped")
        return True

    async def stop_all(self):
        for broker_id in list(self._sessions):
            await self.stop(broker_id)

    # -- connector callbacks --------------------------------------------------

    def _trade_handler(self, broker: Broker):
        broker_id, user_id = broker.id, broker.user_id

        async def handle(trade: CanonicalTrade):
            outcome = await self.reconciler.reconcile_one(trade, user_id, broker_id=broker_id)
            if outcome.status == ImportStatus.IMPORTED:
                logger.info(f"[broker_{broker_id}] Live trade imported: {trade.fingerprint}")

        return handle

    def _status_handler(self, broker_id: int):
        def handle(status: ConnectorStatus):
            self.store.update_broker_status(
                broker_id,
                BROKER_STATUS_FOR_STATE.get(status.state, "disconnected"),
                error=status.error,
            )

        return handle

    def _account_handler(self, broker_id: int):
        def handle(account: AccountSnapshot):
            logger.debug(f"[broker_{broker_id}] Account update: balance={account.balance} equity={account.equity}")

        return handle
