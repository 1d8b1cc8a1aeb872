"""Tests for the one-shot sync service and live broker sessions."""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from journal_sync.connectors.base import ConnectionState
from journal_sync.engine import scheduler
from journal_sync.engine.broker_sync import BrokerSyncService, default_window_start
from journal_sync.engine.live_sessions import LiveSessionManager
from journal_sync.errors import BrokerNotFoundError, PlatformConnectionError, SyncError
from journal_sync.models.broker import Broker


@pytest.fixture
def broker(store):
    return store.save_broker(Broker(user_id="demo", name="Demo", platform="MT5", account_id="5012345"))


# ---------------------------------------------------------------------------
# 1. One-shot sync
# ---------------------------------------------------------------------------

class TestBrokerSyncService:
    @pytest.mark.asyncio
    async def test_sync_connector_disconnects_after_success(self, store, reconciler, fake_connector, make_trade, account):
        connector = fake_connector(trades=[make_trade()], account=account)
        service = BrokerSyncService(store, reconciler)

        result = await service.sync_connector(connector, "demo")

        assert connector.disconnected
        assert result.summary.imported == 1
        assert result.to_response()["accountInfo"]["server"] == "MetaQuotes-Demo"

    @pytest.mark.asyncio
    async def test_sync_connector_disconnects_after_failure(self, store, reconciler, fake_connector):
        connector = fake_connector(history_error=PlatformConnectionError("MT5: history request timed out"))
        service = BrokerSyncService(store, reconciler)

        with pytest.raises(PlatformConnectionError):
            await service.sync_connector(connector, "demo")
        assert connector.disconnected

    @pytest.mark.asyncio
    async def test_default_window_excludes_old_trades(self, store, reconciler, fake_connector, make_trade):
        ancient = make_trade(external_id="1", exit_time=datetime.now(timezone.utc) - timedelta(days=400))
        recent = make_trade(external_id="2")
        service = BrokerSyncService(store, reconciler)

        result = await service.sync_connector(fake_connector(trades=[ancient, recent]), "demo")
        assert result.summary.total_seen == 1

    def test_default_window_start(self):
        now = datetime(2024, 6, 1, tzinfo=timezone.utc)
        assert default_window_start(now) == now - timedelta(days=90)

    @pytest.mark.asyncio
    async def test_wait_for_account_returns_snapshot_from_connect(self, fake_connector, account):
        connector = fake_connector(account=account)
        assert await connector.wait_for_account(timeout=0) is None

        await connector.connect()
        assert await asyncio.wait_for(connector.wait_for_account(timeout=0), 1) is account

    @pytest.mark.asyncio
    async def test_sync_broker_records_status_and_scope(self, store, reconciler, broker, fake_connector, make_trade, account):
        service = BrokerSyncService(store, reconciler, lambda b: fake_connector(trades=[make_trade()], account=account))

        result = await service.sync_broker(broker.id)

        assert result.summary.imported == 1
        stored = store.find_broker(broker.id)
        assert stored.status == "connected"
        assert stored.last_sync is not None
        assert stored.leverage == 100
        [trade] = store.list_trades("demo", broker_id=broker.id)
        assert trade.dedup_scope == str(broker.id)

    @pytest.mark.asyncio
    async def test_sync_broker_failure_records_error(self, store, reconciler, broker, fake_connector):
        service = BrokerSyncService(
            store, reconciler,
            lambda b: fake_connector(connect_error=PlatformConnectionError("MT5: bridge unreachable")),
        )

        with pytest.raises(PlatformConnectionError):
            await service.sync_broker(broker.id)

        stored = store.find_broker(broker.id)
        assert stored.status == "error"
        assert stored.last_error == "MT5: bridge unreachable"

    @pytest.mark.asyncio
    async def test_sync_broker_other_user_is_not_found(self, store, reconciler, broker):
        service = BrokerSyncService(store, reconciler)
        with pytest.raises(BrokerNotFoundError):
            await service.sync_broker(broker.id, user_id="someone-else")

    @pytest.mark.asyncio
    async def test_overlapping_sync_for_same_broker_refused(self, store, reconciler, broker, fake_connector):
        release = asyncio.Event()

        class BlockingConnector(fake_connector):
            async def request_trade_history(self, from_time, to_time):
                await release.wait()
                return []

        service = BrokerSyncService(store, reconciler, lambda b: BlockingConnector())
        first = asyncio.create_task(service.sync_broker(broker.id))
        await asyncio.sleep(0)

        with pytest.raises(SyncError, match="already running"):
            await service.sync_broker(broker.id)

        release.set()
        result = await first
        assert result.summary.total_seen == 0


# ---------------------------------------------------------------------------
# 2. Live sessions
# ---------------------------------------------------------------------------

class TestLiveSessions:
    @pytest.mark.asyncio
    async def test_pushed_trades_are_reconciled(self, store, reconciler, broker, fake_connector, make_trade):
        connector = fake_connector()
        sessions = LiveSessionManager(store, reconciler, lambda b: connector)

        status = await sessions.start(broker.id)
        assert status.connected
        assert store.find_broker(broker.id).status == "connected"

        trade = make_trade(external_id="4242")
        connector._notify_trade(trade)
        connector._notify_trade(trade)
        await asyncio.gather(*connector._callback_tasks)

        trades = store.list_trades("demo", broker_id=broker.id)
        assert [t.external_id for t in trades] == ["4242"]

    @pytest.mark.asyncio
    async def test_state_changes_mirror_onto_broker(self, store, reconciler, broker, fake_connector):
        connector = fake_connector()
        sessions = LiveSessionManager(store, reconciler, lambda b: connector)
        await sessions.start(broker.id)

        connector._set_state(ConnectionState.RECONNECTING)
        assert store.find_broker(broker.id).status == "connecting"

        connector._set_state(ConnectionState.FAILED, "max reconnection attempts reached")
        stored = store.find_broker(broker.id)
        assert stored.status == "error"
        assert stored.last_error == "max reconnection attempts reached"

    @pytest.mark.asyncio
    async def test_start_failure_marks_error(self, store, reconciler, broker, fake_connector):
        connector = fake_connector(connect_error=PlatformConnectionError("MT5: bridge unreachable"))
        sessions = LiveSessionManager(store, reconciler, lambda b: connector)

        with pytest.raises(PlatformConnectionError):
            await sessions.start(broker.id)

        assert sessions.get(broker.id) is None
        assert connector.disconnected
        assert store.find_broker(broker.id).status == "error"

    @pytest.mark.asyncio
    async def test_restart_replaces_session(self, store, reconciler, broker, fake_connector):
        built = []

        def factory(b):
            built.append(fake_connector())
            return built[-1]

        sessions = LiveSessionManager(store, reconciler, factory)
        await sessions.start(broker.id)
        await sessions.start(broker.id)

        assert built[0].disconnected
        assert sessions.get(broker.id) is built[1]

        await sessions.stop_all()
        assert sessions.statuses() == {}
        assert store.find_broker(broker.id).status == "disconnected"

    @pytest.mark.asyncio
    async def test_unknown_broker(self, store, reconciler):
        sessions = LiveSessionManager(store, reconciler)
        with pytest.raises(BrokerNotFoundError):
            await sessions.start(12345)


# ---------------------------------------------------------------------------
# 3. Scheduled syncs
# ---------------------------------------------------------------------------

class TestScheduledSync:
    def test_broker_job_added_and_removed(self):
        try:
            scheduler.add_broker_job(7, 15)
            job = scheduler.scheduler.get_job("broker_7")
            assert job is not None
            assert job.args == (7,)

            scheduler.add_broker_job(7, 0)
            assert scheduler.scheduler.get_job("broker_7") is None
        finally:
            scheduler.remove_broker_job(7)

    @pytest.mark.asyncio
    async def test_run_broker_sync_logs_failures(self, store, reconciler, broker, fake_connector, monkeypatch, caplog):
        service = BrokerSyncService(
            store, reconciler,
            lambda b: fake_connector(connect_error=PlatformConnectionError("MT5: bridge unreachable")),
        )
        monkeypatch.setattr(scheduler, "_sync_service", service)

        await scheduler.run_broker_sync(broker.id)

        assert "Scheduled sync failed" in caplog.text
        assert store.find_broker(broker.id).status == "error"
