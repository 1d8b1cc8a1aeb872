"""Shared fixtures: in-memory database, trade factory, fake connector, API client."""

from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel, create_engine

import journal_sync.models  # noqa: F401  (registers tables on the metadata)
from journal_sync.connectors.base import (
    AccountSnapshot,
    CanonicalTrade,
    ConnectionState,
    PlatformConnector,
    Side,
    in_window,
)
from journal_sync.engine.reconciler import TradeReconciler
from journal_sync.main import create_app, init_state
from journal_sync.services.trade_store import TradeStore


class FakeConnector(PlatformConnector):
    """Connector double returning canned account info and trades."""

    def __init__(self, platform="MT5", trades=(), account=None, connect_error=None, history_error=None):
        super().__init__(platform)
        self.trades = list(trades)
        self.account = account
        self.connect_error = connect_error
        self.history_error = history_error
        self.disconnected = False

    async def connect(self) -> bool:
        self._set_state(ConnectionState.CONNECTING)
        if self.connect_error is not None:
            self._set_state(ConnectionState.DISCONNECTED, str(self.connect_error))
            raise self.connect_error
        self._set_state(ConnectionState.CONNECTED)
        if self.account is not None:
            self._notify_account(self.account)
        return True

    async def disconnect(self):
        self.disconnected = True
        if self.state != ConnectionState.DISCONNECTED:
            self._set_state(ConnectionState.DISCONNECTED)
        self._muted = True

    async def request_trade_history(self, from_time, to_time):
        if self.history_error is not None:
            raise self.history_error
        return in_window(self.trades, from_time, to_time)


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def store(engine):
    return TradeStore(engine)


@pytest.fixture
def reconciler(store):
    return TradeReconciler(store)


@pytest.fixture
def make_trade():
    def _make(**overrides) -> CanonicalTrade:
        exit_time = overrides.pop("exit_time", datetime.now(timezone.utc) - timedelta(days=1))
        fields = dict(
            external_id="1001",
            symbol="EURUSD",
            side=Side.LONG,
            quantity=0.1,
            entry_price=1.1000,
            exit_price=1.1050,
            entry_time=exit_time - timedelta(hours=1),
            exit_time=exit_time,
            platform="MT5",
            profit=50.0,
            commission=-0.7,
        )
        fields.update(overrides)
        return CanonicalTrade(**fields)

    return _make


@pytest.fixture
def account():
    return AccountSnapshot(
        account_id="5012345",
        name="Demo Account",
        server="MetaQuotes-Demo",
        currency="USD",
        balance=10_000.0,
        equity=10_125.5,
        platform="MT5",
        leverage=100,
    )


@pytest.fixture
def fake_connector():
    return FakeConnector


@pytest.fixture
def app(engine):
    app = create_app()
    init_state(app, engine)
    return app


@pytest.fixture
def client(app):
    # Not entered as a context manager: the lifespan (real database,
    # scheduler) stays off and app.state comes from init_state above.
    return TestClient(app)
