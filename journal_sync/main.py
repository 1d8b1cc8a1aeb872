"""FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.engine import Engine

from journal_sync.api import broker_sync, brokers, mt5, system, trades
from journal_sync.api.deps import sync_error_handler
from journal_sync.config import settings
from journal_sync.engine.broker_sync import BrokerSyncService
from journal_sync.engine.live_sessions import LiveSessionManager
from journal_sync.engine.reconciler import TradeReconciler
from journal_sync.engine.registry import ConnectionRegistry
from journal_sync.errors import SyncError
from journal_sync.services.rate_limiter import RateLimiter
from journal_sync.services.trade_store import TradeStore
from journal_sync.utils.logging import setup_logging

logger = logging.getLogger(__name__)


def init_state(app: FastAPI, engine: Engine):
    """Attach the long-lived collaborators the routers depend on."""
    store = TradeStore(engine)
    reconciler = TradeReconciler(store)
    app.state.store = store
    app.state.reconciler = reconciler
    app.state.registry = ConnectionRegistry()
    app.state.rate_limiter = RateLimiter()
    app.state.sync_service = BrokerSyncService(store, reconciler)
    app.state.live_sessions = LiveSessionManager(store, reconciler)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""
    setup_logging()
    from journal_sync.database import create_db_and_tables, engine
    create_db_and_tables()
    if not hasattr(app.state, "store"):
        init_state(app, engine)

    from journal_sync.engine.scheduler import start_scheduler, stop_scheduler
    start_scheduler(app.state.sync_service, app.state.registry)
    logger.info("journal-sync started")

    yield

    await app.state.live_sessions.stop_all()
    stop_scheduler()


def create_app() -> FastAPI:
    app = FastAPI(
        title="Journal Sync",
        description="Broker and platform trade synchronization for a trading journal",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(SyncError, sync_error_handler)

    app.include_router(mt5.router)
    app.include_router(broker_sync.router)
    app.include_router(brokers.router)
    app.include_router(trades.router)
    app.include_router(system.router)
    return app


app = create_app()
