"""CRUD API for broker accounts, plus sync and live-session control."""

import logging

from fastapi import APIRouter, Depends, HTTPException

from journal_sync.api.deps import (
    error_response,
    get_current_user_id,
    get_live_sessions,
    get_store,
    get_sync_service,
)
from journal_sync.engine import scheduler
from journal_sync.engine.broker_sync import BrokerSyncService
from journal_sync.engine.live_sessions import LiveSessionManager
from journal_sync.errors import SyncError
from journal_sync.models.broker import Broker
from journal_sync.schemas.broker import BrokerCreate, BrokerRead, BrokerUpdate
from journal_sync.services.encryption import encrypt_secret
from journal_sync.services.trade_store import TradeStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/brokers", tags=["brokers"])


def _get_owned(store: TradeStore, broker_id: int, user_id: str) -> Broker:
    broker = store.find_broker(broker_id)
    if broker is None or broker.user_id != user_id:
        raise HTTPException(status_code=404, detail="Broker not found")
    return broker


@router.get("", response_model=list[BrokerRead])
def list_brokers(
    store: TradeStore = Depends(get_store),
    user_id: str = Depends(get_current_user_id),
):
    return store.list_brokers(user_id)


@router.post("", response_model=BrokerRead, status_code=201)
def create_broker(
    data: BrokerCreate,
    store: TradeStore = Depends(get_store),
    user_id: str = Depends(get_current_user_id),
):
    if store.find_broker_by_account(user_id, data.platform, data.account_id):
        raise HTTPException(status_code=400, detail="This account is already connected")

    broker = Broker(
        user_id=user_id,
        name=data.name,
        platform=data.platform,
        account_id=data.account_id,
        server=data.server,
        username=data.username,
        password_encrypted=encrypt_secret(data.password),
        api_key=data.api_key,
        api_secret_encrypted=encrypt_secret(data.api_secret),
        api_url=data.api_url,
        currency=data.currency,
        leverage=data.leverage,
        company=data.company,
        auto_sync_minutes=data.auto_sync_minutes,
    )
    broker = store.save_broker(broker)
    if broker.auto_sync_minutes and scheduler.scheduler.running:
        scheduler.add_broker_job(broker.id, broker.auto_sync_minutes)
    logger.info(f"Broker {broker.id} created ({broker.platform} {broker.account_id})")
    return broker


@router.get("/{broker_id}", response_model=BrokerRead)
def get_broker(
    broker_id: int,
    store: TradeStore = Depends(get_store),
    user_id: str = Depends(get_current_user_id),
):
    return _get_owned(store, broker_id, user_id)


@router.put("/{broker_id}", response_model=BrokerRead)
def update_broker(
    broker_id: int,
    data: BrokerUpdate,
    store: TradeStore = Depends(get_store),
    user_id: str = Depends(get_current_user_id),
):
    broker = _get_owned(store, broker_id, user_id)

    update_data = data.model_dump(exclude_unset=True)
    if "password" in update_data:
        password = update_data.pop("password")
        if password is not None:
            broker.password_encrypted = encrypt_secret(password)
    if "api_secret" in update_data:
        secret = update_data.pop("api_secret")
        if secret is not None:
            broker.api_secret_encrypted = encrypt_secret(secret)

    for key, value in update_data.items():
        setattr(broker, key, value)

    broker = store.save_broker(broker)
    if "auto_sync_minutes" in update_data and scheduler.scheduler.running:
        scheduler.add_broker_job(broker.id, broker.auto_sync_minutes)
    return broker


@router.delete("/{broker_id}", status_code=204)
async def delete_broker(
    broker_id: int,
    store: TradeStore = Depends(get_store),
    sessions: LiveSessionManager = Depends(get_live_sessions),
    user_id: str = Depends(get_current_user_id),
):
    _get_owned(store, broker_id, user_id)
    await sessions.stop(broker_id)
    if scheduler.scheduler.running:
        scheduler.remove_broker_job(broker_id)
    store.delete_broker(broker_id)


@router.post("/{broker_id}/sync")
async def sync_broker(
    broker_id: int,
    service: BrokerSyncService = Depends(get_sync_service),
    user_id: str = Depends(get_current_user_id),
):
    """Import the stored account's recent history."""
    try:
        result = await service.sync_broker(broker_id, user_id=user_id)
    except SyncError as e:
        return error_response(e)
    except Exception as e:
        logger.error(f"[broker_{broker_id}] Sync crashed: {e}", exc_info=True)
        return error_response(SyncError("Broker sync failed"))
    return result.to_response()


@router.post("/{broker_id}/reconnect")
async def reconnect_broker(
    broker_id: int,
    sessions: LiveSessionManager = Depends(get_live_sessions),
    user_id: str = Depends(get_current_user_id),
):
    """Open (or reopen) a live session that imports trades as they close."""
    try:
        status = await sessions.start(broker_id, user_id=user_id)
    except SyncError as e:
        return error_response(e)
    return {
        "success": True,
        "message": "Broker reconnected",
        "status": {
            "connected": status.connected,
            "platform": status.platform,
            "state": status.state.value,
            "lastUpdate": status.last_update.isoformat(),
            "error": status.error,
        },
    }


@router.post("/{broker_id}/disconnect")
async def disconnect_broker(
    broker_id: int,
    store: TradeStore = Depends(get_store),
    sessions: LiveSessionManager = Depends(get_live_sessions),
    user_id: str = Depends(get_current_user_id),
):
    _get_owned(store, broker_id, user_id)
    stopped = await sessions.stop(broker_id)
    if not stopped:
        store.update_broker_status(broker_id, "disconnected")
    return {"success": True, "message": "Broker disconnected"}
