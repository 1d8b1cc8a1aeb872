"""Ingestion endpoint for terminals that push their own data.

An Expert Advisor running inside MetaTrader 5 posts JSON messages here:
``ping``, ``heartbeat``, ``account``, ``trade`` and ``disconnect``.
"""

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from journal_sync.api.deps import (
    get_current_user_id,
    get_reconciler,
    get_registry,
    read_json_object,
    verify_ingest_token,
)
from journal_sync.connectors.base import CanonicalTrade, from_unix_seconds, side_from_code
from journal_sync.engine.reconciler import ImportStatus, TradeReconciler
from journal_sync.engine.registry import ConnectionRegistry
from journal_sync.schemas.sync import AccountMessage, TerminalMessage, TradeMessage
from journal_sync.utils.constants import PLATFORM_MT5

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/mt5", tags=["mt5"])


def _fail(status_code: int, error: str, **extra) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "error": error, **extra})


def terminal_trade_to_canonical(message: TradeMessage) -> CanonicalTrade:
    trade = message.trade
    return CanonicalTrade(
        external_id=str(trade.ticket),
        symbol=trade.symbol,
        side=side_from_code(trade.type),
        quantity=trade.volume,
        entry_price=trade.openPrice,
        exit_price=trade.closePrice,
        entry_time=from_unix_seconds(trade.openTime),
        exit_time=from_unix_seconds(trade.closeTime),
        profit=trade.profit,
        commission=trade.commission,
        swap=trade.swap,
        fee=trade.fee,
        comment=trade.comment or None,
        platform=PLATFORM_MT5,
    )


@router.post("/import", dependencies=[Depends(verify_ingest_token)])
async def ingest(
    request: Request,
    registry: ConnectionRegistry = Depends(get_registry),
    reconciler: TradeReconciler = Depends(get_reconciler),
    user_id: str = Depends(get_current_user_id),
):
    payload = await read_json_object(request)
    try:
        message = TerminalMessage.model_validate(payload)
    except ValidationError:
        return _fail(400, "Unknown message type")

    logger.debug(f"Terminal message {message.type} from {message.appId}")

    if message.type == "ping":
        return {
            "success": True,
            "message": "Pong",
            "timestamp": int(datetime.now(timezone.utc).timestamp() * 1000),
            "serverTime": datetime.now(timezone.utc).isoformat(),
        }

    if message.type == "heartbeat":
        registry.heartbeat(message.appId)
        return {"success": True, "message": "Heartbeat received"}

    if message.type == "disconnect":
        registry.mark_inactive(message.appId)
        return {"success": True, "message": "Disconnect acknowledged"}

    if message.type == "account":
        try:
            account_message = AccountMessage.model_validate(payload)
        except ValidationError as e:
            logger.warning(f"Invalid account message from {message.appId}: {e.error_count()} errors")
            return _fail(400, "Invalid account data format")
        account = account_message.account.model_dump()
        registry.register_account(message.appId, account)
        return {"success": True, "message": "Account info received", "account": account}

    # trade
    if payload.get("trade") is None or payload.get("account") is None:
        return _fail(400, "Missing trade or account data")
    try:
        trade_message = TradeMessage.model_validate(payload)
    except ValidationError as e:
        return _fail(400, "Invalid trade data format", details=e.errors(include_url=False, include_context=False))

    registry.touch(message.appId)
    account = trade_message.account
    outcome = await reconciler.reconcile_one(
        terminal_trade_to_canonical(trade_message),
        user_id,
        tags=",".join(["mt5", "auto-import", account.server.lower()]),
        notes_suffix=f"Server: {account.server} | Account: {account.login}",
    )

    if outcome.status == ImportStatus.SKIPPED:
        return {"success": True, "message": "Trade already exists", "tradeId": outcome.trade_id}
    if outcome.status == ImportStatus.REJECTED:
        return _fail(400, outcome.error or "Invalid trade data")

    trade = trade_message.trade
    return {
        "success": True,
        "tradeId": outcome.trade_id,
        "message": "Trade imported successfully",
        "trade": {
            "id": outcome.trade_id,
            "symbol": trade.symbol,
            "side": side_from_code(trade.type).value,
            "pnl": trade.profit,
        },
    }


@router.get("/import")
def connection_status(registry: ConnectionRegistry = Depends(get_registry)):
    connections = registry.snapshot()
    return {
        "success": True,
        "connections": connections,
        "totalConnections": len(connections),
        "onlineConnections": sum(1 for c in connections if c["isOnline"]),
    }
