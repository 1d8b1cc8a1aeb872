"""Outbound account sync and report upload."""

import logging
import math
from datetime import datetime

from fastapi import APIRouter, Depends, File, Form, Request, UploadFile
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from journal_sync.api.deps import (
    client_ip,
    error_response,
    get_current_user_id,
    get_rate_limiter,
    get_reconciler,
    get_sync_service,
    read_json_object,
)
from journal_sync.connectors.base import parse_timestamp
from journal_sync.connectors.factory import create_connector
from journal_sync.connectors.file_import import parse_report
from journal_sync.engine.broker_sync import BrokerSyncService
from journal_sync.engine.reconciler import TradeReconciler
from journal_sync.errors import RateLimitError, SyncError, SyncValidationError
from journal_sync.schemas.sync import BrokerSyncRequest
from journal_sync.services.rate_limiter import RateLimiter

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/broker", tags=["broker-sync"])


def _validation_message(error: ValidationError) -> str:
    first = error.errors()[0]
    location = ".".join(str(part) for part in first.get("loc", ()))
    message = first.get("msg", "invalid value")
    return f"{location}: {message}" if location else message


def _parse_start_date(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        return parse_timestamp(value)
    except ValueError:
        raise SyncValidationError(f"startDate is not a valid ISO date: {value}")


def _rate_limited(limiter: RateLimiter, key: str) -> JSONResponse:
    retry_after = limiter.get_time_until_reset(key)
    minutes = max(1, math.ceil(retry_after / 60))
    error = RateLimitError(f"Too many connection attempts. Try again in {minutes} minutes.", retry_after)
    return JSONResponse(
        status_code=error.status_code,
        content={
            "success": False,
            "error": error.message,
            "remainingAttempts": 0,
            "retryAfter": math.ceil(error.retry_after),
        },
        headers={"Retry-After": str(math.ceil(error.retry_after))},
    )


@router.post("/sync")
async def sync_account(
    request: Request,
    limiter: RateLimiter = Depends(get_rate_limiter),
    service: BrokerSyncService = Depends(get_sync_service),
    user_id: str = Depends(get_current_user_id),
):
    """Connect to a platform with the given credentials and import its history."""
    payload = await read_json_object(request)
    try:
        data = BrokerSyncRequest.model_validate(payload)
    except ValidationError as e:
        return error_response(SyncValidationError(_validation_message(e)))

    key = f"broker_sync_{client_ip(request)}"
    if not limiter.check_rate_limit(key):
        logger.warning(f"Sync rate limit hit for {key}")
        return _rate_limited(limiter, key)

    try:
        from_time = _parse_start_date(data.start_date)
        connector = create_connector(
            data.platform,
            login=data.login,
            password=data.password,
            server=data.server,
            api_url=data.api_url,
        )
        result = await service.sync_connector(connector, user_id, from_time=from_time)
    except SyncError as e:
        logger.warning(f"Broker sync ({data.platform}, {data.login}) failed: {e.message}")
        return error_response(e)
    except Exception as e:
        logger.error(f"Broker sync ({data.platform}) crashed: {e}", exc_info=True)
        return error_response(SyncError("Broker sync failed"))

    response = result.to_response()
    response["remainingAttempts"] = limiter.get_remaining_attempts(key)
    return response


@router.post("/upload")
async def upload_report(
    file: UploadFile = File(...),
    platform: str = Form("IMPORT"),
    broker_id: int | None = Form(None),
    reconciler: TradeReconciler = Depends(get_reconciler),
    user_id: str = Depends(get_current_user_id),
):
    """Import an HTML statement or CSV export."""
    content = await file.read()
    tag = (platform or "IMPORT").strip().upper() or "IMPORT"
    try:
        trades = parse_report(content, file.filename or "", tag)
    except SyncError as e:
        logger.warning(f"Upload of {file.filename} rejected: {e.message}")
        return error_response(e)

    summary = await reconciler.reconcile(
        trades,
        user_id,
        broker_id=broker_id,
        strategy=f"{tag} File Import",
        tags=f"{tag.lower()},file-import",
    )
    return {
        "success": True,
        "tradesImported": summary.imported,
        "totalTrades": summary.total_seen,
        "duplicatesSkipped": summary.skipped,
        "rejected": summary.rejected,
        "message": f"{summary.imported} new trades imported from file, {summary.skipped} duplicates skipped",
    }
