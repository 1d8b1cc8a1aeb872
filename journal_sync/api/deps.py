"""Shared API dependencies.

Long-lived collaborators (store, reconciler, registry, rate limiter, sync
service, live sessions) are created once per app and kept on ``app.state``.
"""

from fastapi import Depends, Request
from fastapi.responses import JSONResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from journal_sync.config import settings
from journal_sync.engine.broker_sync import BrokerSyncService
from journal_sync.engine.live_sessions import LiveSessionManager
from journal_sync.engine.reconciler import TradeReconciler
from journal_sync.engine.registry import ConnectionRegistry
from journal_sync.errors import AuthenticationError, SyncError, SyncValidationError
from journal_sync.services.rate_limiter import RateLimiter
from journal_sync.services.trade_store import TradeStore
from journal_sync.utils.constants import DEMO_USER_ID

optional_bearer = HTTPBearer(auto_error=False)


def get_current_user_id() -> str:
    """Single demo identity; there is no authentication."""
    return DEMO_USER_ID


def get_store(request: Request) -> TradeStore:
    return request.app.state.store


def get_reconciler(request: Request) -> TradeReconciler:
    return request.app.state.reconciler


def get_registry(request: Request) -> ConnectionRegistry:
    return request.app.state.registry


def get_rate_limiter(request: Request) -> RateLimiter:
    return request.app.state.rate_limiter


def get_sync_service(request: Request) -> BrokerSyncService:
    return request.app.state.sync_service


def get_live_sessions(request: Request) -> LiveSessionManager:
    return request.app.state.live_sessions


def client_ip(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()
    return request.client.host if request.client else "unknown"


def verify_ingest_token(
    credentials: HTTPAuthorizationCredentials | None = Depends(optional_bearer),
):
    """Check the terminal's bearer token when TS_INGEST_TOKEN is configured."""
    if not settings.ingest_token:
        return
    if credentials is None or credentials.credentials != settings.ingest_token:
        raise AuthenticationError("Invalid or missing ingest token")


def error_response(error: SyncError) -> JSONResponse:
    """``{success: false, error}`` with the status the error maps to."""
    return JSONResponse(status_code=error.status_code, content={"success": False, "error": error.message})


async def sync_error_handler(request: Request, exc: SyncError) -> JSONResponse:
    return error_response(exc)


async def read_json_object(request: Request) -> dict:
    """Decode the request body, which must be a JSON object."""
    try:
        payload = await request.json()
    except ValueError:
        raise SyncValidationError("Request body is not valid JSON")
    if not isinstance(payload, dict):
        raise SyncValidationError("Request body must be a JSON object")
    return payload
