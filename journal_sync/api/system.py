"""System API: health check, scheduler and connection status."""

from fastapi import APIRouter, Depends

from journal_sync.api.deps import get_live_sessions, get_registry
from journal_sync.engine.live_sessions import LiveSessionManager
from journal_sync.engine.registry import ConnectionRegistry

router = APIRouter(prefix="/api/system", tags=["system"])


@router.get("/health")
def health_check():
    return {"status": "ok"}


@router.get("/scheduler")
def scheduler_status():
    """Current scheduler state with job details."""
    from journal_sync.engine.scheduler import get_scheduler_status
    return get_scheduler_status()


@router.get("/connections")
def connection_overview(
    registry: ConnectionRegistry = Depends(get_registry),
    sessions: LiveSessionManager = Depends(get_live_sessions),
):
    """Live broker sessions and terminals pushing to the ingestion endpoint."""
    return {
        "terminals": len(registry),
        "live_sessions": {
            broker_id: {
                "platform": status.platform,
                "state": status.state.value,
                "connected": status.connected,
                "last_update": status.last_update.isoformat(),
                "error": status.error,
            }
            for broker_id, status in sessions.statuses().items()
        },
    }
