"""APScheduler integration for FastAPI.

Runs periodic syncs for brokers with ``auto_sync_minutes`` set, and an hourly
job that evicts stale terminal entries from the connection registry.
"""

import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from journal_sync.engine.broker_sync import BrokerSyncService
from journal_sync.engine.registry import ConnectionRegistry
from journal_sync.errors import SyncError

logger = logging.getLogger(__name__)

scheduler = AsyncIOScheduler()

REGISTRY_EVICTION_JOB = "registry_eviction"

_sync_service: BrokerSyncService | None = None


def _job_id(broker_id: int) -> str:
    return f"broker_{broker_id}"


async def run_broker_sync(broker_id: int):
    """Scheduled sync for one broker; failures are recorded on the broker."""
    if _sync_service is None:
        logger.error(f"[broker_{broker_id}] Scheduler has no sync service")
        return
    try:
        result = await _sync_service.sync_broker(broker_id)
        logger.info(f"[broker_{broker_id}] Scheduled sync: {result.summary.message}")
    except SyncError as e:
        logger.warning(f"[broker_{broker_id}] Scheduled sync failed: {e.message}")


def add_broker_job(broker_id: int, interval_minutes: int):
    """Add or replace the periodic sync job for a broker. 0 minutes removes it."""
    if interval_minutes <= 0:
        remove_broker_job(broker_id)
        return

    scheduler.add_job(
        run_broker_sync,
        trigger=IntervalTrigger(minutes=interval_minutes),
        args=[broker_id],
        id=_job_id(broker_id),
        name=f"Broker {broker_id} sync",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
        misfire_grace_time=60,
    )
    logger.info(f"Scheduled broker {broker_id} sync every {interval_minutes}m")


def remove_broker_job(broker_id: int):
    job_id = _job_id(broker_id)
    if scheduler.get_job(job_id):
        scheduler.remove_job(job_id)
        logger.info(f"Removed sync job for broker {broker_id}")


def start_scheduler(sync_service: BrokerSyncService, registry: ConnectionRegistry):
    """Start the scheduler with jobs for every auto-syncing broker."""
    global _sync_service
    _sync_service = sync_service

    for broker in sync_service.store.list_brokers():
        if broker.auto_sync_minutes > 0:
            add_broker_job(broker.id, broker.auto_sync_minutes)

    scheduler.add_job(
        registry.evict_stale,
        trigger=IntervalTrigger(hours=1),
        id=REGISTRY_EVICTION_JOB,
        name="Connection registry eviction",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )

    scheduler.start()
    logger.info(f"Scheduler started with {len(scheduler.get_jobs())} jobs")


def stop_scheduler():
    if scheduler.running:
        scheduler.shutdown(wait=False)
    logger.info("Scheduler stopped")


def get_scheduler_status() -> dict:
    """Scheduler state and job list for the system API."""
    jobs = scheduler.get_jobs()
    return {
        "running": scheduler.running,
        "job_count": len(jobs),
        "broker_sync_jobs": sum(1 for j in jobs if j.id.startswith("broker_")),
        "jobs": [
            {
                "id": j.id,
                "name": j.name,
                # Jobs added before start() have no next_run_time yet
                "next_run": j.next_run_time.isoformat() if getattr(j, "next_run_time", None) else None,
                "trigger": str(j.trigger),
            }
            for j in jobs
        ],
    }
