"""In-memory registry of terminals pushing data to the ingestion endpoint.

A liveness cache only: entries are created by ``account`` messages, refreshed
by heartbeats and trades, and marked inactive on disconnect. Everything here
is lost on restart; the imported trades are already persisted.
"""

import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

from journal_sync.config import settings

logger = logging.getLogger(__name__)

STATUS_ACTIVE = "active"
STATUS_INACTIVE = "inactive"


@dataclass
class ConnectionRecord:
    app_id: str
    account: dict[str, Any]
    last_heartbeat: datetime
    status: str = STATUS_ACTIVE


class ConnectionRegistry:
    def __init__(self, online_seconds: float | None = None):
        self.online_seconds = online_seconds or settings.registry_online_seconds
        self._records: dict[str, ConnectionRecord] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    def get(self, app_id: str) -> ConnectionRecord | None:
        with self._lock:
            return self._records.get(app_id)

    def register_account(self, app_id: str, account: dict[str, Any], now: datetime | None = None) -> ConnectionRecord:
        record = ConnectionRecord(
            app_id=app_id,
            account=dict(account),
            last_heartbeat=now or datetime.now(timezone.utc),
        )
        with self._lock:
            self._records[app_id] = record
        logger.info(f"Terminal {app_id} registered account {account.get('login')} on {account.get('server')}")
        return record

    def heartbeat(self, app_id: str, now: datetime | None = None) -> bool:
        """Refresh a known terminal. Unknown app ids are ignored."""
        with self._lock:
            record = self._records.get(app_id)
            if record is None:
                return False
            record.last_heartbeat = now or datetime.now(timezone.utc)
            record.status = STATUS_ACTIVE
            return True

    def touch(self, app_id: str, now: datetime | None = None) -> bool:
        with self._lock:
            record = self._records.get(app_id)
            if record is None:
                return False
            record.last_heartbeat = now or datetime.now(timezone.utc)
            return True

    def mark_inactive(self, app_id: str) -> bool:
        with self._lock:
            record = self._records.get(app_id)
            if record is None:
                return False
            record.status = STATUS_INACTIVE
        logger.info(f"Terminal {app_id} disconnected")
        return True

    def is_online(self, record: ConnectionRecord, now: datetime | None = None) -> bool:
        now = now or datetime.now(timezone.utc)
        return (now - record.last_heartbeat).total_seconds() < self.online_seconds

    def snapshot(self, now: datetime | None = None) -> list[dict[str, Any]]:
        now = now or datetime.now(timezone.utc)
        with self._lock:
            records = list(self._records.values())
        return [
            {
                "appId": r.app_id,
                "account": {
                    "login": r.account.get("login"),
                    "server": r.account.get("server"),
                    "currency": r.account.get("currency"),
                    "balance": r.account.get("balance"),
                    "equity": r.account.get("equity"),
                },
                "lastHeartbeat": r.last_heartbeat.isoformat(),
                "status": r.status,
                "isOnline": self.is_online(r, now),
            }
            for r in records
        ]

    def evict_stale(self, max_age: timedelta | None = None, now: datetime | None = None) -> int:
        """Remove entries whose last heartbeat is older than ``max_age``."""
        max_age = max_age or timedelta(hours=settings.registry_ttl_hours)
        cutoff = (now or datetime.now(timezone.utc)) - max_age
        with self._lock:
            stale = [app_id for app_id, r in self._records.items() if r.last_heartbeat < cutoff]
            for app_id in stale:
                del self._records[app_id]
        if stale:
            logger.info(f"Evicted {len(stale)} stale terminal connections")
        return len(stale)
