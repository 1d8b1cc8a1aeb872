"""Import reconciler: canonical trades in, journal trades out, no duplicates.

Each trade is identified by its fingerprint ("<PLATFORM> Ticket: <id>" or
"Binance Trade ID: <id>"). The existence check and the insert for one
fingerprint run under a per-fingerprint lock; the unique index on
(user_id, dedup_scope, fingerprint) rejects the loser of any cross-process
race, which is then counted as skipped.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum

from journal_sync.connectors.base import CanonicalTrade, to_trade_fields
from journal_sync.errors import TradeValidationError
from journal_sync.services.trade_store import TradeStore

logger = logging.getLogger(__name__)


class ImportStatus(str, Enum):
    IMPORTED = "imported"
    SKIPPED = "skipped"
    REJECTED = "rejected"


@dataclass
class ImportOutcome:
    status: ImportStatus
    trade_id: int | None = None
    error: str | None = None


@dataclass
class ImportSummary:
    imported: int = 0
    skipped: int = 0
    rejected: int = 0
    total_seen: int = 0
    trade_ids: list[int] = field(default_factory=list)

    def add(self, outcome: ImportOutcome):
        self.total_seen += 1
        if outcome.status == ImportStatus.IMPORTED:
            self.imported += 1
            self.trade_ids.append(outcome.trade_id)
        elif outcome.status == ImportStatus.SKIPPED:
            self.skipped += 1
        else:
            self.rejected += 1

    @property
    def message(self) -> str:
        text = f"{self.imported} new trades imported, {self.skipped} duplicates skipped"
        if self.rejected:
            text += f", {self.rejected} invalid trades rejected"
        return text


class TradeReconciler:
    def __init__(self, store: TradeStore):
        self.store = store
        self._locks: dict[tuple, asyncio.Lock] = {}
        self._waiters: dict[tuple, int] = {}

    async def reconcile(
        self,
        trades: list[CanonicalTrade],
        user_id: str,
        broker_id: int | None = None,
        strategy: str | None = None,
        tags: str | None = None,
    ) -> ImportSummary:
        summary = ImportSummary()
        for trade in trades:
            summary.add(await self.reconcile_one(trade, user_id, broker_id, strategy, tags))
        logger.info(
            f"Reconciled {summary.total_seen} trades for {user_id}"
            f"{f' (broker {broker_id})' if broker_id is not None else ''}: "
            f"{summary.imported} imported, {summary.skipped} skipped, {summary.rejected} rejected"
        )
        return summary

    async def reconcile_one(
        self,
        trade: CanonicalTrade,
        user_id: str,
        broker_id: int | None = None,
        strategy: str | None = None,
        tags: str | None = None,
        notes_suffix: str | None = None,
    ) -> ImportOutcome:
        try:
            trade.validate()
        except TradeValidationError as e:
            logger.warning(f"Rejected {trade.platform} trade: {e}")
            return ImportOutcome(ImportStatus.REJECTED, error=e.message)

        fingerprint = trade.fingerprint
        key = (user_id, broker_id, fingerprint)
        async with self._lock_for(key):
            try:
                existing = self.store.find_trade_by_fingerprint(user_id, fingerprint, broker_id)
                if existing is not None:
                    logger.debug(f"Duplicate trade skipped: {fingerprint}")
                    return ImportOutcome(ImportStatus.SKIPPED, trade_id=existing.id)

                fields = to_trade_fields(trade, strategy=strategy, tags=tags, notes_suffix=notes_suffix)
                created = self.store.create_trade(fields, user_id, broker_id)
                if created is None:
                    return ImportOutcome(ImportStatus.SKIPPED)
                logger.info(f"Imported {trade.symbol} {trade.side.value} {trade.quantity} ({fingerprint})")
                return ImportOutcome(ImportStatus.IMPORTED, trade_id=created.id)
            finally:
                self._release(key)

    def _lock_for(self, key: tuple) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        self._waiters[key] = self._waiters.get(key, 0) + 1
        return lock

    def _release(self, key: tuple):
        # Drop the lock once nobody else is queued on it
        remaining = self._waiters.get(key, 1) - 1
        if remaining <= 0:
            self._waiters.pop(key, None)
            self._locks.pop(key, None)
        else:
            self._waiters[key] = remaining
