"""CLI tool for admin operations.

Usage:
    python -m journal_sync.cli generate-key
    python -m journal_sync.cli import-file <path> [platform]
    python -m journal_sync.cli sync-broker <broker_id>
"""

import asyncio
import sys
from pathlib import Path

from cryptography.fernet import Fernet

from journal_sync.connectors.file_import import parse_report
from journal_sync.database import create_db_and_tables, engine
from journal_sync.engine.broker_sync import BrokerSyncService
from journal_sync.engine.reconciler import TradeReconciler
from journal_sync.errors import SyncError
from journal_sync.services.trade_store import TradeStore
from journal_sync.utils.constants import DEMO_USER_ID
from journal_sync.utils.logging import setup_logging


def generate_key():
    """Print a fresh Fernet key for TS_ENCRYPTION_KEY."""
    print(Fernet.generate_key().decode())


async def import_file(path: str, platform: str = "IMPORT"):
    file = Path(path)
    if not file.is_file():
        print(f"File not found: {path}")
        sys.exit(1)

    trades = parse_report(file.read_bytes(), file.name, platform)
    tag = platform.upper()
    summary = await TradeReconciler(TradeStore(engine)).reconcile(
        trades,
        DEMO_USER_ID,
        strategy=f"{tag} File Import",
        tags=f"{tag.lower()},file-import",
    )
    print(f"{file.name}: {summary.message} ({summary.total_seen} rows with trades)")


async def sync_broker(broker_id: int):
    store = TradeStore(engine)
    service = BrokerSyncService(store, TradeReconciler(store))
    result = await service.sync_broker(broker_id)
    account = result.account
    if account is not None:
        print(f"Account {account.account_id} on {account.server}: balance {account.balance} {account.currency}")
    print(result.summary.message)


def main():
    if len(sys.argv) < 2:
        print("Usage: python -m journal_sync.cli <command>")
        print("Commands: generate-key, import-file, sync-broker")
        sys.exit(1)

    command = sys.argv[1]
    if command == "generate-key":
        generate_key()
        return

    setup_logging()
    create_db_and_tables()
    try:
        if command == "import-file" and len(sys.argv) >= 3:
            asyncio.run(import_file(sys.argv[2], sys.argv[3] if len(sys.argv) > 3 else "IMPORT"))
        elif command == "sync-broker" and len(sys.argv) == 3 and sys.argv[2].isdigit():
            asyncio.run(sync_broker(int(sys.argv[2])))
        else:
            print(f"Unknown command or missing arguments: {' '.join(sys.argv[1:])}")
            sys.exit(1)
    except SyncError as e:
        print(f"Error: {e.message}")
        sys.exit(1)


if __name__ == "__main__":
    main()
