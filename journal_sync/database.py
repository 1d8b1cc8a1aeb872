"""SQLModel database engine and session management."""

import logging

from sqlalchemy import inspect
from sqlmodel import SQLModel, create_engine

from journal_sync.config import settings

logger = logging.getLogger(__name__)

# SQLite needs check_same_thread=False; PostgreSQL does not
connect_args = {}
if settings.database_url.startswith("sqlite"):
    connect_args["check_same_thread"] = False

engine = create_engine(
    settings.database_url,
    echo=False,
    connect_args=connect_args,
)


def _run_migrations():
    """Run lightweight schema migrations for columns added after first release."""
    from sqlalchemy import text

    inspector = inspect(engine)

    if "trade" not in inspector.get_table_names():
        return

    columns = {col["name"] for col in inspector.get_columns("trade")}
    added = {
        "platform": "VARCHAR",
        "external_id": "VARCHAR",
        "fingerprint": "VARCHAR",
        "dedup_scope": "VARCHAR DEFAULT ''",
    }
    for name, ddl in added.items():
        if name not in columns:
            logger.info(f"Migrating: adding trade.{name}")
            with engine.connect() as conn:
                conn.execute(text(f"ALTER TABLE trade ADD COLUMN {name} {ddl}"))
                conn.commit()

    # Ensure the dedup unique index exists on databases created before it
    existing_indexes = inspector.get_indexes("trade")
    has_unique_idx = any(
        idx["name"] == "ix_trade_fingerprint_unique" for idx in existing_indexes
    )
    if not has_unique_idx:
        with engine.connect() as conn:
            conn.execute(text(
                "CREATE UNIQUE INDEX ix_trade_fingerprint_unique "
                "ON trade (user_id, dedup_scope, fingerprint)"
            ))
            conn.commit()


def create_db_and_tables():
    """Create all tables. Called on startup."""
    import journal_sync.models  # noqa: F401  (registers tables on the metadata)

    SQLModel.metadata.create_all(engine)
    _run_migrations()
