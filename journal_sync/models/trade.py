"""Trade model: one journal trade, entered manually or imported from a platform."""

from datetime import datetime, timezone

from sqlalchemy import Index
from sqlmodel import SQLModel, Field


class Trade(SQLModel, table=True):
    __tablename__ = "trade"
    __table_args__ = (
        Index(
            "ix_trade_fingerprint_unique",
            "user_id", "dedup_scope", "fingerprint",
            unique=True,
        ),
    )

    id: int | None = Field(default=None, primary_key=True)
    user_id: str = Field(index=True)
    broker_id: int | None = Field(default=None, foreign_key="broker.id", index=True)
    date: datetime = Field(index=True)  # exit time
    symbol: str = Field(index=True)
    side: str  # "LONG" or "SHORT"
    qty: float  # platform-native units, not normalized across platforms
    entry_price: float
    exit_price: float
    fees: float = 0.0
    pnl: float = 0.0  # recomputed from prices/qty/fees, never the platform's figure
    risk: float | None = None
    strategy: str | None = None
    notes: str | None = None
    tags: str | None = None  # comma separated

    # Import provenance; null for manual entries
    platform: str | None = Field(default=None, index=True)
    external_id: str | None = None
    fingerprint: str | None = Field(default=None, index=True)
    dedup_scope: str = ""  # broker id as text when the import was broker-scoped

    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


def calculate_pnl(side: str, qty: float, entry_price: float, exit_price: float, fees: float = 0.0) -> float:
    direction = 1 if side == "LONG" else -1
    gross = (exit_price - entry_price) * qty * direction
    return gross - fees
