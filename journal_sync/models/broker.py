"""Broker model: a connected brokerage/platform account."""

from datetime import datetime, timezone
from sqlmodel import SQLModel, Field


class Broker(SQLModel, table=True):
    __tablename__ = "broker"

    id: int | None = Field(default=None, primary_key=True)
    user_id: str = Field(index=True)
    name: str
    platform: str  # "MT4", "MT5", "MT5WEB", "cTrader", "NinjaTrader", "Binance"
    account_id: str
    server: str | None = None
    username: str | None = None
    password_encrypted: str | None = None  # Fernet-encrypted
    api_key: str | None = None
    api_secret_encrypted: str | None = None  # Fernet-encrypted
    api_url: str | None = None  # overrides the platform default endpoint
    currency: str = "USD"
    leverage: float | None = None
    company: str | None = None

    # Connection lifecycle
    status: str = "disconnected"  # "disconnected", "connecting", "connected", "error"
    last_sync: datetime | None = None
    last_error: str | None = None
    auto_sync_minutes: int = 0  # 0 disables scheduled sync

    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
