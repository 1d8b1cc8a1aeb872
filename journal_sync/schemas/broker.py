"""Pydantic schemas for the Broker API."""

from datetime import datetime

from pydantic import BaseModel, Field, field_validator

from journal_sync.utils.constants import BROKER_PLATFORMS

_PLATFORMS_BY_KEY = {p.upper(): p for p in BROKER_PLATFORMS}


def _canonical_platform(value: str) -> str:
    platform = _PLATFORMS_BY_KEY.get(value.strip().upper())
    if platform is None:
        raise ValueError(f"must be one of: {', '.join(BROKER_PLATFORMS)}")
    return platform


def _validate_url(value: str | None) -> str | None:
    if value is None:
        return None
    url = value.strip()
    if not url:
        return None
    if not url.startswith(("http://", "https://", "ws://", "wss://")):
        raise ValueError("must start with http(s):// or ws(s)://")
    return url.rstrip("/")


class BrokerCreate(BaseModel):
    name: str = Field(min_length=1, max_length=120)
    platform: str
    account_id: str = Field(min_length=1, max_length=64)
    server: str | None = None
    username: str | None = None
    password: str | None = None  # encrypted before storage
    api_key: str | None = None
    api_secret: str | None = None  # encrypted before storage
    api_url: str | None = None
    currency: str = "USD"
    leverage: float | None = Field(default=None, gt=0)
    company: str | None = None
    auto_sync_minutes: int = Field(default=0, ge=0, le=24 * 60)

    @field_validator("name", "account_id")
    @classmethod
    def _trim(cls, value: str) -> str:
        text = value.strip()
        if not text:
            raise ValueError("must not be empty")
        return text

    @field_validator("platform")
    @classmethod
    def _validate_platform(cls, value: str) -> str:
        return _canonical_platform(value)

    @field_validator("api_url")
    @classmethod
    def _validate_api_url(cls, value: str | None) -> str | None:
        return _validate_url(value)


class BrokerUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=120)
    server: str | None = None
    username: str | None = None
    password: str | None = None  # if provided, re-encrypts
    api_key: str | None = None
    api_secret: str | None = None  # if provided, re-encrypts
    api_url: str | None = None
    currency: str | None = None
    leverage: float | None = Field(default=None, gt=0)
    company: str | None = None
    auto_sync_minutes: int | None = Field(default=None, ge=0, le=24 * 60)

    @field_validator("name")
    @classmethod
    def _trim_optional_name(cls, value: str | None) -> str | None:
        if value is None:
            return None
        text = value.strip()
        if not text:
            raise ValueError("must not be empty")
        return text

    @field_validator("api_url")
    @classmethod
    def _validate_optional_api_url(cls, value: str | None) -> str | None:
        return _validate_url(value)


class BrokerRead(BaseModel):
    id: int
    name: str
    platform: str
    account_id: str
    server: str | None
    username: str | None
    api_url: str | None
    currency: str
    leverage: float | None
    company: str | None
    status: str
    last_sync: datetime | None
    last_error: str | None
    auto_sync_minutes: int
    created_at: datetime
    updated_at: datetime
    # password and api secret are NEVER exposed

    model_config = {"from_attributes": True}
