"""Request schemas for the outbound sync and inbound terminal ingestion endpoints."""

import re
from typing import Literal

from pydantic import BaseModel, Field, field_validator, model_validator

from journal_sync.utils.constants import SYNC_PLATFORMS

_LOGIN_RE = re.compile(r"^\d{6,10}$")
_SERVER_RE = re.compile(r"^[a-zA-Z0-9\-.]+$")

# Platforms whose login is a numeric MetaTrader account number
_NUMERIC_LOGIN_PLATFORMS = {"mt4", "mt5", "mt5web"}

# 9999-12-31T23:59:59Z, the last second a datetime can hold
MAX_EPOCH_SECONDS = 253402300799


class BrokerSyncRequest(BaseModel):
    platform: str
    server: str = Field(min_length=1)
    login: str = Field(min_length=1)
    password: str = Field(min_length=1)
    start_date: str | None = Field(default=None, alias="startDate")
    api_url: str | None = Field(default=None, alias="apiUrl")

    model_config = {"populate_by_name": True}

    @field_validator("platform")
    @classmethod
    def _validate_platform(cls, value: str) -> str:
        platform = value.strip().lower()
        if platform not in SYNC_PLATFORMS:
            raise ValueError(f"must be one of: {', '.join(SYNC_PLATFORMS)}")
        return platform

    @field_validator("server")
    @classmethod
    def _validate_server(cls, value: str) -> str:
        server = value.strip()
        if not _SERVER_RE.fullmatch(server):
            raise ValueError("invalid server format")
        return server

    @field_validator("password")
    @classmethod
    def _validate_password(cls, value: str) -> str:
        if len(value) < 6:
            raise ValueError("must be at least 6 characters")
        return value

    @model_validator(mode="after")
    def _validate_login(self) -> "BrokerSyncRequest":
        self.login = self.login.strip()
        if self.platform in _NUMERIC_LOGIN_PLATFORMS and not _LOGIN_RE.fullmatch(self.login):
            raise ValueError("login must be a 6-10 digit account number")
        return self


# ---------------------------------------------------------------------------
# Terminal ingestion messages
# ---------------------------------------------------------------------------

class TerminalAccount(BaseModel):
    login: int
    name: str
    server: str
    currency: str
    company: str | None = None
    leverage: float
    balance: float
    equity: float
    margin: float
    freeMargin: float
    marginLevel: float
    credit: float | None = None


class TerminalTradeAccount(BaseModel):
    login: int
    server: str


class TerminalTrade(BaseModel):
    ticket: int
    symbol: str
    type: int  # 0 = BUY, 1 = SELL
    volume: float
    openPrice: float
    closePrice: float
    openTime: float = Field(gt=0, le=MAX_EPOCH_SECONDS, allow_inf_nan=False)  # unix seconds
    closeTime: float = Field(gt=0, le=MAX_EPOCH_SECONDS, allow_inf_nan=False)
    profit: float = 0.0
    commission: float = 0.0
    swap: float = 0.0
    fee: float = 0.0
    comment: str = ""
    positionId: int | None = None
    magicNumber: int | None = None


class TerminalMessage(BaseModel):
    type: Literal["ping", "heartbeat", "disconnect", "account", "trade"]
    appId: str
    timestamp: float | None = None


class AccountMessage(TerminalMessage):
    type: Literal["account"]
    account: TerminalAccount


class TradeMessage(TerminalMessage):
    type: Literal["trade"]
    account: TerminalTradeAccount
    trade: TerminalTrade
