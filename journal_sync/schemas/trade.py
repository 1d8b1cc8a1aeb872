"""Pydantic schemas for the Trades API."""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field, field_validator


class TradeCreate(BaseModel):
    date: datetime
    symbol: str = Field(min_length=1, max_length=40)
    side: Literal["LONG", "SHORT"]
    qty: float = Field(gt=0)
    entry_price: float = Field(gt=0)
    exit_price: float = Field(gt=0)
    fees: float = Field(default=0.0, ge=0)
    risk: float | None = Field(default=None, ge=0)
    strategy: str | None = None
    notes: str | None = None
    tags: list[str] = []
    broker_id: int | None = None

    @field_validator("side", mode="before")
    @classmethod
    def _upper_side(cls, value):
        return value.upper() if isinstance(value, str) else value

    @field_validator("symbol")
    @classmethod
    def _trim_symbol(cls, value: str) -> str:
        text = value.strip().upper()
        if not text:
            raise ValueError("must not be empty")
        return text


class TradeRead(BaseModel):
    id: int
    broker_id: int | None
    date: datetime
    symbol: str
    side: str
    qty: float
    entry_price: float
    exit_price: float
    fees: float
    pnl: float
    risk: float | None
    strategy: str | None
    notes: str | None
    tags: str | None
    platform: str | None
    external_id: str | None
    created_at: datetime

    model_config = {"from_attributes": True}
