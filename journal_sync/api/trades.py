"""Trades API: journal listing and manual entry."""

from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException

from journal_sync.api.deps import get_current_user_id, get_store
from journal_sync.models.trade import calculate_pnl
from journal_sync.schemas.trade import TradeCreate, TradeRead
from journal_sync.services.trade_store import TradeStore

router = APIRouter(prefix="/api/trades", tags=["trades"])


@router.get("", response_model=list[TradeRead])
def list_trades(
    broker_id: int | None = None,
    symbol: str | None = None,
    side: str | None = None,
    platform: str | None = None,
    outcome: str | None = None,
    date_from: datetime | None = None,
    date_to: datetime | None = None,
    limit: int = 100,
    offset: int = 0,
    store: TradeStore = Depends(get_store),
    user_id: str = Depends(get_current_user_id),
):
    return store.list_trades(
        user_id,
        broker_id=broker_id,
        symbol=symbol,
        side=side,
        platform=platform,
        outcome=outcome,
        date_from=date_from,
        date_to=date_to,
        limit=min(limit, 1000),
        offset=offset,
    )


@router.post("", response_model=TradeRead, status_code=201)
def create_trade(
    data: TradeCreate,
    store: TradeStore = Depends(get_store),
    user_id: str = Depends(get_current_user_id),
):
    if data.broker_id is not None:
        broker = store.find_broker(data.broker_id)
        if broker is None or broker.user_id != user_id:
            raise HTTPException(status_code=400, detail="Unknown broker")

    fields = data.model_dump(exclude={"broker_id", "tags"})
    fields["tags"] = ",".join(t.strip() for t in data.tags if t.strip()) or None
    fields["pnl"] = calculate_pnl(data.side, data.qty, data.entry_price, data.exit_price, data.fees)
    return store.create_trade(fields, user_id, data.broker_id)


@router.get("/{trade_id}", response_model=TradeRead)
def get_trade(
    trade_id: int,
    store: TradeStore = Depends(get_store),
    user_id: str = Depends(get_current_user_id),
):
    trade = store.get_trade(trade_id, user_id)
    if trade is None:
        raise HTTPException(status_code=404, detail="Trade not found")
    return trade
