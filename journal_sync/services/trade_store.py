"""Trade and broker persistence used by the sync core and the API."""

import logging
import re
from datetime import datetime, timezone
from typing import Any

from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, col, select

from journal_sync.models.broker import Broker
from journal_sync.models.trade import Trade

logger = logging.getLogger(__name__)


def notes_contain_fingerprint(notes: str | None, fingerprint: str) -> bool:
    """True when ``fingerprint`` appears in notes as a whole token.

    "MT5 Ticket: 123" must not match notes holding "MT5 Ticket: 1234".
    """
    if not notes:
        return False
    return re.search(re.escape(fingerprint) + r"(?![0-9A-Za-z_\-])", notes) is not None


class TradeStore:
    def __init__(self, engine: Engine):
        self.engine = engine

    # -- trades ---------------------------------------------------------------

    def find_trade_by_fingerprint(
        self, user_id: str, fingerprint: str, broker_id: int | None = None
    ) -> Trade | None:
        with Session(self.engine) as session:
            stmt = select(Trade).where(Trade.user_id == user_id, Trade.fingerprint == fingerprint)
            if broker_id is not None:
                stmt = stmt.where(Trade.broker_id == broker_id)
            trade = session.exec(stmt).first()
            if trade is not None:
                return trade

            # Rows imported before the fingerprint column existed
            stmt = select(Trade).where(
                Trade.user_id == user_id,
                col(Trade.fingerprint).is_(None),
                col(Trade.notes).contains(fingerprint),
            )
            if broker_id is not None:
                stmt = stmt.where(Trade.broker_id == broker_id)
            for candidate in session.exec(stmt):
                if notes_contain_fingerprint(candidate.notes, fingerprint):
                    return candidate
        return None

    def create_trade(self, fields: dict[str, Any], user_id: str, broker_id: int | None = None) -> Trade | None:
        """Insert a trade. Returns None when the dedup unique index rejects it."""
        trade = Trade(
            user_id=user_id,
            broker_id=broker_id,
            dedup_scope=str(broker_id) if broker_id is not None else "",
            **fields,
        )
        with Session(self.engine) as session:
            session.add(trade)
            try:
                session.commit()
            except IntegrityError:
                session.rollback()
                logger.info(f"Trade {fields.get('fingerprint')} already stored by a concurrent import")
                return None
            session.refresh(trade)
            return trade

    def get_trade(self, trade_id: int, user_id: str) -> Trade | None:
        with Session(self.engine) as session:
            trade = session.get(Trade, trade_id)
            if trade is None or trade.user_id != user_id:
                return None
            return trade

    def list_trades(
        self,
        user_id: str,
        broker_id: int | None = None,
        symbol: str | None = None,
        side: str | None = None,
        platform: str | None = None,
        outcome: str | None = None,
        date_from: datetime | None = None,
        date_to: datetime | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[Trade]:
        stmt = select(Trade).where(Trade.user_id == user_id)
        if broker_id is not None:
            stmt = stmt.where(Trade.broker_id == broker_id)
        if symbol:
            stmt = stmt.where(Trade.symbol == symbol)
        if side:
            stmt = stmt.where(Trade.side == side.upper())
        if platform:
            stmt = stmt.where(Trade.platform == platform.upper())
        if outcome:
            outcome = outcome.upper()
            if outcome == "WIN":
                stmt = stmt.where(Trade.pnl > 0)
            elif outcome == "LOSS":
                stmt = stmt.where(Trade.pnl < 0)
        if date_from is not None:
            stmt = stmt.where(Trade.date >= date_from)
        if date_to is not None:
            stmt = stmt.where(Trade.date <= date_to)
        stmt = stmt.order_by(col(Trade.date).desc()).offset(offset).limit(limit)
        with Session(self.engine) as session:
            return list(session.exec(stmt).all())

    # -- brokers --------------------------------------------------------------

    def find_broker(self, broker_id: int) -> Broker | None:
        with Session(self.engine) as session:
            return session.get(Broker, broker_id)

    def find_broker_by_account(self, user_id: str, platform: str, account_id: str) -> Broker | None:
        with Session(self.engine) as session:
            return session.exec(
                select(Broker).where(
                    Broker.user_id == user_id,
                    Broker.platform == platform,
                    Broker.account_id == account_id,
                )
            ).first()

    def list_brokers(self, user_id: str | None = None) -> list[Broker]:
        stmt = select(Broker).order_by(col(Broker.created_at).desc())
        if user_id is not None:
            stmt = stmt.where(Broker.user_id == user_id)
        with Session(self.engine) as session:
            return list(session.exec(stmt).all())

    def save_broker(self, broker: Broker) -> Broker:
        broker.updated_at = datetime.now(timezone.utc)
        with Session(self.engine) as session:
            session.add(broker)
            session.commit()
            session.refresh(broker)
            return broker

    def delete_broker(self, broker_id: int) -> bool:
        with Session(self.engine) as session:
            broker = session.get(Broker, broker_id)
            if broker is None:
                return False
            # Imported trades stay in the journal, detached from the account
            for trade in session.exec(select(Trade).where(Trade.broker_id == broker_id)).all():
                trade.broker_id = None
                session.add(trade)
            session.delete(broker)
            session.commit()
            return True

    def update_broker_status(
        self,
        broker_id: int,
        status: str,
        error: str | None = None,
        last_sync: datetime | None = None,
    ) -> Broker | None:
        with Session(self.engine) as session:
            broker = session.get(Broker, broker_id)
            if broker is None:
                logger.warning(f"Status update for unknown broker {broker_id}")
                return None
            broker.status = status
            broker.last_error = error
            if last_sync is not None:
                broker.last_sync = last_sync
            broker.updated_at = datetime.now(timezone.utc)
            session.add(broker)
            session.commit()
            session.refresh(broker)
            return broker
