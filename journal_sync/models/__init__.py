"""Database models."""

from journal_sync.models.broker import Broker
from journal_sync.models.trade import Trade

__all__ = [
    "Broker",
    "Trade",
]
