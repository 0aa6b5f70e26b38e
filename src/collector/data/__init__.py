"""Candle persistence layer.

Provides data models, SQLite database management, the typed store, the
single-writer persistence queue and the paginated kline backfiller.
"""

from collector.data.backfiller import HistoricalBackfiller
from collector.data.database import CollectorDatabase
from collector.data.models import BackfillResult, Candle, CandleBatch, ListingBatch, SymbolBatch
from collector.data.persistence_queue import PersistenceQueue
from collector.data.store import HistoricalStore

__all__ = [
    "BackfillResult",
    "Candle",
    "CandleBatch",
    "CollectorDatabase",
    "HistoricalBackfiller",
    "HistoricalStore",
    "ListingBatch",
    "PersistenceQueue",
    "SymbolBatch",
]
