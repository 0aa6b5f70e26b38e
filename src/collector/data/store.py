"""Typed SQLite read/write abstraction for the collector tables.

All SQL is isolated behind HistoricalStore. Writes go through
``write_batch``, which the PersistenceQueue calls from its single drain
loop; each batch is one BEGIN IMMEDIATE ... COMMIT transaction.

Prices and volumes are Decimal in memory and REAL in historical_klines,
which is the column type the simulation engine reads.
"""

import time
from decimal import Decimal

from collector.data.database import CollectorDatabase
from collector.data.models import Candle, CandleBatch, ListingBatch, SymbolBatch, WriteBatch
from collector.logging import get_logger
from collector.models import ListingRecord, ListingStatus, Symbol

logger = get_logger(__name__)

_KLINE_COLUMNS = (
    "open_time, close_time, open_price, high_price, low_price, close_price, "
    "volume, quote_asset_volume, number_of_trades, "
    "taker_buy_base_asset_volume, taker_buy_quote_asset_volume"
)


class HistoricalStore:
    """Async store for symbols, listing analysis and historical klines.

    Usage:
        async with CollectorDatabase("data/collector.db") as database:
            store = HistoricalStore(database)
            inserted = await store.write_batch(CandleBatch(symbol_id, "ABCUSDT", candles))
    """

    def __init__(self, database: CollectorDatabase, insert_chunk_size: int = 500) -> None:
        self._database = database
        self._insert_chunk_size = insert_chunk_size

    # ──────────────────────────────────────────────
    # Transactional writes
    # ──────────────────────────────────────────────

    async def write_batch(self, batch: WriteBatch) -> int:
        """Apply one batch atomically. Returns the number of rows written.

        Any failure rolls the whole batch back and re-raises.
        """
        db = self._database.db
        await db.execute("BEGIN IMMEDIATE")
        try:
            if isinstance(batch, CandleBatch):
                written = await self._insert_candles(batch)
            elif isinstance(batch, ListingBatch):
                written = await self._upsert_listings(batch.records)
            elif isinstance(batch, SymbolBatch):
                written = await self._upsert_symbols(batch)
            else:
                raise TypeError(f"Unsupported batch type: {type(batch).__name__}")
            await db.execute("COMMIT")
        except BaseException:
            if db.in_transaction:
                await db.execute("ROLLBACK")
            raise
        return written

    async def _upsert_symbols(self, batch: SymbolBatch) -> int:
        now_ms = int(time.time() * 1000)
        data = [
            (s.symbol, s.base_asset, s.quote_asset, s.status, now_ms, now_ms)
            for s in batch.symbols
        ]
        if not data:
            return 0
        # ON CONFLICT keeps the row id stable; listing_analysis and
        # historical_klines reference it.
        await self._database.db.executemany(
            "INSERT INTO symbols "
            "(symbol, base_asset, quote_asset, status, created_at, updated_at) "
            "VALUES (?, ?, ?, ?, ?, ?) "
            "ON CONFLICT(symbol) DO UPDATE SET "
            "base_asset = excluded.base_asset, "
            "quote_asset = excluded.quote_asset, "
            "status = excluded.status, "
            "updated_at = excluded.updated_at",
            data,
        )
        logger.debug("upserted_symbols", count=len(data))
        return len(data)

    async def _upsert_listings(self, records: list[ListingRecord]) -> int:
        now_ms = int(time.time() * 1000)
        data = [
            (
                r.symbol_id,
                r.listing_timestamp,
                r.status.value,
                r.error_message,
                now_ms,
                r.retry_count if r.status is not ListingStatus.ERROR else max(r.retry_count, 1),
            )
            for r in records
        ]
        if not data:
            return 0
        await self._database.db.executemany(
            "INSERT INTO listing_analysis "
            "(symbol_id, listing_date, data_status, error_message, analysis_date, retry_count) "
            "VALUES (?, ?, ?, ?, ?, ?) "
            "ON CONFLICT(symbol_id) DO UPDATE SET "
            "listing_date = excluded.listing_date, "
            "data_status = excluded.data_status, "
            "error_message = excluded.error_message, "
            "analysis_date = excluded.analysis_date, "
            "retry_count = CASE WHEN excluded.data_status = 'error' "
            "THEN listing_analysis.retry_count + 1 "
            "ELSE listing_analysis.retry_count END",
            data,
        )
        logger.debug("upserted_listing_analysis", count=len(data))
        return len(data)

    async def _insert_candles(self, batch: CandleBatch) -> int:
        """INSERT OR IGNORE so re-inserting an existing (symbol_id, open_time) is a no-op."""
        inserted = 0
        size = self._insert_chunk_size
        for i in range(0, len(batch.candles), size):
            chunk = batch.candles[i : i + size]
            cursor = await self._database.db.executemany(
                f"INSERT OR IGNORE INTO historical_klines (symbol_id, {_KLINE_COLUMNS}) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                [
                    (
                        batch.symbol_id,
                        c.open_time,
                        c.close_time,
                        float(c.open),
                        float(c.high),
                        float(c.low),
                        float(c.close),
                        float(c.volume),
                        float(c.quote_volume),
                        c.trade_count,
                        float(c.taker_buy_base_volume),
                        float(c.taker_buy_quote_volume),
                    )
                    for c in chunk
                ],
            )
            inserted += cursor.rowcount
        logger.debug(
            "inserted_klines",
            symbol=batch.symbol,
            total=len(batch.candles),
            inserted=inserted,
        )
        return inserted

    # ──────────────────────────────────────────────
    # Read methods
    # ──────────────────────────────────────────────

    async def get_symbol(self, name: str) -> Symbol | None:
        cursor = await self._database.db.execute(
            "SELECT id, symbol, base_asset, quote_asset, status FROM symbols WHERE symbol = ?",
            (name,),
        )
        row = await cursor.fetchone()
        return _row_to_symbol(row) if row else None

    async def get_symbols_for_analysis(
        self,
        quote_assets: list[str],
        max_retries: int,
        names: list[str] | None = None,
    ) -> list[Symbol]:
        """Active symbols with no listing row yet, or a failed one still under
        the retry limit.

        ``names`` restricts the selection to those symbols regardless of
        their quote asset; otherwise symbols quoted in ``quote_assets`` are
        selected.
        """
        if names is not None:
            column, values = "s.symbol", list(names)
        else:
            column, values = "s.quote_asset", list(quote_assets)
        if not values:
            return []
        placeholders = ", ".join("?" for _ in values)
        cursor = await self._database.db.execute(
            "SELECT s.id, s.symbol, s.base_asset, s.quote_asset, s.status "
            "FROM symbols s "
            "LEFT JOIN listing_analysis la ON s.id = la.symbol_id "
            f"WHERE s.status = 'active' AND {column} IN ({placeholders}) "
            "AND (la.id IS NULL OR (la.data_status = 'error' AND la.retry_count < ?)) "
            "ORDER BY s.id",
            (*values, max_retries),
        )
        rows = await cursor.fetchall()
        return [_row_to_symbol(row) for row in rows]

    async def get_listing(self, symbol_id: int) -> ListingRecord | None:
        cursor = await self._database.db.execute(
            "SELECT symbol_id, listing_date, data_status, error_message, retry_count "
            "FROM listing_analysis WHERE symbol_id = ?",
            (symbol_id,),
        )
        row = await cursor.fetchone()
        if row is None:
            return None
        return ListingRecord(
            symbol_id=row[0],
            listing_timestamp=row[1],
            status=ListingStatus(row[2]),
            error_message=row[3],
            retry_count=row[4],
        )

    async def get_new_listings(self, since_ms: int) -> list[tuple[Symbol, int]]:
        """Analyzed listings at or after ``since_ms`` that have no klines yet.

        Newest listings first.
        """
        cursor = await self._database.db.execute(
            "SELECT s.id, s.symbol, s.base_asset, s.quote_asset, s.status, la.listing_date "
            "FROM symbols s "
            "JOIN listing_analysis la ON s.id = la.symbol_id "
            "WHERE la.data_status = 'analyzed' AND la.listing_date >= ? "
            "AND NOT EXISTS ("
            "  SELECT 1 FROM historical_klines hk WHERE hk.symbol_id = s.id"
            ") "
            "ORDER BY la.listing_date DESC",
            (since_ms,),
        )
        rows = await cursor.fetchall()
        return [(_row_to_symbol(row), row[5]) for row in rows]

    async def has_candles(self, symbol_id: int) -> bool:
        cursor = await self._database.db.execute(
            "SELECT 1 FROM historical_klines WHERE symbol_id = ? LIMIT 1",
            (symbol_id,),
        )
        return await cursor.fetchone() is not None

    async def get_candles(
        self,
        symbol_id: int,
        since_ms: int | None = None,
        until_ms: int | None = None,
    ) -> list[Candle]:
        """Query candles for a symbol ordered by open_time ASC."""
        conditions = ["symbol_id = ?"]
        params: list = [symbol_id]

        if since_ms is not None:
            conditions.append("open_time >= ?")
            params.append(since_ms)
        if until_ms is not None:
            conditions.append("open_time <= ?")
            params.append(until_ms)

        where = " AND ".join(conditions)
        cursor = await self._database.db.execute(
            f"SELECT {_KLINE_COLUMNS} FROM historical_klines "
            f"WHERE {where} ORDER BY open_time ASC",
            params,
        )
        rows = await cursor.fetchall()
        return [
            Candle(
                open_time=row[0],
                close_time=row[1],
                open=Decimal(str(row[2])),
                high=Decimal(str(row[3])),
                low=Decimal(str(row[4])),
                close=Decimal(str(row[5])),
                volume=Decimal(str(row[6])),
                quote_volume=Decimal(str(row[7])),
                trade_count=row[8],
                taker_buy_base_volume=Decimal(str(row[9])),
                taker_buy_quote_volume=Decimal(str(row[10])),
            )
            for row in rows
        ]

    async def get_collection_stats(self, recent_since_ms: int) -> dict:
        """Aggregate counts for the end-of-run report."""
        db = self._database.db

        cursor = await db.execute("SELECT COUNT(*) FROM symbols")
        total_symbols = (await cursor.fetchone())[0]

        cursor = await db.execute(
            "SELECT data_status, COUNT(*) FROM listing_analysis GROUP BY data_status"
        )
        by_status = {row[0]: row[1] for row in await cursor.fetchall()}

        cursor = await db.execute(
            "SELECT COUNT(*) FROM listing_analysis "
            "WHERE data_status = 'analyzed' AND listing_date >= ?",
            (recent_since_ms,),
        )
        recent_listings = (await cursor.fetchone())[0]

        cursor = await db.execute("SELECT COUNT(*) FROM historical_klines")
        total_klines = (await cursor.fetchone())[0]

        return {
            "total_symbols": total_symbols,
            "analyzed_listings": by_status.get(ListingStatus.ANALYZED.value, 0),
            "no_data_listings": by_status.get(ListingStatus.NO_DATA.value, 0),
            "error_listings": by_status.get(ListingStatus.ERROR.value, 0),
            "recent_listings": recent_listings,
            "total_klines": total_klines,
        }


def _row_to_symbol(row) -> Symbol:  # type: ignore[no-untyped-def]
    return Symbol(
        id=row[0],
        name=row[1],
        base_asset=row[2],
        quote_asset=row[3],
        status=row[4],
    )
