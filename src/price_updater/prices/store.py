"""Storage backend: PriceSink protocol, SQLite implementation, factory."""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable
from datetime import date
from pathlib import Path
from typing import ClassVar, Protocol, runtime_checkable

import aiosqlite

from price_updater.core.config import StorageConfig
from price_updater.core.exceptions import StorageError
from price_updater.core.models import Asset
from price_updater.prices.frame import PriceFrame

logger = logging.getLogger(__name__)


@runtime_checkable
class PriceSink(Protocol):
    """What the updater needs from storage."""

    async def list_assets(self) -> list[Asset]: ...
    async def upsert_prices(self, frame: PriceFrame) -> int: ...
    async def mark_updated(self, asset_ids: Iterable[int], day: date) -> int: ...


class SqlitePriceStore:
    """SQLite implementation of PriceSink.

    Uses aiosqlite for async access, WAL mode, and a version-tracked
    migration system. One connection is held for the life of the store and
    reused sequentially by the updater.
    """

    _MIGRATIONS: ClassVar[dict[int, tuple[str, list[str]]]] = {
        1: (
            "Initial schema",
            [
                """CREATE TABLE IF NOT EXISTS schema_version (
                    version INTEGER PRIMARY KEY,
                    applied_at TEXT DEFAULT (datetime('now'))
                )""",
                """CREATE TABLE IF NOT EXISTS assets (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    symbol TEXT NOT NULL UNIQUE,
                    last_updated TEXT,
                    created_at TEXT DEFAULT (datetime('now'))
                )""",
                """CREATE TABLE IF NOT EXISTS asset_prices (
                    asset_id INTEGER NOT NULL REFERENCES assets(id),
                    date TEXT NOT NULL,
                    open REAL,
                    high REAL,
                    low REAL,
                    close REAL,
                    volume INTEGER,
                    PRIMARY KEY (asset_id, date)
                )""",
                "CREATE INDEX IF NOT EXISTS idx_asset_prices_date ON asset_prices(date)",
            ],
        ),
    }

    def __init__(self, config: StorageConfig) -> None:
        self._path = config.sqlite_path
        self._db: aiosqlite.Connection | None = None

    async def initialize(self) -> None:
        """Open connection, enable WAL + FK, run migrations."""
        try:
            if self._path != ":memory:":
                Path(self._path).parent.mkdir(parents=True, exist_ok=True)
            self._db = await aiosqlite.connect(self._path)
            self._db.row_factory = aiosqlite.Row
            await self._db.execute("PRAGMA journal_mode=WAL")
            await self._db.execute("PRAGMA foreign_keys=ON")
            current = await self._get_schema_version()
            await self._apply_migrations(current)
            await self._db.commit()
        except Exception as e:
            raise StorageError(
                f"Failed to initialize SQLite store: {e}",
                context={"operation": "initialize", "path": self._path},
            ) from e

    async def close(self) -> None:
        if self._db is not None:
            await self._db.close()
            self._db = None

    async def health_check(self) -> bool:
        if self._db is None:
            return False
        try:
            async with self._db.execute("SELECT 1") as cursor:
                row = await cursor.fetchone()
            return row is not None
        except aiosqlite.Error:
            return False

    # --- Schema Migration ---

    async def _get_schema_version(self) -> int:
        try:
            async with self._db.execute(
                "SELECT MAX(version) FROM schema_version"
            ) as cursor:
                row = await cursor.fetchone()
            return row[0] if row[0] is not None else 0
        except aiosqlite.OperationalError:
            return 0

    async def _apply_migrations(self, current_version: int) -> None:
        for version in sorted(self._MIGRATIONS.keys()):
            if version <= current_version:
                continue
            desc, statements = self._MIGRATIONS[version]
            logger.info("Applying migration %d: %s", version, desc)
            for sql in statements:
                await self._db.execute(sql)
            await self._db.execute(
                "INSERT INTO schema_version (version) VALUES (?)", (version,)
            )

    def _conn(self) -> aiosqlite.Connection:
        if self._db is None:
            raise StorageError(
                "Store is not initialized",
                context={"operation": "connect", "path": self._path},
            )
        return self._db

    # --- Asset Operations ---

    async def list_assets(self) -> list[Asset]:
        """Return every tracked asset with its watermark."""
        db = self._conn()
        try:
            async with db.execute(
                "SELECT id, symbol, last_updated FROM assets ORDER BY id"
            ) as cursor:
                rows = await cursor.fetchall()
            return [self._row_to_asset(r) for r in rows]
        except aiosqlite.Error as e:
            raise StorageError(
                f"Failed to list assets: {e}",
                context={"operation": "query", "table": "assets"},
            ) from e

    async def add_assets(self, symbols: Iterable[str]) -> list[Asset]:
        """Register symbols (upper-cased). Existing symbols are left untouched.

        Returns the assets for the requested symbols, new and existing.
        """
        wanted = sorted({s.strip().upper() for s in symbols if s.strip()})
        if not wanted:
            return []

        db = self._conn()
        try:
            await db.executemany(
                "INSERT OR IGNORE INTO assets (symbol) VALUES (?)",
                [(s,) for s in wanted],
            )
            await db.commit()
            async with db.execute(
                """SELECT id, symbol, last_updated FROM assets
                   WHERE symbol IN (SELECT value FROM json_each(?))
                   ORDER BY id""",
                (json.dumps(wanted),),
            ) as cursor:
                rows = await cursor.fetchall()
            return [self._row_to_asset(r) for r in rows]
        except aiosqlite.Error as e:
            raise StorageError(
                f"Failed to add assets: {e}",
                context={"operation": "insert", "table": "assets"},
            ) from e

    async def mark_updated(self, asset_ids: Iterable[int], day: date) -> int:
        """Set the watermark of every id in ``asset_ids`` to ``day``.

        Returns the number of asset rows changed.
        """
        ids = sorted(set(asset_ids))
        if not ids:
            return 0

        db = self._conn()
        try:
            cursor = await db.execute(
                """UPDATE assets SET last_updated = ?
                   WHERE id IN (SELECT value FROM json_each(?))""",
                (day.isoformat(), json.dumps(ids)),
            )
            await db.commit()
            return cursor.rowcount
        except aiosqlite.Error as e:
            raise StorageError(
                f"Failed to mark assets updated: {e}",
                context={"operation": "update", "table": "assets", "count": len(ids)},
            ) from e

    # --- Price Operations ---

    async def upsert_prices(self, frame: PriceFrame) -> int:
        """Bulk insert-or-update all rows of ``frame``.

        Rows are keyed on (asset_id, date); on conflict every value column
        takes the incoming row's value. Returns the number of rows written.
        """
        if not len(frame):
            return 0

        db = self._conn()
        try:
            await db.executemany(
                """INSERT INTO asset_prices
                   (asset_id, date, open, high, low, close, volume)
                   VALUES (?, ?, ?, ?, ?, ?, ?)
                   ON CONFLICT (asset_id, date) DO UPDATE SET
                       open = excluded.open,
                       high = excluded.high,
                       low = excluded.low,
                       close = excluded.close,
                       volume = excluded.volume""",
                [
                    (asset_id, day.isoformat(), o, h, lo, c, v)
                    for asset_id, day, o, h, lo, c, v in frame.rows()
                ],
            )
            await db.commit()
        except aiosqlite.Error as e:
            try:
                await db.rollback()
            except aiosqlite.Error as rollback_error:
                logger.warning("Rollback after failed upsert also failed: %s", rollback_error)
            raise StorageError(
                f"Failed to upsert prices: {e}",
                context={"operation": "upsert", "table": "asset_prices", "rows": len(frame)},
            ) from e

        return len(frame)

    async def get_prices(
        self,
        asset_id: int,
        start: date | None = None,
        end: date | None = None,
    ) -> PriceFrame:
        """Read stored rows for one asset, ordered by date."""
        query = (
            "SELECT asset_id, date, open, high, low, close, volume "
            "FROM asset_prices WHERE asset_id = ?"
        )
        params: list = [asset_id]
        if start is not None:
            query += " AND date >= ?"
            params.append(start.isoformat())
        if end is not None:
            query += " AND date <= ?"
            params.append(end.isoformat())
        query += " ORDER BY date"

        db = self._conn()
        try:
            async with db.execute(query, params) as cursor:
                rows = await cursor.fetchall()
        except aiosqlite.Error as e:
            raise StorageError(
                f"Failed to read prices: {e}",
                context={"operation": "query", "table": "asset_prices"},
            ) from e

        frame = PriceFrame()
        for r in rows:
            frame.append(
                r["asset_id"],
                date.fromisoformat(r["date"]),
                r["open"],
                r["high"],
                r["low"],
                r["close"],
                r["volume"],
            )
        return frame

    # --- Row Mapping ---

    @staticmethod
    def _row_to_asset(row: aiosqlite.Row) -> Asset:
        return Asset(
            id=row["id"],
            symbol=row["symbol"],
            last_updated=(
                date.fromisoformat(row["last_updated"]) if row["last_updated"] else None
            ),
        )


async def create_store(config: StorageConfig) -> SqlitePriceStore:
    """Create and initialize the configured price store."""
    store = SqlitePriceStore(config)
    await store.initialize()
    return store
