"""
Search History Database Manager
Handles SQLite storage of encrypted search history rows (async, via aiosqlite)
"""

import asyncio
import logging
import os
import sqlite3
import uuid
from typing import Iterable, List, Optional

import aiosqlite

from src.config import DB_PATH
from src.datastore import DatastoreError, EncryptedRecord, HistoryDatastore, utc_now

logger = logging.getLogger(__name__)

TABLE_NAME = "encrypted_search_history"

SCHEMA_SQL = f"""
CREATE TABLE IF NOT EXISTS {TABLE_NAME} (
    id                TEXT PRIMARY KEY,
    owner_id          TEXT NOT NULL,
    search_id         TEXT NOT NULL,
    encrypted_query   TEXT NOT NULL,
    encrypted_results TEXT NOT NULL,
    created_at        TEXT NOT NULL,
    updated_at        TEXT NOT NULL,
    UNIQUE (owner_id, search_id)
);
CREATE INDEX IF NOT EXISTS idx_{TABLE_NAME}_owner_created
    ON {TABLE_NAME} (owner_id, created_at DESC);
"""

RECORD_COLUMNS = (
    "id",
    "owner_id",
    "search_id",
    "encrypted_query",
    "encrypted_results",
    "created_at",
    "updated_at",
)

# SQLite's default SQLITE_MAX_VARIABLE_NUMBER is 999 on older builds
DELETE_BATCH_SIZE = 500


class DatabaseManager(HistoryDatastore):
    """
    Manages the SQLite table holding encrypted search history.

    Responsibilities:
        - Schema creation (idempotent)
        - Upsert / select / delete / count scoped to one owner
        - Wrapping every driver failure in DatastoreError

    Security:
        - Only envelope strings are stored; nothing here can decrypt them
    """

    def __init__(self, db_path: str = DB_PATH):
        """
        Initialize database manager

        Args:
            db_path: Path to SQLite database file, or ":memory:"
        """
        self.db_path = db_path
        self.connection: Optional[aiosqlite.Connection] = None
        self._conn_lock: Optional[asyncio.Lock] = None

        if db_path == ":memory:":
            return

        # Ensure data directory exists
        directory = os.path.dirname(os.path.abspath(self.db_path))
        try:
            os.makedirs(directory, exist_ok=True)
            # Attempt a write test to ensure permissions
            test_path = os.path.join(directory, ".history_write_test")
            with open(test_path, "w") as f:
                f.write("ok")
            os.remove(test_path)
        except OSError as e:
            raise DatastoreError(f"Database directory is not writable: {directory}") from e

    async def connect(self) -> aiosqlite.Connection:
        """
        Create or return the existing connection, creating the schema on first use.
        """
        # Created on first use so it belongs to the running loop
        if self._conn_lock is None:
            self._conn_lock = asyncio.Lock()
        async with self._conn_lock:
            if self.connection is not None:
                return self.connection

            try:
                conn = await aiosqlite.connect(self.db_path)
                conn.row_factory = sqlite3.Row

                # Try WAL mode, fall back to DELETE (e.g. network filesystems, :memory:)
                async with conn.execute("PRAGMA journal_mode=WAL;") as cursor:
                    res = await cursor.fetchone()
                actual_mode = res[0].lower() if res else None

                if actual_mode not in ("wal", "memory"):
                    logger.warning("WAL journal unavailable for %s (mode=%s), using DELETE", self.db_path, actual_mode)
                    async with conn.execute("PRAGMA journal_mode=DELETE;") as cursor:
                        res = await cursor.fetchone()
                    fallback_mode = res[0].lower() if res else None
                    if fallback_mode != "delete":
                        await conn.close()
                        raise DatastoreError(
                            f"SQLite journaling misconfigured: WAL unsupported and "
                            f"DELETE fallback failed (mode={fallback_mode})"
                        )

                await conn.executescript(SCHEMA_SQL)
                await conn.commit()
            except sqlite3.Error as e:
                raise DatastoreError(f"Failed to open history database {self.db_path}: {e}") from e

            logger.debug("Opened history database %s", self.db_path)
            self.connection = conn
            return self.connection

    async def close(self) -> None:
        if self.connection is not None:
            try:
                await self.connection.commit()
            finally:
                await self.connection.close()
                self.connection = None

    @staticmethod
    def _row_to_record(row) -> EncryptedRecord:
        return EncryptedRecord(**{col: row[col] for col in RECORD_COLUMNS})

    async def upsert(self, owner_id, search_id, encrypted_query, encrypted_results) -> EncryptedRecord:
        if not owner_id or not search_id:
            raise DatastoreError("owner_id and search_id are required")

        conn = await self.connect()
        now = utc_now()
        try:
            # created_at and id survive an overwrite; only payload and updated_at change
            await conn.execute(f"""
                INSERT INTO {TABLE_NAME} (
                    id, owner_id, search_id,
                    encrypted_query, encrypted_results,
                    created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT (owner_id, search_id) DO UPDATE SET
                    encrypted_query = excluded.encrypted_query,
                    encrypted_results = excluded.encrypted_results,
                    updated_at = excluded.updated_at
            """, (
                str(uuid.uuid4()), owner_id, search_id,
                encrypted_query, encrypted_results,
                now, now
            ))
            await conn.commit()

            async with conn.execute(
                f"SELECT * FROM {TABLE_NAME} WHERE owner_id = ? AND search_id = ?",
                (owner_id, search_id)
            ) as cursor:
                row = await cursor.fetchone()
        except sqlite3.Error as e:
            await conn.rollback()
            raise DatastoreError(f"Failed to save history row {search_id}: {e}") from e

        if row is None:
            raise DatastoreError(f"History row {search_id} missing after upsert")
        return self._row_to_record(row)

    async def select_by_owner(self, owner_id) -> List[EncryptedRecord]:
        conn = await self.connect()
        try:
            # rowid breaks ties between rows created in the same microsecond
            async with conn.execute(
                f"SELECT * FROM {TABLE_NAME} WHERE owner_id = ? "
                f"ORDER BY created_at DESC, rowid DESC",
                (owner_id,)
            ) as cursor:
                rows = await cursor.fetchall()
        except sqlite3.Error as e:
            raise DatastoreError(f"Failed to load history rows: {e}") from e
        return [self._row_to_record(row) for row in rows]

    async def delete_by_ids(self, owner_id, ids: Iterable[str]) -> int:
        ids = list(dict.fromkeys(ids))
        if not ids:
            return 0

        conn = await self.connect()
        deleted = 0
        try:
            for start in range(0, len(ids), DELETE_BATCH_SIZE):
                batch = ids[start:start + DELETE_BATCH_SIZE]
                placeholders = ", ".join("?" for _ in batch)
                cursor = await conn.execute(
                    f"DELETE FROM {TABLE_NAME} WHERE owner_id = ? AND id IN ({placeholders})",
                    (owner_id, *batch)
                )
                deleted += cursor.rowcount
            await conn.commit()
        except sqlite3.Error as e:
            await conn.rollback()
            raise DatastoreError(f"Failed to delete history rows: {e}") from e
        return deleted

    async def delete_by_search_id(self, owner_id, search_id) -> int:
        return await self._delete(
            f"DELETE FROM {TABLE_NAME} WHERE owner_id = ? AND search_id = ?",
            (owner_id, search_id),
            f"Failed to delete history row {search_id}"
        )

    async def delete_all(self, owner_id) -> int:
        return await self._delete(
            f"DELETE FROM {TABLE_NAME} WHERE owner_id = ?",
            (owner_id,),
            "Failed to clear history"
        )

    async def _delete(self, sql: str, params: tuple, failure: str) -> int:
        conn = await self.connect()
        try:
            cursor = await conn.execute(sql, params)
            await conn.commit()
        except sqlite3.Error as e:
            await conn.rollback()
            raise DatastoreError(f"{failure}: {e}") from e
        return cursor.rowcount

    async def count(self, owner_id) -> int:
        conn = await self.connect()
        try:
            async with conn.execute(
                f"SELECT COUNT(*) FROM {TABLE_NAME} WHERE owner_id = ?",
                (owner_id,)
            ) as cursor:
                row = await cursor.fetchone()
        except sqlite3.Error as e:
            raise DatastoreError(f"Failed to count history rows: {e}") from e
        return int(row[0]) if row else 0
