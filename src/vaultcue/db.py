"""SQLite chunk store for vaultcue."""

from __future__ import annotations

import json
import logging
import time
from typing import Any, Sequence

import aiosqlite

from vaultcue.errors import StoreError
from vaultcue.models import ChunkRecord

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1

SCHEMA = """
-- Schema version tracking
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER PRIMARY KEY
);

-- Chunks: one row per indexed text segment
CREATE TABLE IF NOT EXISTS chunks (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    document_id TEXT NOT NULL,
    chunk_index INTEGER NOT NULL,
    content TEXT NOT NULL,
    metadata TEXT,  -- JSON
    embedding TEXT,  -- JSON array of floats
    updated_at REAL NOT NULL,
    UNIQUE (document_id, chunk_index)
);

CREATE INDEX IF NOT EXISTS idx_chunks_document ON chunks(document_id);

-- Document status: when each document was last indexed
CREATE TABLE IF NOT EXISTS document_status (
    document_id TEXT PRIMARY KEY,
    status TEXT NOT NULL,
    chunk_count INTEGER DEFAULT 0,
    metadata TEXT,  -- JSON
    last_indexed REAL,
    updated_at REAL NOT NULL
);
"""


async def init_db(db_path: str) -> aiosqlite.Connection:
    """
    Initialize database connection and schema.

    Args:
        db_path: Path to SQLite file or ":memory:" for in-memory.

    Returns:
        Open database connection.
    """
    conn = await aiosqlite.connect(db_path)
    conn.row_factory = aiosqlite.Row

    # Enable WAL mode for better concurrency
    await conn.execute("PRAGMA journal_mode=WAL")
    await conn.execute("PRAGMA foreign_keys=ON")

    # Check if schema exists
    async with conn.execute(
        "SELECT name FROM sqlite_master WHERE type='table' AND name='schema_version'"
    ) as cursor:
        exists = await cursor.fetchone()

    if not exists:
        # Fresh database - create schema
        await conn.executescript(SCHEMA)
        await conn.execute("INSERT INTO schema_version (version) VALUES (?)", (SCHEMA_VERSION,))
        await conn.commit()

    return conn


class SqliteChunkStore:
    """
    Chunk store backed by SQLite.

    Implements the ``ChunkStore`` protocol. Database errors are raised as
    ``StoreError`` so the executor's retry applies to them.

    Example:
        store = await SqliteChunkStore.open("vault.db")
        await store.upsert_chunks(records)
        await store.close()
    """

    def __init__(self, conn: aiosqlite.Connection) -> None:
        self.conn = conn

    @classmethod
    async def open(cls, db_path: str = ":memory:") -> SqliteChunkStore:
        return cls(await init_db(db_path))

    async def close(self) -> None:
        await self.conn.close()

    async def upsert_chunks(self, records: Sequence[ChunkRecord]) -> None:
        """Replace all chunks of the records' document in one transaction."""
        if not records:
            return
        document_id = records[0].document_id
        if any(r.document_id != document_id for r in records):
            raise StoreError("upsert_chunks expects records of a single document")

        now = time.time()
        try:
            await self.conn.execute("DELETE FROM chunks WHERE document_id = ?", (document_id,))
            await self.conn.executemany(
                """
                INSERT INTO chunks (
                    document_id, chunk_index, content, metadata, embedding, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?)
                """,
                [
                    (
                        r.document_id,
                        r.chunk_index,
                        r.content,
                        json.dumps(r.metadata, default=str),
                        json.dumps(list(r.embedding)),
                        now,
                    )
                    for r in records
                ],
            )
            await self._save_status(document_id, "indexed", len(records), records[0].metadata, now)
            await self.conn.commit()
        except aiosqlite.Error as e:
            await self.conn.rollback()
            raise StoreError(f"Failed to upsert chunks for {document_id}: {e}") from e

        logger.debug("Stored %d chunks for %s", len(records), document_id)

    async def delete_chunks(self, document_id: str) -> None:
        """Delete a document's chunks and mark it deleted."""
        now = time.time()
        try:
            await self.conn.execute("DELETE FROM chunks WHERE document_id = ?", (document_id,))
            await self._save_status(document_id, "deleted", 0, None, now)
            await self.conn.commit()
        except aiosqlite.Error as e:
            await self.conn.rollback()
            raise StoreError(f"Failed to delete chunks for {document_id}: {e}") from e

    async def count_chunks(self, document_id: str) -> int:
        async with self.conn.execute(
            "SELECT COUNT(*) FROM chunks WHERE document_id = ?", (document_id,)
        ) as cursor:
            row = await cursor.fetchone()
            return row[0]

    async def get_chunks(self, document_id: str) -> list[ChunkRecord]:
        """Get a document's chunks ordered by index."""
        async with self.conn.execute(
            "SELECT * FROM chunks WHERE document_id = ? ORDER BY chunk_index", (document_id,)
        ) as cursor:
            rows = await cursor.fetchall()
        return [
            ChunkRecord(
                document_id=row["document_id"],
                chunk_index=row["chunk_index"],
                content=row["content"],
                metadata=json.loads(row["metadata"]) if row["metadata"] else {},
                embedding=json.loads(row["embedding"]) if row["embedding"] else [],
            )
            for row in rows
        ]

    async def update_document_status(self, document_id: str, metadata: dict[str, Any]) -> None:
        """Record that a document was indexed without producing chunks."""
        try:
            await self._save_status(document_id, "indexed", 0, metadata, time.time())
            await self.conn.commit()
        except aiosqlite.Error as e:
            await self.conn.rollback()
            raise StoreError(f"Failed to update status for {document_id}: {e}") from e

    async def get_document_status(self, document_id: str) -> dict | None:
        async with self.conn.execute(
            "SELECT * FROM document_status WHERE document_id = ?", (document_id,)
        ) as cursor:
            row = await cursor.fetchone()
        if row is None:
            return None
        status = dict(row)
        status["metadata"] = json.loads(status["metadata"]) if status["metadata"] else {}
        return status

    async def _save_status(
        self,
        document_id: str,
        status: str,
        chunk_count: int,
        metadata: dict[str, Any] | None,
        now: float,
    ) -> None:
        await self.conn.execute(
            """
            INSERT INTO document_status (
                document_id, status, chunk_count, metadata, last_indexed, updated_at
            ) VALUES (?, ?, ?, ?, ?, ?)
            ON CONFLICT(document_id) DO UPDATE SET
                status = excluded.status,
                chunk_count = excluded.chunk_count,
                metadata = COALESCE(excluded.metadata, document_status.metadata),
                last_indexed = COALESCE(excluded.last_indexed, document_status.last_indexed),
                updated_at = excluded.updated_at
            """,
            (
                document_id,
                status,
                chunk_count,
                json.dumps(metadata, default=str) if metadata is not None else None,
                now if status == "indexed" else None,
                now,
            ),
        )

    async def list_documents(self, status: str | None = None) -> list[str]:
        """Document ids with a status row, optionally filtered by status."""
        if status is None:
            query, params = "SELECT document_id FROM document_status ORDER BY document_id", ()
        else:
            query = "SELECT document_id FROM document_status WHERE status = ? ORDER BY document_id"
            params = (status,)
        async with self.conn.execute(query, params) as cursor:
            return [row[0] for row in await cursor.fetchall()]
