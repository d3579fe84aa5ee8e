"""Relational index: memo metadata and tags in ``memos.db``.

Bodies never enter the database. Each row points at its content file through
``file_path`` (relative to the storage root), so catalog scans cost the same
no matter how long the notes are. Every operation opens its own connection;
every mutation is one transaction.
"""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator, Iterable
from contextlib import asynccontextmanager
from pathlib import Path

import aiosqlite

from memovault.errors import ParseError
from memovault.models import Memo, MemoEntry, SyncStatus, format_timestamp, parse_timestamp
from memovault.storage.content import ContentStore

logger = logging.getLogger(__name__)

DB_FILENAME = "memos.db"

SCHEMA = """
CREATE TABLE IF NOT EXISTS memos (
    id TEXT PRIMARY KEY,
    title TEXT NOT NULL DEFAULT '',
    preview TEXT NOT NULL DEFAULT '',
    is_pinned INTEGER NOT NULL DEFAULT 0 CHECK (is_pinned IN (0, 1)),
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    file_path TEXT NOT NULL,
    version INTEGER NOT NULL DEFAULT 1,
    sync_status INTEGER NOT NULL DEFAULT 0 CHECK (sync_status IN (0, 1, 2)),
    deleted_at TEXT
);

CREATE TABLE IF NOT EXISTS memo_tags (
    memo_id TEXT NOT NULL,
    tag TEXT NOT NULL,
    PRIMARY KEY (memo_id, tag),
    FOREIGN KEY (memo_id) REFERENCES memos(id) ON DELETE CASCADE
);

CREATE INDEX IF NOT EXISTS idx_memos_updated ON memos(updated_at DESC);
CREATE INDEX IF NOT EXISTS idx_memos_pinned ON memos(is_pinned DESC, updated_at DESC);
CREATE INDEX IF NOT EXISTS idx_tags_tag ON memo_tags(tag);
CREATE INDEX IF NOT EXISTS idx_memos_sync_status ON memos(sync_status);
"""

_SELECT = """
SELECT
    m.id, m.title, m.preview, m.is_pinned, m.created_at, m.updated_at,
    m.file_path, m.version, m.sync_status, m.deleted_at,
    json_group_array(t.tag) AS tags
FROM memos m
LEFT JOIN (SELECT memo_id, tag FROM memo_tags ORDER BY rowid) t ON t.memo_id = m.id
"""

_UPSERT = """
INSERT INTO memos (
    id, title, preview, is_pinned, created_at, updated_at,
    file_path, version, sync_status, deleted_at
) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
ON CONFLICT(id) DO UPDATE SET
    title = excluded.title,
    preview = excluded.preview,
    is_pinned = excluded.is_pinned,
    updated_at = excluded.updated_at,
    file_path = excluded.file_path,
    version = excluded.version,
    sync_status = excluded.sync_status,
    deleted_at = excluded.deleted_at
"""

_INSERT_NEW = """
INSERT INTO memos (
    id, title, preview, is_pinned, created_at, updated_at,
    file_path, version, sync_status, deleted_at
) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
ON CONFLICT(id) DO NOTHING
"""

_UPDATE = """
UPDATE memos SET
    title = ?,
    preview = ?,
    is_pinned = ?,
    updated_at = ?,
    version = ?,
    sync_status = ?
WHERE id = ? AND deleted_at IS NULL
"""


def _tags(raw: str | None) -> tuple[str, ...]:
    """Decode the json_group_array column. A memo without tags yields ``[null]``."""
    if not raw:
        return ()
    return tuple(tag for tag in json.loads(raw) if tag is not None)


class SqliteIndex:
    """Metadata catalog backed by a local SQLite file."""

    def __init__(self, content: ContentStore, db_path: Path | None = None) -> None:
        self.content = content
        self.root = content.root
        self.path = db_path or content.root / DB_FILENAME

    @property
    def name(self) -> str:
        return "sqlite"

    # ── Connections ───────────────────────────────────────────

    @asynccontextmanager
    async def _connect(self) -> AsyncIterator[aiosqlite.Connection]:
        async with aiosqlite.connect(self.path) as db:
            db.row_factory = aiosqlite.Row
            await db.execute("PRAGMA foreign_keys = ON")
            yield db

    @asynccontextmanager
    async def _transaction(self) -> AsyncIterator[aiosqlite.Connection]:
        """Commit on success, roll back on any failure."""
        async with self._connect() as db:
            try:
                yield db
                await db.commit()
            except BaseException:
                await db.rollback()
                raise

    def exists(self) -> bool:
        return self.path.is_file()

    async def initialize(self) -> None:
        self.content.ensure_directory()
        self.path.parent.mkdir(parents=True, exist_ok=True)
        async with self._connect() as db:
            await db.executescript(SCHEMA)
            await db.commit()
        logger.debug("SQLite index ready at %s", self.path)

    # ── Row mapping ───────────────────────────────────────────

    def _relative(self, path: Path) -> str:
        try:
            return path.relative_to(self.root).as_posix()
        except ValueError:
            return str(path)

    def _params(self, memo: Memo) -> tuple:
        return (
            memo.id,
            memo.title,
            memo.preview,
            1 if memo.is_pinned else 0,
            format_timestamp(memo.created_at),
            format_timestamp(memo.updated_at),
            self._relative(self.content.path_for(memo.id)),
            memo.version,
            int(memo.sync_status),
            format_timestamp(memo.deleted_at) if memo.deleted_at else None,
        )

    def _entry(self, row: aiosqlite.Row) -> MemoEntry:
        try:
            return MemoEntry(
                id=row["id"],
                title=row["title"],
                preview=row["preview"],
                created_at=parse_timestamp(row["created_at"]),
                updated_at=parse_timestamp(row["updated_at"]),
                path=self.root / row["file_path"],
                tags=_tags(row["tags"]),
                is_pinned=bool(row["is_pinned"]),
                version=row["version"],
                sync_status=SyncStatus(row["sync_status"]),
                deleted_at=parse_timestamp(row["deleted_at"]) if row["deleted_at"] else None,
            )
        except (TypeError, ValueError) as e:
            raise ParseError(f"corrupt index row {row['id']}: {e}", self.path) from e

    async def _write_tags(self, db: aiosqlite.Connection, memo: Memo) -> None:
        await db.execute("DELETE FROM memo_tags WHERE memo_id = ?", (memo.id,))
        await db.executemany(
            "INSERT OR IGNORE INTO memo_tags (memo_id, tag) VALUES (?, ?)",
            [(memo.id, tag) for tag in memo.tags],
        )

    # ── Reads ─────────────────────────────────────────────────

    async def get_all(self) -> list[MemoEntry]:
        """Catalog in display order. A broken database reads as empty."""
        query = (
            _SELECT
            + "WHERE m.deleted_at IS NULL GROUP BY m.id "
            + "ORDER BY m.is_pinned DESC, m.updated_at DESC, m.rowid DESC"
        )
        try:
            async with self._connect() as db:
                async with db.execute(query) as cursor:
                    rows = await cursor.fetchall()
        except aiosqlite.Error as e:
            logger.error("Cannot read index %s: %s", self.path, e)
            return []

        entries: list[MemoEntry] = []
        for row in rows:
            try:
                entry = self._entry(row)
            except ParseError as e:
                logger.warning("Skipping index row: %s", e)
                continue
            if not self.content.exists(entry.path):
                logger.debug("Skipping orphan index row %s", entry.id)
                continue
            entries.append(entry)
        return entries

    async def get(self, memo_id: str) -> MemoEntry | None:
        query = _SELECT + "WHERE m.id = ? AND m.deleted_at IS NULL GROUP BY m.id"
        try:
            async with self._connect() as db:
                async with db.execute(query, (memo_id,)) as cursor:
                    row = await cursor.fetchone()
        except aiosqlite.Error as e:
            logger.error("Cannot read index %s: %s", self.path, e)
            return None
        if row is None:
            return None
        try:
            return self._entry(row)
        except ParseError as e:
            logger.warning("Unreadable index row: %s", e)
            return None

    async def contains(self, memo_id: str) -> bool:
        async with self._connect() as db:
            async with db.execute(
                "SELECT 1 FROM memos WHERE id = ? AND deleted_at IS NULL", (memo_id,)
            ) as cursor:
                return await cursor.fetchone() is not None

    async def count(self) -> int:
        """Live rows. A database file that does not exist yet counts as empty."""
        if not self.exists():
            return 0
        async with self._connect() as db:
            async with db.execute(
                "SELECT COUNT(*) FROM memos WHERE deleted_at IS NULL"
            ) as cursor:
                row = await cursor.fetchone()
        return row[0]

    # ── Writes ────────────────────────────────────────────────

    async def insert(self, memo: Memo) -> None:
        async with self._transaction() as db:
            await db.execute(_UPSERT, self._params(memo))
            await self._write_tags(db, memo)

    async def insert_many(self, memos: Iterable[Memo]) -> int:
        """Insert rows for ids not yet indexed, all in one transaction."""
        inserted = 0
        async with self._transaction() as db:
            for memo in memos:
                cursor = await db.execute(_INSERT_NEW, self._params(memo))
                if cursor.rowcount:
                    inserted += 1
                    await self._write_tags(db, memo)
        return inserted

    async def update(self, memo: Memo) -> bool:
        async with self._transaction() as db:
            cursor = await db.execute(
                _UPDATE,
                (
                    memo.title,
                    memo.preview,
                    1 if memo.is_pinned else 0,
                    format_timestamp(memo.updated_at),
                    memo.version,
                    int(memo.sync_status),
                    memo.id,
                ),
            )
            if cursor.rowcount == 0:
                return False
            await self._write_tags(db, memo)
        return True

    async def remove(self, memo_id: str) -> bool:
        async with self._transaction() as db:
            await db.execute("DELETE FROM memo_tags WHERE memo_id = ?", (memo_id,))
            cursor = await db.execute("DELETE FROM memos WHERE id = ?", (memo_id,))
            return cursor.rowcount > 0
