"""MemoRepository — the CRUD surface the rest of an application talks to.

Composes the ContentStore (bodies) with one MemoIndex backend (catalog).
Mutations are serialized per instance through one asyncio.Lock; reads never
take it.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Literal, TypeVar

from memovault.errors import NotFoundError, ParseError
from memovault.models import Memo, MemoEntry
from memovault.storage.base import MemoIndex
from memovault.storage.content import ContentStore
from memovault.storage.ordered_index import OrderedListIndex
from memovault.storage.sqlite_index import SqliteIndex

logger = logging.getLogger(__name__)

IndexBackend = Literal["sqlite", "ordered"]

T = TypeVar("T")


class MemoRepository:
    """Read/write access to memos stored under one storage root."""

    def __init__(self, content: ContentStore, index: MemoIndex) -> None:
        self.content = content
        self.index = index
        self._write_lock = asyncio.Lock()

    @property
    def root(self) -> Path:
        return self.content.root

    async def initialize(self) -> None:
        self.content.ensure_directory()
        await self.index.initialize()

    # ── Write gate ────────────────────────────────────────────

    async def _serialized(self, operation: Callable[[], Awaitable[T]]) -> T:
        """Run one mutation under the instance lock.

        Cancelling while waiting for the lock has no effect on storage. Once the
        mutation has started it runs to completion and keeps the lock until then.
        """
        async with self._write_lock:
            task = asyncio.ensure_future(operation())
            try:
                return await asyncio.shield(task)
            except asyncio.CancelledError:
                await asyncio.wait({task})
                raise

    # ── Reads ─────────────────────────────────────────────────

    async def _resolve(self, entry: MemoEntry) -> Memo | None:
        if entry.body is not None:
            return entry.to_memo(entry.body)
        try:
            memo = await self.content.load(entry.path)
        except FileNotFoundError:
            logger.debug("Content file missing for %s, skipping", entry.id)
            return None
        except ParseError as e:
            logger.warning("Skipping memo %s: %s", entry.id, e)
            return None
        except OSError as e:
            logger.warning("Cannot read memo %s: %s", entry.id, e)
            return None
        return entry.to_memo(memo.content)

    async def get_all(self) -> list[Memo]:
        """All memos in index order. Entries whose file cannot be read are left out."""
        try:
            entries = await self.index.get_all()
        except OSError as e:
            logger.error("Index unavailable, returning no memos: %s", e)
            return []
        memos: list[Memo] = []
        for entry in entries:
            memo = await self._resolve(entry)
            if memo is not None:
                memos.append(memo)
        return memos

    async def get_by_id(self, memo_id: str) -> Memo | None:
        entry = await self.index.get(memo_id)
        if entry is None:
            return None
        return await self._resolve(entry)

    # ── Mutations ─────────────────────────────────────────────

    async def add(self, memo: Memo) -> Memo:
        async def _add() -> Memo:
            await self.content.save(self.content.path_for(memo.id), memo)
            await self.index.insert(memo)
            logger.info("Added memo %s (%s)", memo.id, memo.title)
            return memo

        return await self._serialized(_add)

    async def update(self, memo: Memo) -> Memo:
        """Persist a newer snapshot. Raises NotFoundError if the memo is gone."""

        async def _update() -> Memo:
            path = self.content.path_for(memo.id)
            if not await self.index.contains(memo.id) or not self.content.exists(path):
                raise NotFoundError(memo.id)
            await self.content.save(path, memo)
            if not await self.index.update(memo):
                raise NotFoundError(memo.id)
            logger.debug("Updated memo %s to version %d", memo.id, memo.version)
            return memo

        return await self._serialized(_update)

    async def delete(self, memo_id: str) -> None:
        """Remove index entry and content file. Unknown ids are ignored."""

        async def _delete() -> None:
            removed = await self.index.remove(memo_id)
            deleted = await self.content.delete(self.content.path_for(memo_id))
            if removed or deleted:
                logger.info("Deleted memo %s", memo_id)

        await self._serialized(_delete)


def build_index(content: ContentStore, backend: IndexBackend) -> MemoIndex:
    if backend == "sqlite":
        return SqliteIndex(content)
    if backend == "ordered":
        return OrderedListIndex(content)
    raise ValueError(f"Unknown index backend: {backend!r}")


async def open_repository(root: Path, backend: IndexBackend = "sqlite") -> MemoRepository:
    """Create a repository over ``root`` and make sure its stores exist."""
    content = ContentStore(root)
    repo = MemoRepository(content, build_index(content, backend))
    await repo.initialize()
    return repo
