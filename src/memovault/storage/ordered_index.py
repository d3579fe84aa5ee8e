"""Ordered-list index: ``content/index.json``.

    {"order": [ids...], "state": {id: {"version": 3, "syncStatus": 1}}}

Newest insert first. Title, tags and timestamps live only in the content
files, so every read resolves ids through the ContentStore and drops what no
longer resolves. ``state`` carries what the header does not: the version
counter and sync status. Files from older writers have no ``state``; their
memos read as version 1, pending sync.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Iterable
from dataclasses import replace

from memovault.errors import ParseError
from memovault.models import Memo, MemoEntry, SyncStatus, normalize_id
from memovault.storage.content import ContentStore, write_atomic

logger = logging.getLogger(__name__)

INDEX_FILENAME = "index.json"


def _memo_state(memo: Memo) -> dict:
    return {"version": memo.version, "syncStatus": int(memo.sync_status)}


def _apply_state(entry: MemoEntry, state: object) -> MemoEntry:
    if not isinstance(state, dict):
        return entry
    try:
        version = int(state.get("version", entry.version))
        status = SyncStatus(int(state.get("syncStatus", entry.sync_status)))
    except (TypeError, ValueError):
        logger.debug("Ignoring malformed state for %s: %r", entry.id, state)
        return entry
    return replace(entry, version=max(version, 1), sync_status=status)


class OrderedListIndex:
    """Single JSON file with an explicit id order."""

    def __init__(self, content: ContentStore) -> None:
        self.content = content
        self.path = content.directory / INDEX_FILENAME

    @property
    def name(self) -> str:
        return "ordered"

    # ── File access ───────────────────────────────────────────

    def _load(self) -> tuple[list[str], dict[str, dict]]:
        """Read ids and per-id state. Missing or corrupt files read as empty."""
        try:
            data = json.loads(self.path.read_bytes().decode("utf-8-sig"))
        except FileNotFoundError:
            return [], {}
        except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
            logger.warning("Index %s unreadable, treating as empty: %s", self.path, e)
            return [], {}

        raw = None
        if isinstance(data, dict):
            # Older writers used PascalCase keys.
            raw = data.get("order", data.get("Order"))
        if not isinstance(raw, list):
            logger.warning("Index %s has no order list, treating as empty", self.path)
            return [], {}

        order: list[str] = []
        for item in raw:
            memo_id = normalize_id(item) or (item if isinstance(item, str) and item else None)
            if memo_id and memo_id not in order:
                order.append(memo_id)

        raw_state = data.get("state")
        state = {
            memo_id: raw_state[memo_id]
            for memo_id in order
            if isinstance(raw_state, dict) and isinstance(raw_state.get(memo_id), dict)
        }
        return order, state

    def _save(self, order: list[str], state: dict[str, dict]) -> None:
        data: dict = {"order": order}
        kept = {memo_id: state[memo_id] for memo_id in order if memo_id in state}
        if kept:
            data["state"] = kept
        write_atomic(self.path, json.dumps(data, indent=2) + "\n")

    async def _read(self) -> tuple[list[str], dict[str, dict]]:
        return await asyncio.to_thread(self._load)

    async def _write(self, order: list[str], state: dict[str, dict]) -> None:
        await asyncio.to_thread(self._save, order, state)

    # ── Contract ──────────────────────────────────────────────

    async def initialize(self) -> None:
        self.content.ensure_directory()
        if not self.path.exists():
            await self._write([], {})

    def exists(self) -> bool:
        return self.path.is_file()

    async def ids(self) -> list[str]:
        """Indexed ids in order, whether or not their files still resolve."""
        order, _ = await self._read()
        return order

    async def _resolve(self, memo_id: str, state: dict[str, dict]) -> MemoEntry | None:
        path = self.content.path_for(memo_id)
        if not self.content.exists(path):
            logger.debug("Skipping orphan index entry %s", memo_id)
            return None
        try:
            entry = await self.content.read_entry(path)
        except ParseError as e:
            logger.warning("Skipping unparseable memo %s: %s", memo_id, e)
            return None
        except OSError as e:
            logger.warning("Skipping unreadable memo %s: %s", memo_id, e)
            return None
        return _apply_state(entry, state.get(memo_id))

    async def get_all(self) -> list[MemoEntry]:
        order, state = await self._read()
        entries: list[MemoEntry] = []
        for memo_id in order:
            entry = await self._resolve(memo_id, state)
            if entry is not None:
                entries.append(entry)
        return entries

    async def get(self, memo_id: str) -> MemoEntry | None:
        order, state = await self._read()
        if memo_id not in order:
            return None
        return await self._resolve(memo_id, state)

    async def contains(self, memo_id: str) -> bool:
        return memo_id in await self.ids()

    async def count(self) -> int:
        return len(await self.ids())

    async def insert(self, memo: Memo) -> None:
        order, state = await self._read()
        if memo.id in order:
            return
        order.insert(0, memo.id)
        state[memo.id] = _memo_state(memo)
        await self._write(order, state)

    async def insert_many(self, memos: Iterable[Memo]) -> int:
        """Append in the given order, so the first memo ends up first."""
        order, state = await self._read()
        fresh: dict[str, Memo] = {}
        for memo in memos:
            if memo.id not in order and memo.id not in fresh:
                fresh[memo.id] = memo
        state.update((memo_id, _memo_state(memo)) for memo_id, memo in fresh.items())
        await self._write(list(fresh) + order, state)
        return len(fresh)

    async def update(self, memo: Memo) -> bool:
        order, state = await self._read()
        if memo.id not in order:
            return False
        state[memo.id] = _memo_state(memo)
        await self._write(order, state)
        return True

    async def remove(self, memo_id: str) -> bool:
        order, state = await self._read()
        if memo_id not in order:
            return False
        order.remove(memo_id)
        state.pop(memo_id, None)
        await self._write(order, state)
        return True
