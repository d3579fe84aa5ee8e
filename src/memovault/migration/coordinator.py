"""MigrationCoordinator — walks a storage root up to the relational index.

Two steps, run in order at startup:

    legacy (1-3) ──> ordered index (4) ──> sqlite index (5)

Each step probes its destination first and does nothing if it already holds
data. A step writes every content file, then the destination index in one
write or transaction, and only then renames its sources. A failure before
that last rename leaves the destination empty, so the next run retries.
"""

from __future__ import annotations

import asyncio
import logging
import shutil
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

from memovault.errors import MigrationError
from memovault.migration.legacy import (
    FLAT_NOTE_FILES,
    JSON_ARRAY_FILE,
    SPLIT_METADATA_FILE,
    LegacySource,
    plain_markdown_files,
    read_legacy_sources,
)
from memovault.models import Memo
from memovault.storage.content import ContentStore
from memovault.storage.ordered_index import OrderedListIndex
from memovault.storage.sqlite_index import SqliteIndex

logger = logging.getLogger(__name__)

BACKUP_STAMP = "%Y%m%d%H%M%S"


@dataclass
class MigrationResult:
    """Outcome of one migration step. Failures are reported, never raised."""

    success: bool
    migrated_count: int
    message: str
    generation: int = 0


def backup_path(path: Path, stamp: str) -> Path:
    """``memos.json`` -> ``memos_backup_20260101120000.json``, numbered on collision."""
    candidate = path.with_name(f"{path.stem}_backup_{stamp}{path.suffix}")
    n = 1
    while candidate.exists():
        candidate = path.with_name(f"{path.stem}_backup_{stamp}_{n}{path.suffix}")
        n += 1
    return candidate


class MigrationCoordinator:
    """Detects the storage generation under ``root`` and upgrades it."""

    def __init__(self, root: Path, clock: Callable[[], datetime] = datetime.now) -> None:
        self.root = root
        self.content = ContentStore(root)
        self.ordered = OrderedListIndex(self.content)
        self.sqlite = SqliteIndex(self.content)
        self._clock = clock

    # ── Detection ─────────────────────────────────────────────

    def detect_generation(self) -> int:
        """Newest generation with files present under the root; 0 for an empty root."""
        if self.sqlite.exists():
            return 5
        if self.ordered.exists():
            return 4
        if (self.root / SPLIT_METADATA_FILE).is_file() or plain_markdown_files(self.root):
            return 3
        if (self.root / JSON_ARRAY_FILE).is_file():
            return 2
        if any((self.root / name).is_file() for name in FLAT_NOTE_FILES):
            return 1
        return 0

    async def run(self) -> list[MigrationResult]:
        """Run the steps in order, stopping after the first failure.

        A failed step leaves later destinations untouched, so nothing newer
        than the unmigrated data gets initialized. Safe to call on every startup.
        """
        self.root.mkdir(parents=True, exist_ok=True)
        generation = self.detect_generation()
        logger.info("Storage at %s is generation %d", self.root, generation)
        results: list[MigrationResult] = []
        for step in (self.upgrade_legacy, self.upgrade_ordered_index):
            result = await step()
            results.append(result)
            if not result.success:
                logger.error("Migration to generation %d failed: %s", result.generation, result.message)
                break
            logger.info("Migration to generation %d: %s", result.generation, result.message)
        return results

    def _stamp(self) -> str:
        return self._clock().strftime(BACKUP_STAMP)

    def _rename(self, path: Path, stamp: str) -> Path:
        target = backup_path(path, stamp)
        path.rename(target)
        logger.info("Backed up %s -> %s", path.name, target.name)
        return target

    # ── Legacy (1-3) -> ordered index (4) ─────────────────────

    async def upgrade_legacy(self) -> MigrationResult:
        try:
            return await self._upgrade_legacy()
        except Exception as e:
            logger.error("Legacy migration failed: %s", e, exc_info=True)
            return MigrationResult(False, 0, f"Legacy migration failed: {e}", 4)

    async def _upgrade_legacy(self) -> MigrationResult:
        if await self.sqlite.count() > 0 or await self.ordered.count() > 0:
            return MigrationResult(True, 0, "Current store already holds data", 4)

        sources, problems = await asyncio.to_thread(read_legacy_sources, self.root)
        if not sources:
            message = "No legacy data found"
            if problems:
                message += f"; left untouched: {'; '.join(problems)}"
            return MigrationResult(True, 0, message, 4)

        memos = _merge(sources)
        stamp = self._stamp()
        bodies = {memo_id: path for source in sources for memo_id, path in source.bodies.items()}

        # Header-less bodies about to be overwritten in place get a copy first.
        for memo_id, body_path in bodies.items():
            if body_path == self.content.path_for(memo_id):
                await asyncio.to_thread(shutil.copy2, body_path, backup_path(body_path, stamp))

        self.content.ensure_directory()
        for memo in memos:
            path = self.content.path_for(memo.id)
            await self.content.save(path, memo)
            if not self.content.exists(path):
                raise MigrationError(f"content file for {memo.id} was not written")
        written = await self.ordered.insert_many(memos)

        for source in sources:
            for path in source.sources:
                self._rename(path, stamp)
        for memo_id, body_path in bodies.items():
            if body_path != self.content.path_for(memo_id) and body_path.exists():
                self._rename(body_path, stamp)

        generations = ", ".join(str(source.generation) for source in sources)
        skipped = [item for source in sources for item in source.skipped] + problems
        message = f"Migrated {written} memos from generation {generations}"
        if skipped:
            message += f"; skipped: {', '.join(skipped)}"
        return MigrationResult(True, written, message, 4)

    # ── Ordered index (4) -> sqlite index (5) ─────────────────

    async def upgrade_ordered_index(self) -> MigrationResult:
        try:
            return await self._upgrade_ordered_index()
        except Exception as e:
            logger.error("Index migration failed: %s", e, exc_info=True)
            return MigrationResult(False, 0, f"Index migration failed: {e}", 5)

    async def _upgrade_ordered_index(self) -> MigrationResult:
        if await self.sqlite.count() > 0:
            return MigrationResult(True, 0, "Relational index already holds data", 5)

        if not self.ordered.exists():
            await self.sqlite.initialize()
            return MigrationResult(True, 0, "No ordered index found", 5)

        entries = await self.ordered.get_all()
        # The ordered index has already read every file it could resolve.
        memos = [entry.to_memo(entry.body or "") for entry in entries]
        resolved = {entry.id for entry in entries}
        skipped = [memo_id for memo_id in await self.ordered.ids() if memo_id not in resolved]
        for memo_id in skipped:
            logger.warning("Skipping memo %s during migration: content file unreadable", memo_id)

        await self.sqlite.initialize()
        # Oldest first, so equal timestamps keep the ordered list's precedence.
        written = await self.sqlite.insert_many(reversed(memos))
        self._rename(self.ordered.path, self._stamp())

        message = f"Migrated {written} memos to the relational index"
        if skipped:
            message += f"; skipped: {', '.join(skipped)}"
        return MigrationResult(True, written, message, 5)


def _merge(sources: list[LegacySource]) -> list[Memo]:
    """One memo per id, newer generations winning, most recently updated first."""
    merged: dict[str, Memo] = {}
    for source in sorted(sources, key=lambda s: s.generation):
        for memo in source.memos:
            merged[memo.id] = memo
    return sorted(merged.values(), key=lambda m: m.updated_at, reverse=True)
