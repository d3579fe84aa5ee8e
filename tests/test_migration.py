"""Tests for legacy readers and the migration chain."""

from __future__ import annotations

import json
from datetime import datetime
from pathlib import Path

import pytest

from memovault.migration.coordinator import MigrationCoordinator, backup_path
from memovault.migration.legacy import (
    IMPORTED_TITLE,
    is_backup,
    parse_plain_markdown,
    read_json_array,
    read_split_metadata,
)
from memovault.models import Memo
from memovault.repository import open_repository

FIXED = datetime(2026, 1, 2, 3, 4, 5)
STAMP = "20260102030405"

ID_A = "3f2b9c1e-0d4a-4e8b-9a77-1c2d3e4f5a6b"
ID_B = "8a1d2c3b-4e5f-4a6b-8c7d-9e0f1a2b3c4d"


def _coordinator(root: Path) -> MigrationCoordinator:
    return MigrationCoordinator(root, clock=lambda: FIXED)


def _write_json_array(root: Path) -> None:
    records = [
        {
            "Id": ID_A,
            "Title": "Groceries",
            "Content": "eggs\nmilk",
            "CreatedAt": "2024-01-02T03:04:05.1234567Z",
            "UpdatedAt": "2024-01-03T03:04:05Z",
            "IsPinned": True,
            "Tags": "home,errands",
        },
        {
            "id": ID_B,
            "title": "Ideas",
            "content": "write more tests",
            "createdAt": "2024-01-01T00:00:00Z",
            "updatedAt": "0001-01-01T00:00:00",
            "isPinned": False,
            "tags": [],
        },
    ]
    (root / "memos.json").write_text(json.dumps(records), encoding="utf-8")


async def _titles(root: Path) -> list[str]:
    repo = await open_repository(root, "sqlite")
    return sorted(m.title for m in await repo.get_all())


class TestLegacyReaders:
    def test_plain_markdown(self):
        assert parse_plain_markdown("# Title\n\nbody\nmore\n") == ("Title", "body\nmore")
        assert parse_plain_markdown("just text") == (None, "just text")

    def test_json_array_records(self, tmp_path: Path):
        _write_json_array(tmp_path)
        source = read_json_array(tmp_path)
        by_title = {m.title: m for m in source.memos}
        groceries = by_title["Groceries"]
        assert groceries.id == ID_A.replace("-", "")
        assert set(groceries.tags) == {"home", "errands"}
        assert groceries.is_pinned is True
        assert groceries.content == "eggs\nmilk"
        assert by_title["Ideas"].updated_at.year > 1

    def test_json_array_skips_non_objects(self, tmp_path: Path):
        (tmp_path / "memos.json").write_text('[{"Title": "ok"}, 42, "x"]', encoding="utf-8")
        source = read_json_array(tmp_path)
        assert [m.title for m in source.memos] == ["ok"]
        assert len(source.skipped) == 2

    def test_split_metadata_joins_bodies(self, tmp_path: Path):
        content = tmp_path / "content"
        content.mkdir()
        meta = [{"Id": ID_A, "Title": "stale title", "Tags": "work", "IsPinned": True}]
        (tmp_path / "memos_metadata.json").write_text(json.dumps(meta), encoding="utf-8")
        (content / f"{ID_A}.md").write_text("# Fresh title\n\nthe body", encoding="utf-8")
        source = read_split_metadata(tmp_path)
        (memo,) = source.memos
        assert memo.title == "Fresh title"
        assert memo.content == "the body"
        assert memo.tags == ("work",)
        assert memo.is_pinned is True
        assert source.bodies[memo.id] == content / f"{ID_A}.md"

    def test_backup_names_recognised(self):
        assert is_backup(Path("memos_backup_20260102030405.json"))
        assert is_backup(Path("abc_backup_20260102030405_2.md"))
        assert not is_backup(Path("memos.json"))


class TestBackupPath:
    def test_name(self, tmp_path: Path):
        assert backup_path(tmp_path / "memos.json", STAMP).name == f"memos_backup_{STAMP}.json"

    def test_collision_gets_suffix(self, tmp_path: Path):
        (tmp_path / f"memos_backup_{STAMP}.json").write_text("[]")
        assert backup_path(tmp_path / "memos.json", STAMP).name == f"memos_backup_{STAMP}_1.json"


class TestDetectGeneration:
    def test_empty_root(self, tmp_path: Path):
        assert _coordinator(tmp_path).detect_generation() == 0

    def test_each_generation(self, tmp_path: Path):
        coordinator = _coordinator(tmp_path)
        (tmp_path / "note.txt").write_text("hello")
        assert coordinator.detect_generation() == 1
        (tmp_path / "memos.json").write_text("[]")
        assert coordinator.detect_generation() == 2
        (tmp_path / "memos_metadata.json").write_text("[]")
        assert coordinator.detect_generation() == 3
        (tmp_path / "content").mkdir()
        (tmp_path / "content" / "index.json").write_text('{"order": []}')
        assert coordinator.detect_generation() == 4
        (tmp_path / "memos.db").write_bytes(b"")
        assert coordinator.detect_generation() == 5


class TestMigrationChain:
    @pytest.mark.asyncio
    async def test_empty_root_initializes_current_store(self, tmp_path: Path):
        results = await _coordinator(tmp_path).run()
        assert all(r.success for r in results)
        assert sum(r.migrated_count for r in results) == 0
        assert (tmp_path / "memos.db").is_file()
        assert _coordinator(tmp_path).detect_generation() == 5

    @pytest.mark.asyncio
    async def test_flat_note(self, tmp_path: Path):
        (tmp_path / "note.txt").write_text("remember the milk", encoding="utf-8")
        results = await _coordinator(tmp_path).run()
        assert [r.migrated_count for r in results] == [1, 1]
        repo = await open_repository(tmp_path)
        (memo,) = await repo.get_all()
        assert memo.title == IMPORTED_TITLE
        assert memo.content == "remember the milk"
        assert (tmp_path / f"note_backup_{STAMP}.txt").is_file()
        assert not (tmp_path / "note.txt").exists()

    @pytest.mark.asyncio
    async def test_empty_flat_note_is_zero_record_success(self, tmp_path: Path):
        (tmp_path / "note.txt").write_text("   \n", encoding="utf-8")
        results = await _coordinator(tmp_path).run()
        assert all(r.success for r in results)
        assert [r.migrated_count for r in results] == [0, 0]
        assert (tmp_path / "memos.db").is_file()
        assert (tmp_path / f"note_backup_{STAMP}.txt").is_file()

    @pytest.mark.asyncio
    async def test_json_array_to_relational(self, tmp_path: Path):
        _write_json_array(tmp_path)
        results = await _coordinator(tmp_path).run()
        assert [r.migrated_count for r in results] == [2, 2]
        assert await _titles(tmp_path) == ["Groceries", "Ideas"]
        assert (tmp_path / f"memos_backup_{STAMP}.json").is_file()
        assert (tmp_path / "content" / f"index_backup_{STAMP}.json").is_file()
        assert not (tmp_path / "content" / "index.json").exists()

        repo = await open_repository(tmp_path)
        groceries = await repo.get_by_id(ID_A.replace("-", ""))
        assert groceries.is_pinned is True
        assert set(groceries.tags) == {"home", "errands"}

    @pytest.mark.asyncio
    async def test_running_twice_is_idempotent(self, tmp_path: Path):
        _write_json_array(tmp_path)
        await _coordinator(tmp_path).run()
        first = await _titles(tmp_path)
        results = await _coordinator(tmp_path).run()
        assert all(r.success for r in results)
        assert [r.migrated_count for r in results] == [0, 0]
        assert await _titles(tmp_path) == first

    @pytest.mark.asyncio
    async def test_split_metadata(self, tmp_path: Path):
        content = tmp_path / "content"
        content.mkdir()
        meta = [{"Id": ID_A, "Title": "t", "Tags": "work"}]
        (tmp_path / "memos_metadata.json").write_text(json.dumps(meta), encoding="utf-8")
        (content / f"{ID_A}.md").write_text("# Dashed\n\nfrom metadata", encoding="utf-8")
        hex_id = ID_B.replace("-", "")
        (content / f"{hex_id}.md").write_text("# Hex\n\nno metadata", encoding="utf-8")

        results = await _coordinator(tmp_path).run()
        assert all(r.success for r in results)
        assert await _titles(tmp_path) == ["Dashed", "Hex"]

        # Dashed body renamed away, hex body rewritten in place with a copy kept.
        assert not (content / f"{ID_A}.md").exists()
        assert (content / f"{ID_A}_backup_{STAMP}.md").is_file()
        assert (content / f"{hex_id}.md").read_text(encoding="utf-8").startswith("---\n")
        backup = content / f"{hex_id}_backup_{STAMP}.md"
        assert backup.read_text(encoding="utf-8") == "# Hex\n\nno metadata"
        assert _coordinator(tmp_path).detect_generation() == 5

        again = await _coordinator(tmp_path).run()
        assert [r.migrated_count for r in again] == [0, 0]

    @pytest.mark.asyncio
    async def test_ordered_index_to_relational(self, tmp_path: Path):
        ordered = await open_repository(tmp_path, "ordered")
        memos = [Memo.create_new("T1", "C1"), Memo.create_new("T2", "C2\r\nline")]
        for memo in memos:
            await ordered.add(memo)
        files = {m.id: ordered.content.path_for(m.id).read_bytes() for m in memos}

        results = await _coordinator(tmp_path).run()
        assert results[0].migrated_count == 0
        assert results[1].migrated_count == 2

        repo = await open_repository(tmp_path)
        assert [m.title for m in await repo.get_all()] == ["T2", "T1"]
        for memo_id, raw in files.items():
            assert repo.content.path_for(memo_id).read_bytes() == raw

    @pytest.mark.asyncio
    async def test_populated_store_skips_legacy(self, tmp_path: Path):
        repo = await open_repository(tmp_path)
        await repo.add(Memo.create_new("current", "C"))
        _write_json_array(tmp_path)
        results = await _coordinator(tmp_path).run()
        assert [r.migrated_count for r in results] == [0, 0]
        assert (tmp_path / "memos.json").is_file()
        assert await _titles(tmp_path) == ["current"]

    @pytest.mark.asyncio
    async def test_corrupt_legacy_source_left_in_place(self, tmp_path: Path):
        (tmp_path / "memos.json").write_text("{broken", encoding="utf-8")
        results = await _coordinator(tmp_path).run()
        assert all(r.success for r in results)
        assert "left untouched" in results[0].message
        assert (tmp_path / "memos.json").read_text(encoding="utf-8") == "{broken"

    @pytest.mark.asyncio
    async def test_failed_step_can_be_retried(self, tmp_path: Path, monkeypatch):
        _write_json_array(tmp_path)
        coordinator = _coordinator(tmp_path)

        async def boom(memos):
            raise RuntimeError("disk full")

        monkeypatch.setattr(coordinator.sqlite, "insert_many", boom)
        results = await coordinator.run()
        assert results[0].success is True
        assert results[1].success is False
        assert "disk full" in results[1].message
        assert (tmp_path / "content" / "index.json").is_file()

        retry = await _coordinator(tmp_path).run()
        assert retry[1].success is True
        assert retry[1].migrated_count == 2
        assert await _titles(tmp_path) == ["Groceries", "Ideas"]

    @pytest.mark.asyncio
    async def test_failed_legacy_step_stops_the_chain(self, tmp_path: Path, monkeypatch):
        _write_json_array(tmp_path)
        coordinator = _coordinator(tmp_path)

        async def boom(memos):
            raise OSError("disk full")

        monkeypatch.setattr(coordinator.ordered, "insert_many", boom)
        results = await coordinator.run()
        assert len(results) == 1
        assert results[0].success is False
        assert not (tmp_path / "memos.db").exists()
        assert (tmp_path / "memos.json").is_file()
        assert _coordinator(tmp_path).detect_generation() == 2

        retry = await _coordinator(tmp_path).run()
        assert [r.migrated_count for r in retry] == [2, 2]
        assert await _titles(tmp_path) == ["Groceries", "Ideas"]

    @pytest.mark.asyncio
    async def test_retry_keeps_bodies_rewritten_in_place(self, tmp_path: Path, monkeypatch):
        content = tmp_path / "content"
        content.mkdir()
        hex_id = ID_A.replace("-", "")
        meta = [{"Id": hex_id, "Title": "stale", "Tags": "work"}]
        (tmp_path / "memos_metadata.json").write_text(json.dumps(meta), encoding="utf-8")
        (content / f"{hex_id}.md").write_text("# Title\n\nprecious body", encoding="utf-8")

        coordinator = _coordinator(tmp_path)

        async def boom(memos):
            raise OSError("disk full")

        monkeypatch.setattr(coordinator.ordered, "insert_many", boom)
        first = await coordinator.run()
        assert first[0].success is False
        assert (content / f"{hex_id}.md").read_text(encoding="utf-8").startswith("---\n")

        retry = await _coordinator(tmp_path).run()
        assert all(r.success for r in retry)
        assert [r.migrated_count for r in retry] == [1, 1]

        repo = await open_repository(tmp_path)
        memo = await repo.get_by_id(hex_id)
        assert memo.title == "Title"
        assert memo.content == "precious body"
        assert memo.tags == ("work",)
        backups = sorted(p.name for p in content.glob(f"{hex_id}_backup_*"))
        assert backups == [f"{hex_id}_backup_{STAMP}.md"]
        assert (content / backups[0]).read_text(encoding="utf-8") == "# Title\n\nprecious body"

    @pytest.mark.asyncio
    async def test_versions_carry_over_to_relational(self, tmp_path: Path):
        ordered = await open_repository(tmp_path, "ordered")
        memo = await ordered.add(Memo.create_new("T", "v1"))
        memo = await ordered.update(memo.with_content("v2"))
        memo = await ordered.update(memo.with_content("v3"))
        assert memo.version == 3

        await _coordinator(tmp_path).run()
        repo = await open_repository(tmp_path)
        stored = await repo.get_by_id(memo.id)
        assert stored.version == 3
        assert stored.content == "v3"
