"""Tests for the python -m memovault entry point."""

from __future__ import annotations

import asyncio
import sys
from pathlib import Path

import pytest

from memovault.__main__ import main
from memovault.models import Memo
from memovault.repository import open_repository


@pytest.fixture
def data_dir(tmp_path: Path, monkeypatch) -> Path:
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("MEMOVAULT_DATA_DIR", str(tmp_path / "data"))
    monkeypatch.delenv("MEMOVAULT_INDEX_BACKEND", raising=False)
    monkeypatch.delenv("MEMOVAULT_MIGRATE", raising=False)
    return tmp_path / "data"


def _run(monkeypatch, *args: str) -> int:
    monkeypatch.setattr(sys, "argv", ["memovault", *args])
    with pytest.raises(SystemExit) as exc:
        main()
    return exc.value.code


def _add(data_dir: Path, title: str, content: str) -> Memo:
    async def _go() -> Memo:
        repo = await open_repository(data_dir)
        return await repo.add(Memo.create_new(title, content))

    return asyncio.run(_go())


class TestCommands:
    def test_migrate_empty(self, data_dir: Path, monkeypatch, capsys):
        assert _run(monkeypatch, "migrate") == 0
        out = capsys.readouterr().out
        assert "[ok] generation 4" in out
        assert "[ok] generation 5" in out
        assert (data_dir / "memos.db").is_file()

    def test_list(self, data_dir: Path, monkeypatch, capsys):
        memo = _add(data_dir, "Groceries", "eggs")
        assert _run(monkeypatch, "list") == 0
        out = capsys.readouterr().out
        assert memo.id in out
        assert "Groceries" in out

    def test_list_empty(self, data_dir: Path, monkeypatch, capsys):
        assert _run(monkeypatch) == 0
        assert "(no memos)" in capsys.readouterr().out

    def test_show(self, data_dir: Path, monkeypatch, capsys):
        memo = _add(data_dir, "Groceries", "eggs\nmilk")
        assert _run(monkeypatch, "show", memo.id) == 0
        out = capsys.readouterr().out
        assert "# Groceries" in out
        assert "eggs\nmilk" in out

    def test_show_unknown(self, data_dir: Path, monkeypatch, capsys):
        assert _run(monkeypatch, "show", "0" * 32) == 1

    def test_find(self, data_dir: Path, monkeypatch, capsys):
        memo = _add(data_dir, "T", "Test test TEST")
        assert _run(monkeypatch, "find", memo.id, "test", "--case") == 0
        out = capsys.readouterr().out
        assert "1/1  offset 5  length 4" in out

    def test_find_invalid_pattern(self, data_dir: Path, monkeypatch, capsys):
        memo = _add(data_dir, "T", "text")
        assert _run(monkeypatch, "find", memo.id, "(", "--regex") == 1
        assert "Invalid pattern" in capsys.readouterr().out

    def test_unknown_command(self, data_dir: Path, monkeypatch, capsys):
        assert _run(monkeypatch, "frobnicate") == 1
        assert "Usage" in capsys.readouterr().out
