"""Entry point: python -m memovault [migrate|list|show|find]

- "migrate":                     Upgrade the data directory and print each step
- No args / "list":              One line per memo, pinned first
- "show <id>":                   Print a memo's header and body
- "find <id> <keyword> [--regex] [--case]": Print match offsets in a memo
"""

from __future__ import annotations

import asyncio
import logging
import re
import sys

from memovault.config import VaultConfig, load_config
from memovault.migration.coordinator import MigrationCoordinator, MigrationResult
from memovault.models import format_timestamp, normalize_id
from memovault.repository import MemoRepository, open_repository
from memovault.search import find_matches


def _setup_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )


async def _migrate(config: VaultConfig) -> list[MigrationResult]:
    coordinator = MigrationCoordinator(config.data_dir)
    if config.storage.index_backend == "ordered":
        # The ordered backend reads index.json, so stop before the relational step.
        return [await coordinator.upgrade_legacy()]
    return await coordinator.run()


async def _open(config: VaultConfig) -> MemoRepository:
    if config.storage.migrate_on_start:
        await _migrate(config)
    return await open_repository(config.data_dir, config.storage.index_backend)


async def _cmd_migrate(config: VaultConfig) -> int:
    results = await _migrate(config)
    for result in results:
        status = "ok" if result.success else "FAILED"
        print(f"[{status}] generation {result.generation}: {result.message} ({result.migrated_count})")
    return 0 if all(r.success for r in results) else 1


async def _cmd_list(config: VaultConfig) -> int:
    repo = await _open(config)
    memos = await repo.get_all()
    for memo in memos:
        pin = "[pin] " if memo.is_pinned else ""
        print(f"{memo.id}  {pin}{memo.title} — {memo.preview.splitlines()[0] if memo.preview else ''}")
    if not memos:
        print("(no memos)")
    return 0


async def _cmd_show(config: VaultConfig, memo_id: str) -> int:
    repo = await _open(config)
    memo = await repo.get_by_id(normalize_id(memo_id) or memo_id)
    if memo is None:
        print(f"No memo {memo_id}")
        return 1
    print(f"# {memo.title}")
    print(f"id: {memo.id}  version: {memo.version}  pinned: {memo.is_pinned}")
    print(f"created: {format_timestamp(memo.created_at)}  updated: {format_timestamp(memo.updated_at)}")
    if memo.tags:
        print(f"tags: {', '.join(memo.tags)}")
    print()
    print(memo.content)
    return 0


async def _cmd_find(config: VaultConfig, args: list[str]) -> int:
    flags = {a for a in args if a.startswith("--")}
    positional = [a for a in args if not a.startswith("--")]
    if len(positional) != 2:
        print("Usage: python -m memovault find <id> <keyword> [--regex] [--case]")
        return 1
    memo_id, keyword = positional

    repo = await _open(config)
    memo = await repo.get_by_id(normalize_id(memo_id) or memo_id)
    if memo is None:
        print(f"No memo {memo_id}")
        return 1
    try:
        matches = list(
            find_matches(
                memo.content,
                keyword,
                case_sensitive="--case" in flags,
                use_regex="--regex" in flags,
            )
        )
    except re.error as e:
        print(f"Invalid pattern: {e}")
        return 1
    for n, match in enumerate(matches, 1):
        snippet = memo.content[match.offset : match.end].replace("\n", "\\n")
        print(f"{n}/{len(matches)}  offset {match.offset}  length {match.length}  {snippet}")
    if not matches:
        print("No matches")
    return 0


def main() -> None:
    cmd = sys.argv[1] if len(sys.argv) > 1 else "list"
    args = sys.argv[2:]

    config = load_config()
    _setup_logging(config.log_level)

    if cmd == "migrate":
        code = asyncio.run(_cmd_migrate(config))
    elif cmd == "list":
        code = asyncio.run(_cmd_list(config))
    elif cmd == "show" and len(args) == 1:
        code = asyncio.run(_cmd_show(config, args[0]))
    elif cmd == "find":
        code = asyncio.run(_cmd_find(config, args))
    else:
        print("Usage: python -m memovault [migrate|list|show <id>|find <id> <keyword>]")
        print("  migrate  — Upgrade the data directory to the current layout")
        print("  list     — List memos (default)")
        print("  show     — Print one memo")
        print("  find     — Find a keyword in one memo (--regex, --case)")
        code = 1
    sys.exit(code)


if __name__ == "__main__":
    main()
