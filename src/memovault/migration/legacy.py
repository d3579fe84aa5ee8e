"""Readers for the storage generations that predate per-memo header files.

Each reader is a pure transform from files on disk into Memo snapshots; none
of them writes anything. Generations, oldest first:

1. ``note.txt`` / ``notes.json`` — one flat text note
2. ``memos.json`` — a JSON array of memo records
3. ``memos_metadata.json`` plus header-less ``content/<id>.md`` bodies
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path

from memovault.errors import ParseError
from memovault.models import Memo, new_memo_id, normalize_id, parse_timestamp
from memovault.storage.content import CONTENT_DIRNAME, CONTENT_SUFFIX, DELIMITER, ContentStore

logger = logging.getLogger(__name__)

FLAT_NOTE_FILES = ("note.txt", "notes.json")
JSON_ARRAY_FILE = "memos.json"
SPLIT_METADATA_FILE = "memos_metadata.json"

IMPORTED_TITLE = "Imported memo"
UNTITLED = "Untitled"

BACKUP_RE = re.compile(r"_backup_\d{14}(_\d+)?$")


@dataclass
class LegacySource:
    """Memos read from one legacy generation, plus the files they came from."""

    generation: int
    memos: list[Memo] = field(default_factory=list)
    sources: list[Path] = field(default_factory=list)
    # memo id -> header-less body file (generation 3 only)
    bodies: dict[str, Path] = field(default_factory=dict)
    skipped: list[str] = field(default_factory=list)


def is_backup(path: Path) -> bool:
    return bool(BACKUP_RE.search(path.stem))


def _read_text(path: Path) -> str:
    return path.read_bytes().decode("utf-8-sig")


def _file_times(path: Path) -> tuple[datetime, datetime]:
    stat = path.stat()
    modified = datetime.fromtimestamp(stat.st_mtime, timezone.utc)
    created = datetime.fromtimestamp(min(stat.st_ctime, stat.st_mtime), timezone.utc)
    return created, modified


def _load_json(path: Path) -> object:
    try:
        return json.loads(_read_text(path))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise ParseError(f"{path.name}: {e}", path) from e


# ── Records ───────────────────────────────────────────────────


def _record_time(value: object, fallback: datetime) -> datetime:
    # 0001-01-01 is how the old serializer wrote "never set".
    if not isinstance(value, str) or not value.strip() or value.startswith("0001-01-01"):
        return fallback
    try:
        return parse_timestamp(value)
    except (ValueError, OverflowError):
        return fallback


def _record_tags(value: object) -> tuple[str, ...]:
    if isinstance(value, list):
        return tuple(str(tag) for tag in value)
    if isinstance(value, str):
        return tuple(value.split(","))
    return ()


def _record_bool(value: object) -> bool:
    if isinstance(value, str):
        return value.strip().lower() == "true"
    return bool(value)


def memo_from_record(
    record: dict,
    fallback_time: datetime,
    content: str | None = None,
    title: str | None = None,
) -> Memo:
    """Map one old-style record (PascalCase or camelCase keys) to a Memo."""
    fields = {str(key).lower(): value for key, value in record.items()}
    raw_title = fields.get("title")
    raw_content = fields.get("content")
    return Memo(
        id=normalize_id(fields.get("id")) or new_memo_id(),
        title=title if title is not None else (raw_title if isinstance(raw_title, str) and raw_title else UNTITLED),
        content=content if content is not None else (raw_content if isinstance(raw_content, str) else ""),
        created_at=_record_time(fields.get("createdat"), fallback_time),
        updated_at=_record_time(fields.get("updatedat"), fallback_time),
        tags=_record_tags(fields.get("tags")),
        is_pinned=_record_bool(fields.get("ispinned", False)),
    )


def _records(data: object, path: Path, skipped: list[str]) -> list[dict]:
    if not isinstance(data, list):
        raise ParseError(f"{path.name}: expected a JSON array", path)
    records = []
    for position, item in enumerate(data):
        if isinstance(item, dict):
            records.append(item)
        else:
            skipped.append(f"{path.name}[{position}]")
            logger.warning("Skipping malformed record %d in %s", position, path)
    return records


# ── Generation 1: flat note ───────────────────────────────────


def read_flat_note(root: Path) -> LegacySource | None:
    present = [root / name for name in FLAT_NOTE_FILES if (root / name).is_file()]
    if not present:
        return None

    source = LegacySource(generation=1, sources=present)
    for path in present:
        text = _read_text(path)
        if path.suffix == ".json":
            # notes.json held raw text; a JSON string literal is unwrapped.
            try:
                decoded = json.loads(text)
            except json.JSONDecodeError:
                decoded = None
            if isinstance(decoded, str):
                text = decoded
        if not text.strip():
            continue
        created, modified = _file_times(path)
        source.memos.append(
            Memo(
                id=new_memo_id(),
                title=IMPORTED_TITLE,
                content=text,
                created_at=created,
                updated_at=modified,
            )
        )
    return source


# ── Generation 2: JSON array ──────────────────────────────────


def read_json_array(root: Path) -> LegacySource | None:
    path = root / JSON_ARRAY_FILE
    if not path.is_file():
        return None

    source = LegacySource(generation=2, sources=[path])
    _, modified = _file_times(path)
    for record in _records(_load_json(path), path, source.skipped):
        source.memos.append(memo_from_record(record, modified))
    return source


# ── Generation 3: split metadata + plain markdown ─────────────


def parse_plain_markdown(text: str) -> tuple[str | None, str]:
    """``# Title`` on the first line, blank line, then the body."""
    lines = text.replace("\r\n", "\n").split("\n")
    if lines and lines[0].startswith("# "):
        return lines[0][2:].strip(), "\n".join(lines[2:]).strip()
    return None, text


def plain_markdown_files(root: Path) -> list[Path]:
    """Header-less memo bodies in the content directory."""
    directory = root / CONTENT_DIRNAME
    if not directory.is_dir():
        return []
    files = []
    for path in sorted(directory.glob(f"*{CONTENT_SUFFIX}")):
        if is_backup(path) or path.name.startswith("."):
            continue
        try:
            with path.open("r", encoding="utf-8-sig") as f:
                first = f.readline().rstrip("\r\n")
        except (OSError, UnicodeDecodeError):
            continue
        if first != DELIMITER:
            files.append(path)
    return files


def _load_framed(store: ContentStore, path: Path, source: LegacySource) -> Memo | None:
    """Load a content file that already carries a header. None if unreadable."""
    try:
        return store.load_sync(path)
    except (ParseError, OSError) as e:
        source.skipped.append(path.name)
        logger.warning("Leaving %s in place, cannot read it: %s", path, e)
        return None


def read_split_metadata(root: Path) -> LegacySource | None:
    meta_path = root / SPLIT_METADATA_FILE
    bodies = plain_markdown_files(root)
    if not meta_path.is_file() and not bodies:
        return None

    source = LegacySource(generation=3)
    records: dict[str, dict] = {}
    fallback = datetime.now(timezone.utc)
    if meta_path.is_file():
        source.sources.append(meta_path)
        _, fallback = _file_times(meta_path)
        for record in _records(_load_json(meta_path), meta_path, source.skipped):
            raw_id = next((v for k, v in record.items() if str(k).lower() == "id"), None)
            key = normalize_id(raw_id) or (str(raw_id) if raw_id else new_memo_id())
            records[key] = record

    memos: dict[str, Memo] = {}
    for body_path in bodies:
        try:
            text = _read_text(body_path)
        except (OSError, UnicodeDecodeError) as e:
            source.skipped.append(body_path.name)
            logger.warning("Skipping unreadable body %s: %s", body_path, e)
            continue
        heading, body = parse_plain_markdown(text)
        created, modified = _file_times(body_path)
        key = normalize_id(body_path.stem) or body_path.stem
        record = records.pop(key, None)
        if record is not None:
            memo = memo_from_record(record, modified, content=body, title=heading)
        else:
            memo = Memo(
                id=normalize_id(body_path.stem) or new_memo_id(),
                title=heading or body_path.stem,
                content=body,
                created_at=created,
                updated_at=modified,
            )
        memos[memo.id] = memo
        source.bodies[memo.id] = body_path

    store = ContentStore(root)
    for key, record in records.items():
        path = store.path_for(key)
        if store.exists(path):
            # Already given a header by a run that stopped before saving the index.
            memo = _load_framed(store, path, source)
            if memo is None:
                continue
        else:
            # Metadata rows whose body file is gone still carry their own content.
            memo = memo_from_record(record, fallback)
        memos.setdefault(memo.id, memo)

    source.memos = list(memos.values())
    return source


READERS = (read_flat_note, read_json_array, read_split_metadata)


def read_legacy_sources(root: Path) -> tuple[list[LegacySource], list[str]]:
    """Run every reader. Unparseable sources are reported and left in place."""
    sources: list[LegacySource] = []
    problems: list[str] = []
    for reader in READERS:
        try:
            source = reader(root)
        except ParseError as e:
            logger.warning("Legacy source left untouched: %s", e)
            problems.append(str(e))
            continue
        if source is not None:
            sources.append(source)
    return sources, problems
