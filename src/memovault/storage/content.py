"""Content files: one UTF-8 file per memo, header block followed by the raw body.

    ---
    id: 3f2b...
    title: Shopping list
    createdAt: 2026-01-01T08:00:00.000000+00:00
    updatedAt: 2026-01-02T09:30:00.000000+00:00
    isPinned: false
    tags:
      - home
    ---
    <body, verbatim>

The header is YAML read with ``BaseLoader`` so every scalar stays a string.
Files written by older releases sometimes carry quoting YAML rejects; those
fall back to a line-oriented reader.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import uuid
from datetime import datetime, timezone
from pathlib import Path

import yaml

from memovault.errors import ParseError
from memovault.models import (
    Memo,
    MemoEntry,
    format_timestamp,
    normalize_id,
    parse_timestamp,
)

logger = logging.getLogger(__name__)

DELIMITER = "---"
CONTENT_DIRNAME = "content"
CONTENT_SUFFIX = ".md"

_INDICATORS = "-?,[]{}&*!|>'%@`"


# ── Rendering ─────────────────────────────────────────────────


def quote_value(value: str) -> str:
    """Double-quote a header value when a YAML reader would misread it bare."""
    needs_quotes = (
        value == ""
        or ":" in value
        or '"' in value
        or "#" in value
        or value[0] in _INDICATORS
        or value != value.strip()
        or any(ord(ch) < 0x20 for ch in value)
    )
    if not needs_quotes:
        return value
    return json.dumps(value, ensure_ascii=False)


def render_memo(memo: Memo) -> str:
    """Serialize a memo: header keys in a fixed order, then the body verbatim."""
    lines = [
        DELIMITER,
        f"id: {memo.id}",
        f"title: {quote_value(memo.title)}",
        f"createdAt: {format_timestamp(memo.created_at)}",
        f"updatedAt: {format_timestamp(memo.updated_at)}",
        f"isPinned: {'true' if memo.is_pinned else 'false'}",
        "tags:",
    ]
    lines.extend(f"  - {quote_value(tag)}" for tag in memo.tags)
    lines.append(DELIMITER)
    return "\n".join(lines) + "\n" + memo.content


# ── Parsing ───────────────────────────────────────────────────


def split_document(text: str, path: Path | None = None) -> tuple[str, str]:
    """Split file text into (header, body). Raises ParseError."""
    lines = text.split("\n")
    if lines[0].rstrip("\r") != DELIMITER:
        raise ParseError(f"{path or 'memo'}: missing opening '{DELIMITER}'", path)
    for end in range(1, len(lines)):
        if lines[end].rstrip("\r") == DELIMITER:
            break
    else:
        raise ParseError(f"{path or 'memo'}: header is not terminated", path)
    header = "\n".join(line.rstrip("\r") for line in lines[1:end])
    body = "\n".join(lines[end + 1 :])
    return header, body


def _unquote(value: str) -> str:
    value = value.strip()
    if len(value) >= 2 and value[0] == value[-1] == '"':
        return value[1:-1].replace('\\"', '"')
    return value


def _lenient_header(header: str) -> dict:
    """Line-oriented fallback for headers that are not valid YAML."""
    fields: dict = {}
    tags: list[str] = []
    for line in header.split("\n"):
        stripped = line.strip()
        if stripped.startswith("-"):
            tag = _unquote(stripped[1:])
            if tag:
                tags.append(tag)
            continue
        key, sep, value = line.partition(":")
        if sep and key and not key[0].isspace():
            fields[key.strip()] = _unquote(value)
    fields["tags"] = tags
    return fields


def parse_header(header: str, path: Path | None = None) -> dict:
    try:
        data = yaml.load(header, Loader=yaml.BaseLoader) if header.strip() else {}
    except yaml.YAMLError as e:
        logger.debug("Header of %s is not valid YAML (%s), reading line by line", path, e)
        return _lenient_header(header)
    if not isinstance(data, dict):
        raise ParseError(f"{path or 'memo'}: header is not a key/value block", path)
    return data


def _timestamp(value: object, fallback: datetime) -> datetime:
    if isinstance(value, str) and value.strip():
        try:
            return parse_timestamp(value)
        except ValueError:
            pass
    return fallback


def _tags(value: object) -> tuple[str, ...]:
    if isinstance(value, list):
        return tuple(str(tag) for tag in value if isinstance(tag, str))
    if isinstance(value, str) and value.strip():
        # Inline form: "tags: a, b"
        return tuple(part.strip() for part in value.split(","))
    return ()


def memo_from_text(text: str, path: Path, fallback_time: datetime | None = None) -> Memo:
    """Build a Memo from a content file's text. Raises ParseError."""
    header, body = split_document(text, path)
    fields = parse_header(header, path)
    fallback_time = fallback_time or datetime.now(timezone.utc)

    memo_id = normalize_id(fields.get("id")) or normalize_id(path.stem) or path.stem
    title = fields.get("title", "")
    pinned = fields.get("isPinned", "false")
    return Memo(
        id=memo_id,
        title=title if isinstance(title, str) else "",
        content=body,
        created_at=_timestamp(fields.get("createdAt"), fallback_time),
        updated_at=_timestamp(fields.get("updatedAt"), fallback_time),
        tags=_tags(fields.get("tags")),
        is_pinned=isinstance(pinned, str) and pinned.strip().lower() == "true",
    )


# ── Store ─────────────────────────────────────────────────────


class ContentStore:
    """Reads and writes memo files under ``<root>/content``."""

    def __init__(self, root: Path) -> None:
        self.root = root
        self.directory = root / CONTENT_DIRNAME

    def ensure_directory(self) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)

    def path_for(self, memo_id: str) -> Path:
        return self.directory / f"{memo_id}{CONTENT_SUFFIX}"

    def exists(self, path: Path) -> bool:
        return path.is_file()

    def _read_text(self, path: Path) -> str:
        # Bytes keep CRLF bodies intact; utf-8-sig drops a BOM from older writers.
        return path.read_bytes().decode("utf-8-sig")

    def _mtime(self, path: Path) -> datetime:
        try:
            return datetime.fromtimestamp(path.stat().st_mtime, timezone.utc)
        except OSError:
            return datetime.now(timezone.utc)

    def load_sync(self, path: Path) -> Memo:
        try:
            text = self._read_text(path)
        except UnicodeDecodeError as e:
            raise ParseError(f"{path}: not valid UTF-8", path) from e
        return memo_from_text(text, path, fallback_time=self._mtime(path))

    def save_sync(self, path: Path, memo: Memo) -> None:
        write_atomic(path, render_memo(memo))

    async def load(self, path: Path) -> Memo:
        """Load one memo. Raises ParseError, or OSError when unreadable."""
        return await asyncio.to_thread(self.load_sync, path)

    async def read_entry(self, path: Path) -> MemoEntry:
        """Catalog entry for one file, carrying the body it had to read."""
        memo = await self.load(path)
        return MemoEntry.from_memo(memo, path, with_body=True)

    async def save(self, path: Path, memo: Memo) -> None:
        await asyncio.to_thread(self.save_sync, path, memo)
        logger.debug("Saved memo %s (%d chars)", memo.id, len(memo.content))

    async def delete(self, path: Path) -> bool:
        """Remove a content file. Returns False if it was already gone."""

        def _unlink() -> bool:
            try:
                path.unlink()
                return True
            except FileNotFoundError:
                return False

        return await asyncio.to_thread(_unlink)


def write_atomic(path: Path, text: str) -> None:
    """Write the whole text in one call to a sibling temp file, then rename it into place."""
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_name(f".{path.name}.{uuid.uuid4().hex[:8]}.tmp")
    try:
        tmp.write_bytes(text.encode("utf-8"))
        os.replace(tmp, path)
    except BaseException:
        tmp.unlink(missing_ok=True)
        raise

