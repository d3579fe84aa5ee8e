"""Memo value objects and the pure helpers derived from them."""

from __future__ import annotations

import re
import uuid
from collections.abc import Iterable
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import IntEnum
from pathlib import Path

PREVIEW_LENGTH = 120

_FRACTION_RE = re.compile(r"(\.\d{6})\d+")


class SyncStatus(IntEnum):
    """Remote sync bookkeeping. Reserved; local storage only records it."""

    SYNCED = 0
    PENDING_SYNC = 1
    CONFLICT = 2


# ── Timestamps ────────────────────────────────────────────────


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def ensure_aware(value: datetime) -> datetime:
    """Naive datetimes are taken as local time, then moved to UTC."""
    return value.astimezone(timezone.utc)


def format_timestamp(value: datetime) -> str:
    """Round-trippable ISO-8601 in UTC with fixed microsecond precision."""
    return ensure_aware(value).isoformat(timespec="microseconds")


def parse_timestamp(text: str) -> datetime:
    """Parse ISO-8601, tolerating a trailing ``Z`` and 7-digit fractions.

    Raises ValueError for anything else.
    """
    raw = text.strip()
    if raw.endswith(("Z", "z")):
        raw = raw[:-1] + "+00:00"
    raw = _FRACTION_RE.sub(r"\1", raw)
    return ensure_aware(datetime.fromisoformat(raw))


# ── Identity, tags, preview ───────────────────────────────────


def new_memo_id() -> str:
    return uuid.uuid4().hex


def normalize_id(value: object) -> str | None:
    """Canonical hex form of a dashed or hex UUID, or None if not a UUID."""
    if value is None:
        return None
    try:
        return uuid.UUID(str(value).strip()).hex
    except ValueError:
        return None


def normalize_tags(tags: Iterable[str]) -> tuple[str, ...]:
    """Drop blanks and case-insensitive duplicates, keeping first-seen casing."""
    seen: set[str] = set()
    result: list[str] = []
    for tag in tags:
        cleaned = str(tag).strip()
        if not cleaned:
            continue
        key = cleaned.casefold()
        if key in seen:
            continue
        seen.add(key)
        result.append(cleaned)
    return tuple(result)


def build_preview(content: str) -> str:
    """Short excerpt shown in memo lists."""
    if not content or not content.strip():
        return ""
    trimmed = content.replace("\r\n", "\n").replace("\r", "\n").strip()
    if len(trimmed) <= PREVIEW_LENGTH:
        return trimmed
    first_break = trimmed.find("\n")
    if 0 <= first_break < PREVIEW_LENGTH:
        return trimmed[:first_break]
    return trimmed[:PREVIEW_LENGTH] + "..."


# ── Memo ──────────────────────────────────────────────────────


@dataclass(frozen=True)
class Memo:
    """Immutable snapshot of one memo. Derive new snapshots with the with_* methods."""

    id: str
    title: str
    content: str
    created_at: datetime
    updated_at: datetime
    tags: tuple[str, ...] = ()
    is_pinned: bool = False
    version: int = 1
    sync_status: SyncStatus = SyncStatus.PENDING_SYNC
    deleted_at: datetime | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "tags", normalize_tags(self.tags))
        object.__setattr__(self, "created_at", ensure_aware(self.created_at))
        object.__setattr__(self, "updated_at", ensure_aware(self.updated_at))
        object.__setattr__(self, "sync_status", SyncStatus(self.sync_status))
        if self.deleted_at is not None:
            object.__setattr__(self, "deleted_at", ensure_aware(self.deleted_at))

    @property
    def preview(self) -> str:
        return build_preview(self.content)

    @classmethod
    def create_new(
        cls,
        title: str,
        content: str,
        *,
        tags: Iterable[str] = (),
        is_pinned: bool = False,
        now: datetime | None = None,
    ) -> Memo:
        now = now or utc_now()
        return cls(
            id=new_memo_id(),
            title=title,
            content=content,
            created_at=now,
            updated_at=now,
            tags=tuple(tags),
            is_pinned=is_pinned,
        )

    def _touched(self, timestamp: datetime | None) -> datetime:
        stamp = ensure_aware(timestamp) if timestamp else utc_now()
        return max(stamp, self.updated_at)

    def with_content(self, content: str, timestamp: datetime | None = None) -> Memo:
        return replace(
            self,
            content=content,
            updated_at=self._touched(timestamp),
            version=self.version + 1,
        )

    def with_metadata(
        self,
        title: str,
        tags: Iterable[str],
        is_pinned: bool,
        timestamp: datetime | None = None,
    ) -> Memo:
        return replace(
            self,
            title=title,
            tags=tuple(tags),
            is_pinned=is_pinned,
            updated_at=self._touched(timestamp),
            version=self.version + 1,
        )

    def with_sync_status(self, status: SyncStatus) -> Memo:
        return replace(self, sync_status=status, version=self.version + 1)


@dataclass(frozen=True)
class MemoEntry:
    """Catalog record for one memo: everything except the body.

    ``body`` is filled in only by backends that read the content file anyway.
    """

    id: str
    title: str
    preview: str
    created_at: datetime
    updated_at: datetime
    path: Path
    tags: tuple[str, ...] = ()
    is_pinned: bool = False
    version: int = 1
    sync_status: SyncStatus = SyncStatus.PENDING_SYNC
    deleted_at: datetime | None = None
    body: str | None = field(default=None, compare=False, repr=False)

    @classmethod
    def from_memo(cls, memo: Memo, path: Path, *, with_body: bool = False) -> MemoEntry:
        return cls(
            id=memo.id,
            title=memo.title,
            preview=memo.preview,
            created_at=memo.created_at,
            updated_at=memo.updated_at,
            path=path,
            tags=memo.tags,
            is_pinned=memo.is_pinned,
            version=memo.version,
            sync_status=memo.sync_status,
            deleted_at=memo.deleted_at,
            body=memo.content if with_body else None,
        )

    def to_memo(self, content: str) -> Memo:
        return Memo(
            id=self.id,
            title=self.title,
            content=content,
            created_at=self.created_at,
            updated_at=self.updated_at,
            tags=self.tags,
            is_pinned=self.is_pinned,
            version=self.version,
            sync_status=self.sync_status,
            deleted_at=self.deleted_at,
        )
