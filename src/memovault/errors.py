"""Error taxonomy shared by the storage, repository and migration layers."""

from __future__ import annotations

from pathlib import Path


class MemoVaultError(Exception):
    """Base class for all memovault errors."""


class ParseError(MemoVaultError):
    """A content header or index record could not be parsed."""

    def __init__(self, message: str, path: Path | None = None) -> None:
        super().__init__(message)
        self.path = path


class NotFoundError(MemoVaultError, KeyError):
    """A mutation targeted a memo that is no longer stored."""

    def __init__(self, memo_id: str) -> None:
        super().__init__(memo_id)
        self.memo_id = memo_id

    def __str__(self) -> str:
        return f"memo {self.memo_id} does not exist or was deleted"


class MigrationError(MemoVaultError):
    """A migration step failed. Never escapes the coordinator."""
