"""Index protocol shared by the ordered-list and relational backends."""

from __future__ import annotations

from collections.abc import Iterable
from typing import Protocol, runtime_checkable

from memovault.models import Memo, MemoEntry


@runtime_checkable
class MemoIndex(Protocol):
    """Catalog of memo identities, ordering and searchable metadata.

    Backends share nothing but this contract. None of them stores memo bodies.
    """

    @property
    def name(self) -> str: ...

    async def initialize(self) -> None:
        """Create the backing store if it does not exist yet."""
        ...

    async def get_all(self) -> list[MemoEntry]:
        """Return catalog entries in display order, orphans excluded."""
        ...

    async def get(self, memo_id: str) -> MemoEntry | None: ...

    async def contains(self, memo_id: str) -> bool: ...

    async def count(self) -> int: ...

    async def insert(self, memo: Memo) -> None:
        """Register a memo. Registering an already indexed id keeps its position."""
        ...

    async def insert_many(self, memos: Iterable[Memo]) -> int:
        """Register many memos in a single write. Returns how many were new."""
        ...

    async def update(self, memo: Memo) -> bool:
        """Refresh a memo's catalog data. False when the id is not indexed."""
        ...

    async def remove(self, memo_id: str) -> bool:
        """Drop an id. Returns False if it was not indexed."""
        ...
