"""memovault — memo persistence with per-memo files and a separate index.

Layout:
    <data_dir>/
    ├── content/
    │   ├── <id>.md                    # Header block + raw body, one file per memo
    │   └── index.json                 # Ordered-list index (generation 4)
    ├── memos.db                       # Relational index (generation 5, current)
    └── *_backup_<yyyyMMddHHmmss>.*    # Renamed legacy sources, never auto-deleted

Older generations (`note.txt`, `memos.json`, `memos_metadata.json`) are
upgraded in place by `memovault.migration.MigrationCoordinator`.
"""

from memovault.errors import MemoVaultError, MigrationError, NotFoundError, ParseError
from memovault.models import Memo, MemoEntry, SyncStatus
from memovault.repository import MemoRepository, open_repository

__all__ = [
    "Memo",
    "MemoEntry",
    "MemoRepository",
    "MemoVaultError",
    "MigrationError",
    "NotFoundError",
    "ParseError",
    "SyncStatus",
    "open_repository",
]
