"""Upgrades older on-disk layouts to the current one.

Generations, oldest first:
    1  note.txt / notes.json       # Single flat note
    2  memos.json                  # JSON array of memo records
    3  memos_metadata.json         # Metadata list + header-less content/<id>.md
    4  content/index.json          # Ordered id list + header content files
    5  memos.db                    # Relational index (current)

Sources are renamed to `<name>_backup_<yyyyMMddHHmmss><ext>` once their data
is safely written to the next generation.
"""
