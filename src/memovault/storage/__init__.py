"""Storage backends.

    content.py         # One header+body file per memo (ContentStore)
    base.py            # MemoIndex protocol
    ordered_index.py   # content/index.json, explicit id order (generation 4)
    sqlite_index.py    # memos.db, metadata + tags (generation 5)
"""
