"""
Storage layer for the reindexer (SQLite).

- db: connection factory + pragmas
- migrations: lightweight SQL migrations runner
- repo: transactional queue operations
- store: store lifecycle (initialize / open / close)
"""

from .db import SQLiteDB
from .migrations import apply_migrations
from .repo import QueueRepo
from .store import QueueStore

__all__ = ["SQLiteDB", "apply_migrations", "QueueRepo", "QueueStore"]
