from __future__ import annotations

import sqlite3
from pathlib import Path
from typing import Optional, Sequence

from reindex.domain.errors import StoreInitError, StoreNotFoundError
from reindex.logging import get_logger

from .db import SQLiteDB, new_store_path, now_ms, sidecar_paths
from .migrations import apply_migrations, has_schema
from .repo import QueueRepo

_LOG = get_logger(__name__)


class QueueStore:
    """
    A durable reindex queue backed by one SQLite file.

    Two ways in:
    - QueueStore.initialize(types): fresh file, schema + one ENQUEUED row per type
    - QueueStore.open(path): existing file, attached as-is to resume its progress

    The store is the only record of progress; a reopened store yields exactly
    the pending / failed / done state it was closed with.
    """

    def __init__(self, path: Path, conn: sqlite3.Connection) -> None:
        self._path = path
        self._conn = conn
        self._repo = QueueRepo(conn)

    @classmethod
    def initialize(
        cls,
        types: Sequence[str],
        path: Optional[Path] = None,
        *,
        store_dir: Path = Path("."),
    ) -> "QueueStore":
        """
        Creates a new store and seeds the type queue.

        Any failure closes the connection, removes the file and raises
        StoreInitError; a half-initialized store is never left behind.
        """
        path = Path(path) if path is not None else new_store_path(store_dir)
        if path.exists():
            raise StoreInitError(
                f"Refusing to initialize over an existing file: {path}",
                details={"path": str(path)},
            )

        conn: Optional[sqlite3.Connection] = None
        try:
            conn = SQLiteDB(path).connect()
            apply_migrations(conn)
            store = cls(path, conn)
            store.repo.seed_types(list(types), now_ms())
        except Exception as e:
            if conn is not None:
                conn.close()
            _remove_store_files(path)
            raise StoreInitError(
                f"Could not initialize store at {path}: {e}",
                details={"path": str(path)},
            ) from e

        _LOG.info("Initialized store %s with %d type(s).", path, len(types))
        return store

    @classmethod
    def open(cls, path: Path) -> "QueueStore":
        """
        Attaches to an existing store without modifying its contents.
        """
        path = Path(path)
        if not path.is_file():
            raise StoreNotFoundError(f"Store not found: {path}", details={"path": str(path)})

        conn: Optional[sqlite3.Connection] = None
        try:
            conn = SQLiteDB(path).connect()
            valid = has_schema(conn)
        except sqlite3.DatabaseError as e:
            if conn is not None:
                conn.close()
            raise StoreNotFoundError(
                f"Not a reindex store: {path}", details={"path": str(path)}
            ) from e

        if not valid:
            conn.close()
            raise StoreNotFoundError(f"Not a reindex store: {path}", details={"path": str(path)})

        _LOG.debug("Opened store %s", path)
        return cls(path, conn)

    @property
    def path(self) -> Path:
        return self._path

    @property
    def repo(self) -> QueueRepo:
        return self._repo

    def error_count(self) -> int:
        return self._repo.error_count()

    def clear_errors(self) -> tuple[int, int]:
        return self._repo.clear_errors(now_ms())

    def close(self) -> None:
        with self._repo.lock:
            self._conn.close()

    def __enter__(self) -> "QueueStore":
        return self

    def __exit__(self, *exc) -> None:
        self.close()


def _remove_store_files(path: Path) -> None:
    for p in sidecar_paths(path):
        try:
            p.unlink(missing_ok=True)
        except OSError:
            if p.exists():
                _LOG.warning("Could not delete db file at %s", p)
