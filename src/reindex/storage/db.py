from __future__ import annotations

import sqlite3
import time
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path


@dataclass(frozen=True)
class SQLiteDB:
    """
    SQLite connection factory.

    Notes:
    - The queue store shares ONE connection between the listing driver, the
      dispatcher and the pool workers; every statement on it is serialized by
      the repo lock, so the same-thread check is disabled.
    - Apply pragmas on each connection.
    - WAL mode lets the inspection API read while a run is writing.
    """
    db_path: Path
    timeout_s: float = 5.0

    def connect(self) -> sqlite3.Connection:
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        conn = sqlite3.connect(
            str(self.db_path),
            timeout=self.timeout_s,
            isolation_level=None,          # we manage transactions manually (BEGIN/COMMIT)
            check_same_thread=False,       # shared across threads under QueueRepo.lock
        )
        conn.row_factory = sqlite3.Row
        self._apply_pragmas(conn)
        return conn

    def _apply_pragmas(self, conn: sqlite3.Connection) -> None:
        cur = conn.cursor()
        cur.execute("PRAGMA journal_mode=WAL;")
        # item_queue.type references types_queue.type
        cur.execute("PRAGMA foreign_keys=ON;")
        # Reduce spurious 'database is locked' when the API reads concurrently
        cur.execute("PRAGMA busy_timeout=5000;")
        cur.execute("PRAGMA synchronous=NORMAL;")
        cur.close()


def new_store_path(directory: Path) -> Path:
    """
    Timestamp-derived file name for a fresh store, e.g. 2024_05_01-134501.123456.db
    """
    return directory / (datetime.now().strftime("%Y_%m_%d-%H%M%S.%f") + ".db")


def sidecar_paths(db_path: Path) -> list[Path]:
    """The store file plus the WAL-mode side files SQLite may leave next to it."""
    return [db_path, Path(f"{db_path}-wal"), Path(f"{db_path}-shm")]


def begin_immediate(conn: sqlite3.Connection) -> None:
    """
    Begins a transaction that acquires a RESERVED lock immediately.
    Keeps other processes (e.g. the inspection API clearing errors) from
    interleaving writes with a state transition.
    """
    conn.execute("BEGIN IMMEDIATE;")


def commit(conn: sqlite3.Connection) -> None:
    conn.execute("COMMIT;")


def rollback(conn: sqlite3.Connection) -> None:
    if conn.in_transaction:
        conn.execute("ROLLBACK;")


def now_ms() -> int:
    return int(time.time() * 1000)
