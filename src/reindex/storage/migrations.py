from __future__ import annotations

import re
import sqlite3
from dataclasses import dataclass
from pathlib import Path

from reindex.logging import get_logger

_LOG = get_logger(__name__)


_MIGRATION_RE = re.compile(r"^(?P<version>\d+)_.*\.sql$")

MIGRATIONS_DIR = Path(__file__).resolve().parent / "sql"


@dataclass(frozen=True)
class Migration:
    version: int
    filename: str
    path: Path


def apply_migrations(conn: sqlite3.Connection, migrations_dir: Path = MIGRATIONS_DIR) -> None:
    """
    Applies SQL migrations from migrations_dir in ascending numeric order.

    Applied versions are stored in schema_migrations; the runner ensures
    each version is applied once.

    Expected migration filenames:
      001_init.sql
      002_....sql
    """
    migrations_dir = migrations_dir.resolve()
    if not migrations_dir.exists():
        raise FileNotFoundError(f"Migrations dir not found: {migrations_dir}")

    _ensure_migrations_table(conn)

    applied = applied_versions(conn)
    pending = load_migrations(migrations_dir)

    to_apply = [m for m in pending if m.version not in applied]
    if not to_apply:
        _LOG.debug("No pending migrations.")
        return

    for m in to_apply:
        sql = m.path.read_text(encoding="utf-8")
        _LOG.debug("Applying migration %03d (%s)", m.version, m.filename)
        conn.executescript(sql)
        conn.execute(
            "INSERT INTO schema_migrations(version, filename, applied_at) VALUES (?, ?, strftime('%s','now')*1000);",
            (m.version, m.filename),
        )


def has_schema(conn: sqlite3.Connection) -> bool:
    """
    True if conn points at a store created by apply_migrations.
    Read-only: used when reopening a store, which must not modify it.
    """
    row = conn.execute(
        "SELECT 1 FROM sqlite_master WHERE type='table' AND name='schema_migrations';"
    ).fetchone()
    if not row:
        return False
    return bool(applied_versions(conn))


def _ensure_migrations_table(conn: sqlite3.Connection) -> None:
    conn.executescript(
        """
        CREATE TABLE IF NOT EXISTS schema_migrations(
          version INTEGER PRIMARY KEY,
          filename TEXT NOT NULL,
          applied_at INTEGER NOT NULL
        );
        """
    )


def applied_versions(conn: sqlite3.Connection) -> set[int]:
    rows = conn.execute("SELECT version FROM schema_migrations ORDER BY version;").fetchall()
    return {int(r["version"]) for r in rows}


def load_migrations(migrations_dir: Path = MIGRATIONS_DIR) -> list[Migration]:
    migrations: list[Migration] = []
    for path in sorted(migrations_dir.glob("*.sql")):
        m = _MIGRATION_RE.match(path.name)
        if not m:
            continue
        version = int(m.group("version"))
        migrations.append(Migration(version=version, filename=path.name, path=path))

    migrations.sort(key=lambda x: x.version)
    return migrations
