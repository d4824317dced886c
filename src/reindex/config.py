from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional


def _get_env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = int(raw)
    except ValueError as e:
        raise ValueError(f"Environment variable {name} must be an int, got: {raw!r}") from e
    return value


def _get_env_str(name: str, default: str) -> str:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return raw


def _get_env_optional(name: str) -> Optional[str]:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return None
    return raw.strip()


def _get_env_list(name: str) -> tuple[str, ...]:
    raw = os.getenv(name) or ""
    return tuple(part.strip() for part in raw.split(",") if part.strip())


@dataclass(frozen=True)
class Settings:
    # Store
    db_path: Optional[Path]
    store_dir: Path

    # Type registry and external collaborators
    types: tuple[str, ...]
    lister: Optional[str]
    task: Optional[str]

    # Execution
    pool_size: int
    poll_batch_size: int
    poll_interval_ms: int
    drain_interval_ms: int

    # Inspection API (used by `reindex serve`)
    host: str
    port: int
    log_level: str


def load_settings() -> Settings:
    """
    Loads settings from env vars with sane defaults.

    Env vars:
      - REINDEX_DB_PATH (default: unset -> a fresh store is created)
      - REINDEX_STORE_DIR (default: .)
      - REINDEX_TYPES (comma separated type identifiers, used for fresh stores only)
      - REINDEX_LISTER / REINDEX_TASK ("package.module:callable")
      - REINDEX_POOL_SIZE (default: 4)
      - REINDEX_POLL_BATCH (default: 100)
      - REINDEX_POLL_INTERVAL_MS (default: 1000)
      - REINDEX_DRAIN_INTERVAL_MS (default: 1000)
      - REINDEX_HOST (default: 127.0.0.1)
      - REINDEX_PORT (default: 8000)
      - REINDEX_LOG_LEVEL (default: info)
    """
    raw_db_path = _get_env_optional("REINDEX_DB_PATH")
    db_path = Path(raw_db_path).expanduser() if raw_db_path else None
    store_dir = Path(_get_env_str("REINDEX_STORE_DIR", ".")).expanduser()

    pool_size = _get_env_int("REINDEX_POOL_SIZE", 4)
    if pool_size <= 0:
        raise ValueError("REINDEX_POOL_SIZE must be > 0")

    poll_batch_size = _get_env_int("REINDEX_POLL_BATCH", 100)
    if poll_batch_size <= 0:
        raise ValueError("REINDEX_POLL_BATCH must be > 0")

    poll_interval_ms = _get_env_int("REINDEX_POLL_INTERVAL_MS", 1000)
    if poll_interval_ms <= 0:
        raise ValueError("REINDEX_POLL_INTERVAL_MS must be > 0")

    drain_interval_ms = _get_env_int("REINDEX_DRAIN_INTERVAL_MS", 1000)
    if drain_interval_ms <= 0:
        raise ValueError("REINDEX_DRAIN_INTERVAL_MS must be > 0")

    host = _get_env_str("REINDEX_HOST", "127.0.0.1")
    port = _get_env_int("REINDEX_PORT", 8000)
    if not (1 <= port <= 65535):
        raise ValueError("REINDEX_PORT must be between 1 and 65535")

    log_level = _get_env_str("REINDEX_LOG_LEVEL", "info").lower()

    return Settings(
        db_path=db_path,
        store_dir=store_dir,
        types=_get_env_list("REINDEX_TYPES"),
        lister=_get_env_optional("REINDEX_LISTER"),
        task=_get_env_optional("REINDEX_TASK"),
        pool_size=pool_size,
        poll_batch_size=poll_batch_size,
        poll_interval_ms=poll_interval_ms,
        drain_interval_ms=drain_interval_ms,
        host=host,
        port=port,
        log_level=log_level,
    )
