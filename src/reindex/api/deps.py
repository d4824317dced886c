from __future__ import annotations

from typing import Generator

from fastapi import Depends, Request

from reindex.config import Settings
from reindex.domain.errors import StoreNotFoundError
from reindex.storage import QueueRepo, QueueStore


def get_settings(request: Request) -> Settings:
    """
    Per-request access to settings stored on app.state during startup.
    """
    return request.app.state.settings  # type: ignore[attr-defined]


def get_store(
    settings: Settings = Depends(get_settings),
) -> Generator[QueueStore, None, None]:
    """
    Provides a per-request connection to the store at REINDEX_DB_PATH.
    """
    if settings.db_path is None:
        raise StoreNotFoundError("REINDEX_DB_PATH is not set")

    store = QueueStore.open(settings.db_path)
    try:
        yield store
    finally:
        store.close()


def get_repo(
    store: QueueStore = Depends(get_store),
) -> QueueRepo:
    return store.repo
