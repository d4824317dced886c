import importlib
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

import pytest
from fastapi.testclient import TestClient

from reindex.engine import Reindexer, RunnerConfig

# Two types with two resources each, four resources total.
TYPES = ["Submission", "SubmissionEvent"]
LISTING = {
    "Submission": ["test:/1", "test:/2"],
    "SubmissionEvent": ["test:/3", "test:/4"],
}
ALL_URIS = {uri for uris in LISTING.values() for uri in uris}

FAST_CFG = RunnerConfig(pool_size=4, poll_batch_size=100, poll_interval_ms=20, drain_interval_ms=10)

DEFAULT_ENV = {
    "REINDEX_POOL_SIZE": "2",
    "REINDEX_POLL_INTERVAL_MS": "20",
    "REINDEX_DRAIN_INTERVAL_MS": "10",
    "REINDEX_LOG_LEVEL": "warning",
}


class Counter:
    """Thread-safe countdown of failures still to inject."""

    def __init__(self, count: int) -> None:
        self._count = count
        self._lock = threading.Lock()

    def has_more(self) -> bool:
        with self._lock:
            self._count -= 1
            return self._count >= 0


def run_pass(reindexer: Reindexer, listing_failures: int = 0, item_failures: int = 0) -> list[str]:
    """
    Runs one pass over LISTING, failing the first `listing_failures` lister
    calls and the first `item_failures` task calls. Returns the processed URIs.
    """
    processed: list[str] = []
    listing = Counter(listing_failures)
    items = Counter(item_failures)

    def lister(type_name: str):
        if type_name in LISTING:
            if listing.has_more():
                raise RuntimeError("expected failure")
            return iter(LISTING[type_name])
        return iter(())

    def task(uri: str) -> str:
        if items.has_more():
            raise RuntimeError("expected failure")
        processed.append(uri)
        return uri

    reindexer.process(lister, task)
    return processed


@pytest.fixture()
def store_path(tmp_path: Path) -> Path:
    return tmp_path / "reindex.db"


@pytest.fixture()
def reindexer(store_path: Path) -> Iterator[Reindexer]:
    r = Reindexer.create(TYPES, store_path, FAST_CFG)
    try:
        yield r
    finally:
        r.close()


def _apply_env(monkeypatch: pytest.MonkeyPatch, db_path: Optional[Path], overrides: Optional[dict[str, str]] = None) -> None:
    if db_path is None:
        monkeypatch.delenv("REINDEX_DB_PATH", raising=False)
    else:
        monkeypatch.setenv("REINDEX_DB_PATH", str(db_path))
    for k, v in DEFAULT_ENV.items():
        monkeypatch.setenv(k, v)
    if overrides:
        for k, v in overrides.items():
            monkeypatch.setenv(k, v)


@contextmanager
def _client_ctx(monkeypatch: pytest.MonkeyPatch, db_path: Optional[Path]) -> Iterator[TestClient]:
    _apply_env(monkeypatch, db_path)

    # Import after env is set; reload to avoid cross-test state
    app_mod = importlib.import_module("reindex.api.app")
    importlib.reload(app_mod)

    with TestClient(app_mod.app) as client:
        yield client


@pytest.fixture()
def env(monkeypatch: pytest.MonkeyPatch):
    """
    Applies DEFAULT_ENV plus overrides for CLI / settings tests.

    Usage:
      env(db_path=path, overrides={"REINDEX_TYPES": "A,B"})
    """

    def _apply(*, db_path: Optional[Path] = None, overrides: Optional[dict[str, str]] = None) -> None:
        _apply_env(monkeypatch, db_path, overrides)

    return _apply


@pytest.fixture()
def client_factory(monkeypatch: pytest.MonkeyPatch):
    """
    Factory for API tests against a given (or missing) store.

    Usage:
      with client_factory(db_path=store_path) as client:
          ...
    """

    def _make(*, db_path: Optional[Path] = None):
        return _client_ctx(monkeypatch, db_path)

    return _make
