from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Sequence

from reindex.config import Settings
from reindex.domain.states import Progress
from reindex.logging import get_logger
from reindex.storage import QueueStore
from reindex.storage.db import now_ms

from .dispatcher import ItemDispatcher
from .executor import BoundedExecutor
from .listing import Lister, ListingDriver
from .summary import PassSummary
from .worker import ItemWorker, Task

_LOG = get_logger(__name__)


@dataclass(frozen=True)
class RunnerConfig:
    """
    Runtime config for reindex passes.
    """
    pool_size: int = 4
    poll_batch_size: int = 100
    poll_interval_ms: int = 1000
    drain_interval_ms: int = 1000

    def __post_init__(self) -> None:
        if self.pool_size <= 0:
            raise ValueError("pool_size must be > 0")
        if self.poll_batch_size <= 0:
            raise ValueError("poll_batch_size must be > 0")
        if self.poll_interval_ms <= 0:
            raise ValueError("poll_interval_ms must be > 0")
        if self.drain_interval_ms <= 0:
            raise ValueError("drain_interval_ms must be > 0")

    @classmethod
    def from_settings(cls, settings: Settings) -> "RunnerConfig":
        return cls(
            pool_size=settings.pool_size,
            poll_batch_size=settings.poll_batch_size,
            poll_interval_ms=settings.poll_interval_ms,
            drain_interval_ms=settings.drain_interval_ms,
        )

    @property
    def poll_interval_s(self) -> float:
        return self.poll_interval_ms / 1000.0

    @property
    def drain_interval_s(self) -> float:
        return self.drain_interval_ms / 1000.0


class Reindexer:
    """
    Runs reindex passes against one queue store.

    A pass lists every ENQUEUED type (one executor slot, one type at a time)
    while the calling thread keeps dispatching ENQUEUED items to the same
    executor. The executor is kept across passes and shut down by close().
    """

    def __init__(self, store: QueueStore, cfg: Optional[RunnerConfig] = None) -> None:
        self._store = store
        self._cfg = cfg or RunnerConfig()
        self._executor = BoundedExecutor(
            self._cfg.pool_size,
            drain_interval_s=self._cfg.drain_interval_s,
        )

    @classmethod
    def create(
        cls,
        types: Sequence[str],
        path: Optional[Path] = None,
        cfg: Optional[RunnerConfig] = None,
        *,
        store_dir: Path = Path("."),
    ) -> "Reindexer":
        """Fresh store seeded with `types`."""
        return cls(QueueStore.initialize(types, path, store_dir=store_dir), cfg)

    @classmethod
    def resume(cls, path: Path, cfg: Optional[RunnerConfig] = None) -> "Reindexer":
        """Existing store, progress preserved."""
        return cls(QueueStore.open(path), cfg)

    @property
    def path(self) -> Path:
        return self._store.path

    @property
    def store(self) -> QueueStore:
        return self._store

    @property
    def executor(self) -> BoundedExecutor:
        return self._executor

    def process(self, lister: Lister, task: Task) -> PassSummary:
        """
        Runs one full pass and returns its counters.

        A pass is made of rounds. Each round lists every ENQUEUED type,
        dispatches every ENQUEUED item and drains the executor. Another round
        follows while types or items are still ENQUEUED (a claim or start
        transaction failed) and the previous round reduced them; whatever is
        left is reported as `pending`.
        """
        repo = self._store.repo
        summary = PassSummary()
        dispatcher = ItemDispatcher(
            repo,
            self._executor,
            ItemWorker(repo, task, summary),
            summary,
            batch_size=self._cfg.poll_batch_size,
        )

        _LOG.info(
            "Starting pass on %s: pool_size=%d poll_batch=%d",
            self._store.path,
            self._cfg.pool_size,
            self._cfg.poll_batch_size,
        )

        previous: Optional[int] = None
        while True:
            self._round(ListingDriver(repo, lister, summary), dispatcher)
            summary.incr("rounds")

            pending = self.pending_count()
            if pending == 0:
                break
            if previous is not None and pending >= previous:
                _LOG.error("Pass stopped with %d type(s)/item(s) still ENQUEUED.", pending)
                break
            _LOG.warning("%d type(s)/item(s) still ENQUEUED; running another round.", pending)
            previous = pending

        summary.pending = pending
        _LOG.info(
            "Pass finished: listed=%d failed_types=%d succeeded=%d failed=%d unsaved=%d pending=%d",
            summary.listed_types,
            summary.failed_types,
            summary.succeeded,
            summary.failed,
            summary.unsaved,
            summary.pending,
        )
        return summary

    def _round(self, listing: ListingDriver, dispatcher: ItemDispatcher) -> None:
        self._executor.submit(listing.run)

        # Keep processing items while listing is still producing them.
        while not listing.finished.is_set():
            dispatcher.dispatch_all()
            self._executor.pause(self._cfg.poll_interval_s, wake=listing.finished)

        # Final dispatch, now that the queue is fully populated.
        dispatcher.dispatch_all()
        self._executor.await_drained()

    def pending_count(self) -> int:
        """Types and items still ENQUEUED."""
        repo = self._store.repo
        return repo.count_enqueued_types() + repo.count_items(Progress.ENQUEUED)

    def error_count(self) -> int:
        return self._store.error_count()

    def clear_errors(self) -> tuple[int, int]:
        return self._store.clear_errors()

    def recover_stale(self) -> tuple[int, int]:
        """
        Re-queues RUNNING types and items left behind by an earlier process.

        Must not be called while a pass is running on this store.
        """
        return self._store.repo.recover_stale_running(now_ms())

    def close(self) -> None:
        self._executor.shutdown(wait=True)
        self._store.close()

    def __enter__(self) -> "Reindexer":
        return self

    def __exit__(self, *exc) -> None:
        self.close()
