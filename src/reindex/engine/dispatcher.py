from __future__ import annotations

from reindex.logging import get_logger
from reindex.storage import QueueRepo
from reindex.storage.db import now_ms

from .executor import BoundedExecutor
from .summary import PassSummary
from .worker import ItemWorker

_LOG = get_logger(__name__)


class ItemDispatcher:
    """
    Moves ENQUEUED items into the executor.

    Polling marks each item RUNNING before it is submitted, so an item is
    handed to at most one worker per pass. Items compete for executor slots
    with each other and with the listing driver; no ordering is implied.
    """

    def __init__(
        self,
        repo: QueueRepo,
        executor: BoundedExecutor,
        worker: ItemWorker,
        summary: PassSummary,
        *,
        batch_size: int = 100,
    ) -> None:
        if batch_size <= 0:
            raise ValueError("batch_size must be > 0")

        self._repo = repo
        self._executor = executor
        self._worker = worker
        self._summary = summary
        self._batch_size = batch_size

    def dispatch_all(self) -> int:
        """
        Polls and submits batches until the item queue has nothing ENQUEUED.

        Blocks in submit() while the executor is full. Returns the number of
        items submitted.
        """
        dispatched = 0
        while True:
            try:
                items = self._repo.poll_items(self._batch_size, now_ms())
            except Exception:
                _LOG.exception("Polling the item queue failed (continuing).")
                return dispatched

            if not items:
                return dispatched

            for item in items:
                self._executor.submit(self._worker.run, item)

            dispatched += len(items)
            self._summary.incr("dispatched", len(items))
            _LOG.debug("Dispatched %d item(s)", len(items))
