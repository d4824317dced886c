from __future__ import annotations

import threading
from typing import Callable, Iterable

from reindex.logging import get_logger
from reindex.storage import QueueRepo
from reindex.storage.db import now_ms

from .summary import PassSummary

_LOG = get_logger(__name__)

Lister = Callable[[str], Iterable[str]]


class ListingDriver:
    """
    Walks the type queue and materializes each type's listing as items.

    Runs as a single unit inside the executor for the whole listing phase, so
    types are listed one at a time and the repository is never hit with
    concurrent listings.

    Per type:
    - claim it (ENQUEUED -> RUNNING)
    - call the lister outside that transaction
    - insert everything it yields and mark the type DONE, in one transaction
    - on any fault, mark the type FAILED separately and move on
    """

    def __init__(self, repo: QueueRepo, lister: Lister, summary: PassSummary) -> None:
        self._repo = repo
        self._lister = lister
        self._summary = summary
        self.finished = threading.Event()

    def run(self) -> None:
        try:
            while True:
                type_name = self._repo.claim_next_type(now_ms())
                if type_name is None:
                    return
                self._list_type(type_name)
        except Exception:
            _LOG.exception("Error populating item queue; listing phase stopped.")
        finally:
            self.finished.set()

    def _list_type(self, type_name: str) -> None:
        _LOG.info("Enqueueing %s", type_name)
        try:
            count = self._repo.enqueue_items(type_name, self._lister(type_name), now_ms())
        except Exception:
            _LOG.warning("Error loading item queue for type %s", type_name, exc_info=True)
            self._mark_failed(type_name)
            return

        self._summary.incr("listed_types")
        self._summary.incr("enqueued", count)
        _LOG.info("Done enqueueing %s (%d item(s))", type_name, count)

    def _mark_failed(self, type_name: str) -> None:
        try:
            marked = self._repo.mark_type_failed(type_name, now_ms())
        except Exception:
            self._summary.incr("failed_types")
            _LOG.exception("Could not mark type %s FAILED; it stays RUNNING.", type_name)
            return

        if marked:
            self._summary.incr("failed_types")
        else:
            _LOG.warning("Type %s is no longer RUNNING; left as is.", type_name)
