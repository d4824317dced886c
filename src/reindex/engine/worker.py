from __future__ import annotations

import traceback
from typing import Callable, Optional

from reindex.domain.models import ItemTask
from reindex.logging import get_logger
from reindex.storage import QueueRepo
from reindex.storage.db import now_ms

from .summary import PassSummary

_LOG = get_logger(__name__)

Task = Callable[[str], Optional[str]]

_PROGRESS_EVERY = 1000


class ItemWorker:
    """
    Applies the indexing task to one item and persists the outcome.

    - success: the item row is deleted and a SUCCESS result recorded (one transaction)
    - failure: the item is marked FAILED and the traceback recorded (one transaction)

    If persisting the outcome fails, the item keeps the RUNNING mark it got
    when it was polled. Polling only selects ENQUEUED rows, so such an item is
    not retried until Reindexer.recover_stale() is run against the store.
    """

    def __init__(self, repo: QueueRepo, task: Task, summary: PassSummary) -> None:
        self._repo = repo
        self._task = task
        self._summary = summary

    def run(self, item: ItemTask) -> bool:
        try:
            payload = self._task(item.url)
        except Exception as e:
            self._save_failure(item, e)
            return False

        try:
            self._repo.complete_item(item, None if payload is None else str(payload), now_ms())
        except Exception:
            self._summary.incr("unsaved")
            _LOG.warning(
                "Could not save success result; item left RUNNING: id=%d type=%s url=%s",
                item.id,
                item.type,
                item.url,
                exc_info=True,
            )
            return False

        processed = self._summary.incr("succeeded")
        if processed % _PROGRESS_EVERY == 0:
            _LOG.info("Processed %d", processed)
        return True

    def _save_failure(self, item: ItemTask, error: Exception) -> None:
        self._summary.incr("failed")
        detail = "".join(traceback.format_exception(error))
        _LOG.debug("Task failed for %s: %r", item.url, error)
        try:
            self._repo.fail_item(item, detail, now_ms())
        except Exception:
            self._summary.incr("unsaved")
            _LOG.warning(
                "Could not save the following error for id=%d type=%s url=%s:\n%s",
                item.id,
                item.type,
                item.url,
                detail,
                exc_info=True,
            )
