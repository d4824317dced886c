from __future__ import annotations

from enum import StrEnum


class Progress(StrEnum):
    """
    Progress of a queued type or item, as stored in the DB.

    Semantics:
      - ENQUEUED: waiting to be listed (types) or processed (items)
      - RUNNING: picked up by the listing driver or the dispatcher
      - FAILED: listing or processing raised; kept until errors are cleared
      - DONE: types only; every listed item is durably enqueued

    Items never reach DONE: a successfully processed item row is deleted and
    only its result record remains.
    """

    ENQUEUED = "ENQUEUED"
    RUNNING = "RUNNING"
    FAILED = "FAILED"
    DONE = "DONE"


class Outcome(StrEnum):
    """Outcome of one item attempt, as recorded in the results log."""

    SUCCESS = "SUCCESS"
    FAILURE = "FAILURE"
