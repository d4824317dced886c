from __future__ import annotations

import threading
from dataclasses import dataclass, field


@dataclass
class PassSummary:
    """
    Counters for one listing + processing pass.

    Updated concurrently by the listing driver and pool workers through incr().
    """

    listed_types: int = 0
    failed_types: int = 0
    enqueued: int = 0
    dispatched: int = 0
    succeeded: int = 0
    failed: int = 0
    # Items whose outcome could not be persisted (left RUNNING)
    unsaved: int = 0
    # Listing + dispatch rounds run, and types/items still ENQUEUED at the end
    rounds: int = 0
    pending: int = 0

    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def incr(self, name: str, n: int = 1) -> int:
        with self._lock:
            value = getattr(self, name) + n
            setattr(self, name, value)
            return value
