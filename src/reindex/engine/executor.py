from __future__ import annotations

import queue
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, Optional

from reindex.domain.errors import ExecutionInterrupted
from reindex.logging import get_logger

_LOG = get_logger(__name__)

# Granularity of blocking waits, so interrupt() is noticed promptly.
_WAIT_SLICE_S = 0.05


class BoundedExecutor:
    """
    Fixed-size worker pool with admission control.

    Every submitted unit occupies one slot of a bounded channel
    (queue.Queue(maxsize=capacity)) from submission until it finishes, so at
    most `capacity` units are in flight and submit() blocks the caller while
    the pool is full.

    Failure semantics:
    - Exceptions raised by a unit are logged and counted, never re-raised to
      the submitter; the slot is released either way.
    - Nothing is cancelled once submitted. interrupt() (or KeyboardInterrupt
      on a thread waiting in submit/await_drained/pause) shuts the pool down
      to new work and raises ExecutionInterrupted in that waiting thread;
      units already queued still run and release their slots.
    """

    def __init__(
        self,
        capacity: int,
        *,
        drain_interval_s: float = 1.0,
        thread_name_prefix: str = "reindex-worker",
    ) -> None:
        if capacity <= 0:
            raise ValueError("capacity must be > 0")
        if drain_interval_s <= 0:
            raise ValueError("drain_interval_s must be > 0")

        self._capacity = capacity
        self._drain_interval_s = drain_interval_s

        self._slots: queue.Queue[None] = queue.Queue(maxsize=capacity)
        self._pool = ThreadPoolExecutor(max_workers=capacity, thread_name_prefix=thread_name_prefix)

        self._interrupted = threading.Event()
        self._failures = 0
        self._failures_lock = threading.Lock()

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def in_flight(self) -> int:
        return self._slots.qsize()

    @property
    def failures(self) -> int:
        """Units that terminated with an exception since construction."""
        with self._failures_lock:
            return self._failures

    def submit(self, fn: Callable[..., Any], *args: Any) -> None:
        """
        Blocks until a slot is free, then runs fn(*args) on a pool thread.
        """
        self._acquire_slot()
        try:
            self._pool.submit(self._run, fn, args)
        except Exception:
            self._release_slot()
            raise

    def await_drained(self) -> None:
        """
        Blocks until no unit is in flight, checking every drain interval.

        Best effort: callers must stop submitting before relying on it.
        """
        try:
            while True:
                self._check_interrupted("await_drained")
                if self._slots.qsize() == 0:
                    return
                self._interrupted.wait(self._drain_interval_s)
        except KeyboardInterrupt as e:
            raise self._abort("await_drained") from e

    def pause(self, seconds: float, *, wake: Optional[threading.Event] = None) -> None:
        """
        Sleeps up to `seconds`, returning early once `wake` is set.
        """
        deadline = time.monotonic() + seconds
        try:
            while True:
                self._check_interrupted("pause")
                if wake is not None and wake.is_set():
                    return
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    return
                self._interrupted.wait(min(remaining, _WAIT_SLICE_S))
        except KeyboardInterrupt as e:
            raise self._abort("pause") from e

    def interrupt(self) -> None:
        """Wakes any thread blocked on this executor with ExecutionInterrupted."""
        self._interrupted.set()

    def shutdown(self, wait: bool = True) -> None:
        self._pool.shutdown(wait=wait)

    def __enter__(self) -> "BoundedExecutor":
        return self

    def __exit__(self, *exc) -> None:
        self.shutdown(wait=True)

    # -------------------------
    # Internals
    # -------------------------

    def _run(self, fn: Callable[..., Any], args: tuple) -> None:
        try:
            fn(*args)
        except Exception:
            with self._failures_lock:
                self._failures += 1
            _LOG.warning("Work unit terminated with error", exc_info=True)
        finally:
            self._release_slot()

    def _acquire_slot(self) -> None:
        try:
            while True:
                self._check_interrupted("submit")
                try:
                    self._slots.put(None, timeout=_WAIT_SLICE_S)
                    return
                except queue.Full:
                    continue
        except KeyboardInterrupt as e:
            raise self._abort("submit") from e

    def _release_slot(self) -> None:
        try:
            self._slots.get_nowait()
        except queue.Empty:
            _LOG.error("Slot released twice; admission accounting is off.")

    def _check_interrupted(self, stage: str) -> None:
        if self._interrupted.is_set():
            raise self._abort(stage)

    def _abort(self, stage: str) -> ExecutionInterrupted:
        self._interrupted.set()
        self._pool.shutdown(wait=False)
        _LOG.warning("Execution interrupted in %s; pool shut down.", stage)
        return ExecutionInterrupted(
            f"Execution interrupted while waiting in {stage}",
            details={"stage": stage, "in_flight": self._slots.qsize()},
        )
