import sqlite3
import threading
import time
from pathlib import Path
from typing import Optional

import pytest

from conftest import ALL_URIS, FAST_CFG, LISTING, TYPES, run_pass
from reindex.domain.errors import ExecutionInterrupted
from reindex.domain.states import Outcome, Progress
from reindex.engine import Reindexer, RunnerConfig


def test_basic_pass_processes_everything(reindexer: Reindexer):
    processed = run_pass(reindexer)

    assert len(processed) == 4
    assert set(processed) == ALL_URIS
    assert reindexer.error_count() == 0

    repo = reindexer.store.repo
    assert repo.count_items() == 0
    assert repo.list_results(outcome=Outcome.SUCCESS)[1] == 4


def test_basic_resumption(store_path: Path):
    Reindexer.create(TYPES, store_path, FAST_CFG).close()

    with Reindexer.resume(store_path, FAST_CFG) as reopened:
        processed = run_pass(reopened)
        assert set(processed) == ALL_URIS
        assert reopened.error_count() == 0


def test_listing_error(reindexer: Reindexer):
    processed = run_pass(reindexer, listing_failures=1)

    assert len(processed) == 2
    assert reindexer.error_count() == 1
    types = {t.type: t.progress for t in reindexer.store.repo.list_types()}
    assert sorted(types.values()) == [Progress.DONE, Progress.FAILED]


def test_item_errors(reindexer: Reindexer):
    processed = run_pass(reindexer, item_failures=3)

    assert len(processed) == 1
    assert reindexer.error_count() == 3
    assert reindexer.store.repo.list_results(outcome=Outcome.FAILURE)[1] == 3


def test_resume_after_errors(store_path: Path):
    total = 0

    # One listing failure and one item failure: one item processed, two errors
    with Reindexer.create(TYPES, store_path, FAST_CFG) as runner:
        processed = run_pass(runner, listing_failures=1, item_failures=1)
        assert len(processed) == 1
        assert runner.error_count() == 2
        total += len(processed)

    with Reindexer.resume(store_path, FAST_CFG) as reopen:
        # Reopening keeps the errors, and failed rows are not retried
        assert reopen.error_count() == 2
        assert run_pass(reopen) == []
        assert reopen.error_count() == 2

        reopen.clear_errors()
        assert reopen.error_count() == 0

        # The relisted type brings two items back plus the retried one; one fails
        processed = run_pass(reopen, item_failures=1)
        assert len(processed) == 2
        assert reopen.error_count() == 1
        total += len(processed)

        reopen.clear_errors()
        assert reopen.error_count() == 0
        processed = run_pass(reopen)
        assert len(processed) == 1
        assert reopen.error_count() == 0
        total += len(processed)

    assert total == 4


def test_second_pass_does_not_duplicate(reindexer: Reindexer):
    run_pass(reindexer)
    errors = reindexer.error_count()
    results = reindexer.store.repo.list_results()[1]

    assert run_pass(reindexer) == []
    assert reindexer.store.repo.count_items() == 0
    assert reindexer.store.repo.list_results()[1] == results
    assert reindexer.error_count() == errors


def test_pool_of_one_still_completes(store_path: Path):
    cfg = RunnerConfig(pool_size=1, poll_batch_size=1, poll_interval_ms=10, drain_interval_ms=10)
    with Reindexer.create(TYPES, store_path, cfg) as runner:
        processed = run_pass(runner)
        assert set(processed) == ALL_URIS
        assert runner.error_count() == 0


def test_unsaved_success_leaves_item_running(reindexer: Reindexer, monkeypatch: pytest.MonkeyPatch):
    repo = reindexer.store.repo

    def fail_commit(item, payload, now_ms):
        raise RuntimeError("disk full")

    monkeypatch.setattr(repo, "complete_item", fail_commit)
    processed = run_pass(reindexer)

    # The task ran, but nothing was recorded: the items are stuck RUNNING,
    # not FAILED, so they are neither counted as errors nor polled again.
    assert set(processed) == ALL_URIS
    assert repo.count_items(Progress.RUNNING) == 4
    assert reindexer.error_count() == 0

    monkeypatch.undo()
    assert run_pass(reindexer) == []

    # Only an explicit recovery puts them back in the queue
    assert reindexer.recover_stale() == (0, 4)
    assert set(run_pass(reindexer)) == ALL_URIS
    assert repo.count_items() == 0


def test_lister_for_unknown_type_enqueues_nothing(store_path: Path):
    with Reindexer.create(["Submission", "Empty"], store_path, FAST_CFG) as runner:
        processed = run_pass(runner)
        assert sorted(processed) == ["test:/1", "test:/2"]
        types = {t.type: t.progress for t in runner.store.repo.list_types()}
        assert types == {"Submission": Progress.DONE, "Empty": Progress.DONE}


def test_pass_summary_counts(reindexer: Reindexer):
    def lister(type_name):
        return iter(["x:/1", "x:/2"]) if type_name == "Submission" else iter(["y:/1"])

    def task(uri):
        if uri == "y:/1":
            raise ValueError("bad document")
        return "ok"

    summary = reindexer.process(lister, task)
    assert summary.listed_types == 2
    assert summary.enqueued == 3
    assert summary.dispatched == 3
    assert summary.succeeded == 2
    assert summary.failed == 1
    assert summary.unsaved == 0

    failure = reindexer.store.repo.list_results(outcome=Outcome.FAILURE)[0][0]
    assert failure.url == "y:/1"
    assert "bad document" in failure.result


def _fail_claim_from(repo, first: int, last: Optional[int] = None):
    """Replaces claim_next_type with one failing on calls first..last (1-based)."""
    claim = repo.claim_next_type
    calls = 0

    def flaky_claim(now_ms):
        nonlocal calls
        calls += 1
        if calls >= first and (last is None or calls <= last):
            raise sqlite3.OperationalError("database is locked")
        return claim(now_ms)

    return flaky_claim


def test_claim_fault_is_retried_within_the_pass(reindexer: Reindexer, monkeypatch: pytest.MonkeyPatch):
    repo = reindexer.store.repo
    monkeypatch.setattr(repo, "claim_next_type", _fail_claim_from(repo, 2, 2))

    summary = reindexer.process(lambda t: iter(LISTING[t]), lambda uri: uri)

    assert summary.rounds == 2
    assert summary.pending == 0
    assert summary.succeeded == 4
    types = {t.type: t.progress for t in repo.list_types()}
    assert types == {"Submission": Progress.DONE, "SubmissionEvent": Progress.DONE}
    assert repo.count_items() == 0


def test_persistent_claim_fault_is_reported_as_pending(reindexer: Reindexer, monkeypatch: pytest.MonkeyPatch):
    repo = reindexer.store.repo
    monkeypatch.setattr(repo, "claim_next_type", _fail_claim_from(repo, 2))

    summary = reindexer.process(lambda t: iter(LISTING[t]), lambda uri: uri)

    assert summary.succeeded == 2
    assert summary.pending == 1
    assert reindexer.pending_count() == 1
    assert reindexer.error_count() == 0
    types = {t.type: t.progress for t in repo.list_types()}
    assert types == {"Submission": Progress.DONE, "SubmissionEvent": Progress.ENQUEUED}


def test_items_that_cannot_start_are_reported_as_pending(reindexer: Reindexer, monkeypatch: pytest.MonkeyPatch):
    repo = reindexer.store.repo
    # Every start transaction fails: polls come back empty and items stay ENQUEUED
    monkeypatch.setattr(repo, "poll_items", lambda limit, now_ms: [])

    summary = reindexer.process(lambda t: iter(LISTING[t]), lambda uri: uri)
    assert summary.dispatched == 0
    assert summary.pending == 4
    assert repo.count_items(Progress.ENQUEUED) == 4

    monkeypatch.undo()
    assert set(run_pass(reindexer)) == ALL_URIS
    assert reindexer.pending_count() == 0


def test_listing_and_items_share_the_pool_bound(store_path: Path):
    cfg = RunnerConfig(pool_size=2, poll_batch_size=2, poll_interval_ms=10, drain_interval_ms=10)
    lock = threading.Lock()
    active = 0
    peak = 0

    def enter():
        nonlocal active, peak
        with lock:
            active += 1
            peak = max(peak, active)

    def leave():
        nonlocal active
        with lock:
            active -= 1

    def lister(type_name):
        enter()
        try:
            time.sleep(0.05)
            return iter([f"{type_name}:/{i}" for i in range(6)])
        finally:
            leave()

    def task(uri):
        enter()
        try:
            time.sleep(0.02)
            return uri
        finally:
            leave()

    with Reindexer.create(TYPES, store_path, cfg) as runner:
        summary = runner.process(lister, task)
        assert summary.succeeded == 12
        assert runner.executor.in_flight == 0

    assert 1 <= peak <= 2


def test_interrupted_pass_leaves_consistent_store(store_path: Path):
    started = threading.Event()
    gate = threading.Event()
    outcome: list[BaseException] = []

    def task(uri):
        started.set()
        gate.wait(5.0)
        return uri

    runner = Reindexer.create(TYPES, store_path, FAST_CFG)

    def run():
        try:
            runner.process(lambda t: iter(LISTING[t]), task)
        except ExecutionInterrupted as e:
            outcome.append(e)

    t = threading.Thread(target=run)
    t.start()
    try:
        assert started.wait(5.0)
        runner.executor.interrupt()
        t.join(5.0)
        assert not t.is_alive()
        assert len(outcome) == 1
        assert outcome[0].code == "INTERRUPTED"
    finally:
        gate.set()
        runner.close()

    with Reindexer.resume(store_path, FAST_CFG) as reopened:
        repo = reopened.store.repo
        done = [r.url for r in repo.list_results(outcome=Outcome.SUCCESS)[0]]
        queued = [i.url for i in repo.list_items(limit=100)[0]]

        # Every resource is either recorded or still queued, never both
        assert reopened.error_count() == 0
        assert len(done) == len(set(done))
        assert set(done).isdisjoint(queued)
        assert set(done) | set(queued) == ALL_URIS

        reopened.recover_stale()
        run_pass(reopened)
        urls = sorted(r.url for r in repo.list_results(outcome=Outcome.SUCCESS)[0])
        assert urls == sorted(ALL_URIS)
        assert repo.count_items() == 0
