from pathlib import Path

import pytest

from reindex.engine import ResultStager, staged_lister


def test_stager_replays_pushed_identifiers(tmp_path: Path):
    stager = ResultStager(tmp_path)
    for i in range(3):
        stager(f"test:/{i}")

    assert len(stager) == 3
    assert stager.path.exists()

    assert list(stager.entries()) == ["test:/0", "test:/1", "test:/2"]
    assert not stager.path.exists()


def test_entries_removes_file_even_if_never_iterated(tmp_path: Path):
    stager = ResultStager(tmp_path)
    stager("test:/1")
    stager("test:/2")

    entries = stager.entries()
    assert not stager.path.exists()
    assert list(tmp_path.iterdir()) == []

    # Still readable through the handle opened by entries()
    assert list(entries) == ["test:/1", "test:/2"]


def test_staged_listing_dropped_before_enqueue_leaves_no_file(tmp_path: Path):
    def push(type_name, consumer):
        consumer(f"{type_name}:/1")

    lister = staged_lister(push, directory=tmp_path)
    entries = lister("Grant")
    # The enqueue transaction never started, so the listing is dropped unread
    del entries
    assert list(tmp_path.iterdir()) == []


def test_stager_rejects_multiline_identifier(tmp_path: Path):
    stager = ResultStager(tmp_path)
    with pytest.raises(ValueError):
        stager("test:/1\ntest:/2")
    stager.discard()
    assert not stager.path.exists()


def test_staged_lister_adapts_push_style(tmp_path: Path):
    def push(type_name, consumer):
        for i in range(2):
            consumer(f"{type_name}:/{i}")

    lister = staged_lister(push, directory=tmp_path)
    assert list(lister("Grant")) == ["Grant:/0", "Grant:/1"]
    assert list(tmp_path.iterdir()) == []


def test_staged_lister_cleans_up_on_push_failure(tmp_path: Path):
    def push(type_name, consumer):
        consumer("x:/1")
        raise ConnectionError("repository went away")

    lister = staged_lister(push, directory=tmp_path)
    with pytest.raises(ConnectionError):
        lister("Grant")
    assert list(tmp_path.iterdir()) == []
