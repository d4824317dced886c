from __future__ import annotations

import os
import tempfile
from pathlib import Path
from typing import Callable, Iterator, Optional, TextIO

from reindex.logging import get_logger

from .listing import Lister

_LOG = get_logger(__name__)

PushLister = Callable[[str, Callable[[str], None]], None]


class ResultStager:
    """
    Buffers identifiers pushed through a callback into a temp file, one per
    line, and replays them lazily.

    Repository clients that walk a container and call back per resource
    cannot be consumed inside the enqueue transaction directly; staging turns
    them into the lazy sequence a lister must return without holding every
    identifier in memory.
    """

    def __init__(self, directory: Optional[Path] = None) -> None:
        fd, name = tempfile.mkstemp(prefix=".results", suffix=".txt", dir=directory)
        self._path = Path(name)
        self._writer = os.fdopen(fd, "w", encoding="utf-8")
        self._count = 0

    @property
    def path(self) -> Path:
        return self._path

    def __len__(self) -> int:
        return self._count

    def __call__(self, identifier: str) -> None:
        line = str(identifier)
        if "\n" in line or "\r" in line:
            raise ValueError(f"identifier must be a single line: {line!r}")
        self._writer.write(line + "\n")
        self._count += 1

    def entries(self) -> Iterator[str]:
        """
        Stops accepting identifiers and returns a single-pass iterator over
        them. The temp file is removed before this returns, whether or not
        the iterator is ever advanced; the open handle keeps it readable.
        """
        self._writer.close()
        fh = self._path.open(encoding="utf-8")
        self.discard()
        return _replay(fh)

    def discard(self) -> None:
        if not self._writer.closed:
            self._writer.close()
        try:
            self._path.unlink(missing_ok=True)
        except OSError:
            _LOG.warning("Could not delete staging file %s", self._path)


def _replay(fh: TextIO) -> Iterator[str]:
    with fh:
        for line in fh:
            yield line.rstrip("\n")


def staged_lister(push: PushLister, *, directory: Optional[Path] = None) -> Lister:
    """
    Adapts push(type, consumer) into a lister returning the staged identifiers.
    """

    def lister(type_name: str) -> Iterator[str]:
        stager = ResultStager(directory)
        try:
            push(type_name, stager)
        except Exception:
            stager.discard()
            raise
        _LOG.debug("Staged %d identifier(s) for %s", len(stager), type_name)
        return stager.entries()

    return lister
