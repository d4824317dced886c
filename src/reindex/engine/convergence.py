from __future__ import annotations

from dataclasses import dataclass, field

from reindex.domain.errors import UnrecoverableErrorsError
from reindex.logging import get_logger

from .listing import Lister
from .runner import Reindexer
from .summary import PassSummary
from .worker import Task

_LOG = get_logger(__name__)


@dataclass
class ConvergenceReport:
    passes: int = 0
    processed: int = 0
    error_count: int = 0
    summaries: list[PassSummary] = field(default_factory=list)


def converge(reindexer: Reindexer, lister: Lister, task: Task) -> ConvergenceReport:
    """
    Runs passes until the store has no errors and nothing left ENQUEUED.

    After the first pass, each round clears FAILED types/items and runs again.
    A round that does not strictly lower the outstanding count (errors plus
    types/items a pass could not take out of the queue) means the failures
    are not transient: UnrecoverableErrorsError is raised and the store keeps
    the failed rows for inspection.
    """
    report = ConvergenceReport()
    _record(report, reindexer.process(lister, task))
    errors = reindexer.error_count()
    outstanding = errors + reindexer.pending_count()

    while outstanding > 0:
        previous = outstanding
        _LOG.warning(
            "Pass %d left %d error(s) and %d pending; clearing and retrying.",
            report.passes,
            errors,
            outstanding - errors,
        )

        reindexer.clear_errors()
        _record(report, reindexer.process(lister, task))
        errors = reindexer.error_count()
        outstanding = errors + reindexer.pending_count()

        if outstanding >= previous:
            raise UnrecoverableErrorsError(
                f"Cannot recover from {previous} errors",
                details={
                    "errors": errors,
                    "pending": outstanding - errors,
                    "previous": previous,
                    "passes": report.passes,
                },
            )

    report.error_count = errors
    return report


def _record(report: ConvergenceReport, summary: PassSummary) -> None:
    report.passes += 1
    report.processed += summary.succeeded
    report.summaries.append(summary)
