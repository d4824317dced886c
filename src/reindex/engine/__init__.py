"""
Execution engine for the reindexer.

- executor: bounded worker pool with admission control
- listing: type queue -> item queue
- dispatcher / worker: item queue -> indexing task -> results log
- runner: one full pass over a store
- convergence: clear-and-retry loop until no errors remain
"""

from .convergence import ConvergenceReport, converge
from .executor import BoundedExecutor
from .runner import Reindexer, RunnerConfig
from .staging import ResultStager, staged_lister
from .summary import PassSummary

__all__ = [
    "BoundedExecutor",
    "ConvergenceReport",
    "PassSummary",
    "Reindexer",
    "ResultStager",
    "RunnerConfig",
    "converge",
    "staged_lister",
]
