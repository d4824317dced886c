from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional


@dataclass
class ReindexError(Exception):
    """
    Base domain error.

    The API layer and the CLI map these to responses / exit codes consistently.
    """
    message: str
    code: str = "REINDEX_ERROR"
    details: Optional[dict[str, Any]] = None

    def __str__(self) -> str:
        return self.message


@dataclass
class StoreInitError(ReindexError):
    code: str = "STORE_INIT_FAILED"


@dataclass
class StoreNotFoundError(ReindexError):
    code: str = "STORE_NOT_FOUND"


@dataclass
class NotFoundError(ReindexError):
    code: str = "NOT_FOUND"


@dataclass
class ExecutionInterrupted(ReindexError):
    code: str = "INTERRUPTED"


@dataclass
class UnrecoverableErrorsError(ReindexError):
    code: str = "UNRECOVERABLE"


@dataclass
class PluginError(ReindexError):
    code: str = "PLUGIN_ERROR"


@dataclass
class ConflictError(ReindexError):
    code: str = "CONFLICT"
