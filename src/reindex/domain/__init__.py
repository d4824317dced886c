"""
Domain layer for the reindexer.

- states: Progress / Outcome enums
- models: queue records and Pydantic views for the inspection API
- errors: domain-level exceptions
"""

from .states import Outcome, Progress
from .models import (
    ClearErrorsResponse,
    ErrorResponse,
    ItemListResponse,
    ItemTask,
    ItemTaskView,
    ProgressView,
    ResultListResponse,
    ResultView,
    TypeTaskView,
)
from .errors import (
    ConflictError,
    ExecutionInterrupted,
    NotFoundError,
    PluginError,
    ReindexError,
    StoreInitError,
    StoreNotFoundError,
    UnrecoverableErrorsError,
)

__all__ = [
    "Progress",
    "Outcome",
    "ItemTask",
    "TypeTaskView",
    "ItemTaskView",
    "ItemListResponse",
    "ResultView",
    "ResultListResponse",
    "ProgressView",
    "ClearErrorsResponse",
    "ErrorResponse",
    "ReindexError",
    "ConflictError",
    "StoreInitError",
    "StoreNotFoundError",
    "NotFoundError",
    "ExecutionInterrupted",
    "UnrecoverableErrorsError",
    "PluginError",
]
