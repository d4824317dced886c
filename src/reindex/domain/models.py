from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from .states import Outcome, Progress


@dataclass(frozen=True)
class ItemTask:
    """
    One queued resource, as handed from the dispatcher to a worker.
    """
    id: int
    type: str
    url: str


class TypeTaskView(BaseModel):
    model_config = ConfigDict(extra="forbid")

    id: int
    type: str
    progress: Progress
    updated_at: Optional[int] = None


class ItemTaskView(BaseModel):
    model_config = ConfigDict(extra="forbid")

    id: int
    type: str
    url: str
    progress: Progress
    updated_at: Optional[int] = None


class ItemListResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    items: list[ItemTaskView]
    total: int


class ResultView(BaseModel):
    """
    One entry of the append-only results log.

    `result` holds the task's return value on success, or the formatted
    traceback on failure.
    """
    model_config = ConfigDict(extra="forbid")

    id: int
    type: str
    url: str
    outcome: Outcome
    result: Optional[str] = None
    created_at: int


class ResultListResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    results: list[ResultView]
    total: int


class ProgressView(BaseModel):
    """
    Snapshot of a store: row counts per progress for both queues and per
    outcome for the results log.
    """
    model_config = ConfigDict(extra="forbid")

    types: dict[Progress, int] = Field(default_factory=dict)
    items: dict[Progress, int] = Field(default_factory=dict)
    results: dict[Outcome, int] = Field(default_factory=dict)
    error_count: int
    done_queueing: bool


class ClearErrorsResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    types: int
    items: int


class ErrorResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    error: str
    code: str
    details: dict = Field(default_factory=dict)
