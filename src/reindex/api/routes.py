from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse

from reindex.domain.errors import NotFoundError, ReindexError
from reindex.domain.models import (
    ClearErrorsResponse,
    ErrorResponse,
    ItemListResponse,
    ItemTaskView,
    ProgressView,
    ResultListResponse,
    TypeTaskView,
)
from reindex.domain.states import Outcome, Progress
from reindex.logging import get_logger
from reindex.storage import QueueRepo
from reindex.storage.db import now_ms

from .deps import get_repo

_LOG = get_logger(__name__)
router = APIRouter()


def error_response(err: ReindexError, http_status: int) -> JSONResponse:
    payload = ErrorResponse(
        error=err.message,
        code=err.code,
        details=err.details or {},
    ).model_dump()
    return JSONResponse(status_code=http_status, content=payload)


@router.get("/healthz")
def healthz() -> dict:
    return {"ok": True}


@router.get("/progress", response_model=ProgressView)
def get_progress(repo: QueueRepo = Depends(get_repo)):
    return repo.progress_summary()


@router.get("/types", response_model=list[TypeTaskView])
def list_types(repo: QueueRepo = Depends(get_repo)):
    return repo.list_types()


@router.get("/items", response_model=ItemListResponse)
def list_items(
    progress: Optional[Progress] = Query(default=None),
    limit: int = Query(default=200, ge=1, le=1000),
    offset: int = Query(default=0, ge=0),
    repo: QueueRepo = Depends(get_repo),
):
    items, total = repo.list_items(progress=progress, limit=limit, offset=offset)
    return ItemListResponse(items=items, total=total)


@router.get("/items/{item_id}", response_model=ItemTaskView)
def get_item(
    item_id: int,
    repo: QueueRepo = Depends(get_repo),
):
    try:
        return repo.get_item(item_id)
    except NotFoundError as e:
        return error_response(e, 404)


@router.get("/results", response_model=ResultListResponse)
def list_results(
    outcome: Optional[Outcome] = Query(default=None),
    type: Optional[str] = Query(default=None),
    limit: int = Query(default=200, ge=1, le=1000),
    offset: int = Query(default=0, ge=0),
    repo: QueueRepo = Depends(get_repo),
):
    results, total = repo.list_results(outcome=outcome, type_name=type, limit=limit, offset=offset)
    return ResultListResponse(results=results, total=total)


@router.post("/errors/clear", response_model=ClearErrorsResponse)
def clear_errors(repo: QueueRepo = Depends(get_repo)):
    """
    Resets FAILED types and items to ENQUEUED so the next run retries them.
    """
    types, items = repo.clear_errors(now_ms())
    _LOG.info("Cleared errors via API: types=%d items=%d", types, items)
    return ClearErrorsResponse(types=types, items=items)
