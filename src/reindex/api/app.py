from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI, Request

from reindex.config import load_settings
from reindex.domain.errors import StoreNotFoundError
from reindex.logging import configure_logging, get_logger

from .routes import error_response, router

_LOG = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """
    Lifespan handler.

    The API only inspects a store; runs happen in `reindex run`. Each request
    opens its own connection, so nothing is held across requests.
    """
    settings = load_settings()
    configure_logging(settings.log_level)

    app.state.settings = settings

    if settings.db_path is None:
        _LOG.warning("REINDEX_DB_PATH is not set; store endpoints will return 503.")
    _LOG.info("Startup complete.")

    try:
        yield
    finally:
        _LOG.info("Shutdown complete.")


app = FastAPI(
    title="Reindex Coordinator",
    version="0.1.0",
    lifespan=lifespan,
)
app.include_router(router)


@app.exception_handler(StoreNotFoundError)
async def _store_not_found(request: Request, exc: StoreNotFoundError):
    return error_response(exc, 503)
