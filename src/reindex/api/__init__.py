"""
Inspection API for reindex stores (FastAPI).

- app: FastAPI instance + lifecycle hooks
- routes: REST endpoints
- deps: dependency injection helpers
"""

from .app import app

__all__ = ["app"]
