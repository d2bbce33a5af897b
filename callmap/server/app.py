"""
FastAPI application exposing the query service.

Handlers are plain (non-async) functions: they block on the snapshot read
lock, and reload runs a full load, so they belong on the threadpool rather
than the event loop.
"""

import logging
from typing import Optional

from fastapi import FastAPI, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from callmap import __version__
from callmap.errors import QueryError, ReloadError, SnapshotNotReady
from callmap.server.queries import QueryService
from callmap.server.snapshot import SnapshotCache

logger = logging.getLogger(__name__)


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"status": "error", "message": message})


def create_app(cache: SnapshotCache) -> FastAPI:
    """Create the FastAPI application for a snapshot cache."""
    service = QueryService(cache)

    app = FastAPI(
        title="callmap",
        description="Call graph queries for a Go source tree",
        version=__version__,
    )
    app.state.service = service

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type"],
    )

    @app.exception_handler(QueryError)
    async def query_error(request: Request, exc: QueryError):
        return _error(400, str(exc))

    @app.exception_handler(SnapshotNotReady)
    async def not_ready(request: Request, exc: SnapshotNotReady):
        return _error(503, str(exc))

    @app.exception_handler(ReloadError)
    async def reload_failed(request: Request, exc: ReloadError):
        return _error(500, f"Reload failed: {exc}")

    @app.get("/api/relations")
    def relations(
        page: Optional[str] = None,
        page_size: Optional[str] = Query(None, alias="pageSize"),
        include_internals: Optional[str] = Query(None, alias="includeInternals"),
    ):
        """Paginated root symbols with their transitive closure."""
        return service.relations(page, page_size, include_internals)

    @app.get("/api/search")
    def search(
        q: Optional[str] = None,
        page: Optional[str] = None,
        page_size: Optional[str] = Query(None, alias="pageSize"),
    ):
        """Symbols whose name (or, failing that, file) contains q."""
        return service.search(q, page, page_size)

    @app.post("/api/reload")
    def reload():
        """Rebuild the snapshot from the source tree."""
        logger.info("Reload requested")
        return service.reload()

    @app.get("/api/status")
    def status():
        return service.status()

    @app.get("/health")
    def health():
        return {"status": "healthy", "state": cache.state.value}

    return app
