"""
Repository timeline edge service: FastAPI HTTP surface.

Exposes:
  GET /health                                  - token pool size
  GET /api/repo/{owner}/{repo}                 - change records (X-Cache HIT/MISS)
  GET /api/repo/{owner}/{repo}/metadata        - change count and time range
  GET /api/repo/{owner}/{repo}/cache           - what the edge store holds
  GET /api/repo/{owner}/{repo}/fetch-more      - one more sync cycle
  GET /api/repo/{owner}/{repo}/summary         - coarse upstream size estimate

Errors are JSON {"error": message, "kind": kind}.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from loguru import logger

from .config import Config
from .models import ChangeKind
from .service import EdgeCacheService
from .utils import (
    InvalidRequest,
    MalformedResponse,
    NotFoundOrPrivate,
    RateLimited,
    StorageUnavailable,
    TimelineError,
    UpstreamError,
    setup_logging,
)


STATUS_BY_ERROR = {
    InvalidRequest: 400,
    NotFoundOrPrivate: 404,
    RateLimited: 429,
    UpstreamError: 502,
    MalformedResponse: 502,
    StorageUnavailable: 503,
}


def error_response(exc: TimelineError) -> JSONResponse:
    """Translate a timeline error into its HTTP response."""
    status = next(
        (code for cls, code in STATUS_BY_ERROR.items() if isinstance(exc, cls)), 500
    )
    body = {"error": str(exc) or "Internal server error", "kind": exc.kind}
    if isinstance(exc, RateLimited):
        body.update({"remaining": exc.remaining, "limit": exc.limit, "reset": exc.reset})
    if isinstance(exc, UpstreamError) and exc.status_code is not None:
        body["upstreamStatus"] = exc.status_code
    return JSONResponse(status_code=status, content=body)


def create_app(
    service: Optional[EdgeCacheService] = None,
    config: Optional[Config] = None,
) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        service: Pre-built service (tests inject one). Built from config if None.
        config: Configuration, loaded from the default locations if None.
    """
    if service is None:
        config = config or Config.load()
        service = EdgeCacheService.from_config(config)
    config = service.config

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        service.start()
        logger.info("Timeline service ready")
        yield
        service.stop()

    app = FastAPI(
        title="Repository Timeline Service",
        description="Cached GitHub change history for timeline visualization",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.service = service

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.server.cors_origins,
        allow_methods=["GET", "OPTIONS"],
        allow_headers=["Content-Type"],
        expose_headers=["X-Cache", "X-Cache-Age", "X-Total-Count", "X-Has-More", "X-Offset", "X-Limit"],
    )

    @app.exception_handler(TimelineError)
    async def timeline_error_handler(request: Request, exc: TimelineError):
        logger.warning(f"{request.url.path} failed: {exc.kind}: {exc}")
        return error_response(exc)

    @app.exception_handler(ValueError)
    async def value_error_handler(request: Request, exc: ValueError):
        return JSONResponse(status_code=400, content={"error": str(exc), "kind": InvalidRequest.kind})

    @app.get("/health")
    def health():
        return service.health()

    @app.get("/api/repo/{owner}/{repo}")
    def get_repo(
        owner: str,
        repo: str,
        offset: int = Query(0, ge=0),
        limit: Optional[int] = Query(None, ge=1, le=1000),
        refresh: bool = False,
        mode: Optional[ChangeKind] = None,
    ):
        paginated = limit is not None or offset > 0
        if paginated and limit is None:
            limit = config.server.default_page_size

        lookup = service.handle(
            owner, repo, force_refresh=refresh, offset=offset, limit=limit, mode=mode
        )

        headers = {"X-Cache": "HIT" if lookup.hit else "MISS"}
        if lookup.hit and lookup.age_seconds is not None:
            headers["X-Cache-Age"] = str(round(lookup.age_seconds))
        if paginated:
            headers.update({
                "X-Total-Count": str(lookup.total),
                "X-Has-More": "true" if offset + len(lookup.records) < lookup.total else "false",
                "X-Offset": str(offset),
                "X-Limit": str(limit),
            })

        return JSONResponse(
            content=[record.to_dict() for record in lookup.records],
            headers=headers,
        )

    @app.get("/api/repo/{owner}/{repo}/metadata")
    def get_metadata(owner: str, repo: str):
        return service.metadata(owner, repo)

    @app.get("/api/repo/{owner}/{repo}/cache")
    def get_cache_status(owner: str, repo: str):
        return service.cache_status(owner, repo)

    @app.get("/api/repo/{owner}/{repo}/fetch-more")
    def get_fetch_more(owner: str, repo: str):
        return service.fetch_more(owner, repo)

    @app.get("/api/repo/{owner}/{repo}/summary")
    def get_summary(owner: str, repo: str):
        return service.summary(owner, repo)

    return app


def main(config_path: Optional[str] = None) -> None:
    config = Config.load(config_path)
    setup_logging(
        level=config.logging.level,
        log_file=config.logging.file,
        max_size_mb=config.logging.max_size_mb,
        backup_count=config.logging.backup_count,
    )
    uvicorn.run(
        create_app(config=config),
        host=config.server.host,
        port=config.server.port,
        log_level=config.logging.level.lower(),
    )


if __name__ == "__main__":
    main()
