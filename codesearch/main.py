"""Main FastAPI application for ai-code-search."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncGenerator, Optional

from fastapi import FastAPI
from fastapi.responses import FileResponse, JSONResponse
from fastapi.staticfiles import StaticFiles

from codesearch import __version__
from codesearch.config import PROJECT_ROOT, Settings, load_settings
from codesearch.logging_config import setup_logging
from codesearch.routers import api_router
from codesearch.services.search import SearchService

logger = logging.getLogger(__name__)

FRONTEND_DIST = PROJECT_ROOT / "frontend" / "dist"


def _mount_frontend(app: FastAPI, dist: Path) -> None:
    index = dist / "index.html"
    assets = dist / "assets"
    if assets.is_dir():
        app.mount("/assets", StaticFiles(directory=str(assets)), name="assets")

    @app.get("/{full_path:path}", include_in_schema=False)
    async def spa_fallback(full_path: str):
        candidate = (dist / full_path).resolve()
        if full_path and candidate.is_file() and dist.resolve() in candidate.parents:
            return FileResponse(str(candidate))
        return FileResponse(str(index))


def create_app(
    settings: Optional[Settings] = None,
    service: Optional[SearchService] = None,
    frontend_dist: Optional[Path] = None,
) -> FastAPI:
    settings = settings or load_settings()
    service = service or SearchService.from_settings(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Application lifespan events."""
        logger.info("ai-code-search starting up...")
        logger.info("Server config: %s:%s", settings.server.host, settings.server.port)
        logger.info("Agent backend: %s", service.dispatcher.label)
        yield
        logger.info("ai-code-search shutting down...")

    app = FastAPI(
        title="AI Code Search",
        description="Ask questions about source-code projects and stream the answers",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.search_service = service

    @app.get("/health")
    async def health_check() -> JSONResponse:
        return JSONResponse(
            status_code=200,
            content={
                "status": "healthy",
                "service": "ai-code-search",
                "version": __version__,
                "agent": service.dispatcher.label,
            },
        )

    app.include_router(api_router, prefix="/api", tags=["search"])

    dist = frontend_dist or FRONTEND_DIST
    if (dist / "index.html").is_file():
        _mount_frontend(app, dist)
    return app


def run() -> None:
    """Console entry point: `ai-code-search`."""
    import uvicorn

    settings = load_settings()
    setup_logging(settings.logging.level, settings.logging.file)
    app = create_app(settings)
    uvicorn.run(app, host=settings.server.host, port=settings.server.port)


if __name__ == "__main__":
    run()
