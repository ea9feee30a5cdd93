"""Search API endpoints.

Endpoints:
- GET  /api/projects
- POST /api/search   (application/x-ndjson stream of events)
"""

from __future__ import annotations

import logging
from typing import AsyncIterator

from fastapi import APIRouter, Request, status
from fastapi.responses import JSONResponse, StreamingResponse

from codesearch.models import events
from codesearch.models.api import ProjectsResponse, SearchRequest
from codesearch.services.projects import InvalidProjectName
from codesearch.services.search import ProjectNotFoundError, SearchService

router = APIRouter()
logger = logging.getLogger(__name__)

NDJSON = "application/x-ndjson; charset=utf-8"


def get_search_service(request: Request) -> SearchService:
    return request.app.state.search_service


def _bad_request(message: str) -> JSONResponse:
    return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"error": message})


@router.get("/projects")
async def list_projects(request: Request) -> JSONResponse:
    service = get_search_service(request)
    try:
        projects, local = service.project_lists()
    except OSError as e:
        logger.error("[/projects] Failed: %s", e)
        return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content={"error": str(e)})
    return JSONResponse(
        status_code=status.HTTP_200_OK,
        content=ProjectsResponse(projects=projects, localProjects=local).model_dump(),
    )


@router.post("/search")
async def search(body: SearchRequest, request: Request):
    project = (body.project or "").strip()
    prompt = (body.prompt or "").strip()
    if not project:
        return _bad_request("Missing or empty project")
    if not prompt:
        return _bad_request("Missing or empty prompt")

    service = get_search_service(request)
    try:
        clone_url = service.resolve(project)
    except (ProjectNotFoundError, InvalidProjectName):
        return _bad_request(
            "Project not found. Select a project from the list or ensure it exists in the sources directory."
        )
    except OSError as e:
        logger.error("[/search] Failed to list projects: %s", e)
        return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content={"error": str(e)})

    async def body_lines() -> AsyncIterator[str]:
        async for ev in service.stream(project, prompt, clone_url):
            yield events.to_line(ev)

    return StreamingResponse(
        body_lines(),
        media_type=NDJSON,
        headers={
            "X-Response-Mode": "stream",
            "Cache-Control": "no-cache",
        },
    )
