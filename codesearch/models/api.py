"""Request/response schemas for the HTTP and MCP surfaces."""

from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class SearchRequest(BaseModel):
    """Body of POST /api/search. Fields are validated by the route so that
    empty values produce the documented 400 messages."""

    model_config = ConfigDict(extra="ignore")

    project: Optional[str] = None
    prompt: Optional[str] = None


class ProjectsResponse(BaseModel):
    projects: List[str] = Field(description="Local projects first, then clonable ones")
    localProjects: List[str] = Field(description="Projects already checked out in the sources dir")


class LibraryInfo(BaseModel):
    name: str
    downloaded: bool
    url: Optional[str] = None
    description: Optional[str] = None
