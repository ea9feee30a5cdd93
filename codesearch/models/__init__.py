"""Models package for ai-code-search."""

from .api import LibraryInfo, ProjectsResponse, SearchRequest
from .events import AgentEvent, ErrorEvent, ResultEvent, StatusEvent

__all__ = [
    "AgentEvent",
    "ErrorEvent",
    "LibraryInfo",
    "ProjectsResponse",
    "ResultEvent",
    "SearchRequest",
    "StatusEvent",
]
