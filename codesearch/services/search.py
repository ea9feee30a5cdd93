"""Search workflow shared by the HTTP and MCP surfaces.

1. resolve the project (local checkout, or clonable from the catalog);
2. clone it if needed and pull it at most once per day;
3. start the configured agent and relay its events.
"""

from __future__ import annotations

import logging
import time
from contextlib import aclosing
from dataclasses import dataclass
from typing import AsyncIterator, List, Optional, Tuple

from codesearch.config import Settings
from codesearch.models import events
from codesearch.models.api import LibraryInfo
from codesearch.models.events import AgentEvent
from codesearch.services.agents import AgentDispatcher, AgentLaunchError
from codesearch.services.codebase_list import CodebaseCatalog
from codesearch.services.metadata import PullMetadata
from codesearch.services.projects import GitError, ProjectStore

logger = logging.getLogger(__name__)


class ProjectNotFoundError(LookupError):
    pass


@dataclass
class PrepareStep:
    kind: str  # 'clone' | 'cloned' | 'pull' | 'pulled'
    message: str


class SearchService:
    def __init__(
        self,
        store: ProjectStore,
        metadata: PullMetadata,
        catalog: CodebaseCatalog,
        dispatcher: AgentDispatcher,
    ) -> None:
        self.store = store
        self.metadata = metadata
        self.catalog = catalog
        self.dispatcher = dispatcher

    @classmethod
    def from_settings(cls, settings: Settings) -> "SearchService":
        """Wire the workflow from settings. Raises ConfigurationError."""
        sources_dir = settings.sources.require_dir()
        return cls(
            store=ProjectStore(sources_dir),
            metadata=PullMetadata(sources_dir),
            catalog=CodebaseCatalog.load(settings.sources.codebase_list_path),
            dispatcher=AgentDispatcher(settings.agent),
        )

    def project_lists(self) -> Tuple[List[str], List[str]]:
        """(all projects: local then remote-only, local projects)."""
        local = self.store.list_projects()
        remote_only = [n for n in self.catalog.names() if n not in local]
        return local + remote_only, local

    def libraries(self) -> List[LibraryInfo]:
        _, local = self.project_lists()
        names = set(local) | set(self.catalog.names())
        out = []
        for name in names:
            entry = self.catalog.get(name)
            out.append(
                LibraryInfo(
                    name=name,
                    downloaded=name in local,
                    url=entry.url if entry else None,
                    description=entry.description if entry else None,
                )
            )
        return sorted(out, key=lambda lib: lib.name)

    def resolve(self, project: str) -> Optional[str]:
        """Validate `project`; return its clone URL when it is not checked out yet."""
        self.store.project_path(project)
        if self.store.has_project(project):
            return None
        entry = self.catalog.get(project)
        if entry is None:
            raise ProjectNotFoundError(project)
        return entry.url

    async def prepare(self, project: str, clone_url: Optional[str]) -> AsyncIterator[PrepareStep]:
        """Clone and/or pull, reporting each step. Raises GitError on failure."""
        if clone_url:
            yield PrepareStep("clone", "Cloning repository…")
            logger.info("[search] cloning %s from %s", project, clone_url)
            await self.store.clone(clone_url)
            if not self.store.has_project(project):
                raise GitError("Clone completed but project folder not found.")
            yield PrepareStep("cloned", "Repository cloned successfully")
        if self.metadata.needs_pull(project):
            yield PrepareStep("pull", "Updating repository…")
            logger.info("[search] pulling %s", project)
            await self.store.pull(project)
            self.metadata.mark_pulled(project)
            yield PrepareStep("pulled", "Repository updated successfully")

    async def stream(self, project: str, prompt: str, clone_url: Optional[str] = None) -> AsyncIterator[AgentEvent]:
        """Full workflow as one event stream that always ends with a terminal event."""
        try:
            async for step in self.prepare(project, clone_url):
                if step.kind in ("clone", "pull"):
                    yield events.status(step.message)
        except GitError as e:
            logger.error("[search] %s: %s", project, e)
            yield events.error(str(e))
            return

        async with aclosing(self.run(project, prompt)) as run_events:
            async for ev in run_events:
                yield ev

    async def run(self, project: str, prompt: str) -> AsyncIterator[AgentEvent]:
        """Start the agent in the project checkout and relay its events."""
        cwd = self.store.project_path(project)
        logger.info("[search] project=%s dir=%s backend=%s", project, cwd, self.dispatcher.label)
        logger.info("[search] prompt=%s (streaming)", prompt)
        started = time.monotonic()
        try:
            handle = await self.dispatcher.start(cwd, prompt)
        except AgentLaunchError as e:
            logger.error("[search] %s (%s)", e, e.detail)
            yield events.error(str(e))
            return

        async with handle, aclosing(handle.events()) as run_events:
            async for ev in run_events:
                yield ev
        logger.info(
            "[search] done in %.2fs (exit code: %s)",
            time.monotonic() - started,
            handle.returncode if handle.returncode is not None else "unknown",
        )
