# mcp_server.py
"""MCP server `ai-code-search` over stdio.

Tools:
- question(library, prompt): answer a question about a library's source code
- list_libraries(): local and clonable libraries as JSON

Logging always goes to stderr; stdout belongs to the MCP protocol.
"""

import json
import logging
import sys
from contextlib import aclosing
from typing import Awaitable, Callable, List, Optional

from mcp.server.fastmcp import Context, FastMCP
from mcp.server.fastmcp.exceptions import ToolError

from codesearch.config import ConfigurationError, load_settings
from codesearch.logging_config import setup_logging
from codesearch.services.projects import GitError, InvalidProjectName
from codesearch.services.search import ProjectNotFoundError, SearchService

log = logging.getLogger(__name__)

SERVER_NAME = "ai-code-search"
PROGRESS_CAP = 90

ProgressSink = Callable[[float, Optional[float], Optional[str]], Awaitable[None]]


class ProgressTracker:
    """Monotonic 0..100 progress; each agent status adds 5, capped at 90."""

    def __init__(self, sink: ProgressSink) -> None:
        self._sink = sink
        self.value = 0
        self.statuses: List[str] = []

    async def set(self, value: int, message: str) -> None:
        self.value = max(self.value, value)
        await self._send(message)

    async def status(self, message: str) -> None:
        self.statuses.append(message)
        self.value = max(self.value, min(self.value + 5, PROGRESS_CAP))
        await self._send(message)

    async def _send(self, message: str) -> None:
        try:
            await self._sink(self.value, 100, message)
        except Exception as e:  # progress is best effort
            log.warning("[mcp] Failed to send progress: %s", e)

    def status_log(self) -> str:
        if not self.statuses:
            return ""
        return f"\n\n_Status updates: {', '.join(self.statuses)}_\n\n"


async def answer_question(service: SearchService, library: str, prompt: str, progress: ProgressTracker) -> str:
    """Prepare `library`, run the agent and return the final markdown text.

    Raises ToolError on any failure.
    """
    library = (library or "").strip()
    prompt = (prompt or "").strip()
    if not library or not prompt:
        raise ToolError("Library and prompt are required")

    try:
        clone_url = service.resolve(library)
    except (ProjectNotFoundError, InvalidProjectName):
        raise ToolError(f'Library "{library}" not found. Use list_libraries to see available libraries.') from None
    except OSError as e:
        raise ToolError(str(e)) from e

    cloned = clone_url is not None
    step = ""
    try:
        async for ev in service.prepare(library, clone_url):
            step = ev.kind
            if ev.kind == "clone":
                await progress.set(10, "Cloning repository...")
            elif ev.kind == "cloned":
                await progress.set(30, ev.message)
            elif ev.kind == "pull":
                await progress.set(35 if cloned else 10, "Updating repository...")
            elif ev.kind == "pulled":
                await progress.set(40 if cloned else 15, ev.message)
    except GitError as e:
        what = "clone" if step == "clone" else "update"
        raise ToolError(f"Failed to {what} library: {e}") from e

    result: Optional[str] = None
    async with aclosing(service.run(library, prompt)) as run_events:
        async for ev in run_events:
            if ev.type == "status":
                await progress.status(ev.status)
            elif ev.type == "result":
                result = ev.result
            else:
                raise ToolError(ev.error)

    await progress.set(100, "Completed")
    return f"{result or 'No result returned.'}{progress.status_log()}"


def list_libraries_json(service: SearchService) -> str:
    libraries = [lib.model_dump() for lib in service.libraries()]
    return json.dumps(libraries, indent=2)


def create_server(service: SearchService) -> FastMCP:
    mcp = FastMCP(SERVER_NAME)

    @mcp.tool()
    async def question(library: str, prompt: str, ctx: Context) -> str:
        """Ask a question about a library's source code.

        The library is cloned or updated when needed; progress is reported
        while the agent explores the code.
        """
        tracker = ProgressTracker(ctx.report_progress)
        return await answer_question(service, library, prompt, tracker)

    @mcp.tool()
    async def list_libraries() -> str:
        """List all available libraries (downloaded and clonable)."""
        try:
            return list_libraries_json(service)
        except OSError as e:
            raise ToolError(str(e)) from e

    return mcp


def main() -> None:
    """Console entry point: `ai-code-search-mcp`."""
    try:
        settings = load_settings()
    except ConfigurationError as e:
        print(f"[mcp] {e}", file=sys.stderr)
        sys.exit(1)
    setup_logging(settings.logging.level, settings.logging.file, stream=sys.stderr)

    try:
        service = SearchService.from_settings(settings)
    except ConfigurationError as e:
        log.error("[mcp] %s", e)
        sys.exit(1)
    log.info("[mcp] %s ready (agent=%s)", SERVER_NAME, service.dispatcher.label)
    create_server(service).run()


if __name__ == "__main__":
    main()
