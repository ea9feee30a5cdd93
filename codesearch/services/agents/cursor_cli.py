"""cursor-agent backend: stdout is already in the reference stream format."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Optional

from codesearch.models import events
from codesearch.models.events import AgentEvent
from codesearch.services.agents.base import NO_RESULT_TEXT, ProcessRunHandle, augment_prompt

logger = logging.getLogger(__name__)

DEFAULT_COMMAND = "cursor-agent"


def cursor_args(model: Optional[str]) -> List[str]:
    return [
        "-p",
        "--mode",
        "ask",
        "--model",
        model or "auto",
        "--output-format",
        "stream-json",
        "--trust",
        "agent",
    ]


class CursorRunHandle(ProcessRunHandle):
    agent_name = "cursor-agent"

    def _on_close(self, code: int) -> Optional[AgentEvent]:
        if code != 0:
            stderr = self.stderr_text.strip()
            logger.error(
                "[%s] Exited with code %s before a result%s",
                self.agent_name,
                code,
                f": {stderr}" if stderr else "",
            )
            return events.error(stderr or f"Process exited with code {code}.")
        logger.warning("[%s] Stream ended without a result", self.agent_name)
        return events.result(NO_RESULT_TEXT)


async def run_cursor_agent(
    cwd: Path,
    prompt: str,
    command: Optional[str] = None,
    model: Optional[str] = None,
    terminate_grace: float = 3.0,
) -> CursorRunHandle:
    """Spawn cursor-agent in `cwd` and return its run handle."""
    args = [*cursor_args(model), augment_prompt(prompt)]
    return await CursorRunHandle.spawn(command or DEFAULT_COMMAND, args, cwd, terminate_grace=terminate_grace)
