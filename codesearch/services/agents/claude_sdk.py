"""Claude Agent SDK backend.

Runs `claude_agent_sdk.query()` in-process instead of spawning a CLI. The
SDK yields typed messages; they are mapped onto the same events as the CLI
backends and exposed through the same RunHandle interface.
"""

from __future__ import annotations

import asyncio
import logging
import time
from pathlib import Path
from types import ModuleType
from typing import Any, AsyncIterator, Dict, Optional

from codesearch.models import events
from codesearch.models.events import AgentEvent
from codesearch.services.agents.base import NO_RESULT_TEXT, AgentLaunchError, RunHandle, augment_prompt
from codesearch.services.agents.stream_parser import basename

logger = logging.getLogger(__name__)

READ_ONLY_TOOLS = ["Read", "Grep", "Glob"]


def _load_sdk() -> ModuleType:
    try:
        import claude_agent_sdk
    except ImportError as e:
        raise AgentLaunchError(
            "claude",
            "claude-agent-sdk",
            str(e),
            message="Failed to load the Claude Agent SDK. Ensure claude-agent-sdk is installed.",
        ) from e
    return claude_agent_sdk


def tool_use_label(name: str, tool_input: Dict[str, Any]) -> str:
    if name == "Read" and isinstance(tool_input.get("file_path"), str):
        return f"Reading file: {basename(tool_input['file_path'])}"
    if name == "Grep" and isinstance(tool_input.get("pattern"), str):
        return f"Searching for {tool_input['pattern']}"
    if name == "Glob" and isinstance(tool_input.get("pattern"), str):
        return f"Listing files: {tool_input['pattern']}"
    return f"Using {name}…"


class ClaudeMessageMapper:
    """Maps SDK message objects onto normalized events."""

    def __init__(self, sdk: Any) -> None:
        self.sdk = sdk

    def __call__(self, msg: Any) -> Optional[AgentEvent]:
        sdk = self.sdk
        if isinstance(msg, sdk.SystemMessage):
            return events.status("Starting…") if msg.subtype == "init" else None
        if isinstance(msg, sdk.AssistantMessage):
            blocks = list(msg.content or [])
            for block in blocks:
                if isinstance(block, sdk.ToolUseBlock):
                    return events.status(tool_use_label(block.name, block.input or {}))
            if any(isinstance(b, sdk.TextBlock) for b in blocks):
                return events.status("Preparing answer…")
            return None
        if isinstance(msg, sdk.ResultMessage):
            subtype = msg.subtype or ""
            if subtype == "success" and isinstance(msg.result, str):
                return events.result(msg.result)
            if subtype.startswith("error") or getattr(msg, "is_error", False):
                errors = getattr(msg, "errors", None)
                if isinstance(errors, list) and errors:
                    return events.error("; ".join(str(e) for e in errors))
                return events.error(msg.result if isinstance(msg.result, str) and msg.result else "Unknown error")
        return None


class ClaudeRunHandle(RunHandle):
    agent_name = "claude"

    def __init__(self, sdk: Any, cwd: Path, prompt: str, model: Optional[str] = None) -> None:
        super().__init__()
        self._sdk = sdk
        self._mapper = ClaudeMessageMapper(sdk)
        self._prompt = augment_prompt(prompt)
        opts: Dict[str, Any] = {
            "cwd": str(cwd),
            "include_partial_messages": True,
            "allowed_tools": list(READ_ONLY_TOOLS),
        }
        if model:
            opts["model"] = model
        self._options = sdk.ClaudeAgentOptions(**opts)
        self._returncode: Optional[int] = None
        self._done = asyncio.Event()
        self._started_at = time.monotonic()

    @property
    def returncode(self) -> Optional[int]:
        return self._returncode

    async def _stream(self) -> AsyncIterator[AgentEvent]:
        messages = None
        terminal: Optional[AgentEvent] = None
        try:
            messages = self._sdk.query(prompt=self._prompt, options=self._options)
            # Drain the SDK stream fully; the terminal event is held back so
            # nothing can follow it.
            async for msg in messages:
                ev = self._mapper(msg)
                if ev is None or terminal is not None:
                    continue
                if ev.is_terminal:
                    terminal = ev
                else:
                    yield ev
        except Exception as e:
            if terminal is None:
                logger.error("[claude] SDK call failed: %s", e, exc_info=True)
                self._returncode = 1
                yield events.error(str(e) or type(e).__name__)
                return
            # The answer already arrived; a failure while winding down does not undo it
            logger.warning("[claude] SDK failed after the final message: %s", e)
        finally:
            aclose = getattr(messages, "aclose", None)
            if aclose is not None:
                try:
                    await aclose()
                except Exception as e:
                    logger.warning("[claude] Error closing SDK stream: %s", e)

        self._returncode = 1 if isinstance(terminal, events.ErrorEvent) else 0
        yield terminal if terminal is not None else events.result(NO_RESULT_TEXT)

    async def _finish(self) -> None:
        if self._returncode is None:
            logger.info("[claude] Run aborted before completion")
            self._returncode = 1
        logger.info("[claude] Done in %.2fs (status=%s)", time.monotonic() - self._started_at, self._returncode)
        self._done.set()

    async def wait(self) -> int:
        await self._done.wait()
        return self._returncode if self._returncode is not None else 1

    async def close(self) -> None:
        # Iteration owns the SDK generator; aborting it happens through aclose()
        # of events(). Here we only release waiters of a never-consumed run.
        if not self._done.is_set() and not self._consumed:
            self._returncode = 1
            self._done.set()


async def run_claude(cwd: Path, prompt: str, model: Optional[str] = None) -> ClaudeRunHandle:
    """Prepare an SDK-backed run; the query starts when events() is iterated."""
    sdk = _load_sdk()
    cwd = Path(cwd)
    if not cwd.is_dir():
        raise AgentLaunchError("claude", "claude-agent-sdk", f"working directory not found: {cwd}")
    logger.info("[claude] Starting SDK query (cwd=%s, model=%s)", str(cwd), model or "default")
    try:
        return ClaudeRunHandle(sdk, cwd, prompt, model=model)
    except TypeError as e:
        raise AgentLaunchError("claude", "claude-agent-sdk", f"incompatible SDK options: {e}") from e
