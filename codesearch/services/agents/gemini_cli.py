"""Gemini CLI backend.

`gemini -o stream-json` prints its own NDJSON shape:

    {"type": "init", ...}
    {"type": "message", "role": "assistant", "content": "partial text"}
    {"type": "tool_use", "tool_name": "read_file", "parameters": {"file_path": "..."}}
    {"type": "tool_result", ...}
    {"type": "result", "status": "success"}

Assistant text arrives in pieces, so it is accumulated and only released as a
result when the terminal `result` line arrives. Lines that are not Gemini
events are shown verbatim as status updates.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

from codesearch.models import events
from codesearch.models.events import AgentEvent
from codesearch.services.agents.base import ProcessRunHandle, augment_prompt
from codesearch.services.agents.stream_parser import LineMapper, basename, map_reference_event

logger = logging.getLogger(__name__)

DEFAULT_COMMAND = "gemini"
GEMINI_TYPES = ("init", "message", "tool_use", "tool_result", "result")


def gemini_args(model: Optional[str]) -> List[str]:
    args = ["-o", "stream-json"]
    if model:
        args += ["-m", model]
    return args


def tool_use_label(obj: Dict[str, Any]) -> str:
    params = obj.get("parameters") if isinstance(obj.get("parameters"), dict) else {}
    file_path = params.get("file_path") if isinstance(params.get("file_path"), str) else ""
    tool_name = obj.get("tool_name") if isinstance(obj.get("tool_name"), str) else ""
    if file_path:
        return f"Reading file: {basename(file_path)}"
    if tool_name:
        return f"{tool_name.replace('_', ' ')}…"
    return "Using tool…"


class GeminiStreamTranslator:
    """Stateful line mapper from the Gemini shape onto normalized events."""

    def __init__(self) -> None:
        self.answer = ""
        self.recognized = False

    def __call__(self, line: str) -> Optional[AgentEvent]:
        raw = line.strip()
        if not raw:
            return None
        try:
            obj = json.loads(raw)
        except ValueError:
            return events.status(raw)
        if not isinstance(obj, dict):
            return events.status(raw)

        etype = obj.get("type") if isinstance(obj.get("type"), str) else ""
        if etype in GEMINI_TYPES:
            self.recognized = True
            return self._translate(etype, obj)
        # Already-normalized or reference-format lines pass through
        ev = map_reference_event(obj)
        return ev if ev is not None else events.status(raw)

    def _translate(self, etype: str, obj: Dict[str, Any]) -> Optional[AgentEvent]:
        if etype == "init":
            return events.status("Starting…")
        if etype == "message":
            role = obj.get("role") if isinstance(obj.get("role"), str) else ""
            content = obj.get("content") if isinstance(obj.get("content"), str) else ""
            if role == "user":
                return events.status("Sending prompt…")
            if role == "assistant" and content:
                self.answer += content
            return None
        if etype == "tool_use":
            return events.status(tool_use_label(obj))
        if etype == "tool_result":
            return events.status("Tool completed.")
        # result
        if obj.get("status") == "success":
            return events.result(self.answer.strip() or "(No response)")
        err = obj.get("error")
        if isinstance(err, dict):
            err = err.get("message")
        return events.error(err if isinstance(err, str) and err else "Unknown error")


class GeminiRunHandle(ProcessRunHandle):
    agent_name = "gemini"

    def __init__(self, proc, terminate_grace: float = 3.0) -> None:
        super().__init__(proc, terminate_grace=terminate_grace)
        self.translator = GeminiStreamTranslator()
        self._stdout_chunks: List[bytes] = []

    @property
    def stdout_text(self) -> str:
        return b"".join(self._stdout_chunks).decode("utf-8", errors="replace")

    def _mapper(self) -> LineMapper:
        return self.translator

    def _on_stdout(self, chunk: bytes) -> None:
        self._stdout_chunks.append(chunk)

    def _on_close(self, code: int) -> Optional[AgentEvent]:
        return synthesize_terminal(
            code,
            answer=self.translator.answer,
            stdout="" if self.translator.recognized else self.stdout_text,
            stderr=self.stderr_text,
        )


def synthesize_terminal(code: Optional[int], answer: str, stdout: str, stderr: str) -> AgentEvent:
    """Pick the terminal event for a Gemini run that closed without one.

    A non-zero exit always wins over partial output, so a crash is never
    reported as a successful answer.
    """
    stderr_trim = stderr.strip()
    if code not in (0, None):
        msg = f"Exit code {code}. stderr:\n{stderr_trim}" if stderr_trim else f"Process exited with code {code}."
        logger.error("[gemini] %s", msg)
        return events.error(msg)
    if answer.strip():
        return events.result(answer.strip())
    if stdout.strip():
        return events.result(stdout.strip())
    if stderr_trim:
        return events.result(f"(No stdout)\n\n--- stderr ---\n{stderr_trim}")
    return events.result("(No output)")


async def run_gemini(
    cwd: Path,
    prompt: str,
    command: Optional[str] = None,
    model: Optional[str] = None,
    terminate_grace: float = 3.0,
) -> GeminiRunHandle:
    """Spawn the Gemini CLI in `cwd` and return its run handle."""
    args = [*gemini_args(model), augment_prompt(prompt)]
    return await GeminiRunHandle.spawn(command or DEFAULT_COMMAND, args, cwd, terminate_grace=terminate_grace)
