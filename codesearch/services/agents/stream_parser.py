"""Reference stream format parsing and NDJSON line buffering.

The reference format is what `cursor-agent --output-format stream-json`
prints: one JSON object per line, discriminated by `type`/`subtype`.
`parse_stream_event()` maps one such line onto the normalized events;
`StreamDecoder` turns raw stdout chunks into lines and feeds them through any
adapter-supplied mapping function.
"""

from __future__ import annotations

import codecs
import json
import re
from typing import Any, Callable, Dict, List, Optional

from codesearch.models import events
from codesearch.models.events import AgentEvent

LineMapper = Callable[[str], Optional[AgentEvent]]


def basename(path: str) -> str:
    """Last non-empty path segment, accepting both / and \\ separators."""
    parts = [p for p in path.replace("\\", "/").split("/") if p]
    return parts[-1] if parts else path


def _args(call: Any) -> Dict[str, Any]:
    if isinstance(call, dict) and isinstance(call.get("args"), dict):
        return call["args"]
    return {}


def _humanize(key: str) -> str:
    # readToolCall -> "Read Tool Call"
    spaced = re.sub(r"([A-Z])", r" \1", key).strip()
    return spaced[:1].upper() + spaced[1:]


def tool_call_label(tool_call: Dict[str, Any]) -> Optional[str]:
    """Human-readable label for a `tool_call` payload, or None when empty."""
    if isinstance(tool_call.get("readToolCall"), dict):
        path = _args(tool_call["readToolCall"]).get("path")
        return f"Reading file: {basename(path)}" if isinstance(path, str) and path else "Reading file"
    if isinstance(tool_call.get("grepToolCall"), dict):
        args = _args(tool_call["grepToolCall"])
        pattern = args.get("pattern") if isinstance(args.get("pattern"), str) else "…"
        glob = args.get("glob") if isinstance(args.get("glob"), str) else ""
        return f"Searching for {pattern} in {glob}" if glob else f"Searching for {pattern}"
    if isinstance(tool_call.get("listDirToolCall"), dict):
        path = _args(tool_call["listDirToolCall"]).get("path")
        return f"Listing directory: {basename(path)}" if isinstance(path, str) and path else "Listing directory"
    if "codebaseSearchToolCall" in tool_call:
        return "Searching codebase"
    if "webSearchToolCall" in tool_call:
        return "Searching the web"
    for key in tool_call:
        return f"{_humanize(key)}…"
    return None


def map_reference_event(obj: Dict[str, Any]) -> Optional[AgentEvent]:
    """Map an already-decoded reference-format object onto an event."""
    etype = obj.get("type") if isinstance(obj.get("type"), str) else ""
    subtype = obj.get("subtype") if isinstance(obj.get("subtype"), str) else ""

    if etype == "system" and subtype == "init":
        return events.status("Starting…")
    if etype == "thinking":
        if subtype == "delta":
            return events.status("Thinking…")
        if subtype == "completed":
            return events.status("Thinking completed.")
    if etype == "tool_call" and isinstance(obj.get("tool_call"), dict):
        label = tool_call_label(obj["tool_call"])
        if label and subtype == "started":
            return events.status(label)
        if label and subtype == "completed":
            return events.status(f"{label} — done.")
    if etype == "assistant":
        return events.status("Preparing answer…")
    if etype == "result" and subtype == "success" and isinstance(obj.get("result"), str):
        return events.result(obj["result"])
    if etype == "result" and subtype == "error":
        err = obj.get("error") if isinstance(obj.get("error"), str) else "Unknown error"
        # Non-terminal: the process exit code decides whether the run failed.
        return events.status(f"Error: {err}")
    if etype == "status" and isinstance(obj.get("status"), str):
        return events.status(obj["status"])
    if etype == "error" and isinstance(obj.get("error"), str):
        return events.error(obj["error"])
    return None


def parse_stream_event(line: str) -> Optional[AgentEvent]:
    """Parse a single reference-format NDJSON line. Malformed lines map to None."""
    trimmed = line.strip()
    if not trimmed:
        return None
    try:
        obj = json.loads(trimmed)
    except ValueError:
        return None
    if not isinstance(obj, dict):
        return None
    return map_reference_event(obj)


class StreamDecoder:
    """Split raw byte chunks into lines and map each through `mapper`.

    Partial lines (and partial UTF-8 sequences) are buffered across chunks,
    so the events produced do not depend on where the chunks were split.
    """

    def __init__(self, mapper: LineMapper = parse_stream_event) -> None:
        self._mapper = mapper
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""

    def feed(self, chunk: bytes) -> List[AgentEvent]:
        self._buffer += self._decoder.decode(chunk)
        *lines, self._buffer = self._buffer.split("\n")
        return self._map(lines)

    def flush(self) -> List[AgentEvent]:
        """Map whatever is left once the stream has ended."""
        self._buffer += self._decoder.decode(b"", final=True)
        rest, self._buffer = self._buffer, ""
        return self._map([rest]) if rest.strip() else []

    def _map(self, lines: List[str]) -> List[AgentEvent]:
        out: List[AgentEvent] = []
        for line in lines:
            line = line.rstrip("\r")
            if not line.strip():
                continue
            ev = self._mapper(line)
            if ev is not None:
                out.append(ev)
        return out
