"""Normalized agent events.

Every backend adapter turns its agent's native output into these three
shapes. Their JSON dump is the newline-delimited wire format streamed to
HTTP clients:

```json
{"type": "status", "status": "Reading file: App.tsx"}
{"type": "result", "subtype": "success", "result": "## Answer ..."}
{"type": "error", "error": "Process exited with code 1."}
```
"""

from __future__ import annotations

from typing import Annotated, Any, Dict, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError


class _EventBase(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    def to_line(self) -> str:
        """One NDJSON line, newline included."""
        return self.model_dump_json() + "\n"


class StatusEvent(_EventBase):
    """Non-terminal, human-readable progress update."""

    type: Literal["status"] = "status"
    status: str

    @property
    def text(self) -> str:
        return self.status

    @property
    def is_terminal(self) -> bool:
        return False


class ResultEvent(_EventBase):
    """Final markdown answer. Terminal."""

    type: Literal["result"] = "result"
    subtype: Literal["success"] = "success"
    result: str

    @property
    def text(self) -> str:
        return self.result

    @property
    def is_terminal(self) -> bool:
        return True


class ErrorEvent(_EventBase):
    """Fatal condition for the run. Terminal."""

    type: Literal["error"] = "error"
    error: str

    @property
    def text(self) -> str:
        return self.error

    @property
    def is_terminal(self) -> bool:
        return True


AgentEvent = Union[StatusEvent, ResultEvent, ErrorEvent]
Event = Annotated[AgentEvent, Field(discriminator="type")]

_event_adapter: TypeAdapter = TypeAdapter(Event)


def status(text: str) -> StatusEvent:
    return StatusEvent(status=text)


def result(text: str) -> ResultEvent:
    return ResultEvent(result=text)


def error(text: str) -> ErrorEvent:
    return ErrorEvent(error=text)


def to_line(event: AgentEvent) -> str:
    return event.to_line()


def from_wire(data: Dict[str, Any]) -> Optional[AgentEvent]:
    """Validate a wire dict back into an event; None when it is not one."""
    try:
        return _event_adapter.validate_python(data)
    except ValidationError:
        return None
