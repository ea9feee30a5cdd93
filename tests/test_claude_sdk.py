import asyncio
import sys
import types
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import pytest

from codesearch.models.events import ErrorEvent, ResultEvent, StatusEvent
from codesearch.services.agents import claude_sdk
from codesearch.services.agents.base import AgentLaunchError, augment_prompt


@dataclass
class SystemMessage:
    subtype: str
    data: Dict[str, Any] = field(default_factory=dict)


@dataclass
class TextBlock:
    text: str


@dataclass
class ToolUseBlock:
    id: str
    name: str
    input: Dict[str, Any]


@dataclass
class AssistantMessage:
    content: List[Any]
    model: str = "claude-test"


@dataclass
class ResultMessage:
    subtype: str
    is_error: bool = False
    result: Optional[str] = None
    errors: Optional[List[str]] = None


class ClaudeAgentOptions:
    def __init__(self, **kwargs):
        self.kwargs = kwargs


def make_sdk(messages, fail_with: Optional[Exception] = None):
    calls = []
    state = {"closed": False}

    async def query(prompt, options):
        calls.append((prompt, options))
        try:
            for msg in messages:
                await asyncio.sleep(0)
                yield msg
            if fail_with is not None:
                raise fail_with
        finally:
            state["closed"] = True

    sdk = types.SimpleNamespace(
        SystemMessage=SystemMessage,
        AssistantMessage=AssistantMessage,
        ResultMessage=ResultMessage,
        TextBlock=TextBlock,
        ToolUseBlock=ToolUseBlock,
        ClaudeAgentOptions=ClaudeAgentOptions,
        query=query,
    )
    return sdk, calls, state


@pytest.fixture
def use_sdk(monkeypatch):
    def _use(messages, fail_with=None):
        sdk, calls, state = make_sdk(messages, fail_with)
        monkeypatch.setattr(claude_sdk, "_load_sdk", lambda: sdk)
        return calls, state

    return _use


async def collect(handle):
    async with handle:
        return [ev async for ev in handle.events()]


def test_tool_use_labels():
    assert claude_sdk.tool_use_label("Read", {"file_path": "/repo/src/x.ts"}) == "Reading file: x.ts"
    assert claude_sdk.tool_use_label("Grep", {"pattern": "TODO"}) == "Searching for TODO"
    assert claude_sdk.tool_use_label("Glob", {"pattern": "**/*.py"}) == "Listing files: **/*.py"
    assert claude_sdk.tool_use_label("Bash", {}) == "Using Bash…"


def test_successful_query(use_sdk, project_dir: Path):
    calls, state = use_sdk(
        [
            SystemMessage(subtype="init"),
            AssistantMessage(content=[ToolUseBlock(id="1", name="Read", input={"file_path": "src/a.py"})]),
            AssistantMessage(content=[TextBlock(text="thinking out loud")]),
            ResultMessage(subtype="success", result="## Answer"),
        ]
    )

    async def _run():
        handle = await claude_sdk.run_claude(project_dir, "explain a.py", model="sonnet")
        evs = await collect(handle)
        return evs, await handle.wait()

    evs, code = asyncio.run(_run())
    assert evs == [
        StatusEvent(status="Starting…"),
        StatusEvent(status="Reading file: a.py"),
        StatusEvent(status="Preparing answer…"),
        ResultEvent(result="## Answer"),
    ]
    assert code == 0
    assert state["closed"]
    prompt, options = calls[0]
    assert prompt == augment_prompt("explain a.py")
    assert options.kwargs["cwd"] == str(project_dir)
    assert options.kwargs["allowed_tools"] == ["Read", "Grep", "Glob"]
    assert options.kwargs["model"] == "sonnet"


def test_error_result_joins_errors(use_sdk, project_dir: Path):
    use_sdk([ResultMessage(subtype="error_during_execution", is_error=True, errors=["a", "b"])])

    async def _run():
        handle = await claude_sdk.run_claude(project_dir, "q")
        evs = await collect(handle)
        return evs, await handle.wait()

    evs, code = asyncio.run(_run())
    assert evs == [ErrorEvent(error="a; b")]
    assert code == 1


def test_error_result_without_details(use_sdk, project_dir: Path):
    use_sdk([ResultMessage(subtype="error_max_turns", is_error=True)])

    async def _run():
        return await collect(await claude_sdk.run_claude(project_dir, "q"))

    assert asyncio.run(_run()) == [ErrorEvent(error="Unknown error")]


def test_no_result_message(use_sdk, project_dir: Path):
    use_sdk([SystemMessage(subtype="init")])

    async def _run():
        return await collect(await claude_sdk.run_claude(project_dir, "q"))

    assert asyncio.run(_run()) == [StatusEvent(status="Starting…"), ResultEvent(result="No result returned.")]


def test_nothing_follows_the_terminal_event(use_sdk, project_dir: Path):
    use_sdk(
        [
            ResultMessage(subtype="success", result="first"),
            AssistantMessage(content=[TextBlock(text="late")]),
            ResultMessage(subtype="success", result="second"),
        ]
    )

    async def _run():
        return await collect(await claude_sdk.run_claude(project_dir, "q"))

    assert asyncio.run(_run()) == [ResultEvent(result="first")]


def test_sdk_exception_becomes_error_event(use_sdk, project_dir: Path):
    use_sdk([SystemMessage(subtype="init")], fail_with=RuntimeError("CLI not found"))

    async def _run():
        handle = await claude_sdk.run_claude(project_dir, "q")
        evs = await collect(handle)
        return evs, await handle.wait()

    evs, code = asyncio.run(_run())
    assert evs == [StatusEvent(status="Starting…"), ErrorEvent(error="CLI not found")]
    assert code == 1


def test_failure_after_result_keeps_the_answer(use_sdk, project_dir: Path):
    use_sdk(
        [SystemMessage(subtype="init"), ResultMessage(subtype="success", result="answer")],
        fail_with=RuntimeError("Command failed with exit code 1"),
    )

    async def _run():
        handle = await claude_sdk.run_claude(project_dir, "q")
        evs = await collect(handle)
        return evs, await handle.wait()

    evs, code = asyncio.run(_run())
    assert evs == [StatusEvent(status="Starting…"), ResultEvent(result="answer")]
    assert code == 0


def test_failure_after_error_result_keeps_the_error(use_sdk, project_dir: Path):
    use_sdk(
        [ResultMessage(subtype="error_during_execution", is_error=True, errors=["quota"])],
        fail_with=RuntimeError("Command failed with exit code 1"),
    )

    async def _run():
        handle = await claude_sdk.run_claude(project_dir, "q")
        evs = await collect(handle)
        return evs, await handle.wait()

    evs, code = asyncio.run(_run())
    assert evs == [ErrorEvent(error="quota")]
    assert code == 1


def test_closing_early_closes_the_sdk_stream(use_sdk, project_dir: Path):
    _, state = use_sdk([SystemMessage(subtype="init"), ResultMessage(subtype="success", result="x")])

    async def _run():
        handle = await claude_sdk.run_claude(project_dir, "q")
        async with handle:
            run = handle.events()
            first = await run.__anext__()
            await run.aclose()
        return first, await handle.wait()

    first, code = asyncio.run(_run())
    assert first == StatusEvent(status="Starting…")
    assert state["closed"]
    assert code == 1


def test_missing_sdk_raises_launch_error(monkeypatch, project_dir: Path):
    monkeypatch.setitem(sys.modules, "claude_agent_sdk", None)

    async def _run():
        await claude_sdk.run_claude(project_dir, "q")

    with pytest.raises(AgentLaunchError) as exc:
        asyncio.run(_run())
    assert "claude-agent-sdk" in str(exc.value)


def test_missing_working_directory(use_sdk, tmp_path: Path):
    use_sdk([])

    async def _run():
        await claude_sdk.run_claude(tmp_path / "missing", "q")

    with pytest.raises(AgentLaunchError):
        asyncio.run(_run())
