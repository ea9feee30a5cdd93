import asyncio
import json
import time
from pathlib import Path

import pytest

from conftest import write_fake_agent
from codesearch.models.events import ErrorEvent, ResultEvent, StatusEvent
from codesearch.services.agents.base import SAFETY_SUFFIX, AgentLaunchError, augment_prompt
from codesearch.services.agents.cursor_cli import cursor_args, run_cursor_agent


def jl(obj) -> str:
    return json.dumps(obj)


async def collect(handle):
    async with handle:
        return [ev async for ev in handle.events()]


def test_augment_prompt_appends_read_only_instruction():
    assert augment_prompt("  where is main?  ") == f"where is main?. {SAFETY_SUFFIX}"


def test_cursor_args_default_model():
    args = cursor_args(None)
    assert args[args.index("--model") + 1] == "auto"
    assert args[args.index("--output-format") + 1] == "stream-json"
    assert cursor_args("gpt-5")[cursor_args("gpt-5").index("--model") + 1] == "gpt-5"


def test_success_stream(tmp_path: Path, project_dir: Path):
    argv_file = tmp_path / "argv.json"
    agent = write_fake_agent(
        tmp_path,
        [
            jl({"type": "system", "subtype": "init"}),
            jl({"type": "tool_call", "subtype": "started", "tool_call": {"readToolCall": {"args": {"path": "src/a.py"}}}}),
            "not json at all",
            jl({"type": "result", "subtype": "success", "result": "done"}),
        ],
        argv_file=argv_file,
    )

    async def _run():
        handle = await run_cursor_agent(project_dir, "what does a.py do", command=str(agent))
        evs = await collect(handle)
        return evs, handle.returncode

    evs, code = asyncio.run(_run())
    assert evs == [
        StatusEvent(status="Starting…"),
        StatusEvent(status="Reading file: a.py"),
        ResultEvent(result="done"),
    ]
    assert code == 0
    argv = json.loads(argv_file.read_text(encoding="utf-8"))
    assert argv[:-1] == cursor_args(None)
    assert argv[-1] == augment_prompt("what does a.py do")


def test_agent_error_event_is_terminal(tmp_path: Path, project_dir: Path):
    agent = write_fake_agent(
        tmp_path,
        [jl({"type": "error", "error": "bad"}), jl({"type": "result", "subtype": "success", "result": "late"})],
    )

    async def _run():
        return await collect(await run_cursor_agent(project_dir, "q", command=str(agent)))

    assert asyncio.run(_run()) == [ErrorEvent(error="bad")]


def test_nonzero_exit_without_result_reports_stderr(tmp_path: Path, project_dir: Path):
    agent = write_fake_agent(tmp_path, [jl({"type": "system", "subtype": "init"})], stderr="boom\n", code=1)

    async def _run():
        return await collect(await run_cursor_agent(project_dir, "q", command=str(agent)))

    assert asyncio.run(_run()) == [StatusEvent(status="Starting…"), ErrorEvent(error="boom")]


def test_nonzero_exit_without_stderr(tmp_path: Path, project_dir: Path):
    agent = write_fake_agent(tmp_path, [], code=3)

    async def _run():
        return await collect(await run_cursor_agent(project_dir, "q", command=str(agent)))

    assert asyncio.run(_run()) == [ErrorEvent(error="Process exited with code 3.")]


def test_clean_exit_without_result(tmp_path: Path, project_dir: Path):
    agent = write_fake_agent(tmp_path, [jl({"type": "assistant"})])

    async def _run():
        return await collect(await run_cursor_agent(project_dir, "q", command=str(agent)))

    assert asyncio.run(_run()) == [StatusEvent(status="Preparing answer…"), ResultEvent(result="No result returned.")]


def test_result_error_subtype_is_not_terminal(tmp_path: Path, project_dir: Path):
    agent = write_fake_agent(tmp_path, [jl({"type": "result", "subtype": "error", "error": "quota"})], code=2)

    async def _run():
        return await collect(await run_cursor_agent(project_dir, "q", command=str(agent)))

    assert asyncio.run(_run()) == [StatusEvent(status="Error: quota"), ErrorEvent(error="Process exited with code 2.")]


def test_lingering_process_is_stopped_after_result(tmp_path: Path, project_dir: Path):
    agent = write_fake_agent(
        tmp_path,
        [jl({"type": "result", "subtype": "success", "result": "done"})],
        sleep=30,
    )

    async def _run():
        handle = await run_cursor_agent(project_dir, "q", command=str(agent), terminate_grace=2.0)
        started = time.monotonic()
        evs = await collect(handle)
        released_after = time.monotonic() - started
        code = await asyncio.wait_for(handle.wait(), timeout=10)
        return evs, released_after, code

    evs, released_after, code = asyncio.run(asyncio.wait_for(_run(), timeout=15))
    assert evs == [ResultEvent(result="done")]
    # the consumer is released right after the answer; the grace period runs in the background
    assert released_after < 1.5
    assert code != 0


def test_closing_early_kills_the_child(tmp_path: Path, project_dir: Path):
    agent = write_fake_agent(tmp_path, [jl({"type": "system", "subtype": "init"})], sleep=30)

    async def _run():
        handle = await run_cursor_agent(project_dir, "q", command=str(agent))
        async with handle:
            run = handle.events()
            first = await run.__anext__()
            await run.aclose()
        return first, handle.returncode, handle.terminal_event

    first, code, terminal = asyncio.run(asyncio.wait_for(_run(), timeout=15))
    assert first == StatusEvent(status="Starting…")
    assert code is not None
    assert terminal is None


def test_events_can_only_be_consumed_once(tmp_path: Path, project_dir: Path):
    agent = write_fake_agent(tmp_path, [jl({"type": "result", "subtype": "success", "result": "x"})])

    async def _run():
        handle = await run_cursor_agent(project_dir, "q", command=str(agent))
        await collect(handle)
        with pytest.raises(RuntimeError):
            async for _ in handle.events():
                pass

    asyncio.run(_run())


def test_missing_executable_raises_launch_error(project_dir: Path):
    async def _run():
        await run_cursor_agent(project_dir, "q", command="definitely-not-a-real-agent-cli")

    with pytest.raises(AgentLaunchError) as exc:
        asyncio.run(_run())
    assert "Ensure definitely-not-a-real-agent-cli is installed and available in PATH." in str(exc.value)


def test_missing_working_directory_raises_launch_error(tmp_path: Path):
    agent = write_fake_agent(tmp_path, [])

    async def _run():
        await run_cursor_agent(tmp_path / "nope", "q", command=str(agent))

    with pytest.raises(AgentLaunchError):
        asyncio.run(_run())
