import stat
import sys
from pathlib import Path
from typing import Iterable, List, Optional

import pytest

from codesearch.models.events import AgentEvent
from codesearch.services.agents.base import AgentLaunchError, RunHandle


def write_fake_agent(
    directory: Path,
    stdout_lines: Iterable[str] = (),
    stderr: str = "",
    code: int = 0,
    sleep: float = 0.0,
    argv_file: Optional[Path] = None,
    name: str = "fake-agent",
) -> Path:
    """Executable script that prints canned stdout/stderr and exits with `code`."""
    script = directory / name
    script.write_text(
        f"""#!{sys.executable}
import json, sys, time
argv_file = {(str(argv_file) if argv_file else None)!r}
if argv_file:
    with open(argv_file, "w", encoding="utf-8") as f:
        json.dump(sys.argv[1:], f)
for line in {list(stdout_lines)!r}:
    sys.stdout.write(line + "\\n")
    sys.stdout.flush()
sys.stderr.write({stderr!r})
sys.stderr.flush()
time.sleep({sleep!r})
sys.exit({code})
""",
        encoding="utf-8",
    )
    script.chmod(script.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return script


class ScriptedRunHandle(RunHandle):
    """RunHandle replaying a fixed list of events."""

    agent_name = "fake"

    def __init__(self, evs: Iterable[AgentEvent]) -> None:
        super().__init__()
        self._evs = list(evs)
        self._code: Optional[int] = None
        self.closed = False

    async def _stream(self):
        for ev in self._evs:
            yield ev

    async def _finish(self) -> None:
        self._code = 0

    @property
    def returncode(self) -> Optional[int]:
        return self._code

    async def wait(self) -> int:
        return self._code or 0

    async def close(self) -> None:
        self.closed = True


class FakeDispatcher:
    label = "fake"

    def __init__(self, evs: Iterable[AgentEvent] = (), fail: bool = False) -> None:
        self.evs = list(evs)
        self.fail = fail
        self.calls: List[tuple] = []
        self.handles: List[ScriptedRunHandle] = []

    async def start(self, cwd: Path, prompt: str) -> RunHandle:
        self.calls.append((Path(cwd), prompt))
        if self.fail:
            raise AgentLaunchError("fake-agent", "fake-agent", "not found")
        handle = ScriptedRunHandle(self.evs)
        self.handles.append(handle)
        return handle


@pytest.fixture
def project_dir(tmp_path: Path) -> Path:
    d = tmp_path / "project"
    d.mkdir()
    return d


@pytest.fixture
def sources_dir(tmp_path: Path) -> Path:
    d = tmp_path / "sources"
    (d / "alpha").mkdir(parents=True)
    (d / "beta").mkdir()
    (d / ".hidden").mkdir()
    return d
