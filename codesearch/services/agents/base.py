"""RunHandle contract shared by every agent backend.

A run is one question asked of one agent in one project directory. Whatever
the backend (spawned CLI or in-process SDK), `start()` returns a RunHandle
that exposes:

- `events()`: async iterator of normalized events, at most one terminal;
- `wait()`: completion status (exit code, or 0/1 for SDK calls);
- `close()`: abort the underlying process or SDK call.

Launch problems (missing executable, SDK not importable) are raised from
`start()` as AgentLaunchError, before any event exists.
"""

from __future__ import annotations

import asyncio
import logging
import os
import shlex
import shutil
from abc import ABC, abstractmethod
from pathlib import Path
from typing import AsyncIterator, List, Optional, Type, TypeVar

from codesearch.models.events import AgentEvent
from codesearch.services.agents.stream_parser import LineMapper, StreamDecoder, parse_stream_event

logger = logging.getLogger(__name__)

SAFETY_SUFFIX = "Do not change any files! Only return results in chat!"
NO_RESULT_TEXT = "No result returned."
CHUNK_SIZE = 4096

P = TypeVar("P", bound="ProcessRunHandle")


def augment_prompt(prompt: str) -> str:
    """Append the read-only instruction every run carries."""
    return f"{(prompt or '').strip()}. {SAFETY_SUFFIX}"


class AgentLaunchError(RuntimeError):
    """The agent process or SDK entry point could not be started."""

    def __init__(self, agent: str, command: str, detail: str = "", message: Optional[str] = None) -> None:
        self.agent = agent
        self.command = command
        self.detail = detail
        super().__init__(
            message or f"Failed to start {agent} process. Ensure {command} is installed and available in PATH."
        )


class RunHandle(ABC):
    """One in-flight agent run."""

    agent_name: str = "agent"

    def __init__(self) -> None:
        self._terminal: Optional[AgentEvent] = None
        self._consumed = False

    @property
    def terminal_event(self) -> Optional[AgentEvent]:
        return self._terminal

    async def events(self) -> AsyncIterator[AgentEvent]:
        """Yield normalized events; stops right after the first terminal one."""
        if self._consumed:
            raise RuntimeError("events() can only be consumed once per run")
        self._consumed = True
        stream = self._stream()
        try:
            async for ev in stream:
                if ev.is_terminal:
                    self._terminal = ev
                yield ev
                if self._terminal is not None:
                    break
        finally:
            await stream.aclose()
            await self._finish()

    @abstractmethod
    def _stream(self) -> AsyncIterator[AgentEvent]:
        """Backend-specific event source."""

    @abstractmethod
    async def _finish(self) -> None:
        """Release the backend once iteration stops, normally or not."""

    @property
    @abstractmethod
    def returncode(self) -> Optional[int]:
        ...

    @abstractmethod
    async def wait(self) -> int:
        ...

    @abstractmethod
    async def close(self) -> None:
        ...

    async def __aenter__(self) -> "RunHandle":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.close()


def build_launch_command(command: str, args: List[str]) -> List[str]:
    """Resolve the executable on PATH and wrap Windows shims with their host."""
    parts = shlex.split(command) if command else []
    if not parts:
        raise AgentLaunchError("agent", command or "(unset)", "empty command")
    exe = shutil.which(parts[0]) or parts[0]
    if os.name == "nt":
        ext = Path(exe).suffix.lower()
        if ext in (".cmd", ".bat"):
            return ["cmd.exe", "/c", exe, *parts[1:], *args]
        if ext == ".ps1":
            return ["powershell", "-NoProfile", "-ExecutionPolicy", "Bypass", "-File", exe, *parts[1:], *args]
    return [exe, *parts[1:], *args]


class ProcessRunHandle(RunHandle):
    """Run backed by a spawned CLI whose stdout is newline-delimited JSON.

    Subclasses choose the line mapper and decide what to synthesize when the
    process closes without a terminal event.
    """

    def __init__(self, proc: asyncio.subprocess.Process, terminate_grace: float = 3.0) -> None:
        super().__init__()
        self._proc = proc
        self._terminate_grace = float(terminate_grace)
        self._stderr_chunks: List[bytes] = []
        self._stderr_task: Optional[asyncio.Task] = None
        self._reaper: Optional[asyncio.Task] = None
        if proc.stderr is not None:
            self._stderr_task = asyncio.create_task(self._stderr_reader(), name=f"{self.agent_name}-stderr")

    @classmethod
    async def spawn(
        cls: Type[P],
        command: str,
        args: List[str],
        cwd: Path,
        terminate_grace: float = 3.0,
    ) -> P:
        cwd = Path(cwd)
        if not cwd.is_dir():
            raise AgentLaunchError(cls.agent_name, command, f"working directory not found: {cwd}")
        launch_cmd = build_launch_command(command, args)
        # Prompt is the last argument; keep it out of the log line
        safe_cmd = " ".join(shlex.quote(p) for p in launch_cmd[:-1])
        logger.info("[%s] Starting: %s <prompt> (cwd=%s)", cls.agent_name, safe_cmd, str(cwd))
        try:
            proc = await asyncio.create_subprocess_exec(
                *launch_cmd,
                cwd=str(cwd),
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            logger.error("[%s] Failed to start %s: %s", cls.agent_name, command, e)
            raise AgentLaunchError(cls.agent_name, command, str(e)) from e
        logger.info("[%s] Process started with PID %s", cls.agent_name, proc.pid)
        return cls(proc, terminate_grace=terminate_grace)

    @property
    def pid(self) -> Optional[int]:
        return self._proc.pid

    @property
    def returncode(self) -> Optional[int]:
        return self._proc.returncode

    @property
    def stderr_text(self) -> str:
        return b"".join(self._stderr_chunks).decode("utf-8", errors="replace")

    def _mapper(self) -> LineMapper:
        return parse_stream_event

    def _on_stdout(self, chunk: bytes) -> None:
        """Hook for subclasses that keep the raw output."""

    @abstractmethod
    def _on_close(self, code: int) -> Optional[AgentEvent]:
        """Terminal event to synthesize when stdout ended without one."""

    async def _stderr_reader(self) -> None:
        stream = self._proc.stderr
        if stream is None:
            return
        while True:
            chunk = await stream.read(CHUNK_SIZE)
            if not chunk:
                break
            self._stderr_chunks.append(chunk)

    async def _stream(self) -> AsyncIterator[AgentEvent]:
        decoder = StreamDecoder(self._mapper())
        stdout = self._proc.stdout
        if stdout is not None:
            while True:
                chunk = await stdout.read(CHUNK_SIZE)
                if not chunk:
                    break
                self._on_stdout(chunk)
                for ev in decoder.feed(chunk):
                    yield ev
        for ev in decoder.flush():
            yield ev

        code = await self._proc.wait()
        if self._stderr_task is not None:
            await self._stderr_task
        logger.info("[%s] Process exited with code %s", self.agent_name, code)
        fallback = self._on_close(code)
        if fallback is not None:
            yield fallback

    async def _finish(self) -> None:
        if self._proc.returncode is None and self._terminal is not None:
            # Answer already delivered: release the consumer now and let the
            # CLI exit on its own within the grace period.
            self._reaper = asyncio.create_task(self._reap(), name=f"{self.agent_name}-reaper")
            return
        await self._stop()
        self._log_late_exit()

    async def _reap(self) -> None:
        try:
            await asyncio.wait_for(self._proc.wait(), timeout=self._terminate_grace)
        except asyncio.TimeoutError:
            logger.warning("[%s] No exit after result; terminating pid=%s", self.agent_name, self._proc.pid)
        finally:
            await self._stop()
        self._log_late_exit()

    def _log_late_exit(self) -> None:
        code = self._proc.returncode
        if code not in (0, None) and self._terminal is not None:
            stderr = self.stderr_text.strip()
            logger.warning(
                "[%s] Exited with code %s after a terminal event%s",
                self.agent_name,
                code,
                f": {stderr}" if stderr else "",
            )

    async def wait(self) -> int:
        return await self._proc.wait()

    async def close(self) -> None:
        """Abort the run. After a terminal event the reaper owns the child."""
        if self._reaper is not None:
            return
        await self._stop()

    async def _stop(self) -> None:
        """Terminate the child (terminate -> kill) and stop the stderr reader."""
        p = self._proc
        if p.returncode is None:
            logger.info("[%s] Stopping pid=%s", self.agent_name, p.pid)
            try:
                p.terminate()
            except ProcessLookupError:
                pass
            try:
                await asyncio.wait_for(p.wait(), timeout=2.0)
            except asyncio.TimeoutError:
                logger.warning("[%s] Terminate timed out; killing pid=%s", self.agent_name, p.pid)
                try:
                    p.kill()
                except ProcessLookupError:
                    pass
                await p.wait()
        t = self._stderr_task
        if t is not None and not t.done():
            t.cancel()
            try:
                await t
            except asyncio.CancelledError:
                pass
