"""Agent dispatcher: picks one backend at startup and starts runs on it."""

from __future__ import annotations

import logging
from enum import Enum
from pathlib import Path
from typing import Awaitable, Callable, Dict, Optional

from codesearch.config import AgentConfig, ConfigurationError
from codesearch.services.agents import claude_sdk, cursor_cli, gemini_cli
from codesearch.services.agents.base import RunHandle

logger = logging.getLogger(__name__)


class AgentKind(str, Enum):
    CURSOR = "cursor"
    GEMINI = "gemini"
    CLAUDE = "claude"

    @classmethod
    def parse(cls, raw: Optional[str]) -> "AgentKind":
        value = (raw or "").strip().lower() or cls.CURSOR.value
        try:
            return cls(value)
        except ValueError:
            allowed = ", ".join(k.value for k in cls)
            raise ConfigurationError(f'Invalid agent type: "{raw}". Allowed values: {allowed}.') from None


DEFAULT_COMMANDS: Dict[AgentKind, str] = {
    AgentKind.CURSOR: cursor_cli.DEFAULT_COMMAND,
    AgentKind.GEMINI: gemini_cli.DEFAULT_COMMAND,
    AgentKind.CLAUDE: "claude-agent-sdk",
}


class AgentDispatcher:
    """Starts runs on the configured backend.

    The kind, command and model are resolved once here and never change for
    the lifetime of the process; surfaces receive this object by reference.
    """

    def __init__(self, cfg: AgentConfig) -> None:
        self.kind = AgentKind.parse(cfg.type)
        self.command = cfg.command or DEFAULT_COMMANDS[self.kind]
        self.model = cfg.model
        self.terminate_grace = cfg.terminate_grace
        self._starters: Dict[AgentKind, Callable[[Path, str], Awaitable[RunHandle]]] = {
            AgentKind.CURSOR: self._start_cursor,
            AgentKind.GEMINI: self._start_gemini,
            AgentKind.CLAUDE: self._start_claude,
        }
        logger.info("[agent] type=%s cmd=%s model=%s", self.kind.value, self.command, self.model or "-")

    @property
    def label(self) -> str:
        return self.kind.value

    async def start(self, cwd: Path, prompt: str) -> RunHandle:
        """Start a run for `prompt` in project directory `cwd`.

        Raises AgentLaunchError when the backend cannot be started.
        """
        return await self._starters[self.kind](Path(cwd), prompt)

    async def _start_cursor(self, cwd: Path, prompt: str) -> RunHandle:
        return await cursor_cli.run_cursor_agent(
            cwd, prompt, command=self.command, model=self.model, terminate_grace=self.terminate_grace
        )

    async def _start_gemini(self, cwd: Path, prompt: str) -> RunHandle:
        return await gemini_cli.run_gemini(
            cwd, prompt, command=self.command, model=self.model, terminate_grace=self.terminate_grace
        )

    async def _start_claude(self, cwd: Path, prompt: str) -> RunHandle:
        return await claude_sdk.run_claude(cwd, prompt, model=self.model)
