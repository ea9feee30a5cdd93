"""Agent backends and the dispatcher that selects one of them."""

from .base import AgentLaunchError, RunHandle, augment_prompt
from .registry import AgentDispatcher, AgentKind

__all__ = [
    "AgentDispatcher",
    "AgentKind",
    "AgentLaunchError",
    "RunHandle",
    "augment_prompt",
]
