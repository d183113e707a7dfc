"""Agent runner implementations."""

from .base import DEFAULT_TIMEOUT_SECONDS, AgentRunner, OutputSink
from .claude import ClaudeRunner


def create_runner(agent_name: str = "claude", **kwargs: object) -> AgentRunner:
    normalized = agent_name.strip().lower()
    if normalized in {"claude", "claude-code", "claude_code"}:
        return ClaudeRunner(**kwargs)  # type: ignore[arg-type]
    msg = f"Unsupported agent runner: {agent_name}"
    raise ValueError(msg)


__all__ = [
    "DEFAULT_TIMEOUT_SECONDS",
    "AgentRunner",
    "ClaudeRunner",
    "OutputSink",
    "create_runner",
]
