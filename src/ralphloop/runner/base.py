"""Base agent runner primitives."""

from __future__ import annotations

import abc
import logging
import re
import threading
import time
from collections.abc import Callable

from ralphloop.agent.models import RunRequest, RunResult, Signal

LOGGER = logging.getLogger(__name__)

OutputSink = Callable[[str], None]

DEFAULT_TIMEOUT_SECONDS = 30 * 60.0
PROMPT_PREVIEW_CHARS = 80

_SECRET_PATTERNS = [
    re.compile(pattern, re.IGNORECASE)
    for pattern in (
        r"(--?(?:password|token|secret|api[-_]?key)\s+)([^\s]+)",
        r"((?:password|token|secret|api[-_]?key)\s*=\s*)([^\s]+)",
    )
]


class AgentRunner(abc.ABC):
    """Abstract runner for a non-interactive coding agent."""

    @property
    @abc.abstractmethod
    def name(self) -> str:
        """Friendly agent name."""

    @abc.abstractmethod
    def run(
        self,
        request: RunRequest,
        *,
        on_output: OutputSink | None = None,
        on_error: OutputSink | None = None,
    ) -> RunResult:
        """Run the agent once and return a normalized result."""

    @abc.abstractmethod
    def kill_active_process(self) -> bool:
        """Terminate the in-flight invocation; False when nothing is running."""

    def run_with_timeout(
        self,
        request: RunRequest,
        timeout: float | None = DEFAULT_TIMEOUT_SECONDS,
        *,
        on_output: OutputSink | None = None,
        on_error: OutputSink | None = None,
    ) -> RunResult:
        """Race ``run`` against ``timeout`` seconds, killing the agent on expiry."""
        if timeout is None or timeout <= 0:
            return self.run(request, on_output=on_output, on_error=on_error)

        expired = threading.Event()

        def _expire() -> None:
            expired.set()
            LOGGER.warning("agent_timeout", extra={"agent": self.name, "timeout": timeout})
            self.kill_active_process()

        timer = threading.Timer(timeout, _expire)
        timer.daemon = True
        timer.start()
        try:
            result = self.run(request, on_output=on_output, on_error=on_error)
        finally:
            timer.cancel()

        if not expired.is_set():
            return result
        return RunResult(
            success=False,
            output=result.output,
            error=f"Agent process timed out after {round(timeout)} seconds",
            duration=result.duration,
            signal=Signal.none(),
            returncode=result.returncode,
            timed_out=True,
        )

    def log_request(self, request: RunRequest, command: list[str]) -> None:
        LOGGER.debug(
            "agent_request",
            extra={
                "agent": self.name,
                "executable": command[0] if command else None,
                "model": request.model,
                "project_root": request.project_root,
                "sandbox": request.sandbox,
                "prompt_preview": self._sanitize(request.prompt[:PROMPT_PREVIEW_CHARS]),
            },
        )

    def log_result(self, result: RunResult) -> None:
        LOGGER.info(
            "agent_result",
            extra={
                "agent": self.name,
                "success": result.success,
                "returncode": result.returncode,
                "timed_out": result.timed_out,
                "duration_seconds": round(result.duration, 4),
                "signal": result.signal.kind.value,
                "output_length": len(result.output),
            },
        )

    @staticmethod
    def monotonic_now() -> float:
        return time.monotonic()

    @staticmethod
    def _sanitize(text: str) -> str:
        sanitized = text
        for pattern in _SECRET_PATTERNS:
            sanitized = pattern.sub(r"\1***", sanitized)
        return sanitized
