"""Human-visible alerts for terminal and intervention states."""

from __future__ import annotations

import logging
import sys
from typing import Protocol, TextIO

from ralphloop.agent.models import LoopStatus

LOGGER = logging.getLogger(__name__)

TITLES = {
    LoopStatus.COMPLETED: "Ralph Loop Complete!",
    LoopStatus.BLOCKED: "Ralph Loop Blocked",
    LoopStatus.DECIDE: "Ralph Loop Needs Decision",
    LoopStatus.MAX_REACHED: "Ralph Loop Stopped",
    LoopStatus.CANCELLED: "Ralph Loop Cancelled",
    LoopStatus.ERROR: "Ralph Loop Error",
}

# Number of terminal bells per status.
BELLS = {
    LoopStatus.COMPLETED: 2,
    LoopStatus.BLOCKED: 3,
    LoopStatus.DECIDE: 3,
    LoopStatus.MAX_REACHED: 4,
    LoopStatus.ERROR: 4,
}


class Notifier(Protocol):
    def notify(self, status: LoopStatus, message: str) -> None: ...


def format_duration(seconds: float) -> str:
    total = int(seconds)
    minutes, secs = divmod(total, 60)
    hours, minutes = divmod(minutes, 60)
    if hours:
        return f"{hours}h {minutes}m {secs}s"
    if minutes:
        return f"{minutes}m {secs}s"
    return f"{secs}s"


def complete_message(iterations: int, total_duration: float) -> str:
    return f"Completed after {iterations} iteration(s) in {format_duration(total_duration)}"


def max_iterations_message(max_iterations: int) -> str:
    return f"Maximum iterations ({max_iterations}) reached without completion"


def intervention_message(status: LoopStatus, detail: str | None) -> str:
    if detail:
        return detail
    if status is LoopStatus.DECIDE:
        return "Please make a decision"
    return "Human intervention required"


class LogNotifier:
    """Routes alerts to the ``logging`` system only."""

    def notify(self, status: LoopStatus, message: str) -> None:
        LOGGER.info("notification", extra={"status": status.value, "notification": message})


class TerminalNotifier:
    """Prints a banner and optionally rings the terminal bell."""

    def __init__(
        self,
        *,
        enabled: bool = True,
        sound: bool = True,
        stream: TextIO | None = None,
    ) -> None:
        self.enabled = enabled
        self.sound = sound
        self.stream = stream

    def notify(self, status: LoopStatus, message: str) -> None:
        if not self.enabled:
            return
        stream = self.stream or sys.stderr
        title = TITLES.get(status, "Ralph Loop")
        bells = "\a" * BELLS.get(status, 1) if self.sound else ""
        try:
            stream.write(f"{bells}\n=== {title} ===\n{message}\n")
            stream.flush()
        except (OSError, ValueError):
            LOGGER.debug("notification_write_failed", exc_info=True)
