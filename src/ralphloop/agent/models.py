"""Data models shared by the iteration loop, runner and history recorder."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


class SignalKind(str, Enum):
    COMPLETE = "COMPLETE"
    BLOCKED = "BLOCKED"
    DECIDE = "DECIDE"
    NONE = "NONE"


class LoopStatus(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"
    BLOCKED = "blocked"
    DECIDE = "decide"
    MAX_REACHED = "max_reached"
    CANCELLED = "cancelled"
    ERROR = "error"


@dataclass(frozen=True, slots=True)
class Signal:
    """Structured marker extracted from one block of agent output."""

    kind: SignalKind = SignalKind.NONE
    detail: str | None = None
    raw: str | None = None

    @classmethod
    def none(cls) -> Signal:
        return cls()

    @property
    def found(self) -> bool:
        return self.kind is not SignalKind.NONE

    def to_dict(self) -> dict[str, object]:
        return {"kind": self.kind.value, "detail": self.detail, "raw": self.raw}

    @classmethod
    def from_dict(cls, payload: object) -> Signal:
        if not isinstance(payload, dict):
            return cls()
        try:
            kind = SignalKind(str(payload.get("kind", SignalKind.NONE.value)))
        except ValueError:
            kind = SignalKind.NONE
        detail = payload.get("detail")
        raw = payload.get("raw")
        return cls(
            kind=kind,
            detail=detail if isinstance(detail, str) else None,
            raw=raw if isinstance(raw, str) else None,
        )


@dataclass(frozen=True, slots=True)
class RunConfig:
    """Settings for one run. Supplied once at start and never mutated."""

    project_root: str
    max_iterations: int = 200
    unlimited: bool = False
    completion_signal: str = "<promise>COMPLETE</promise>"
    model: str = "opus"
    dangerously_skip_permissions: bool = False
    timeout_seconds: float | None = None
    sandbox: bool = False
    auto_commit: bool = True

    def snapshot(self) -> dict[str, object]:
        return {
            "max_iterations": self.max_iterations,
            "unlimited": self.unlimited,
            "model": self.model,
            "completion_signal": self.completion_signal,
            "sandbox": self.sandbox,
        }


@dataclass(frozen=True, slots=True)
class RunRequest:
    """A single agent invocation."""

    prompt: str
    model: str
    project_root: str
    dangerously_skip_permissions: bool = False
    sandbox: bool = False


@dataclass(slots=True)
class RunResult:
    """Outcome of a single agent invocation."""

    success: bool
    output: str
    error: str | None
    duration: float
    signal: Signal = field(default_factory=Signal)
    returncode: int | None = None
    timed_out: bool = False


@dataclass(slots=True)
class LoopState:
    """Mutable run state owned by the control loop."""

    status: LoopStatus = LoopStatus.IDLE
    current_iteration: int = 0
    last_signal: Signal | None = None
    last_error: str | None = None
    output: list[str] = field(default_factory=list)


@dataclass(frozen=True, slots=True)
class IterationRecord:
    number: int
    start_time: str
    end_time: str
    duration: float
    output: str
    signal: Signal | None = None


@dataclass(frozen=True, slots=True)
class HistoryEntry:
    """Durable record of one run."""

    id: str
    timestamp: str
    project_root: str
    prompt: str
    config: dict[str, object]
    iterations: tuple[IterationRecord, ...] = ()
    result: LoopStatus = LoopStatus.RUNNING
    total_duration: float = 0.0
