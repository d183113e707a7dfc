"""Iteration control loop for driving a coding agent until it signals completion."""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from datetime import datetime, timezone

from ralphloop.agent.history import (
    HistoryStore,
    add_iteration,
    create_history_entry,
    create_iteration_record,
    finalize_history_entry,
)
from ralphloop.agent.models import (
    HistoryEntry,
    LoopState,
    LoopStatus,
    RunConfig,
    RunRequest,
    RunResult,
    Signal,
    SignalKind,
)
from ralphloop.agent.prompt import prepare_prompt
from ralphloop.agent.signals import (
    indicates_completion,
    parse_commit_message,
    requires_user_intervention,
    resolve_signal,
)
from ralphloop.notifications import (
    Notifier,
    complete_message,
    intervention_message,
    max_iterations_message,
)
from ralphloop.runner import AgentRunner
from ralphloop.vcs import GitCommitter

LOGGER = logging.getLogger(__name__)

OnIterationStart = Callable[[int], None]
OnIterationEnd = Callable[[int, RunResult], None]
OnOutputChunk = Callable[[str], None]
OnStatusChange = Callable[[LoopStatus], None]
OnRunComplete = Callable[[HistoryEntry], None]

PAUSE_POLL_SECONDS = 0.1
MAX_OUTPUT_CHUNKS = 500


class RalphLoop:
    """Runs the agent repeatedly, interpreting each iteration's signal.

    ``start`` blocks until the run ends, so UIs run it on a worker thread and
    call ``pause``/``resume``/``stop``/``reset`` from elsewhere. Those four are
    thread-safe and never raise.
    """

    def __init__(
        self,
        *,
        config: RunConfig,
        runner: AgentRunner,
        history_store: HistoryStore | None = None,
        notifier: Notifier | None = None,
        committer: GitCommitter | None = None,
        on_iteration_start: OnIterationStart | None = None,
        on_iteration_end: OnIterationEnd | None = None,
        on_output_chunk: OnOutputChunk | None = None,
        on_status_change: OnStatusChange | None = None,
        on_run_complete: OnRunComplete | None = None,
        pause_on_intervention: bool = True,
        pause_poll_seconds: float = PAUSE_POLL_SECONDS,
        max_output_chunks: int = MAX_OUTPUT_CHUNKS,
    ) -> None:
        self.config = config
        self.runner = runner
        self.history_store = history_store
        self.notifier = notifier
        self.committer = committer
        self.on_iteration_start = on_iteration_start
        self.on_iteration_end = on_iteration_end
        self.on_output_chunk = on_output_chunk
        self.on_status_change = on_status_change
        self.on_run_complete = on_run_complete
        self.pause_on_intervention = pause_on_intervention
        self.pause_poll_seconds = pause_poll_seconds
        self.max_output_chunks = max_output_chunks

        self._lock = threading.RLock()
        self._wake = threading.Condition(self._lock)
        self._state = LoopState()
        self._history: HistoryEntry | None = None
        self._running = False
        self._paused = False
        self._generation = 0
        self._started_at = 0.0

    @property
    def history(self) -> HistoryEntry | None:
        with self._lock:
            return self._history

    @property
    def is_running(self) -> bool:
        with self._lock:
            return self._running

    def snapshot(self) -> LoopState:
        with self._lock:
            return LoopState(
                status=self._state.status,
                current_iteration=self._state.current_iteration,
                last_signal=self._state.last_signal,
                last_error=self._state.last_error,
                output=list(self._state.output),
            )

    def start(self, prompt: str) -> LoopState:
        """Run until a terminal state and return the final snapshot."""
        with self._lock:
            if self._running:
                LOGGER.warning("run_already_active")
                return self.snapshot()
            if prompt and prompt.strip():
                self._generation += 1
                generation = self._generation
                self._state = LoopState(status=LoopStatus.RUNNING)
                self._history = create_history_entry(self.config, prompt)
                self._running = True
                self._paused = False
                self._started_at = time.monotonic()
                status = LoopStatus.RUNNING
            else:
                LOGGER.error("no_prompt_provided")
                self._state.status = LoopStatus.ERROR
                self._state.last_error = "No prompt provided"
                status = LoopStatus.ERROR
        self._emit(self.on_status_change, status)
        if status is LoopStatus.ERROR:
            return self.snapshot()

        try:
            self._execute(generation, prompt)
        finally:
            with self._lock:
                if generation == self._generation:
                    self._running = False
                    self._paused = False
        return self.snapshot()

    def pause(self) -> None:
        with self._lock:
            if not self._running or self._state.status is not LoopStatus.RUNNING:
                return
            self._paused = True
            self._state.status = LoopStatus.PAUSED
        LOGGER.info("loop_paused")
        self._emit(self.on_status_change, LoopStatus.PAUSED)

    def resume(self) -> None:
        with self._wake:
            self._paused = False
            self._wake.notify_all()
            if not self._running or self._state.status is LoopStatus.RUNNING:
                return
            self._state.status = LoopStatus.RUNNING
        LOGGER.info("loop_resumed")
        self._emit(self.on_status_change, LoopStatus.RUNNING)

    def stop(self) -> None:
        with self._wake:
            was_running = self._running
            self._running = False
            self._paused = False
            self._wake.notify_all()
            changed = was_running and self._state.status is not LoopStatus.CANCELLED
            if changed:
                self._state.status = LoopStatus.CANCELLED
        self.runner.kill_active_process()
        if changed:
            LOGGER.info("loop_stopped")
            self._emit(self.on_status_change, LoopStatus.CANCELLED)

    def reset(self) -> None:
        with self._wake:
            self._generation += 1
            self._running = False
            self._paused = False
            self._history = None
            self._state = LoopState()
            self._wake.notify_all()
        self.runner.kill_active_process()
        self._emit(self.on_status_change, LoopStatus.IDLE)

    def _execute(self, generation: int, prompt: str) -> None:
        # Static prompt: identical on every iteration.
        prepared = prepare_prompt(
            prompt,
            self.config.completion_signal,
            auto_commit=self.config.auto_commit,
        )
        iteration = 0
        while True:
            self._wait_while_paused()
            if not self._should_continue(generation, iteration):
                break

            iteration += 1
            with self._lock:
                self._state.current_iteration = iteration
                self._state.output = []
            LOGGER.info(
                "iteration_started",
                extra={
                    "iteration": iteration,
                    "max_iterations": None if self.config.unlimited else self.config.max_iterations,
                },
            )
            self._emit(self.on_iteration_start, iteration)

            started_at = datetime.now(timezone.utc)
            recorded = False
            try:
                result = self._invoke(generation, iteration, prepared)
                # Partial output of a killed agent carries no usable marker.
                if result.timed_out:
                    signal = Signal.none()
                else:
                    signal = resolve_signal(result.output, self.config.completion_signal)
                self._record(generation, started_at, result.output, signal)
                recorded = True
                with self._lock:
                    if generation == self._generation:
                        self._state.last_signal = signal

                if not self._is_active(generation):
                    break
                self._auto_commit(iteration, result.output)

                if indicates_completion(signal):
                    LOGGER.info("task_completed", extra={"iteration": iteration})
                    self._finish(
                        generation,
                        LoopStatus.COMPLETED,
                        lambda total: complete_message(iteration, total),
                    )
                    return

                if requires_user_intervention(signal):
                    if self._handle_intervention(generation, iteration, signal):
                        return
                    continue

                if not result.success:
                    LOGGER.error(
                        "iteration_failed",
                        extra={"iteration": iteration, "error": result.error},
                    )
                    with self._lock:
                        if generation == self._generation:
                            self._state.last_error = result.error
            except Exception as exc:
                message = str(exc) or exc.__class__.__name__
                LOGGER.exception("iteration_exception", extra={"iteration": iteration})
                with self._lock:
                    if generation == self._generation:
                        self._state.last_error = message
                if not recorded:
                    self._record(generation, started_at, message, None)

        if not self._is_current(generation):
            return
        if self._is_active(generation):
            LOGGER.warning(
                "max_iterations_reached",
                extra={"max_iterations": self.config.max_iterations},
            )
            self._finish(
                generation,
                LoopStatus.MAX_REACHED,
                lambda _total: max_iterations_message(self.config.max_iterations),
            )
        else:
            LOGGER.warning("loop_cancelled", extra={"iteration": iteration})
            self._finish(generation, LoopStatus.CANCELLED, None)

    def _handle_intervention(self, generation: int, iteration: int, signal: Signal) -> bool:
        """Return True when the run ended instead of pausing."""
        status = LoopStatus.BLOCKED if signal.kind is SignalKind.BLOCKED else LoopStatus.DECIDE
        message = intervention_message(status, signal.detail)
        LOGGER.warning(
            "intervention_required",
            extra={"iteration": iteration, "status": status.value, "detail": signal.detail},
        )
        if not self.pause_on_intervention:
            self._finish(generation, status, lambda _total: message)
            return True

        with self._lock:
            if generation != self._generation or not self._running:
                return False
            # Flag first so a resume racing this transition is not lost.
            self._paused = True
            self._state.status = status
        self._emit(self.on_status_change, status)
        self._notify(status, message)
        return False

    def _invoke(self, generation: int, iteration: int, prompt: str) -> RunResult:
        request = RunRequest(
            prompt=prompt,
            model=self.config.model,
            project_root=self.config.project_root,
            dangerously_skip_permissions=self.config.dangerously_skip_permissions,
            sandbox=self.config.sandbox,
        )
        if not self._is_active(generation):
            return RunResult(
                success=False,
                output="",
                error="Run stopped before invocation",
                duration=0.0,
            )

        chunk_count = 0

        def _on_output(chunk: str) -> None:
            nonlocal chunk_count
            chunk_count += 1
            self._push_output(generation, chunk)

        def _on_error(text: str) -> None:
            LOGGER.debug("agent_stderr", extra={"iteration": iteration, "stderr": text})

        if self.config.timeout_seconds:
            result = self.runner.run_with_timeout(
                request,
                self.config.timeout_seconds,
                on_output=_on_output,
                on_error=_on_error,
            )
        else:
            result = self.runner.run(request, on_output=_on_output, on_error=_on_error)

        # Some agent modes buffer everything until exit.
        if chunk_count == 0 and result.output:
            LOGGER.debug(
                "output_fallback",
                extra={"iteration": iteration, "chars": len(result.output)},
            )
            self._push_output(generation, result.output)

        self._emit(self.on_iteration_end, iteration, result)
        return result

    def _push_output(self, generation: int, chunk: str) -> None:
        with self._lock:
            if generation != self._generation:
                return
            output = self._state.output
            output.append(chunk)
            if len(output) > self.max_output_chunks:
                del output[: len(output) - self.max_output_chunks]
        self._emit(self.on_output_chunk, chunk)

    def _record(
        self,
        generation: int,
        started_at: datetime,
        output: str,
        signal: Signal | None,
    ) -> None:
        record = create_iteration_record(started_at, output, signal)
        with self._lock:
            if generation == self._generation and self._history is not None:
                self._history = add_iteration(self._history, record)

    def _auto_commit(self, iteration: int, output: str) -> None:
        if not self.config.auto_commit or self.committer is None:
            return
        result = self.committer.auto_commit(
            self.config.project_root,
            iteration,
            parse_commit_message(output),
        )
        if result is None:
            return
        if result.success:
            LOGGER.info("auto_commit_succeeded", extra={"iteration": iteration})
        else:
            LOGGER.warning(
                "auto_commit_failed",
                extra={"iteration": iteration, "error": result.error},
            )

    def _finish(
        self,
        generation: int,
        status: LoopStatus,
        message: Callable[[float], str] | None,
    ) -> None:
        with self._lock:
            if generation != self._generation or self._history is None:
                return
            total_duration = time.monotonic() - self._started_at
            entry = finalize_history_entry(self._history, status, total_duration)
            self._history = entry
            self._running = False
            self._paused = False
            changed = self._state.status is not status
            self._state.status = status
        if changed:
            self._emit(self.on_status_change, status)

        self._persist(generation, entry)
        self._emit(self.on_run_complete, entry)
        if message is not None:
            self._notify(status, message(total_duration))

    def _persist(self, generation: int, entry: HistoryEntry) -> None:
        if self.history_store is None:
            return
        try:
            self.history_store.save(entry)
        except (OSError, TypeError, ValueError) as exc:
            LOGGER.error("history_save_failed", extra={"history_id": entry.id}, exc_info=True)
            with self._lock:
                if generation == self._generation:
                    self._state.last_error = f"Failed to save history: {exc}"

    def _notify(self, status: LoopStatus, message: str) -> None:
        if self.notifier is None:
            return
        try:
            self.notifier.notify(status, message)
        except Exception:
            LOGGER.exception("notification_failed", extra={"status": status.value})

    def _wait_while_paused(self) -> None:
        with self._wake:
            while self._paused and self._running:
                self._wake.wait(timeout=self.pause_poll_seconds)

    def _should_continue(self, generation: int, iteration: int) -> bool:
        with self._lock:
            if generation != self._generation or not self._running:
                return False
            return self.config.unlimited or iteration < self.config.max_iterations

    def _is_active(self, generation: int) -> bool:
        with self._lock:
            return generation == self._generation and self._running

    def _is_current(self, generation: int) -> bool:
        with self._lock:
            return generation == self._generation

    @staticmethod
    def _emit(callback: Callable[..., None] | None, *args: object) -> None:
        if callback is None:
            return
        try:
            callback(*args)
        except Exception:
            LOGGER.exception("observer_callback_failed")
