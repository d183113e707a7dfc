"""Command-line interface for ralph."""

from __future__ import annotations

import argparse
import logging
import shutil
import signal
import sys
import threading
from collections.abc import Iterable
from pathlib import Path
from types import FrameType
from typing import cast

from .agent.history import HistoryStore
from .agent.loop import RalphLoop
from .agent.models import HistoryEntry, LoopState, LoopStatus, RunConfig, RunResult
from .agent.prompt import load_prompt
from .agent.signals import describe_signal
from .config import AppConfig
from .notifications import LogNotifier, TerminalNotifier, format_duration
from .runner import AgentRunner, create_runner
from .vcs import GitCommitter

LOGGER = logging.getLogger(__name__)

PROMPT_PREVIEW_CHARS = 100
RULE = "-" * 63


class CLIArgs(argparse.Namespace):
    prompt: str | None
    max_iterations: int | None
    unlimited: bool | None
    completion_signal: str | None
    model: str | None
    dangerously_skip_permissions: bool | None
    verbose: bool | None
    timeout_seconds: float | None
    sandbox: bool | None
    auto_commit: bool | None
    notifications_enabled: bool | None
    sound_enabled: bool | None
    headless: bool
    working_directory: str | None
    debug: bool
    history_limit: int | None
    show_history: str | None


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="ralph",
        description="Autonomous AI coding loop that re-runs an agent until it signals completion",
    )
    parser.add_argument("prompt", nargs="?", help="Prompt string or path to a prompt file")
    parser.add_argument("-m", "--max", dest="max_iterations", type=int, help="Maximum iterations")
    parser.add_argument(
        "--unlimited",
        action="store_const",
        const=True,
        help="Ignore the iteration cap and run until the agent signals completion",
    )
    parser.add_argument("-s", "--signal", dest="completion_signal", help="Completion signal")
    parser.add_argument("-M", "--model", help="Agent model (opus, sonnet, haiku)")
    parser.add_argument(
        "-d",
        "--dangerously-skip",
        dest="dangerously_skip_permissions",
        action="store_const",
        const=True,
        help="Skip all permission prompts instead of accepting edits only",
    )
    parser.add_argument(
        "-v", "--verbose", action="store_const", const=True, help="Stream full agent output"
    )
    parser.add_argument(
        "--timeout",
        dest="timeout_seconds",
        type=float,
        help="Per-iteration timeout in seconds",
    )
    parser.add_argument(
        "--sandbox",
        action="store_const",
        const=True,
        help="Run the agent inside a docker sandbox",
    )
    parser.add_argument(
        "--no-auto-commit",
        dest="auto_commit",
        action="store_const",
        const=False,
        help="Do not commit tracked changes after each iteration",
    )
    parser.add_argument(
        "--no-notify",
        dest="notifications_enabled",
        action="store_const",
        const=False,
        help="Disable notifications",
    )
    parser.add_argument(
        "--no-sound",
        dest="sound_enabled",
        action="store_const",
        const=False,
        help="Disable the terminal bell",
    )
    parser.add_argument(
        "--headless",
        action="store_true",
        help="No interactive controls; blocked/decide signals end the run",
    )
    parser.add_argument(
        "--cwd",
        dest="working_directory",
        help=(
            "Project directory the agent runs in. "
            "Takes precedence over config/env cwd values."
        ),
    )
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    parser.add_argument(
        "--history",
        dest="history_limit",
        nargs="?",
        const=10,
        type=int,
        help="List recent runs (default 10) and exit",
    )
    parser.add_argument("--show-history", dest="show_history", help="Show one run by id and exit")
    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = cast(CLIArgs, parser.parse_args(argv, namespace=CLIArgs()))
    _configure_logging(args.debug)

    config = AppConfig.from_env()
    _apply_overrides(config, args)
    history_store = HistoryStore(config.history_dir)

    if args.show_history:
        return _show_history(history_store, args.show_history)
    if args.history_limit is not None:
        return _list_history(history_store, args.history_limit)

    configured_working_directory = (
        args.working_directory if args.working_directory is not None else config.working_directory
    )
    resolved_working_directory = Path(configured_working_directory or Path.cwd()).expanduser()
    resolved_working_directory = resolved_working_directory.resolve()
    if not resolved_working_directory.exists() or not resolved_working_directory.is_dir():
        print(f"Invalid project directory: {configured_working_directory}")
        return 1
    project_root = str(resolved_working_directory)

    try:
        prompt, from_file = load_prompt(args.prompt or "")
    except OSError as exc:
        print(f"Failed to read prompt file: {exc}")
        return 1
    if not prompt.strip():
        print("Error: No prompt provided")
        print("Usage: ralph [options] <prompt_or_file>")
        return 1
    if from_file:
        print(f"Loaded prompt from file: {Path(args.prompt or '').resolve()}")

    runner = create_runner("claude")
    executable = getattr(runner, "docker_executable" if config.sandbox else "executable", "claude")
    if shutil.which(executable) is None:
        print(f"Agent executable not found on PATH: {executable}")
        return 1

    run_config = config.to_run_config(project_root)
    loop = RalphLoop(
        config=run_config,
        runner=runner,
        history_store=history_store,
        notifier=(
            TerminalNotifier(sound=config.sound_enabled)
            if config.notifications_enabled
            else LogNotifier()
        ),
        committer=GitCommitter() if run_config.auto_commit else None,
        on_iteration_start=lambda iteration: _print_iteration_start(run_config, iteration),
        on_iteration_end=_print_iteration_end,
        on_output_chunk=_write_chunk if config.verbose else None,
        on_status_change=_print_status,
        pause_on_intervention=not args.headless,
    )

    _print_banner(run_config, prompt, headless=args.headless)
    state = _run_in_foreground(loop, runner, prompt, interactive=_is_interactive(args))
    _print_summary(state, loop.history, history_store)
    return 1 if state.status is LoopStatus.ERROR else 0


def _configure_logging(debug: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _apply_overrides(config: AppConfig, args: CLIArgs) -> None:
    for field_name in (
        "max_iterations",
        "unlimited",
        "completion_signal",
        "model",
        "dangerously_skip_permissions",
        "verbose",
        "timeout_seconds",
        "sandbox",
        "auto_commit",
        "notifications_enabled",
        "sound_enabled",
    ):
        value = getattr(args, field_name, None)
        if value is not None:
            setattr(config, field_name, value)


def _is_interactive(args: CLIArgs) -> bool:
    return not args.headless and sys.stdin is not None and sys.stdin.isatty()


class _InterruptHandler:
    """First interrupt stops gracefully; the second kills the agent and exits."""

    def __init__(self, loop: RalphLoop, runner: AgentRunner) -> None:
        self.loop = loop
        self.runner = runner
        self.count = 0

    def __call__(self, signum: int, frame: FrameType | None) -> None:
        self.count += 1
        if self.count == 1:
            print("\nReceived interrupt - press Ctrl+C again to force exit", file=sys.stderr)
            self.loop.stop()
            return
        print("Force exiting...", file=sys.stderr)
        self.runner.kill_active_process()
        raise SystemExit(130)


def _run_in_foreground(
    loop: RalphLoop,
    runner: AgentRunner,
    prompt: str,
    *,
    interactive: bool,
) -> LoopState:
    worker = threading.Thread(target=loop.start, args=(prompt,), name="ralph-loop", daemon=True)
    previous_handler = signal.signal(signal.SIGINT, _InterruptHandler(loop, runner))
    try:
        worker.start()
        if interactive:
            print("Controls: [p] pause  [r] resume  [q] quit  (press Enter after the key)")
            threading.Thread(
                target=read_controls,
                args=(loop, sys.stdin),
                name="ralph-controls",
                daemon=True,
            ).start()
        while worker.is_alive():
            worker.join(timeout=0.5)
    finally:
        signal.signal(signal.SIGINT, previous_handler)
    return loop.snapshot()


def read_controls(loop: RalphLoop, lines: Iterable[str]) -> None:
    """Map ``p``/``r``/``q`` input lines onto pause, resume and stop."""
    for line in lines:
        command = line.strip().lower()
        if command in {"p", "pause"}:
            loop.pause()
        elif command in {"r", "resume"}:
            loop.resume()
        elif command in {"q", "quit", "exit", "stop"}:
            loop.stop()
            return


def _print_banner(config: RunConfig, prompt: str, *, headless: bool) -> None:
    max_display = "unlimited" if config.unlimited else str(config.max_iterations)
    preview = prompt[:PROMPT_PREVIEW_CHARS] + ("..." if len(prompt) > PROMPT_PREVIEW_CHARS else "")
    mode = "headless" if headless else "interactive"
    print(RULE)
    print(f"RALPH - autonomous AI coding loop ({mode})")
    print(f"Model: {config.model}")
    print(f"Max iterations: {max_display}")
    print(f"Project root: {config.project_root}")
    print(f"Prompt: {preview}")
    print(RULE)


def _print_iteration_start(config: RunConfig, iteration: int) -> None:
    if config.unlimited:
        display = f"{iteration} (unlimited)"
    else:
        display = f"{iteration}/{config.max_iterations}"
    print(f"[INFO] Starting iteration {display}")


def _print_iteration_end(iteration: int, result: RunResult) -> None:
    outcome = "ok" if result.success else f"failed: {result.error}"
    print(
        f"[INFO] Iteration {iteration} finished in {format_duration(result.duration)} "
        f"({outcome}; {describe_signal(result.signal)})"
    )


def _print_status(status: LoopStatus) -> None:
    print(f"[STATUS] {status.value}")


def _write_chunk(chunk: str) -> None:
    sys.stdout.write(chunk)
    sys.stdout.flush()


def _print_summary(
    state: LoopState,
    entry: HistoryEntry | None,
    history_store: HistoryStore,
) -> None:
    print(RULE)
    print(f"Final status: {state.status.value.upper()}")
    print(f"Total iterations: {state.current_iteration}")
    if entry is not None:
        print(f"Total duration: {format_duration(entry.total_duration)}")
        print(f"History id: {entry.id} ({history_store.history_dir})")
    if state.last_error:
        print(f"Last error: {state.last_error}")
    print(RULE)


def _list_history(history_store: HistoryStore, limit: int) -> int:
    rows = history_store.list_recent(limit)
    if not rows:
        print("No runs recorded yet.")
        return 0
    for row in rows:
        duration = row.get("total_duration")
        duration_text = (
            format_duration(float(duration)) if isinstance(duration, (int, float)) else "?"
        )
        print(
            f"{row.get('id')}  {row.get('timestamp')}  {str(row.get('result')):<12}  "
            f"iterations={row.get('iteration_count')}  duration={duration_text}  "
            f"{row.get('project_root')}"
        )
    return 0


def _show_history(history_store: HistoryStore, history_id: str) -> int:
    entry = history_store.load(history_id)
    if entry is None:
        print(f"No history entry found for id: {history_id}")
        return 1
    print(f"Run {entry.id} ({entry.result.value})")
    print(f"Started: {entry.timestamp}")
    print(f"Project root: {entry.project_root}")
    print(f"Total duration: {format_duration(entry.total_duration)}")
    for record in entry.iterations:
        print(
            f"  [{record.number}] {format_duration(record.duration)} - "
            f"{describe_signal(record.signal)}"
        )
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
