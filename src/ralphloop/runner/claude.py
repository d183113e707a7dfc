"""Claude CLI runner implementation."""

from __future__ import annotations

import codecs
import logging
import os
import shutil
import subprocess
import threading
from collections.abc import Mapping
from typing import IO

import psutil

from ralphloop.agent.models import RunRequest, RunResult, Signal
from ralphloop.agent.signals import parse_signal

from .base import AgentRunner, OutputSink

LOGGER = logging.getLogger(__name__)

READ_CHUNK_BYTES = 4096
TERMINATE_GRACE_SECONDS = 3.0
# Environment variables that make a nested agent refuse to start.
_STRIPPED_ENV_VARS = ("CLAUDECODE",)


class ClaudeRunner(AgentRunner):
    """Runs ``claude --print`` as a child process and streams its stdout."""

    def __init__(
        self,
        executable: str = "claude",
        *,
        docker_executable: str = "docker",
        env: Mapping[str, str] | None = None,
        terminate_grace_seconds: float = TERMINATE_GRACE_SECONDS,
    ) -> None:
        self.executable = executable
        self.docker_executable = docker_executable
        self.extra_env = dict(env or {})
        self.terminate_grace_seconds = terminate_grace_seconds
        self._lock = threading.RLock()
        self._process: subprocess.Popen[bytes] | None = None

    @property
    def name(self) -> str:
        return "claude"

    @property
    def has_active_process(self) -> bool:
        with self._lock:
            return self._process is not None and self._process.poll() is None

    def build_args(self, request: RunRequest) -> list[str]:
        args = ["--print", "--model", request.model]
        if request.dangerously_skip_permissions:
            args.append("--dangerously-skip-permissions")
        else:
            args.extend(["--permission-mode", "acceptEdits"])
        args.extend(["--output-format", "text"])
        # The prompt must stay last.
        args.extend(["-p", request.prompt])
        return args

    def build_command(self, request: RunRequest) -> list[str]:
        args = self.build_args(request)
        if request.sandbox:
            return [
                self.docker_executable,
                "sandbox",
                "run",
                "--credentials",
                "host",
                self.executable,
                *args,
            ]
        return [self.executable, *args]

    def build_env(self) -> dict[str, str]:
        env = {key: value for key, value in os.environ.items() if key not in _STRIPPED_ENV_VARS}
        env["TERM"] = "dumb"
        env.update(self.extra_env)
        return env

    def run(
        self,
        request: RunRequest,
        *,
        on_output: OutputSink | None = None,
        on_error: OutputSink | None = None,
    ) -> RunResult:
        command = self.build_command(request)
        self.log_request(request, command)
        started = self.monotonic_now()

        with self._lock:
            if self._process is not None and self._process.poll() is None:
                msg = "An agent invocation is already active for this runner"
                raise RuntimeError(msg)
            try:
                process = subprocess.Popen(
                    command,
                    cwd=request.project_root,
                    env=self.build_env(),
                    stdin=subprocess.DEVNULL,
                    stdout=subprocess.PIPE,
                    stderr=subprocess.PIPE,
                )
            except OSError as exc:
                LOGGER.error("agent_spawn_failed", extra={"agent": self.name, "error": str(exc)})
                result = RunResult(
                    success=False,
                    output="",
                    error=str(exc),
                    duration=self.monotonic_now() - started,
                    signal=Signal.none(),
                )
                self.log_result(result)
                return result
            self._process = process

        stderr_chunks: list[str] = []
        stderr_reader = threading.Thread(
            target=_pump,
            args=(process.stderr, stderr_chunks, on_error),
            name="ralph-agent-stderr",
            daemon=True,
        )
        stderr_reader.start()

        stdout_chunks: list[str] = []
        try:
            _pump(process.stdout, stdout_chunks, on_output)
            returncode = process.wait()
            stderr_reader.join()
        except BaseException:
            if process.poll() is None:
                _terminate_tree(process, self.terminate_grace_seconds)
            raise
        finally:
            with self._lock:
                if self._process is process:
                    self._process = None

        output = "".join(stdout_chunks)
        stderr = "".join(stderr_chunks)
        signal = parse_signal(output)
        failed = returncode != 0 and not signal.found
        if failed:
            LOGGER.debug("agent_nonzero_exit", extra={"agent": self.name, "returncode": returncode})

        result = RunResult(
            success=not failed,
            output=output,
            error=(stderr or f"Process exited with code {returncode}") if failed else None,
            duration=self.monotonic_now() - started,
            signal=signal,
            returncode=returncode,
        )
        self.log_result(result)
        return result

    def kill_active_process(self) -> bool:
        with self._lock:
            process = self._process
            self._process = None
        if process is None or process.poll() is not None:
            return False
        LOGGER.info("agent_kill", extra={"agent": self.name, "pid": process.pid})
        _terminate_tree(process, self.terminate_grace_seconds)
        return True

    def is_available(self) -> bool:
        return self.version() is not None

    def version(self) -> str | None:
        if shutil.which(self.executable) is None:
            return None
        try:
            completed = subprocess.run(
                [self.executable, "--version"],
                capture_output=True,
                text=True,
                check=False,
                timeout=30,
            )
        except (OSError, subprocess.TimeoutExpired):
            return None
        if completed.returncode != 0:
            return None
        return completed.stdout.strip() or None


def _pump(stream: IO[bytes] | None, sink: list[str], callback: OutputSink | None) -> None:
    if stream is None:
        return
    decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
    with stream:
        while True:
            data = stream.read1(READ_CHUNK_BYTES)  # type: ignore[attr-defined]
            if not data:
                break
            text = decoder.decode(data)
            if text:
                sink.append(text)
                if callback:
                    callback(text)
    tail = decoder.decode(b"", final=True)
    if tail:
        sink.append(tail)
        if callback:
            callback(tail)


def _terminate_tree(process: subprocess.Popen[bytes], grace_seconds: float) -> None:
    """Terminate ``process`` and every descendant, escalating to SIGKILL."""
    try:
        descendants = psutil.Process(process.pid).children(recursive=True)
    except (psutil.NoSuchProcess, psutil.AccessDenied):
        descendants = []

    for child in descendants:
        try:
            child.terminate()
        except (psutil.NoSuchProcess, psutil.AccessDenied):
            continue
    try:
        process.terminate()
    except ProcessLookupError:
        pass

    _, alive = psutil.wait_procs(descendants, timeout=grace_seconds)
    for child in alive:
        try:
            child.kill()
        except (psutil.NoSuchProcess, psutil.AccessDenied):
            continue
    try:
        process.wait(timeout=grace_seconds)
    except subprocess.TimeoutExpired:
        process.kill()
