"""Environment-backed application configuration."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass
from pathlib import Path

from ralphloop.agent.models import RunConfig

DEFAULT_MAX_ITERATIONS = 200
DEFAULT_COMPLETION_SIGNAL = "<promise>COMPLETE</promise>"
DEFAULT_MODEL = "opus"
DEFAULT_HISTORY_DIR = str(Path.home() / ".ralph" / "history")


def _to_bool(value: str | None, default: bool = False) -> bool:
    """Convert common env var truthy/falsy values into booleans."""
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    return default


def _file_bool(file_config: dict[str, object], key: str, default: bool) -> bool:
    value = file_config.get(key)
    return value if isinstance(value, bool) else default


@dataclass(slots=True)
class AppConfig:
    """Runtime settings loaded from environment variables and config files."""

    max_iterations: int
    unlimited: bool
    completion_signal: str
    model: str
    dangerously_skip_permissions: bool
    timeout_seconds: float | None
    sandbox: bool
    auto_commit: bool
    history_dir: str
    notifications_enabled: bool
    sound_enabled: bool
    verbose: bool
    working_directory: str | None

    @classmethod
    def from_env(cls) -> AppConfig:
        file_config = _load_preferred_file_config()

        return cls(
            max_iterations=_to_positive_int(
                os.getenv("RALPH_MAX_ITERATIONS") or file_config.get("max_iterations"),
                default=DEFAULT_MAX_ITERATIONS,
            ),
            unlimited=_to_bool(
                os.getenv("RALPH_UNLIMITED"),
                default=_file_bool(file_config, "unlimited", False),
            ),
            completion_signal=(
                os.getenv("RALPH_COMPLETION_SIGNAL")
                or _to_optional_string(file_config.get("completion_signal"))
                or DEFAULT_COMPLETION_SIGNAL
            ),
            model=(
                os.getenv("RALPH_MODEL")
                or _to_optional_string(file_config.get("model"))
                or DEFAULT_MODEL
            ),
            dangerously_skip_permissions=_to_bool(
                os.getenv("RALPH_DANGEROUSLY_SKIP_PERMISSIONS"),
                default=_file_bool(file_config, "dangerously_skip_permissions", False),
            ),
            timeout_seconds=_to_positive_float(
                os.getenv("RALPH_TIMEOUT_SECONDS") or file_config.get("timeout_seconds")
            ),
            sandbox=_to_bool(
                os.getenv("RALPH_SANDBOX"),
                default=_file_bool(file_config, "sandbox", False),
            ),
            auto_commit=_to_bool(
                os.getenv("RALPH_AUTO_COMMIT"),
                default=_file_bool(file_config, "auto_commit", True),
            ),
            history_dir=(
                os.getenv("RALPH_HISTORY_DIR")
                or _to_optional_string(file_config.get("history_dir"))
                or DEFAULT_HISTORY_DIR
            ),
            notifications_enabled=_to_bool(
                os.getenv("RALPH_NOTIFICATIONS"),
                default=_file_bool(file_config, "notifications", True),
            ),
            sound_enabled=_to_bool(
                os.getenv("RALPH_SOUND"),
                default=_file_bool(file_config, "sound", True),
            ),
            verbose=_to_bool(
                os.getenv("RALPH_VERBOSE"),
                default=_file_bool(file_config, "verbose", False),
            ),
            working_directory=(
                os.getenv("RALPH_CWD") or _to_optional_string(file_config.get("cwd"))
            ),
        )

    def to_run_config(self, project_root: str) -> RunConfig:
        return RunConfig(
            project_root=project_root,
            max_iterations=self.max_iterations,
            unlimited=self.unlimited,
            completion_signal=self.completion_signal,
            model=self.model,
            dangerously_skip_permissions=self.dangerously_skip_permissions,
            timeout_seconds=self.timeout_seconds,
            sandbox=self.sandbox,
            auto_commit=self.auto_commit,
        )


def _to_optional_string(value: object) -> str | None:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def _load_file_config(path_value: str) -> dict[str, object]:
    path = Path(path_value)
    if not path.exists() or not path.is_file():
        return {}
    try:
        with path.open("r", encoding="utf-8") as fh:
            parsed = json.load(fh)
    except (OSError, json.JSONDecodeError):
        return {}
    if isinstance(parsed, dict):
        return parsed
    return {}


def _load_preferred_file_config() -> dict[str, object]:
    explicit_path = os.getenv("RALPH_CONFIG_FILE")
    if explicit_path:
        return _load_file_config(explicit_path)

    shared_config = _load_file_config("ralph.config.json")
    local_override = _load_file_config("ralph.config.local.json")
    return _merge_dicts(shared_config, local_override)


def _merge_dicts(base: dict[str, object], override: dict[str, object]) -> dict[str, object]:
    merged: dict[str, object] = dict(base)
    for key, value in override.items():
        base_value = merged.get(key)
        if isinstance(base_value, dict) and isinstance(value, dict):
            merged[key] = _merge_dicts(base_value, value)
        else:
            merged[key] = value
    return merged


def _to_positive_int(value: object, *, default: int) -> int:
    if isinstance(value, bool):
        return default
    if isinstance(value, int):
        return value if value > 0 else default
    if isinstance(value, str):
        try:
            parsed = int(value.strip())
        except ValueError:
            return default
        return parsed if parsed > 0 else default
    return default


def _to_positive_float(value: object) -> float | None:
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        return float(value) if value > 0 else None
    if isinstance(value, str):
        try:
            parsed = float(value.strip())
        except ValueError:
            return None
        return parsed if parsed > 0 else None
    return None
