import json

import pytest

from ralphloop.config import DEFAULT_COMPLETION_SIGNAL, AppConfig

RALPH_ENV_VARS = (
    "RALPH_MAX_ITERATIONS",
    "RALPH_UNLIMITED",
    "RALPH_COMPLETION_SIGNAL",
    "RALPH_MODEL",
    "RALPH_DANGEROUSLY_SKIP_PERMISSIONS",
    "RALPH_TIMEOUT_SECONDS",
    "RALPH_SANDBOX",
    "RALPH_AUTO_COMMIT",
    "RALPH_HISTORY_DIR",
    "RALPH_NOTIFICATIONS",
    "RALPH_SOUND",
    "RALPH_VERBOSE",
    "RALPH_CWD",
    "RALPH_CONFIG_FILE",
)


@pytest.fixture(autouse=True)
def clean_env(tmp_path, monkeypatch) -> None:
    for name in RALPH_ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)


def test_defaults_without_env_or_files() -> None:
    config = AppConfig.from_env()

    assert config.max_iterations == 200
    assert config.unlimited is False
    assert config.completion_signal == DEFAULT_COMPLETION_SIGNAL
    assert config.model == "opus"
    assert config.dangerously_skip_permissions is False
    assert config.timeout_seconds is None
    assert config.sandbox is False
    assert config.auto_commit is True
    assert config.history_dir.endswith("history")
    assert config.notifications_enabled is True
    assert config.sound_enabled is True
    assert config.verbose is False
    assert config.working_directory is None


def test_options_load_from_file_and_env(tmp_path, monkeypatch) -> None:
    config_path = tmp_path / "ralph.config.json"
    config_path.write_text(
        json.dumps(
            {
                "max_iterations": 12,
                "model": "sonnet",
                "auto_commit": False,
                "timeout_seconds": 600,
                "cwd": "./work",
                "notifications": False,
            }
        ),
        encoding="utf-8",
    )
    monkeypatch.setenv("RALPH_CONFIG_FILE", str(config_path))

    file_config = AppConfig.from_env()
    assert file_config.max_iterations == 12
    assert file_config.model == "sonnet"
    assert file_config.auto_commit is False
    assert file_config.timeout_seconds == 600.0
    assert file_config.working_directory == "./work"
    assert file_config.notifications_enabled is False

    monkeypatch.setenv("RALPH_MAX_ITERATIONS", "3")
    monkeypatch.setenv("RALPH_MODEL", "haiku")
    monkeypatch.setenv("RALPH_AUTO_COMMIT", "yes")
    monkeypatch.setenv("RALPH_CWD", "~/project")

    env_config = AppConfig.from_env()
    assert env_config.max_iterations == 3
    assert env_config.model == "haiku"
    assert env_config.auto_commit is True
    assert env_config.working_directory == "~/project"


@pytest.mark.parametrize("value", ["0", "-4", "many"])
def test_invalid_max_iterations_falls_back_to_default(monkeypatch, value: str) -> None:
    monkeypatch.setenv("RALPH_MAX_ITERATIONS", value)

    assert AppConfig.from_env().max_iterations == 200


def test_unrecognized_boolean_keeps_default(monkeypatch) -> None:
    monkeypatch.setenv("RALPH_UNLIMITED", "maybe")
    monkeypatch.setenv("RALPH_SOUND", "off")

    config = AppConfig.from_env()

    assert config.unlimited is False
    assert config.sound_enabled is False


def test_local_config_auto_loaded_without_env_override(tmp_path) -> None:
    (tmp_path / "ralph.config.json").write_text(
        json.dumps({"model": "sonnet", "max_iterations": 20}),
        encoding="utf-8",
    )
    (tmp_path / "ralph.config.local.json").write_text(
        json.dumps({"max_iterations": 7}),
        encoding="utf-8",
    )

    config = AppConfig.from_env()

    assert config.model == "sonnet"
    assert config.max_iterations == 7


def test_explicit_config_file_disables_local_auto_merge(tmp_path, monkeypatch) -> None:
    explicit_path = tmp_path / "custom.config.json"
    explicit_path.write_text(json.dumps({"max_iterations": 3}), encoding="utf-8")
    (tmp_path / "ralph.config.local.json").write_text(
        json.dumps({"max_iterations": 99}),
        encoding="utf-8",
    )
    monkeypatch.setenv("RALPH_CONFIG_FILE", str(explicit_path))

    assert AppConfig.from_env().max_iterations == 3


def test_malformed_config_file_is_ignored(tmp_path) -> None:
    (tmp_path / "ralph.config.json").write_text("[not an object", encoding="utf-8")

    assert AppConfig.from_env().model == "opus"


def test_to_run_config_copies_run_settings(tmp_path, monkeypatch) -> None:
    monkeypatch.setenv("RALPH_UNLIMITED", "true")
    monkeypatch.setenv("RALPH_COMPLETION_SIGNAL", "ALL DONE")
    monkeypatch.setenv("RALPH_SANDBOX", "1")
    monkeypatch.setenv("RALPH_TIMEOUT_SECONDS", "45.5")

    run_config = AppConfig.from_env().to_run_config(str(tmp_path))

    assert run_config.project_root == str(tmp_path)
    assert run_config.unlimited is True
    assert run_config.completion_signal == "ALL DONE"
    assert run_config.sandbox is True
    assert run_config.timeout_seconds == 45.5
