"""Configuration module for nu-dash.

Contains the TaskSpec and GlobalConfig dataclasses, loading them from the
YAML config file, and the command template helper.
"""

import os
import shlex
from dataclasses import dataclass, replace
from pathlib import Path

import yaml

# === Constants ===

CONFIG_FILE = Path("nu-dash.yaml")

# Slot in the global template that receives each task's command
COMMAND_SLOT = "%s"
DEFAULT_TEMPLATE = COMMAND_SLOT
DEFAULT_SHELL: tuple[str, ...] = ("nu", "-c")

AI_BACKENDS = ("ollama", "gemini")


class ConfigError(ValueError):
    """Raised when the config file cannot be read or is malformed."""


# === Data model ===


@dataclass(frozen=True)
class TaskSpec:
    """One declarative check."""

    name: str
    command: str
    message_format: str = ""
    error_if: str = ""
    expect_json: bool = False
    ignore_stderr: bool | None = None  # None = use the global default
    isolated_env: bool = False  # run through `direnv exec <workdir>`
    workdir: str = ""  # empty = process working directory
    actions: tuple[str, ...] = ()
    prompt_source: str = ""
    prompt_template: str = ""

    @property
    def cwd(self) -> str:
        return self.workdir or os.getcwd()


@dataclass(frozen=True)
class GlobalConfig:
    """Loaded config file: the task list plus global settings."""

    tasks: tuple[TaskSpec, ...] = ()
    template: str = DEFAULT_TEMPLATE
    env: tuple[str, ...] = ()
    ignore_stderr: bool = False
    shell: tuple[str, ...] = DEFAULT_SHELL
    interval: float = 0.0  # seconds between automatic reloads
    refresh: bool = False
    max_concurrent: int = 0  # 0 = unbounded
    timeout: float | None = None  # per-command timeout in seconds
    ai_backend: str = "ollama"
    ai_model: str = ""


def render_command(template: str, command: str) -> str:
    """Substitute a task command into the global command template."""
    return template.replace(COMMAND_SLOT, command, 1)


def parse_env_pairs(pairs: list[str] | tuple[str, ...]) -> dict[str, str]:
    """Turn ``KEY=VALUE`` strings into an ordered dict.

    Raises:
        ConfigError: If an entry has no ``=`` or an empty key.
    """
    env: dict[str, str] = {}
    for pair in pairs:
        key, sep, value = str(pair).partition("=")
        if not sep or not key:
            raise ConfigError(f"env entry {pair!r} is not KEY=VALUE")
        env[key] = value
    return env


def apply_ignore_stderr_default(config: GlobalConfig) -> GlobalConfig:
    """Resolve every task's unset ``ignore_stderr`` to the global default."""
    tasks = tuple(
        replace(task, ignore_stderr=config.ignore_stderr) if task.ignore_stderr is None else task
        for task in config.tasks
    )
    return replace(config, tasks=tasks)


# === Config Loading ===


def _as_bool(value: object, key: str) -> bool:
    if not isinstance(value, bool):
        raise ConfigError(f"{key} must be true or false, got {value!r}")
    return value


def _as_str(value: object, key: str) -> str:
    if value is None:
        return ""
    if isinstance(value, (dict, list)):
        raise ConfigError(f"{key} must be a string")
    return str(value)


def _as_str_list(value: object, key: str) -> tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        return (value,)
    if not isinstance(value, list):
        raise ConfigError(f"{key} must be a list of strings")
    return tuple(_as_str(item, key) for item in value)


def _as_number(value: object, key: str) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ConfigError(f"{key} must be a number, got {value!r}")
    if value < 0:
        raise ConfigError(f"{key} must not be negative")
    return float(value)


def _parse_shell(value: object) -> tuple[str, ...]:
    """Shell argv prefix. A string is split the way a shell would split it."""
    if isinstance(value, str):
        try:
            return tuple(shlex.split(value))
        except ValueError as e:
            raise ConfigError(f"shell: {e}") from e
    return _as_str_list(value, "shell")


def _parse_task(raw: object, index: int) -> TaskSpec:
    where = f"tasks[{index}]"
    if not isinstance(raw, dict):
        raise ConfigError(f"{where} must be a mapping")

    command = _as_str(raw.get("command"), f"{where}.command")
    if not command:
        raise ConfigError(f"{where}.command is required")

    ignore_stderr = raw.get("ignore_stderr")
    return TaskSpec(
        name=_as_str(raw.get("name"), f"{where}.name") or command,
        command=command,
        message_format=_as_str(raw.get("message_format"), f"{where}.message_format"),
        error_if=_as_str(raw.get("error_if"), f"{where}.error_if"),
        expect_json=_as_bool(raw.get("expect_json", False), f"{where}.expect_json"),
        ignore_stderr=(
            None if ignore_stderr is None else _as_bool(ignore_stderr, f"{where}.ignore_stderr")
        ),
        isolated_env=_as_bool(raw.get("isolated_env", False), f"{where}.isolated_env"),
        workdir=_as_str(raw.get("workdir"), f"{where}.workdir"),
        actions=_as_str_list(raw.get("actions"), f"{where}.actions"),
        prompt_source=_as_str(raw.get("prompt_source"), f"{where}.prompt_source"),
        prompt_template=_as_str(raw.get("prompt_template"), f"{where}.prompt_template"),
    )


def load_config_from_yaml(config_path: Path = CONFIG_FILE) -> GlobalConfig:
    """Load and validate the dashboard config file.

    Args:
        config_path: Path to the YAML file.

    Returns:
        GlobalConfig with every task's ``ignore_stderr`` resolved.

    Raises:
        ConfigError: If the file is missing, unreadable or malformed.
    """
    try:
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
    except OSError as e:
        raise ConfigError(f"cannot read {config_path}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"invalid YAML in {config_path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigError(f"{config_path}: top level must be a mapping")

    raw_tasks = data.get("tasks") or []
    if not isinstance(raw_tasks, list):
        raise ConfigError("tasks must be a list")

    template = _as_str(data.get("template", DEFAULT_TEMPLATE), "template")
    if template.count(COMMAND_SLOT) != 1:
        raise ConfigError(f"template must contain exactly one {COMMAND_SLOT!r}")

    env = _as_str_list(data.get("env"), "env")
    parse_env_pairs(env)

    shell = _parse_shell(data.get("shell")) or DEFAULT_SHELL

    ai = data.get("ai") or {}
    if not isinstance(ai, dict):
        raise ConfigError("ai must be a mapping")
    ai_backend = _as_str(ai.get("backend"), "ai.backend") or "ollama"
    if ai_backend not in AI_BACKENDS:
        raise ConfigError(f"ai.backend must be one of {', '.join(AI_BACKENDS)}")

    timeout = data.get("timeout")

    config = GlobalConfig(
        tasks=tuple(_parse_task(raw, i) for i, raw in enumerate(raw_tasks)),
        template=template,
        env=env,
        ignore_stderr=_as_bool(data.get("ignore_stderr", False), "ignore_stderr"),
        shell=shell,
        interval=_as_number(data.get("interval", 0), "interval"),
        refresh=_as_bool(data.get("refresh", False), "refresh"),
        max_concurrent=int(_as_number(data.get("max_concurrent", 0), "max_concurrent")),
        timeout=None if timeout is None else _as_number(timeout, "timeout") or None,
        ai_backend=ai_backend,
        ai_model=_as_str(ai.get("model"), "ai.model"),
    )
    return apply_ignore_stderr_default(config)
