"""Side effects of the dashboard: reload, actions, editor and AI explain.

The state machine in :mod:`nu_dash.dashboard` decides *what* happens; the
functions here do it and return the completion event to feed back.
"""

import asyncio
import os
from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from pathlib import Path

from .ai import GenerationError, TextBackend
from .config import (
    CONFIG_FILE,
    ConfigError,
    GlobalConfig,
    TaskSpec,
    load_config_from_yaml,
    parse_env_pairs,
)
from .dashboard import (
    ActionFinished,
    DashboardState,
    EditorFinished,
    ExplainFinished,
    ReloadFailed,
    ReloadFinished,
)
from .engine import run_tasks
from .logging import get_logger
from .runner import run_check, run_interactive

logger = get_logger("session")

DEFAULT_EDITOR = "vi"
PAUSE_PROMPT = "Press Enter to return to the dashboard..."


@dataclass(frozen=True)
class RunOptions:
    """Settings fixed for the whole session (from the command line)."""

    config_path: Path = CONFIG_FILE
    env_overrides: tuple[str, ...] = ()
    max_concurrent: int | None = None  # None = use the config file value
    timeout: float | None = None  # None = use the config file value
    editor: str = field(default_factory=lambda: os.environ.get("EDITOR") or DEFAULT_EDITOR)


def build_environment(
    base: Mapping[str, str],
    config_env: tuple[str, ...] | list[str],
    overrides: tuple[str, ...] | list[str],
) -> dict[str, str]:
    """Layer environments: process, then config file, then command line.

    Later layers win on key collisions.

    Raises:
        ConfigError: If a config or override entry is not KEY=VALUE.
    """
    env = dict(base)
    env.update(parse_env_pairs(config_env))
    env.update(parse_env_pairs(overrides))
    return env


def apply_options(config: GlobalConfig, options: RunOptions) -> GlobalConfig:
    """Apply command-line overrides to a freshly loaded config."""
    if options.max_concurrent is not None:
        config = replace(config, max_concurrent=options.max_concurrent)
    if options.timeout is not None:
        config = replace(config, timeout=options.timeout or None)
    return config


def load(options: RunOptions) -> tuple[GlobalConfig, dict[str, str]]:
    """Read the config file and merge the environment.

    Raises:
        ConfigError: If the file is missing or malformed.
    """
    config = apply_options(load_config_from_yaml(options.config_path), options)
    env = build_environment(os.environ, config.env, options.env_overrides)
    return config, env


async def load_and_run(options: RunOptions) -> ReloadFinished | ReloadFailed:
    """Reload the config and run every task once.

    A config that cannot be loaded leaves everything as it was: the caller
    gets ``ReloadFailed`` and no task is run.
    """
    try:
        config, env = load(options)
    except ConfigError as e:
        logger.warning("Config reload failed", path=str(options.config_path), error=str(e))
        return ReloadFailed(str(e))

    results = await run_tasks(config.tasks, config, env, config.max_concurrent)
    return ReloadFinished(config=config, results=tuple(results), env=env)


def initial_state(options: RunOptions) -> DashboardState:
    """Load the config and run all tasks before the dashboard starts.

    Raises:
        ConfigError: If the config cannot be loaded. Fatal at startup.
    """
    event = asyncio.run(load_and_run(options))
    if isinstance(event, ReloadFailed):
        raise ConfigError(event.error)
    return DashboardState(config=event.config, results=event.results, env=event.env)


def run_action(
    task: TaskSpec,
    command: str,
    config: GlobalConfig,
    env: Mapping[str, str],
    pause: bool = True,
) -> ActionFinished:
    """Run a follow-up action on the real terminal, then wait for Enter."""
    logger.info("Running action", task=task.name, command=command)
    error = run_interactive([*config.shell, command], cwd=task.cwd, env=env)
    if error:
        logger.warning("Action failed", task=task.name, error=error)
        print(f"\n{task.name}: {error}")
    if pause:
        input(PAUSE_PROMPT)
    return ActionFinished(error=error)


def open_editor(options: RunOptions, env: Mapping[str, str]) -> EditorFinished:
    """Open the config file in ``$EDITOR``."""
    logger.info("Opening editor", editor=options.editor, path=str(options.config_path))
    error = run_interactive([*options.editor.split(), str(options.config_path)], env=env)
    if error:
        logger.warning("Editor failed", editor=options.editor, error=error)
    return EditorFinished(error=error)


def build_prompt(template: str, text: str) -> str:
    """Wrap command output in a task's prompt template (``%s`` slot)."""
    if not template:
        return text
    if "%s" not in template:
        return f"{template}\n\n{text}"
    return template.replace("%s", text, 1)


async def explain(
    task: TaskSpec,
    config: GlobalConfig,
    env: Mapping[str, str],
    backend: TextBackend,
) -> ExplainFinished:
    """Run the task's prompt source and ask the AI backend about it.

    ``BackendConfigError`` is not caught here: it means the backend is
    misconfigured and the dashboard treats it as fatal.
    """
    source = await run_check(
        [*config.shell, task.prompt_source],
        cwd=task.cwd,
        env=env,
        timeout=config.timeout,
    )
    if not source.ok:
        logger.warning("Prompt source failed", task=task.name, error=source.error)
    prompt = build_prompt(task.prompt_template, source.combined)

    try:
        text = await asyncio.to_thread(backend.generate, prompt, config.ai_model)
    except GenerationError as e:
        logger.warning("Explain failed", task=task.name, error=str(e))
        return ExplainFinished(error=str(e))
    return ExplainFinished(text=text)
