"""Result classification: turns one task's raw output into a leveled result.

Pipeline: execute -> (structured parse | format message -> error condition).
A failing primary command stops the pipeline; failing auxiliary commands
only add to ``details``.
"""

import json
from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum

from .config import GlobalConfig, TaskSpec, render_command
from .logging import get_logger
from .runner import ProcessOutput, run_check, run_piped

logger = get_logger("classifier")


class Level(str, Enum):
    """Severity of a check result."""

    INFO = "info"
    ERROR = "error"
    CRITICAL = "critical"


@dataclass(frozen=True)
class ExecutionResult:
    """Outcome of one task run. A new run replaces it, never mutates it."""

    level: Level
    message: str
    details: str


def build_argv(task: TaskSpec, config: GlobalConfig) -> list[str]:
    """Build the argv for a task's primary command."""
    argv = [*config.shell, render_command(config.template, task.command)]
    if task.isolated_env:
        argv = ["direnv", "exec", task.cwd, *argv]
    return argv


def _aux_output(output: ProcessOutput) -> str:
    text = output.combined
    if output.error:
        text += output.error + "\n"
    return text


def parse_structured(stdout: str) -> ExecutionResult:
    """Parse ``{level, message, details}`` JSON emitted by a check.

    Raises:
        ValueError: If stdout is not a JSON object with a known level.
    """
    data = json.loads(stdout)
    if not isinstance(data, dict):
        raise ValueError("expected a JSON object with level, message and details")
    try:
        level = Level(str(data.get("level", "")).lower())
    except ValueError:
        raise ValueError(f"unknown level {data.get('level')!r}") from None
    return ExecutionResult(
        level=level,
        message=str(data.get("message", "")),
        details=str(data.get("details", "")),
    )


async def classify(
    task: TaskSpec,
    config: GlobalConfig,
    env: Mapping[str, str] | None = None,
) -> ExecutionResult:
    """Run one task and classify its output.

    Args:
        task: The check to run.
        config: Global settings (shell, template, timeout).
        env: Environment handed to every command of this task.

    Returns:
        ExecutionResult. Never raises for command failures.
    """
    log = logger.bind(task=task.name)
    cwd = task.cwd

    primary = await run_check(build_argv(task, config), cwd=cwd, env=env, timeout=config.timeout)
    if not primary.ok:
        log.info("Check failed to execute", error=primary.error)
        return ExecutionResult(
            level=Level.CRITICAL,
            message=primary.error or "",
            details=primary.combined + (primary.error or ""),
        )

    stdout = primary.stdout
    stderr = "" if task.ignore_stderr else primary.stderr

    if task.expect_json:
        try:
            return parse_structured(stdout)
        except ValueError as e:
            log.info("Structured output rejected", error=str(e))
            return ExecutionResult(level=Level.CRITICAL, message=str(e), details=stdout)

    message = stdout
    details = stdout + stderr

    if task.message_format:
        formatted = await run_piped(
            [*config.shell, task.message_format],
            stdout,
            cwd=cwd,
            env=env,
            timeout=config.timeout,
        )
        if formatted.ok:
            message = formatted.stdout
        else:
            log.warning("Message formatter failed", error=formatted.error)
            details += _aux_output(formatted)

    if not task.error_if:
        return ExecutionResult(level=Level.INFO, message=message, details=details)

    condition = await run_piped(
        [*config.shell, task.error_if],
        stdout,
        cwd=cwd,
        env=env,
        timeout=config.timeout,
    )
    details += _aux_output(condition)
    if "true" in condition.stdout.lower():
        return ExecutionResult(level=Level.ERROR, message=message, details=details)
    if not condition.ok:
        log.warning("Error condition failed", error=condition.error)
        return ExecutionResult(level=Level.CRITICAL, message=message, details=details)
    return ExecutionResult(level=Level.INFO, message=message, details=details)
