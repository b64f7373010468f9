"""Task execution engine: classify every task concurrently, keep input order."""

import asyncio
import contextlib
from collections.abc import Mapping, Sequence

from .classifier import ExecutionResult, Level, classify
from .config import GlobalConfig, TaskSpec
from .logging import get_logger

logger = get_logger("engine")


async def run_tasks(
    tasks: Sequence[TaskSpec],
    config: GlobalConfig,
    env: Mapping[str, str] | None = None,
    max_concurrent: int = 0,
) -> list[ExecutionResult]:
    """Classify all tasks in parallel.

    Args:
        tasks: Tasks to run.
        config: Global settings shared read-only by every task.
        env: Merged environment shared read-only by every task.
        max_concurrent: Upper bound on tasks in flight (0 = unbounded).

    Returns:
        One result per task, ``results[i]`` belonging to ``tasks[i]``
        whatever order the processes finish in.
    """
    sem = asyncio.Semaphore(max_concurrent) if max_concurrent > 0 else None

    async def run_one(task: TaskSpec) -> ExecutionResult:
        async with sem if sem else contextlib.nullcontext():
            try:
                return await classify(task, config, env)
            except Exception as e:
                logger.exception("Unexpected failure while classifying", task=task.name)
                return ExecutionResult(level=Level.CRITICAL, message=str(e), details=repr(e))

    logger.info("Running tasks", count=len(tasks), max_concurrent=max_concurrent or None)
    results = await asyncio.gather(*[run_one(t) for t in tasks])
    logger.info(
        "Tasks finished",
        count=len(results),
        errors=sum(1 for r in results if r.level is Level.ERROR),
        critical=sum(1 for r in results if r.level is Level.CRITICAL),
    )
    return list(results)


def run_tasks_sync(
    tasks: Sequence[TaskSpec],
    config: GlobalConfig,
    env: Mapping[str, str] | None = None,
    max_concurrent: int = 0,
) -> list[ExecutionResult]:
    """Blocking wrapper around :func:`run_tasks` for callers without a loop."""
    return asyncio.run(run_tasks(tasks, config, env, max_concurrent))
