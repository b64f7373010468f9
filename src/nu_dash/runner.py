"""Process runner for nu-dash.

Runs external commands and hands back their separated output plus an
error string. No classification happens here.
"""

import asyncio
import subprocess
from collections.abc import Mapping, Sequence
from dataclasses import dataclass

from .logging import get_logger

logger = get_logger("runner")

READ_CHUNK = 64 * 1024


@dataclass(frozen=True)
class ProcessOutput:
    """Captured result of one external command."""

    stdout: str
    stderr: str
    error: str | None = None  # None on success
    returncode: int | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def combined(self) -> str:
        return self.stdout + self.stderr


def _exit_error(returncode: int | None) -> str | None:
    if returncode is None or returncode == 0:
        return None
    if returncode < 0:
        return f"signal: killed by signal {-returncode}"
    return f"exit status {returncode}"


async def _drain(stream: asyncio.StreamReader, chunks: list[bytes]) -> None:
    while chunk := await stream.read(READ_CHUNK):
        chunks.append(chunk)


async def _feed(stream: asyncio.StreamWriter, data: bytes) -> None:
    try:
        stream.write(data)
        await stream.drain()
    except (BrokenPipeError, ConnectionResetError):
        # The child exited or closed stdin without reading everything
        pass
    stream.close()


async def _run(
    argv: Sequence[str],
    stdin: str | None,
    cwd: str | None,
    env: Mapping[str, str] | None,
    timeout: float | None,
) -> ProcessOutput:
    try:
        proc = await asyncio.create_subprocess_exec(
            *argv,
            stdin=asyncio.subprocess.PIPE if stdin is not None else asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            cwd=cwd,
            env=dict(env) if env is not None else None,
        )
    except OSError as e:
        logger.warning("Failed to start process", argv=list(argv), error=str(e))
        return ProcessOutput("", "", error=str(e))

    # Output is collected chunk by chunk so a timeout keeps what was read
    out: list[bytes] = []
    err: list[bytes] = []
    io = [_drain(proc.stdout, out), _drain(proc.stderr, err)]
    if stdin is not None:
        io.append(_feed(proc.stdin, stdin.encode()))

    async def communicate() -> None:
        await asyncio.gather(*io)
        await proc.wait()

    try:
        await asyncio.wait_for(communicate(), timeout=timeout)
        error = _exit_error(proc.returncode)
    except TimeoutError:
        proc.kill()
        await proc.wait()
        logger.warning("Process timed out", argv=list(argv), timeout=timeout)
        error = f"timed out after {timeout:g}s"

    result = ProcessOutput(
        stdout=b"".join(out).decode(errors="replace"),
        stderr=b"".join(err).decode(errors="replace"),
        error=error,
        returncode=proc.returncode,
    )
    logger.debug(
        "Process finished",
        argv=list(argv),
        returncode=proc.returncode,
        stdout=result.stdout,
        stderr=result.stderr,
    )
    return result


async def run_check(
    argv: Sequence[str],
    cwd: str | None = None,
    env: Mapping[str, str] | None = None,
    timeout: float | None = None,
) -> ProcessOutput:
    """Run a primary check command with no stdin.

    Args:
        argv: Command and arguments.
        cwd: Working directory (None = inherit).
        env: Full environment for the child (None = inherit).
        timeout: Seconds before the process is killed (None = wait forever).

    Returns:
        ProcessOutput with stdout and stderr captured separately.
    """
    return await _run(argv, None, cwd, env, timeout)


async def run_piped(
    argv: Sequence[str],
    stdin: str,
    cwd: str | None = None,
    env: Mapping[str, str] | None = None,
    timeout: float | None = None,
) -> ProcessOutput:
    """Run a filter command, writing ``stdin`` then closing its input."""
    return await _run(argv, stdin, cwd, env, timeout)


def run_interactive(
    argv: Sequence[str],
    cwd: str | None = None,
    env: Mapping[str, str] | None = None,
) -> str | None:
    """Run a command attached to the terminal.

    Used for actions and the editor while the dashboard is suspended.

    Returns:
        Error text, or None if the command exited with status 0.
    """
    try:
        result = subprocess.run(list(argv), cwd=cwd, env=dict(env) if env is not None else None)
    except OSError as e:
        logger.warning("Failed to start interactive process", argv=list(argv), error=str(e))
        return str(e)
    return _exit_error(result.returncode)
