"""Structured logging for nu-dash.

The dashboard owns the terminal while it runs, so in TUI mode every record
goes to an append-only file. Raw check output is logged at debug level.
"""

import logging
import re
import sys
from pathlib import Path

import structlog

LOG_LEVELS = ("debug", "info", "warning", "error")
DEFAULT_LOG_FILE = Path.home() / ".cache" / "nu-dash" / "debug.log"

# API keys that may show up in command lines, env dumps or AI errors
_SENSITIVE_RE = re.compile(r"(sk-|key-|token-|AIza)[a-zA-Z0-9_\-]{6,}", re.IGNORECASE)


def redact_sensitive(logger: object, method_name: str, event_dict: dict) -> dict:
    """Structlog processor that masks API keys in string values."""
    for key, value in event_dict.items():
        if isinstance(value, str):
            event_dict[key] = _SENSITIVE_RE.sub(lambda m: m.group(1) + "***", value)
    return event_dict


def _handlers(log_file: Path | None, log_level: int, tui_mode: bool) -> list[logging.Handler]:
    """Handlers for the root logger.

    Console output is dropped in TUI mode; the file, when given, is kept
    across runs.
    """
    handlers: list[logging.Handler] = []
    if not tui_mode:
        handlers.append(logging.StreamHandler(sys.stderr))
    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(str(log_file), mode="a"))
    if not handlers:
        handlers.append(logging.NullHandler())
    for handler in handlers:
        handler.setLevel(log_level)
    return handlers


def setup_logging(
    level: str = "info",
    json_output: bool = False,
    log_file: Path | None = None,
    tui_mode: bool = False,
) -> None:
    """Configure structlog for the entire application.

    Args:
        level: One of LOG_LEVELS.
        json_output: If True, output JSON lines.
        log_file: Append-only log file. The only output in TUI mode.
        tui_mode: If True, never write to the console.
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    if json_output:
        renderer: structlog.types.Processor = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=not tui_mode and not log_file)

    formatter = structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )
    handlers = _handlers(log_file, log_level, tui_mode)
    for handler in handlers:
        handler.setFormatter(formatter)
    logging.basicConfig(level=log_level, handlers=handlers, force=True)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            redact_sensitive,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(module: str) -> structlog.stdlib.BoundLogger:
    """Logger bound to a module name ("runner", "session", ...)."""
    return structlog.get_logger(module=module)
