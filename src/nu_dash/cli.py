"""Command line entry point for nu-dash."""

import argparse
import os
import sys
from pathlib import Path
from uuid import uuid4

import structlog

from .config import CONFIG_FILE, ConfigError
from .logging import DEFAULT_LOG_FILE, LOG_LEVELS, get_logger, setup_logging
from .session import RunOptions, initial_state

logger = get_logger("cli")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="nu-dash",
        description="Interactive dashboard that runs and classifies shell checks.",
    )
    parser.add_argument(
        "--config",
        "-c",
        type=str,
        default=str(CONFIG_FILE),
        help=f"Config file (default: ./{CONFIG_FILE})",
    )
    parser.add_argument(
        "--workdir",
        "-w",
        type=str,
        default="",
        help="Change into this directory before loading the config",
    )
    parser.add_argument(
        "--env",
        "-e",
        action="append",
        default=[],
        metavar="KEY=VALUE",
        help="Environment override for every check (repeatable, wins over the config)",
    )
    parser.add_argument(
        "--max-concurrent",
        type=int,
        default=None,
        help="Max checks running at once (default: from config, 0 = unbounded)",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=None,
        help="Per-command timeout in seconds (default: from config, 0 = none)",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        default="info",
        choices=LOG_LEVELS,
        help="Log level (default: info, debug also logs raw command output)",
    )
    parser.add_argument(
        "--log-file",
        type=str,
        default=str(DEFAULT_LOG_FILE),
        help=f"Append-only log file (default: {DEFAULT_LOG_FILE})",
    )
    parser.add_argument(
        "--log-json",
        action="store_true",
        help="Write logs as JSON lines",
    )
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    # The dashboard owns the screen: log to file only
    setup_logging(
        level=args.log_level,
        json_output=args.log_json,
        log_file=Path(args.log_file).expanduser(),
        tui_mode=True,
    )
    structlog.contextvars.bind_contextvars(run_id=uuid4().hex[:8])

    if args.workdir:
        try:
            os.chdir(args.workdir)
        except OSError as e:
            print(f"nu-dash: cannot change into {args.workdir}: {e}", file=sys.stderr)
            return 1

    options = RunOptions(
        config_path=Path(args.config),
        env_overrides=tuple(args.env),
        max_concurrent=args.max_concurrent,
        timeout=args.timeout,
    )

    print(f"Running checks from {options.config_path}...", file=sys.stderr)
    try:
        state = initial_state(options)
    except ConfigError as e:
        logger.error("Cannot start", error=str(e))
        print(f"nu-dash: {e}", file=sys.stderr)
        return 1

    from .tui import NuDashApp

    app = NuDashApp(state, options)
    try:
        app.run()
    except Exception as e:
        logger.exception("Dashboard crashed")
        print(f"Error running program: {e}", file=sys.stderr)
        return 1
    return app.return_code or 0


if __name__ == "__main__":
    sys.exit(main())
