"""
nu-dash: interactive terminal dashboard of shell checks.

Usage as library:
    from nu_dash import load_config_from_yaml, run_tasks_sync
    config = load_config_from_yaml(Path("nu-dash.yaml"))
    results = run_tasks_sync(config.tasks, config)

Usage as CLI:
    nu-dash                       # ./nu-dash.yaml
    nu-dash -c checks.yaml -e STAGE=prod
"""

from importlib.metadata import PackageNotFoundError, version

from .ai import (
    BackendConfigError,
    GeminiBackend,
    GenerationError,
    OllamaBackend,
    make_backend,
)
from .classifier import ExecutionResult, Level, classify
from .config import (
    ConfigError,
    GlobalConfig,
    TaskSpec,
    load_config_from_yaml,
    render_command,
)
from .dashboard import DashboardState, Mode, column_widths, transition
from .engine import run_tasks, run_tasks_sync
from .logging import get_logger, setup_logging
from .runner import ProcessOutput, run_check, run_interactive, run_piped
from .session import RunOptions, build_environment, initial_state, load_and_run

try:
    __version__ = version("nu-dash")
except PackageNotFoundError:
    __version__ = "0.0.0.dev"  # Fallback for development without install
__all__ = [
    # Config
    "ConfigError",
    "GlobalConfig",
    "TaskSpec",
    "load_config_from_yaml",
    "render_command",
    # Execution
    "ProcessOutput",
    "run_check",
    "run_piped",
    "run_interactive",
    "ExecutionResult",
    "Level",
    "classify",
    "run_tasks",
    "run_tasks_sync",
    # Dashboard
    "DashboardState",
    "Mode",
    "column_widths",
    "transition",
    "RunOptions",
    "build_environment",
    "initial_state",
    "load_and_run",
    # AI
    "BackendConfigError",
    "GenerationError",
    "GeminiBackend",
    "OllamaBackend",
    "make_backend",
    # Logging
    "get_logger",
    "setup_logging",
]
