"""Textual dashboard for nu-dash.

Renders the check table from a :class:`DashboardState`, turns key presses
and resizes into state machine events, and carries out the effects the
state machine returns.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass

from rich.text import Text
from textual import events
from textual.app import App, ComposeResult, SuspendNotSupported
from textual.binding import Binding
from textual.widgets import DataTable, Footer, Header, RichLog

from .ai import BackendConfigError, TextBackend, make_backend
from .classifier import ExecutionResult, Level
from .config import TaskSpec
from .dashboard import (
    ACTION_KEYS,
    ActionFinished,
    ClearScreen,
    DashboardState,
    EditorFinished,
    Effect,
    Event,
    Explain,
    KeyPressed,
    Mode,
    Notify,
    OpenEditor,
    Quit,
    Reload,
    Resized,
    RunAction,
    SelectionChanged,
    ShowText,
    Tick,
    ToggleFocus,
    transition,
)
from .logging import get_logger
from .session import RunOptions, explain, load_and_run, open_editor, run_action

logger = get_logger("tui")

TICK_SECONDS = 1.0

# === Render configuration ===


@dataclass(frozen=True)
class TableTheme:
    """Colors for the check table, exposed to the stylesheet as variables."""

    border: str = "#585858"
    selected_fg: str = "#ffffaf"
    selected_bg: str = "#5f00ff"

    def css_variables(self) -> dict[str, str]:
        return {
            "nd-border": self.border,
            "nd-selected-fg": self.selected_fg,
            "nd-selected-bg": self.selected_bg,
        }


DEFAULT_THEME = TableTheme()

LEVEL_BADGE: dict[Level, tuple[str, str]] = {
    Level.INFO: ("✔", "green"),
    Level.ERROR: ("✘", "yellow"),
    Level.CRITICAL: ("‼", "bold red"),
}


def _fmt_duration(seconds: float) -> str:
    """Format seconds as human-readable duration (e.g. '2m 15s')."""
    if seconds < 60:
        return f"{seconds:.0f}s"
    minutes = int(seconds // 60)
    secs = int(seconds % 60)
    if minutes < 60:
        return f"{minutes}m {secs:02d}s"
    hours = int(minutes // 60)
    mins = minutes % 60
    return f"{hours}h {mins:02d}m"


def _first_line(text: str, width: int) -> str:
    """First non-empty line of ``text``, cut to ``width`` cells."""
    line = next((ln.strip() for ln in text.splitlines() if ln.strip()), "")
    if len(line) > width:
        return line[: max(width - 2, 1)] + ".."
    return line


def format_row(
    task: TaskSpec,
    result: ExecutionResult | None,
    columns: list[tuple[str, int]],
) -> tuple[Text, Text, Text, Text]:
    """Build the table cells for one task.

    Command output goes in as plain :class:`Text`, so brackets in it are
    never read as markup.
    """
    widths = [width for _, width in columns]
    if result is None:
        level = Text("… pending", style="dim")
        return level, Text(_first_line(task.name, widths[1])), Text(""), Text("")

    icon, style = LEVEL_BADGE[result.level]
    return (
        Text(f"{icon} {result.level.value}", style=style),
        Text(_first_line(task.name, widths[1])),
        Text(_first_line(result.message, widths[2])),
        Text(_first_line(result.details, widths[3]), style="dim"),
    )


def format_status(state: DashboardState) -> str:
    """Header subtitle: counts per level plus time since the last run."""
    counts = {level: 0 for level in Level}
    for result in state.results:
        counts[result.level] += 1
    status = (
        f"{len(state.config.tasks)} checks | "
        f"{counts[Level.ERROR]} error | {counts[Level.CRITICAL]} critical | "
        f"ran {_fmt_duration(state.elapsed)} ago"
    )
    if state.mode is Mode.RELOADING:
        status += " | reloading..."
    return status


# === App ===


class NuDashApp(App[int]):
    """Interactive check dashboard."""

    TITLE = "nu-dash"

    CSS = """
    Screen {
        layout: vertical;
    }

    #checks {
        height: 1fr;
        border: solid $nd-border;
    }

    #checks > .datatable--header {
        text-style: not bold;
    }

    #checks > .datatable--cursor {
        color: $nd-selected-fg;
        background: $nd-selected-bg;
        text-style: not bold;
    }

    #output {
        height: auto;
        max-height: 40%;
        border-top: solid $nd-border;
        padding: 0 1;
    }
    """

    BINDINGS = [
        Binding("q", "press('q')", "Quit"),
        Binding("ctrl+c", "press('ctrl+c')", "Quit", show=False, priority=True),
        Binding("r", "press('r')", "Reload"),
        Binding("e", "press('e')", "Edit config"),
        Binding("a", "press('a')", "Explain"),
        Binding("enter", "press('enter')", "Details"),
        Binding("escape", "press('escape')", "Focus", show=False),
        *[Binding(key, f"press('{key}')", f"Action {key}", show=False) for key in ACTION_KEYS],
    ]

    def __init__(
        self,
        state: DashboardState,
        options: RunOptions,
        theme: TableTheme = DEFAULT_THEME,
        backend_factory: Callable[[str], TextBackend] = make_backend,
    ) -> None:
        # Read by get_css_variables() during App.__init__
        self._table_theme = theme
        super().__init__()
        self.state = state
        self.options = options
        self._backend_factory = backend_factory
        self._rendered: tuple | None = None

    def get_css_variables(self) -> dict[str, str]:
        return {**super().get_css_variables(), **self._table_theme.css_variables()}

    def compose(self) -> ComposeResult:
        """Build the widget tree."""
        yield Header()
        table: DataTable = DataTable(id="checks", cursor_type="row", zebra_stripes=True)
        yield table
        yield RichLog(id="output", wrap=True, markup=False)
        yield Footer()

    def on_mount(self) -> None:
        self.state, _ = transition(self.state, Resized(self.size.width, self.size.height))
        self.render_state()
        self.query_one("#checks", DataTable).focus()
        self.set_interval(TICK_SECONDS, self._tick)

    # --- input ---

    async def action_press(self, key: str) -> None:
        await self.feed(KeyPressed(key))

    async def on_resize(self, event: events.Resize) -> None:
        await self.feed(Resized(event.size.width, event.size.height))

    async def on_data_table_row_highlighted(self, event: DataTable.RowHighlighted) -> None:
        await self.feed(SelectionChanged(event.cursor_row))

    async def on_data_table_row_selected(self, event: DataTable.RowSelected) -> None:
        await self.feed(KeyPressed("enter"))

    async def _tick(self) -> None:
        await self.feed(Tick(TICK_SECONDS))

    # --- state machine loop ---

    async def feed(self, event: Event) -> None:
        """Run ``event`` and every completion event it leads to."""
        pending: list[Event] = [event]
        while pending:
            self.state, effects = transition(self.state, pending.pop(0))
            self.render_state()
            for effect in effects:
                follow_up = await self.perform(effect)
                if follow_up is not None:
                    pending.append(follow_up)

    async def perform(self, effect: Effect) -> Event | None:
        """Carry out one effect, returning the event that reports its outcome."""
        state = self.state

        if isinstance(effect, Reload):
            return await load_and_run(self.options)

        if isinstance(effect, RunAction):
            try:
                with self.suspend():
                    return run_action(effect.task, effect.command, state.config, state.env)
            except SuspendNotSupported:
                return ActionFinished(error="this terminal cannot hand over control")

        if isinstance(effect, OpenEditor):
            try:
                with self.suspend():
                    return open_editor(self.options, state.env)
            except SuspendNotSupported:
                return EditorFinished(error="this terminal cannot hand over control")

        if isinstance(effect, Explain):
            backend = self._make_backend(state.config.ai_backend)
            if backend is None:
                return None
            self.notify(f"Asking {state.config.ai_backend} about {effect.task.name}...")
            return await explain(effect.task, state.config, state.env, backend)

        if isinstance(effect, ShowText):
            output = self.query_one("#output", RichLog)
            output.write(Text(effect.text.rstrip("\n")))
            return None

        if isinstance(effect, Notify):
            self.notify(effect.message, severity=effect.severity)
            return None

        if isinstance(effect, ToggleFocus):
            if effect.focused:
                self.query_one("#checks", DataTable).focus()
            else:
                self.set_focus(None)
            return None

        if isinstance(effect, ClearScreen):
            self.refresh(layout=True)
            return None

        if isinstance(effect, Quit):
            self.exit(0)
            return None

        raise TypeError(f"unknown effect {effect!r}")

    def _make_backend(self, name: str) -> TextBackend | None:
        try:
            return self._backend_factory(name)
        except BackendConfigError as e:
            logger.error("AI backend misconfigured", backend=name, error=str(e))
            self.exit(1, return_code=1, message=f"AI backend {name}: {e}")
            return None

    # --- rendering ---

    def render_state(self) -> None:
        """Bring the widgets in line with ``self.state``."""
        state = self.state
        self.sub_title = format_status(state)

        columns = state.columns
        key = (state.config, state.results, tuple(columns))
        if key == self._rendered:
            return
        self._rendered = key

        table = self.query_one("#checks", DataTable)
        table.clear(columns=True)
        for title, width in columns:
            table.add_column(title, width=width, key=title.lower())

        results = state.results
        for index, task in enumerate(state.config.tasks):
            result = results[index] if index < len(results) else None
            table.add_row(*format_row(task, result, columns))

        if state.config.tasks:
            table.move_cursor(row=state.selected_index)
