"""Dashboard state machine.

``transition(state, event)`` is a pure function returning the next state and
the side effects the adapter must perform. The adapter feeds the outcome of
each effect back in as another event. Nothing here touches processes, files
or the terminal.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from enum import Enum
from types import MappingProxyType
from typing import Union

from .classifier import ExecutionResult
from .config import GlobalConfig, TaskSpec

# === Keys ===

KEY_RELOAD = "r"
KEY_EDIT = "e"
KEY_EXPLAIN = "a"
KEY_DETAILS = "enter"
KEY_FOCUS = "escape"
QUIT_KEYS = frozenset({"q", "ctrl+c"})
ACTION_KEYS = tuple(str(n) for n in range(10))

# === Layout ===

LEVEL_WIDTH = 10
NAME_WIDTH = 30
MIN_TEXT_WIDTH = 10
# Level + Name + cell padding and borders
RESERVED_WIDTH = LEVEL_WIDTH + NAME_WIDTH + 10
DEFAULT_WIDTH = 80


def column_widths(width: int) -> list[tuple[str, int]]:
    """Column titles and widths for a terminal ``width`` cells wide.

    Level and Name are fixed; Message and Details share what is left.
    """
    text = max((width - RESERVED_WIDTH) // 2, MIN_TEXT_WIDTH)
    return [
        ("Level", LEVEL_WIDTH),
        ("Name", NAME_WIDTH),
        ("Message", text),
        ("Details", text),
    ]


# === State ===


class Mode(str, Enum):
    IDLE = "idle"
    RELOADING = "reloading"
    ACTION_RUNNING = "action_running"
    EXITING = "exiting"


@dataclass(frozen=True)
class Viewport:
    width: int = DEFAULT_WIDTH
    height: int = 24


@dataclass(frozen=True)
class DashboardState:
    """Everything the dashboard shows. Replaced, never mutated."""

    config: GlobalConfig
    results: tuple[ExecutionResult, ...] = ()
    env: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))
    selected_index: int = 0
    focused: bool = True
    elapsed: float = 0.0
    viewport: Viewport = field(default_factory=Viewport)
    mode: Mode = Mode.IDLE

    @property
    def columns(self) -> list[tuple[str, int]]:
        return column_widths(self.viewport.width)

    @property
    def selected_task(self) -> TaskSpec | None:
        tasks = self.config.tasks
        if not tasks:
            return None
        return tasks[self.selected_index]

    @property
    def selected_result(self) -> ExecutionResult | None:
        if self.selected_index >= len(self.results):
            return None
        return self.results[self.selected_index]


def _clamp(index: int, count: int) -> int:
    if count <= 0:
        return 0
    return min(max(index, 0), count - 1)


# === Events ===


@dataclass(frozen=True)
class KeyPressed:
    key: str


@dataclass(frozen=True)
class Resized:
    width: int
    height: int


@dataclass(frozen=True)
class SelectionChanged:
    index: int


@dataclass(frozen=True)
class Tick:
    seconds: float


@dataclass(frozen=True)
class ReloadFinished:
    config: GlobalConfig
    results: tuple[ExecutionResult, ...]
    env: Mapping[str, str]


@dataclass(frozen=True)
class ReloadFailed:
    error: str


@dataclass(frozen=True)
class ActionFinished:
    error: str | None = None


@dataclass(frozen=True)
class EditorFinished:
    error: str | None = None


@dataclass(frozen=True)
class ExplainFinished:
    text: str = ""
    error: str | None = None


Event = Union[
    KeyPressed,
    Resized,
    SelectionChanged,
    Tick,
    ReloadFinished,
    ReloadFailed,
    ActionFinished,
    EditorFinished,
    ExplainFinished,
]

# === Effects ===


@dataclass(frozen=True)
class Reload:
    pass


@dataclass(frozen=True)
class RunAction:
    task: TaskSpec
    command: str


@dataclass(frozen=True)
class OpenEditor:
    pass


@dataclass(frozen=True)
class Explain:
    task: TaskSpec


@dataclass(frozen=True)
class ShowText:
    text: str


@dataclass(frozen=True)
class Notify:
    message: str
    severity: str = "information"  # information | warning | error


@dataclass(frozen=True)
class ToggleFocus:
    focused: bool


@dataclass(frozen=True)
class ClearScreen:
    pass


@dataclass(frozen=True)
class Quit:
    pass


Effect = Union[
    Reload, RunAction, OpenEditor, Explain, ShowText, Notify, ToggleFocus, ClearScreen, Quit
]

Transition = tuple[DashboardState, list[Effect]]


# === Transitions ===


def start_reload(state: DashboardState) -> Transition:
    return replace(state, mode=Mode.RELOADING), [Reload()]


def _on_key(state: DashboardState, key: str) -> Transition:
    if key in QUIT_KEYS:
        return replace(state, mode=Mode.EXITING), [Quit()]
    if state.mode is not Mode.IDLE:
        return state, []

    if key == KEY_RELOAD:
        return start_reload(state)

    if key == KEY_EDIT:
        return replace(state, mode=Mode.ACTION_RUNNING), [OpenEditor()]

    if key == KEY_FOCUS:
        focused = not state.focused
        return replace(state, focused=focused), [ToggleFocus(focused)]

    task = state.selected_task
    if task is None:
        return state, []

    if key in ACTION_KEYS:
        index = int(key)
        if index >= len(task.actions):
            return state, []
        return replace(state, mode=Mode.ACTION_RUNNING), [RunAction(task, task.actions[index])]

    if key == KEY_DETAILS:
        result = state.selected_result
        return state, [ShowText(result.details)] if result else []

    if key == KEY_EXPLAIN:
        if not task.prompt_source:
            return state, [Notify(f"{task.name}: no prompt_source configured", "warning")]
        return state, [Explain(task)]

    return state, []


def _on_reload_finished(state: DashboardState, event: ReloadFinished) -> Transition:
    new_state = replace(
        state,
        config=event.config,
        results=tuple(event.results),
        env=MappingProxyType(dict(event.env)),
        selected_index=_clamp(state.selected_index, len(event.config.tasks)),
        elapsed=0.0,
        mode=Mode.IDLE,
    )
    return new_state, []


def _on_tick(state: DashboardState, event: Tick) -> Transition:
    state = replace(state, elapsed=state.elapsed + event.seconds)
    config = state.config
    if (
        state.mode is Mode.IDLE
        and config.refresh
        and config.interval > 0
        and state.elapsed >= config.interval
    ):
        return start_reload(state)
    return state, []


def _on_editor_finished(state: DashboardState, event: EditorFinished) -> Transition:
    effects: list[Effect] = [ClearScreen()]
    if event.error:
        effects.append(Notify(f"Editor failed: {event.error}", "error"))
    state, reload_effects = start_reload(state)
    return state, effects + reload_effects


def transition(state: DashboardState, event: Event) -> Transition:
    """Compute the next dashboard state for ``event``.

    Args:
        state: Current state (not modified).
        event: Input or completion event.

    Returns:
        Tuple of the next state and the effects to perform, in order.
    """
    if state.mode is Mode.EXITING:
        return state, []

    if isinstance(event, KeyPressed):
        return _on_key(state, event.key)

    if isinstance(event, Resized):
        return replace(state, viewport=Viewport(event.width, event.height)), []

    if isinstance(event, SelectionChanged):
        return replace(state, selected_index=_clamp(event.index, len(state.config.tasks))), []

    if isinstance(event, Tick):
        return _on_tick(state, event)

    if isinstance(event, ReloadFinished):
        return _on_reload_finished(state, event)

    if isinstance(event, ReloadFailed):
        return replace(state, mode=Mode.IDLE), [
            Notify(f"Config not reloaded: {event.error}", "warning")
        ]

    if isinstance(event, ActionFinished):
        effects: list[Effect] = [ClearScreen()]
        if event.error:
            effects.append(Notify(f"Action failed: {event.error}", "error"))
        return replace(state, mode=Mode.IDLE), effects

    if isinstance(event, EditorFinished):
        return _on_editor_finished(state, event)

    if isinstance(event, ExplainFinished):
        if event.error:
            return state, [Notify(f"Explain failed: {event.error}", "error")]
        return state, [ShowText(event.text)]

    raise TypeError(f"unknown event {event!r}")
