"""Live Textual dashboard for ``rulebook ralph watch``.

Polls the Ralph state files once a second and tails the progress ledger
into a scrollable log, so it can watch a loop started in another terminal.
"""

from datetime import datetime
from typing import List, Optional

from rich.markup import escape
from rich.text import Text
from textual.app import App, ComposeResult
from textual.binding import Binding
from textual.containers import Container, Horizontal, Vertical
from textual.reactive import reactive
from textual.widgets import RichLog, Static

from rulebook.models import STATUS_FAILED, STATUS_SUCCESS
from rulebook.ralph import RalphManager
from rulebook.tui.fallback import DashboardState, load_dashboard_state
from rulebook.utils import format_duration

__all__ = ["RalphDashboard", "OutputLog", "ProgressTail"]

REFRESH_SECONDS = 1.0


class ProgressTail:
    """Returns the lines appended to the progress ledger since the last read."""

    def __init__(self, manager: RalphManager) -> None:
        self.path = manager.progress_path
        self._offset = 0

    def read_new_lines(self) -> List[str]:
        if not self.path.exists():
            return []
        size = self.path.stat().st_size
        if size < self._offset:
            self._offset = 0
        if size == self._offset:
            return []
        with open(self.path, encoding="utf-8") as f:
            f.seek(self._offset)
            data = f.read()
            self._offset = f.tell()
        return data.splitlines()


class OutputLog(RichLog):
    """Scrollable progress log with a follow mode."""

    BINDINGS = [
        Binding("g", "scroll_home", "Top", show=False),
        Binding("G", "scroll_end", "Bottom", show=False),
    ]

    def __init__(self, **kwargs):
        super().__init__(highlight=False, markup=False, wrap=True, auto_scroll=True, **kwargs)
        self._follow_mode = True

    @property
    def follow_mode(self) -> bool:
        return self._follow_mode

    @follow_mode.setter
    def follow_mode(self, value: bool):
        self._follow_mode = value
        self.auto_scroll = value

    def toggle_follow(self):
        self.follow_mode = not self.follow_mode
        if self.follow_mode:
            self.scroll_end(animate=False)

    def action_scroll_home(self):
        self.scroll_home(animate=False)
        self.follow_mode = False

    def action_scroll_end(self):
        self.scroll_end(animate=False)
        self.follow_mode = True

    def on_mouse_scroll_up(self, event) -> None:
        self.follow_mode = False


class StatusPanel(Static):
    """Loop status: branch, run state, tool and counters."""

    DEFAULT_CSS = """
    StatusPanel {
        width: 1fr;
        height: auto;
        padding: 0 1;
    }
    """

    status_markup = reactive("")

    def show(self, state: DashboardState) -> None:
        lines = [f"[green]Branch:[/] {escape(state.branch or '--')}"]
        if not state.initialized:
            lines.append("[yellow]Status:[/] not initialized (run 'rulebook ralph init')")
        elif state.paused:
            lines.append("[yellow]Status:[/] Paused")
        elif state.running:
            lines.append("[green]Status:[/] Running")
        else:
            lines.append("[dim]Status:[/] Idle")
        if state.tool:
            lines.append(f"[cyan]Tool:[/] {escape(state.tool)}")
            lines.append(
                f"[cyan]Iterations:[/] {state.iteration}/{state.max_iterations} "
                f"({state.total_iterations} total)"
            )
        lines.append(f"[cyan]Stories:[/] {state.completed}/{len(state.stories)} complete")
        if state.current_task:
            lines.append(f"[green]Working on:[/] {escape(state.current_task)}")
        self.status_markup = "\n".join(lines)

    def render(self):
        return Text.from_markup(self.status_markup)


class StoriesPanel(Static):
    """PRD stories with their pass marks, and the latest iterations."""

    DEFAULT_CSS = """
    StoriesPanel {
        width: 2fr;
        height: auto;
        padding: 0 1;
    }
    """

    stories_markup = reactive("")

    def show(self, state: DashboardState) -> None:
        lines = []
        for story_id, title, passes in state.stories[:10]:
            mark = "[green]✓[/]" if passes else "[dim]·[/]"
            pointer = "[cyan]▶[/]" if story_id == state.current_task else " "
            lines.append(f"{pointer}{mark} {escape(story_id)} {escape(title[:60])}")
        if len(state.stories) > 10:
            lines.append(f"  [dim]... and {len(state.stories) - 10} more[/]")
        if state.recent:
            lines.append("")
            for meta in state.recent[:3]:
                color = {STATUS_SUCCESS: "green", STATUS_FAILED: "red"}.get(meta.status, "yellow")
                lines.append(
                    f"#{meta.iteration} {escape(meta.task_id)} [{color}]{meta.status}[/] "
                    f"{format_duration(meta.duration_ms)}"
                )
        self.stories_markup = "\n".join(lines) or "[dim](no PRD)[/]"

    def render(self):
        return Text.from_markup(self.stories_markup)


class RalphDashboard(App):
    """Live view of a project's Ralph loop."""

    TITLE = "Ralph"

    CSS = """
    #header-bar {
        background: $primary;
        color: $text;
        height: 1;
        padding: 0 1;
    }

    #info-panel {
        height: auto;
        max-height: 50%;
        padding: 1 0;
    }

    #output-section {
        height: 1fr;
        border-top: solid $primary-lighten-2;
    }

    #output-header {
        height: 1;
        padding: 0 1;
        background: $surface-darken-1;
    }

    #output-log {
        height: 1fr;
        padding: 0 1;
    }

    #footer-bar {
        height: 1;
        background: $surface-darken-1;
        padding: 0 1;
    }
    """

    BINDINGS = [
        Binding("q", "quit", "Quit"),
        Binding("f", "toggle_follow", "Follow"),
        Binding("p", "toggle_pause", "Pause/Resume"),
    ]

    def __init__(self, manager: RalphManager, **kwargs):
        super().__init__(**kwargs)
        self.manager = manager
        self._tail = ProgressTail(manager)
        self._state: Optional[DashboardState] = None

    def compose(self) -> ComposeResult:
        with Container(id="header-bar"):
            yield Static(self._get_title(), id="title")
        with Vertical():
            with Horizontal(id="info-panel"):
                yield StatusPanel(id="status")
                yield StoriesPanel(id="stories")
            with Vertical(id="output-section"):
                yield Static("Progress: [FOLLOW]", id="output-header")
                yield OutputLog(id="output-log")
        yield Static(" q:quit  p:pause/resume  f:follow  g/G:top/bottom", id="footer-bar")

    def _get_title(self) -> str:
        ts = datetime.now().strftime("%H:%M:%S")
        if self._state is not None and self._state.initialized:
            return f"RALPH - Iteration {self._state.iteration}/{self._state.max_iterations} - {ts}"
        return f"RALPH - {ts}"

    def on_mount(self) -> None:
        self.refresh_state()
        self.set_interval(REFRESH_SECONDS, self.refresh_state)

    def refresh_state(self) -> None:
        self._state = load_dashboard_state(self.manager)
        self.query_one("#title", Static).update(self._get_title())
        self.query_one("#status", StatusPanel).show(self._state)
        self.query_one("#stories", StoriesPanel).show(self._state)
        log = self.query_one("#output-log", OutputLog)
        for line in self._tail.read_new_lines():
            log.write(Text(line))
        self._update_output_header()

    def _update_output_header(self) -> None:
        log = self.query_one("#output-log", OutputLog)
        header = self.query_one("#output-header", Static)
        if log.follow_mode:
            header.update("Progress: [green][FOLLOW][/]")
        else:
            header.update("Progress: [yellow][SCROLL][/]")

    def action_toggle_follow(self) -> None:
        self.query_one("#output-log", OutputLog).toggle_follow()
        self._update_output_header()

    def action_toggle_pause(self) -> None:
        if self.manager.is_paused():
            self.manager.resume()
        else:
            self.manager.pause()
        self.refresh_state()
