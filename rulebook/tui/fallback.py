"""Plain ANSI dashboard for ``rulebook ralph watch --no-ui``.

Also used when stdout is not a terminal. It re-reads the Ralph state files
on every refresh, so it can watch a loop running in another process.
"""

import shutil
import sys
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, List, Optional, TextIO, Tuple

from rulebook.git import get_current_branch
from rulebook.models import STATUS_FAILED, STATUS_SUCCESS, IterationMetadata
from rulebook.ralph import RalphManager
from rulebook.utils import Colors, format_duration, strip_ansi, truncate

__all__ = [
    "DashboardState",
    "FallbackDashboard",
    "load_dashboard_state",
    "render_dashboard",
]

CLEAR_SCREEN = "\033[2J\033[H"
CLEAR_LINE = "\033[K"


@dataclass
class DashboardState:
    """Snapshot of the Ralph loop for rendering.

    Attributes:
        branch: Current git branch, or '' outside a repository.
        initialized: Whether state.json exists.
        running: Whether a live runner holds the lock.
        paused: Whether the loop is paused.
        tool: AI tool of the current or last run.
        iteration: Per-run iteration counter.
        max_iterations: Per-run iteration budget.
        total_iterations: Lifetime iteration count.
        current_task: Story the runner is working on, from the lock file.
        stories: (id, title, passes) for every PRD story, in priority order.
        recent: Most recent iteration records, newest first.
        progress_lines: Tail of the progress ledger.
    """

    branch: str = ""
    initialized: bool = False
    running: bool = False
    paused: bool = False
    tool: str = ""
    iteration: int = 0
    max_iterations: int = 0
    total_iterations: int = 0
    current_task: Optional[str] = None
    stories: List[Tuple[str, str, bool]] = field(default_factory=list)
    recent: List[IterationMetadata] = field(default_factory=list)
    progress_lines: List[str] = field(default_factory=list)

    @property
    def completed(self) -> int:
        return sum(1 for _, _, passes in self.stories if passes)


def load_dashboard_state(manager: RalphManager, progress_entries: int = 3) -> DashboardState:
    """Read everything the dashboards show from disk."""
    loop_state = manager.reload_state()
    state = DashboardState(branch=get_current_branch(manager.project_root) or "")
    if loop_state is not None:
        state.initialized = True
        state.paused = loop_state.paused
        state.tool = loop_state.tool
        state.iteration = loop_state.current_iteration
        state.max_iterations = loop_state.max_iterations
        state.total_iterations = loop_state.total_iterations

    lock = manager.get_lock_info()
    state.running = manager.is_running()
    if lock is not None and state.running:
        state.current_task = lock.current_task

    prd = manager.load_prd()
    if prd is not None:
        ordered = sorted(prd.user_stories, key=lambda s: s.priority)
        state.stories = [(s.id, s.title, s.passes) for s in ordered]

    state.recent = manager.get_iteration_history(limit=5)
    progress = manager.read_progress(progress_entries)
    state.progress_lines = progress.splitlines() if progress else []
    return state


def _status_line(state: DashboardState) -> str:
    if not state.initialized:
        return f"{Colors.YELLOW}Not initialized{Colors.NC} (run 'rulebook ralph init')"
    if state.paused:
        return f"{Colors.YELLOW}Paused{Colors.NC}"
    if state.running:
        return f"{Colors.GREEN}Running{Colors.NC}"
    return f"{Colors.DIM}Idle{Colors.NC}"


def render_dashboard(state: DashboardState, term_width: int, term_height: int) -> List[str]:
    """Render the dashboard and return lines.

    Args:
        state: Snapshot to render.
        term_width: Terminal width in characters.
        term_height: Terminal height in lines.

    Returns:
        Exactly ``term_height`` lines.
    """
    lines: List[str] = []

    def add(text: str = "") -> None:
        lines.append(f"{text}{CLEAR_LINE}")

    header_bar = "═" * (term_width - 1)
    section_bar = "─" * (term_width - 1)

    add(f"{Colors.BLUE}{header_bar}{Colors.NC}")
    clock = datetime.now().strftime("%H:%M:%S")
    if state.initialized:
        title = f"  RALPH - Iteration {state.iteration}/{state.max_iterations} - {clock}"
    else:
        title = f"  RALPH - {clock}"
    add(f"{Colors.BLUE}{title}{Colors.NC}")
    add(f"{Colors.BLUE}{header_bar}{Colors.NC}")

    add(f"{Colors.GREEN}Branch:{Colors.NC} {state.branch or '--'}")
    add(f"{Colors.GREEN}Status:{Colors.NC} {_status_line(state)}")
    if state.tool:
        add(f"{Colors.GREEN}Tool:{Colors.NC} {state.tool} ({state.total_iterations} iterations total)")
    add(f"{Colors.GREEN}Stories:{Colors.NC} {state.completed}/{len(state.stories)} complete")
    if state.current_task:
        add(f"{Colors.GREEN}Working on:{Colors.NC} {state.current_task}")
    add(f"{Colors.DIM}{section_bar}{Colors.NC}")

    for story_id, title, passes in state.stories[:8]:
        mark = f"{Colors.GREEN}✓{Colors.NC}" if passes else f"{Colors.DIM}·{Colors.NC}"
        active = f"{Colors.CYAN}▶{Colors.NC}" if story_id == state.current_task else " "
        add(f" {active}{mark} {story_id:<8} {truncate(title, term_width - 16)}")
    if len(state.stories) > 8:
        add(f"   {Colors.DIM}... and {len(state.stories) - 8} more{Colors.NC}")

    if state.recent:
        add(f"{Colors.DIM}{section_bar}{Colors.NC}")
        add(f"{Colors.GREEN}Recent iterations:{Colors.NC}")
        for meta in state.recent:
            if meta.status == STATUS_SUCCESS:
                color = Colors.GREEN
            elif meta.status == STATUS_FAILED:
                color = Colors.RED
            else:
                color = Colors.YELLOW
            add(
                f"  #{meta.iteration:<4} {meta.task_id:<8} {color}{meta.status:<8}{Colors.NC} "
                f"{format_duration(meta.duration_ms)}"
            )

    add(f"{Colors.DIM}{section_bar}{Colors.NC}")
    add(f"{Colors.GREEN}Progress:{Colors.NC}")
    available = term_height - len(lines) - 2
    if available > 0:
        tail = state.progress_lines[-available:]
        for line in tail:
            add(f"  {truncate(strip_ansi(line), term_width - 3)}")
        for _ in range(available - len(tail)):
            add()

    add(f"{Colors.BLUE}{section_bar}{Colors.NC}")
    add("Ctrl+C to exit")
    while len(lines) < term_height:
        add()
    return lines[:term_height]


class FallbackDashboard:
    """Redraws the plain dashboard until interrupted.

    Args:
        manager: RalphManager of the watched project.
        refresh_s: Seconds between redraws.
        stream: Output stream.
        sleep_fn: Sleep function, replaceable in tests.
    """

    def __init__(
        self,
        manager: RalphManager,
        refresh_s: float = 1.0,
        stream: Optional[TextIO] = None,
        sleep_fn: Callable[[float], None] = time.sleep,
    ) -> None:
        self.manager = manager
        self.refresh_s = refresh_s
        self.stream = stream or sys.stdout
        self.sleep_fn = sleep_fn

    def render_once(self) -> None:
        size = shutil.get_terminal_size((80, 24))
        state = load_dashboard_state(self.manager)
        frame = render_dashboard(state, size.columns, size.lines)
        self.stream.write(CLEAR_SCREEN + "\n".join(frame))
        self.stream.flush()

    def run_loop(self, max_frames: Optional[int] = None) -> None:
        """Redraw every ``refresh_s`` seconds.

        Args:
            max_frames: Stop after this many frames; None runs until Ctrl+C.
        """
        frames = 0
        try:
            while max_frames is None or frames < max_frames:
                self.render_once()
                frames += 1
                if max_frames is None or frames < max_frames:
                    self.sleep_fn(self.refresh_s)
        except KeyboardInterrupt:
            pass
        self.stream.write("\n")
        self.stream.flush()
