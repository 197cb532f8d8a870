"""Ralph loop state, progress ledger and single-runner lock.

Everything the loop persists lives under ``<rulebook_dir>/ralph``:

- ``prd.json``: the backlog (see ``rulebook.prd``)
- ``state.json``: ``LoopState``
- ``progress.txt``: append-only human-readable ledger
- ``history/``: one JSON file per iteration (see ``rulebook.tracker``)
- ``ralph.lock``: held while a loop is running
"""

import json
import logging
import os
import subprocess
from pathlib import Path
from typing import Dict, List, Optional

from rulebook.errors import LockError
from rulebook.models import PRD, STATUS_SUCCESS, IterationResult, LockInfo, LoopState, UserStory
from rulebook.prd import load_prd, save_prd
from rulebook.tracker import IterationTracker, MemoryAdapter
from rulebook.utils import utc_now_iso

logger = logging.getLogger(__name__)

ENTRY_SEPARATOR = "---"


def is_pid_alive(pid: int) -> bool:
    """Check whether a process with the given PID exists."""
    if pid <= 0:
        return False
    if os.name == "nt":
        try:
            result = subprocess.run(
                ["tasklist", "/FI", f"PID eq {pid}", "/NH"],
                capture_output=True,
                text=True,
                timeout=10,
            )
        except (OSError, subprocess.SubprocessError):
            return False
        return str(pid) in result.stdout
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        # Exists, owned by another user
        return True
    except OSError:
        return False
    return True


def format_progress_entry(result: IterationResult) -> str:
    """Render one iteration as a progress.txt entry."""
    qc = result.quality_checks

    def word(ok: bool) -> str:
        return "pass" if ok else "fail"

    lines = [
        f"[Iteration {result.iteration}] {result.timestamp}",
        f"Task: {result.task_id} ({result.task_title})",
        f"Status: {result.status}",
        f"Tool: {result.ai_tool}",
        f"Duration: {result.execution_time_ms}ms",
        f"Quality: type={word(qc.type_check)}, lint={word(qc.lint)}, "
        f"tests={word(qc.tests)}, coverage={word(qc.coverage_met)}",
    ]
    if result.git_commit:
        lines.append(f"Commit: {result.git_commit}")
    if result.output_summary:
        lines.append(f"Summary: {result.output_summary}")
    if result.learnings:
        lines.append("Learnings: " + "; ".join(result.learnings))
    if result.errors:
        lines.append("Errors: " + "; ".join(result.errors))
    lines.append(ENTRY_SEPARATOR)
    return "\n".join(lines) + "\n\n"


class RalphManager:
    """Owns the on-disk state of the Ralph loop for one project.

    Args:
        project_root: Project root directory.
        rulebook_dir: Directory (relative to the root) holding rulebook data.
    """

    def __init__(self, project_root: Path, rulebook_dir: str = "rulebook") -> None:
        self.project_root = project_root
        self.ralph_dir = project_root / rulebook_dir / "ralph"
        self.prd_path = self.ralph_dir / "prd.json"
        self.state_path = self.ralph_dir / "state.json"
        self.progress_path = self.ralph_dir / "progress.txt"
        self.lock_path = self.ralph_dir / "ralph.lock"
        self.plans_dir = self.ralph_dir / "plans"
        self.tracker = IterationTracker(self.ralph_dir)
        self.memory_adapter: Optional[MemoryAdapter] = None
        self._state: Optional[LoopState] = None

    def set_memory_adapter(self, adapter: Optional[MemoryAdapter]) -> None:
        self.memory_adapter = adapter
        self.tracker.set_memory_adapter(adapter)

    # State

    def initialize(self, max_iterations: int, tool: str) -> LoopState:
        """Create the Ralph directories and a fresh loop state.

        The per-run iteration counter is reset; the lifetime
        ``total_iterations`` carries over so history files keep unique numbers.
        Task counts come from the PRD.
        """
        self.ralph_dir.mkdir(parents=True, exist_ok=True)
        (self.ralph_dir / "history").mkdir(exist_ok=True)
        previous = self.load_state()
        now = utc_now_iso()
        state = LoopState(
            max_iterations=max_iterations,
            total_iterations=previous.total_iterations if previous else 0,
            started_at=now,
            last_updated=now,
            tool=tool,
        )
        prd = self.load_prd()
        if prd is not None:
            stats = prd.stats()
            state.total_tasks = stats["total"]
            state.completed_tasks = stats["completed"]
        self._state = state
        self.save_state()
        logger.info("Ralph initialized: max iterations=%d, tool=%s", max_iterations, tool)
        return state

    def load_state(self) -> Optional[LoopState]:
        if self._state is not None:
            return self._state
        if not self.state_path.exists():
            return None
        try:
            self._state = LoopState.from_dict(json.loads(self.state_path.read_text()))
        except (OSError, ValueError, TypeError) as e:
            logger.error("Failed to load loop state: %s", e)
            return None
        return self._state

    def reload_state(self) -> Optional[LoopState]:
        """Drop the cached state and read state.json again."""
        self._state = None
        return self.load_state()

    def save_state(self) -> None:
        if self._state is None:
            return
        self._state.last_updated = utc_now_iso()
        self.ralph_dir.mkdir(parents=True, exist_ok=True)
        self.state_path.write_text(json.dumps(self._state.to_dict(), indent=2) + "\n")

    # PRD

    def load_prd(self) -> Optional[PRD]:
        return load_prd(self.prd_path)

    def save_prd(self, prd: PRD) -> None:
        save_prd(prd, self.prd_path)

    def get_next_task(self) -> Optional[UserStory]:
        prd = self.load_prd()
        return prd.next_story() if prd else None

    def mark_story_complete(self, story_id: str) -> bool:
        prd = self.load_prd()
        if prd is None or not prd.mark_complete(story_id):
            return False
        self.save_prd(prd)
        return True

    def append_story_note(self, story_id: str, note: str) -> bool:
        """Append a line to a story's notes in the PRD."""
        prd = self.load_prd()
        story = prd.get_story(story_id) if prd else None
        if prd is None or story is None:
            return False
        story.notes = f"{story.notes}\n{note}".strip() if story.notes else note
        self.save_prd(prd)
        return True

    def next_iteration_number(self) -> int:
        state = self.load_state()
        return (state.total_iterations if state else 0) + 1

    def get_task_stats(self) -> Dict[str, int]:
        prd = self.load_prd()
        if prd is None:
            return {"completed": 0, "pending": 0, "total": 0}
        return prd.stats()

    # Iterations

    def record_iteration(self, result: IterationResult, started_at: Optional[str] = None) -> None:
        """Persist one iteration: state, history file, progress ledger.

        Learnings, gate failures and story completions are also forwarded to
        the memory adapter if one is attached. state.json is re-read first
        so a pause written by another process is kept.
        """
        state = self.reload_state()
        if state is not None:
            state.current_iteration += 1
            state.total_iterations = max(state.total_iterations, result.iteration)
            state.current_task_id = result.task_id
            if result.status == STATUS_SUCCESS:
                state.completed_tasks += 1

        self.tracker.record_iteration(result, started_at)
        self.append_progress(result)
        self.save_state()
        self._save_to_memory(result)
        logger.info(
            "Recorded iteration %d: %s - %s", result.iteration, result.task_id, result.status
        )

    def append_progress(self, result: IterationResult) -> None:
        self.ralph_dir.mkdir(parents=True, exist_ok=True)
        with open(self.progress_path, "a", encoding="utf-8") as f:
            f.write(format_progress_entry(result))

    def read_progress(self, max_entries: int = 5) -> str:
        """Return the last ``max_entries`` ledger entries as text."""
        if not self.progress_path.exists():
            return ""
        text = self.progress_path.read_text(encoding="utf-8")
        entries = [
            e.strip() for e in text.split(f"\n{ENTRY_SEPARATOR}\n") if e.strip()
        ]
        entries = [e for e in entries if e != ENTRY_SEPARATOR]
        tail = entries[-max_entries:] if max_entries > 0 else []
        return f"\n{ENTRY_SEPARATOR}\n".join(tail)

    def _save_to_memory(self, result: IterationResult) -> None:
        if self.memory_adapter is None:
            return
        entries = []
        tags = ["ralph", result.task_id]
        if result.learnings:
            entries.append({
                "type": "learning",
                "title": f"Ralph learnings: {result.task_title}",
                "content": "\n".join(result.learnings),
                "tags": tags,
            })
        qc = result.quality_checks.to_dict()
        failed = [g for g in ("type_check", "lint", "tests", "coverage_met") if not qc[g]]
        if result.status != STATUS_SUCCESS and failed:
            content = f"Quality gates failed: {', '.join(failed)}"
            if result.errors:
                content += "\n" + "\n".join(result.errors)
            entries.append({
                "type": "bug",
                "title": f"Gate failure on {result.task_id}",
                "content": content,
                "tags": tags + ["quality-gate-failure"],
            })
        if result.status == STATUS_SUCCESS:
            entries.append({
                "type": "observation",
                "title": f"Story complete: {result.task_title}",
                "content": result.output_summary,
                "tags": tags + ["story-complete"],
            })
        for entry in entries:
            try:
                self.memory_adapter.save_memory(entry)
            except Exception as e:
                logger.warning("Memory save failed (%s): %s", entry["type"], e)

    def get_iteration_history(self, limit: Optional[int] = None) -> List:
        return self.tracker.get_history(limit=limit)

    # Control

    def can_continue(self) -> bool:
        state = self.load_state()
        if state is None or state.paused:
            return False
        if state.current_iteration >= state.max_iterations:
            return False
        prd = self.load_prd()
        if prd is not None:
            return prd.next_story() is not None
        return state.completed_tasks < state.total_tasks

    def pause(self) -> bool:
        state = self.load_state()
        if state is None:
            return False
        state.paused = True
        state.paused_at = utc_now_iso()
        self.save_state()
        logger.info("Ralph loop paused")
        return True

    def resume(self) -> bool:
        state = self.load_state()
        if state is None:
            return False
        state.paused = False
        state.paused_at = None
        self.save_state()
        logger.info("Ralph loop resumed")
        return True

    def is_paused(self) -> bool:
        """Re-read state.json so a pause from another process is seen."""
        state = self.reload_state()
        return bool(state and state.paused)

    # Lock

    def get_lock_info(self) -> Optional[LockInfo]:
        if not self.lock_path.exists():
            return None
        try:
            return LockInfo.from_dict(json.loads(self.lock_path.read_text()))
        except (OSError, ValueError, KeyError, TypeError) as e:
            logger.warning("Ignoring corrupt lock file: %s", e)
            return None

    def is_running(self) -> bool:
        info = self.get_lock_info()
        return info is not None and is_pid_alive(info.pid)

    def acquire_lock(self, tool: str) -> LockInfo:
        """Take the single-runner lock.

        A lock held by a live process (including this one) is refused. A lock
        left by a dead process, or one that cannot be parsed, is replaced.

        Raises:
            LockError: If another live runner holds the lock.
        """
        self.ralph_dir.mkdir(parents=True, exist_ok=True)
        info = self.get_lock_info()
        if info is not None and is_pid_alive(info.pid):
            raise LockError(
                f"Ralph is already running (pid {info.pid}, started {info.started_at})"
            )
        if self.lock_path.exists():
            logger.info("Removing stale lock %s", self.lock_path)
            self.lock_path.unlink()

        lock = LockInfo(pid=os.getpid(), started_at=utc_now_iso(), tool=tool)
        try:
            fd = os.open(str(self.lock_path), os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o644)
        except FileExistsError as e:
            raise LockError("Another Ralph runner acquired the lock first") from e
        with os.fdopen(fd, "w") as f:
            json.dump(lock.to_dict(), f, indent=2)
        return lock

    def update_lock_progress(self, iteration: int, current_task: Optional[str]) -> None:
        info = self.get_lock_info()
        if info is None or info.pid != os.getpid():
            return
        info.iteration = iteration
        info.current_task = current_task
        self.lock_path.write_text(json.dumps(info.to_dict(), indent=2))

    def release_lock(self) -> None:
        try:
            self.lock_path.unlink()
        except FileNotFoundError:
            pass


__all__ = ["is_pid_alive", "format_progress_entry", "RalphManager"]
