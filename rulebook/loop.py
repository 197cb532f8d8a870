"""The Ralph iteration driver.

Each iteration picks the next pending story from the PRD, renders a prompt,
runs the AI tool, classifies its output and records the result. The loop
only stops on an explicit stop condition:

- every story passes (or the tool printed the completion promise and the
  PRD agrees)
- the iteration budget is spent
- the loop was paused from another process
- too many consecutive failed iterations
- the tool reported too much context loss
- Ctrl-C

The lock is always released on the way out.
"""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, List, Optional, Sequence, Set

from rulebook.agents import AgentRun, run_agent
from rulebook.checkpoint import (
    generate_iteration_plan,
    request_plan_approval,
    should_run_checkpoint,
)
from rulebook.config import ProjectConfig
from rulebook.errors import PRDError
from rulebook.git import get_current_commit
from rulebook.models import PRD, STATUS_SUCCESS, IterationResult, UserStory
from rulebook.parallel import build_parallel_batches
from rulebook.parser import has_completion_promise, parse_agent_output
from rulebook.prompts import build_iteration_prompt, find_project_rules
from rulebook.ralph import RalphManager
from rulebook.tracker import MemoryAdapter
from rulebook.utils import Colors, format_duration, utc_now_iso

logger = logging.getLogger(__name__)

STOP_ALL_COMPLETE = "all stories complete"
STOP_COMPLETION_PROMISE = "completion promise received"
STOP_MAX_ITERATIONS = "max iterations reached"
STOP_PAUSED = "paused"
STOP_MAX_FAILURES = "too many consecutive failures"
STOP_CONTEXT_LOSS = "context loss limit reached"
STOP_INTERRUPTED = "interrupted"
STOP_PLANS_REJECTED = "every remaining plan was rejected"

Runner = Callable[..., AgentRun]


@dataclass
class LoopSummary:
    """What a ``RalphLoop.run`` call did."""

    iterations: int = 0
    completed: int = 0
    failed: int = 0
    stop_reason: str = ""
    results: List[IterationResult] = field(default_factory=list)


class RalphLoop:
    """Drives the AI tool through the PRD backlog.

    Args:
        project_root: Project root directory.
        config: Project configuration.
        runner: Callable with the signature of ``rulebook.agents.run_agent``.
        tool_args: Extra command line arguments for the AI tool.
        memory_adapter: Optional long-term memory.
        input_fn: Reads user input for the plan checkpoint.
    """

    def __init__(
        self,
        project_root: Path,
        config: ProjectConfig,
        runner: Runner = run_agent,
        tool_args: Sequence[str] = (),
        memory_adapter: Optional[MemoryAdapter] = None,
        input_fn: Callable[[str], str] = input,
    ) -> None:
        self.project_root = project_root
        self.config = config
        self.runner = runner
        self.tool_args = list(tool_args)
        self.input_fn = input_fn
        self.manager = RalphManager(project_root, config.rulebook_dir)
        self.manager.set_memory_adapter(memory_adapter)
        self._write_lock = threading.Lock()

    def run(
        self,
        max_iterations: Optional[int] = None,
        tool: Optional[str] = None,
        parallel: Optional[int] = None,
        non_interactive: bool = False,
    ) -> LoopSummary:
        """Run the loop until a stop condition.

        Args:
            max_iterations: Iteration budget; defaults to the project config.
            tool: AI tool; defaults to the project config.
            parallel: Max concurrent stories; defaults to the project config.
            non_interactive: Skip the plan checkpoint.

        Returns:
            LoopSummary of this run.

        Raises:
            LockError: If another live runner holds the lock.
            PRDError: If there is no PRD.
            AgentNotFoundError: If the AI tool is not installed.
        """
        settings = self.config.ralph
        max_iterations = max_iterations or settings.max_iterations
        tool = tool or settings.tool
        parallel = parallel or settings.parallel

        self.manager.acquire_lock(tool)
        summary = LoopSummary()
        try:
            if self.manager.load_prd() is None:
                raise PRDError(
                    f"No PRD found at {self.manager.prd_path}. Run 'rulebook ralph init' first."
                )
            self.manager.initialize(max_iterations, tool)
            print(
                f"{Colors.BOLD}Ralph{Colors.NC} starting: tool={tool}, "
                f"max iterations={max_iterations}"
                + (f", parallel={parallel}" if parallel > 1 else "")
            )
            if parallel > 1:
                self._run_parallel(summary, max_iterations, tool, parallel)
            else:
                self._run_sequential(summary, max_iterations, tool, non_interactive)
        except KeyboardInterrupt:
            summary.stop_reason = STOP_INTERRUPTED
            print(f"\n{Colors.YELLOW}Interrupted, stopping Ralph{Colors.NC}")
        finally:
            self.manager.release_lock()

        logger.info(
            "Ralph stopped after %d iterations: %s", summary.iterations, summary.stop_reason
        )
        return summary

    # Sequential

    def _pick_story(self, prd: PRD, skipped: Set[str]) -> Optional[UserStory]:
        for story in prd.pending_stories():
            if story.id not in skipped:
                return story
        return None

    def _run_sequential(
        self, summary: LoopSummary, max_iterations: int, tool: str, non_interactive: bool
    ) -> None:
        settings = self.config.ralph
        consecutive_failures = 0
        skipped: Set[str] = set()

        while True:
            if self.manager.is_paused():
                summary.stop_reason = STOP_PAUSED
                return
            if summary.iterations >= max_iterations:
                summary.stop_reason = STOP_MAX_ITERATIONS
                return

            prd = self.manager.load_prd()
            if prd is None or prd.next_story() is None:
                summary.stop_reason = STOP_ALL_COMPLETE
                return
            story = self._pick_story(prd, skipped)
            if story is None:
                summary.stop_reason = STOP_PLANS_REJECTED
                return

            plan = None
            if should_run_checkpoint(settings.plan_checkpoint, story, non_interactive):
                approved, plan = self._checkpoint(story, tool)
                if not approved:
                    skipped.add(story.id)
                    continue

            number = self.manager.next_iteration_number()
            result, output = self._execute(prd, story, tool, number, plan)
            self._tally(summary, result)

            if result.status == STATUS_SUCCESS:
                consecutive_failures = 0
            else:
                consecutive_failures += 1

            reason = self._check_stop(result, output, consecutive_failures)
            if reason:
                summary.stop_reason = reason
                return

    def _checkpoint(self, story: UserStory, tool: str):
        """Run the plan checkpoint. Returns (approved, plan)."""
        cfg = self.config.ralph.plan_checkpoint
        plan = generate_iteration_plan(story, tool, self.project_root, runner=self.runner)
        if not plan:
            print(f"{Colors.YELLOW}No plan generated for {story.id}, continuing without one{Colors.NC}")
            return True, None

        approval = request_plan_approval(
            plan, story, cfg.auto_approve_after_seconds, input_fn=self.input_fn
        )
        if not approval.approved:
            note = "Plan rejected"
            if approval.feedback:
                note += f": {approval.feedback}"
            self.manager.append_story_note(story.id, note)
            print(f"{Colors.YELLOW}Plan for {story.id} rejected, skipping this iteration{Colors.NC}")
            return False, None

        self.manager.plans_dir.mkdir(parents=True, exist_ok=True)
        (self.manager.plans_dir / f"{story.id}.md").write_text(plan + "\n")
        return True, plan

    # One iteration

    def _build_context(self) -> str:
        history = self.manager.tracker.build_compressed_context()
        recent = self.manager.read_progress(3)
        if recent:
            return f"{history}\n\n## Recent Progress\n\n{recent}"
        return history

    def _execute(
        self,
        prd: PRD,
        story: UserStory,
        tool: str,
        number: int,
        plan: Optional[str] = None,
        track_head: bool = True,
    ):
        """Run the AI tool for one story and record the result.

        With ``track_head`` a new HEAD commit made during the run is taken as
        the iteration's commit when the output names none. Concurrent runs
        share HEAD, so parallel batches pass False.

        Returns:
            Tuple of (IterationResult, raw output).
        """
        settings = self.config.ralph
        print(f"\n{Colors.CYAN}[Iteration {number}]{Colors.NC} {story.id}: {story.title}")

        with self._write_lock:
            prompt = build_iteration_prompt(
                prd,
                story,
                progress_context=self._build_context(),
                project_rules=find_project_rules(self.project_root),
                coverage_threshold=self.config.coverage_threshold,
                plan=plan,
            )
            self.manager.update_lock_progress(number, story.id)

        head_before = get_current_commit(self.project_root) if track_head else None
        started_at = utc_now_iso()
        run = self.runner(
            tool, prompt, self.project_root, settings.iteration_timeout, self.tool_args
        )
        output = run.output

        result = parse_agent_output(
            output,
            iteration=number,
            task_id=story.id,
            task_title=story.title,
            tool=tool,
            coverage_threshold=self.config.coverage_threshold,
            execution_time_ms=run.duration_ms,
            exit_code=run.exit_code,
        )
        if run.timed_out:
            result.errors = [f"Timed out after {settings.iteration_timeout}s"] + result.errors[:2]
        if track_head and result.git_commit is None:
            head_after = get_current_commit(self.project_root)
            if head_after and head_after != head_before:
                result.git_commit = head_after

        with self._write_lock:
            self.manager.record_iteration(result, started_at)
            if result.status == STATUS_SUCCESS:
                self.manager.mark_story_complete(story.id)
            elif result.errors:
                self.manager.append_story_note(
                    story.id, f"Iteration {number} ({result.status}): {result.errors[0]}"
                )

        self._report(result)
        return result, output

    def _tally(self, summary: LoopSummary, result: IterationResult) -> None:
        summary.iterations += 1
        summary.results.append(result)
        if result.status == STATUS_SUCCESS:
            summary.completed += 1
        else:
            summary.failed += 1

    def _check_stop(self, result: IterationResult, output: str, consecutive_failures: int) -> str:
        settings = self.config.ralph
        if consecutive_failures >= settings.max_failures:
            return STOP_MAX_FAILURES
        if result.context_loss_count >= settings.max_context_loss:
            return STOP_CONTEXT_LOSS
        if has_completion_promise(output):
            prd = self.manager.load_prd()
            if prd is None or prd.next_story() is None:
                return STOP_COMPLETION_PROMISE
            logger.warning("Completion promise ignored: stories are still pending")
        return ""

    def _report(self, result: IterationResult) -> None:
        color = {
            "success": Colors.GREEN,
            "partial": Colors.YELLOW,
        }.get(result.status, Colors.RED)
        qc = result.quality_checks
        gates = " ".join(
            f"{name}={'✓' if ok else '✗'}"
            for name, ok in (
                ("type", qc.type_check),
                ("lint", qc.lint),
                ("tests", qc.tests),
                ("coverage", qc.coverage_met),
            )
        )
        print(
            f"  {color}{result.status.upper()}{Colors.NC} "
            f"in {format_duration(result.execution_time_ms)}  {gates}"
        )
        for error in result.errors:
            print(f"  {Colors.DIM}{error}{Colors.NC}")

    # Parallel

    def _run_parallel(
        self, summary: LoopSummary, max_iterations: int, tool: str, parallel: int
    ) -> None:
        consecutive_failures = 0

        while True:
            prd = self.manager.load_prd()
            if prd is None or prd.next_story() is None:
                summary.stop_reason = STOP_ALL_COMPLETE
                return

            for batch in build_parallel_batches(prd.pending_stories(), parallel):
                if self.manager.is_paused():
                    summary.stop_reason = STOP_PAUSED
                    return
                budget = max_iterations - summary.iterations
                if budget <= 0:
                    summary.stop_reason = STOP_MAX_ITERATIONS
                    return
                batch = batch[:budget]
                first = self.manager.next_iteration_number()
                snapshot = self.manager.load_prd() or prd

                with ThreadPoolExecutor(max_workers=len(batch)) as pool:
                    futures = [
                        pool.submit(
                            self._execute, snapshot, story, tool, first + i, track_head=False
                        )
                        for i, story in enumerate(batch)
                    ]
                    outcomes = [f.result() for f in futures]

                stop = ""
                for result, output in outcomes:
                    self._tally(summary, result)
                    if result.status == STATUS_SUCCESS:
                        consecutive_failures = 0
                    else:
                        consecutive_failures += 1
                    stop = stop or self._check_stop(result, output, consecutive_failures)
                if stop:
                    summary.stop_reason = stop
                    return


__all__ = [
    "LoopSummary",
    "RalphLoop",
    "STOP_ALL_COMPLETE",
    "STOP_COMPLETION_PROMISE",
    "STOP_MAX_ITERATIONS",
    "STOP_PAUSED",
    "STOP_MAX_FAILURES",
    "STOP_CONTEXT_LOSS",
    "STOP_INTERRUPTED",
    "STOP_PLANS_REJECTED",
]
