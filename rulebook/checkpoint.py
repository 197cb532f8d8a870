"""Plan checkpoint: show an implementation plan before an iteration runs.

When enabled in the project config, the loop asks the AI tool for a plan
(no code) for the next story, shows it, and waits for the user to approve,
reject or ask for changes. A rejected plan skips the story for that
iteration and the feedback is stored in the story notes.
"""

import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional

from rich.console import Console
from rich.markdown import Markdown
from rich.panel import Panel

from rulebook.agents import AgentRun, run_agent
from rulebook.errors import AgentNotFoundError
from rulebook.models import PlanCheckpointConfig, UserStory
from rulebook.prompts import build_plan_prompt

logger = logging.getLogger(__name__)

PLAN_TIMEOUT_S = 120

Runner = Callable[..., AgentRun]


@dataclass
class PlanApproval:
    """Outcome of the approval prompt."""

    approved: bool
    feedback: Optional[str] = None


def should_run_checkpoint(
    config: PlanCheckpointConfig, story: UserStory, non_interactive: bool
) -> bool:
    """Decide whether the plan checkpoint applies to this story.

    Never in non-interactive sessions. With mode 'failed' only stories that
    do not pass yet are checkpointed.
    """
    if not config.enabled or non_interactive:
        return False
    mode = config.require_approval_for_stories
    if mode == "none":
        return False
    if mode == "all":
        return True
    return not story.passes


def generate_iteration_plan(
    story: UserStory,
    tool: str,
    project_root: Path,
    runner: Runner = run_agent,
    timeout_s: int = PLAN_TIMEOUT_S,
) -> str:
    """Ask the AI tool for an implementation plan.

    Returns:
        The trimmed plan text, or an empty string if the tool is missing,
        fails or times out.
    """
    try:
        run = runner(tool, build_plan_prompt(story), project_root, timeout_s)
    except AgentNotFoundError as e:
        logger.warning("Plan generation skipped: %s", e)
        return ""
    if run.timed_out or run.exit_code != 0:
        logger.warning(
            "Plan generation failed for %s (exit %d%s)",
            story.id,
            run.exit_code,
            ", timed out" if run.timed_out else "",
        )
        return ""
    return run.stdout.strip()


def display_plan(plan: str, story_title: str, console: Optional[Console] = None) -> None:
    console = console or Console()
    console.print()
    console.print(
        Panel(
            Markdown(plan),
            title="Implementation Plan",
            subtitle=f"Story: {story_title}",
            border_style="cyan",
        )
    )


def request_plan_approval(
    plan: str,
    story: UserStory,
    auto_approve_after_seconds: int = 0,
    input_fn: Callable[[str], str] = input,
    sleep_fn: Callable[[float], None] = time.sleep,
    console: Optional[Console] = None,
) -> PlanApproval:
    """Show the plan and ask the user to approve it.

    Args:
        plan: Plan text.
        story: Story the plan is for.
        auto_approve_after_seconds: If positive, approve after this delay
            without asking.
        input_fn: Reads a line from the user.
        sleep_fn: Used for the auto-approve delay.
        console: Console to print to.

    Returns:
        PlanApproval. ``feedback`` is set for rejected or edited plans.
    """
    console = console or Console()
    display_plan(plan, story.title, console)

    if auto_approve_after_seconds > 0:
        console.print(
            f"[yellow]  Auto-approving in {auto_approve_after_seconds} seconds... "
            "(Ctrl+C to abort)[/yellow]"
        )
        sleep_fn(auto_approve_after_seconds)
        console.print("[green]  Plan auto-approved.[/green]")
        return PlanApproval(approved=True)

    while True:
        answer = input_fn("Review plan: [a]pprove, [r]eject, [e]dit? ").strip().lower()
        if answer in ("", "a", "approve", "y", "yes"):
            return PlanApproval(approved=True)
        if answer in ("r", "reject", "n", "no"):
            feedback = input_fn("Reason for rejection? ").strip()
            return PlanApproval(approved=False, feedback=feedback or None)
        if answer in ("e", "edit"):
            feedback = input_fn("What needs to change? ").strip()
            return PlanApproval(approved=False, feedback=feedback or None)
        console.print("[red]Please answer a, r or e.[/red]")


__all__ = [
    "PlanApproval",
    "should_run_checkpoint",
    "generate_iteration_plan",
    "display_plan",
    "request_plan_approval",
]
