"""rulebook ralph command: the autonomous loop.

Subcommands: init, run, status, pause, resume, history, watch.
"""

import argparse
import sys
from pathlib import Path
from typing import Optional

from rulebook.agents import check_tool_available
from rulebook.config import SUPPORTED_TOOLS, ConfigManager, ProjectConfig, get_global_config
from rulebook.errors import RulebookError
from rulebook.git import has_uncommitted_changes, is_git_repo
from rulebook.loop import RalphLoop
from rulebook.models import STATUS_FAILED, STATUS_SUCCESS
from rulebook.prd import PRDGenerator, merge_with_existing
from rulebook.ralph import RalphManager, is_pid_alive
from rulebook.scripts import install_ralph_scripts
from rulebook.utils import Colors, format_duration

__all__ = ["cmd_ralph"]

RALPH_USAGE = "Usage: rulebook ralph [init|run|status|pause|resume|history|watch]"

STATUS_COLORS = {
    STATUS_SUCCESS: Colors.GREEN,
    STATUS_FAILED: Colors.RED,
}


def _mark(ok: bool) -> str:
    return f"{Colors.GREEN}✓{Colors.NC}" if ok else f"{Colors.RED}✗{Colors.NC}"


def cmd_ralph_init(project_root: Path, config: ProjectConfig) -> int:
    """Generate the PRD from the tasks, reset loop state and install scripts."""
    manager = RalphManager(project_root, config.rulebook_dir)
    tasks_dir = project_root / config.rulebook_dir / "tasks"

    prd = PRDGenerator(tasks_dir).generate(config.project_name or project_root.name)
    prd = merge_with_existing(prd, manager.load_prd())
    manager.save_prd(prd)
    state = manager.initialize(config.ralph.max_iterations, config.ralph.tool)
    scripts = install_ralph_scripts(project_root, config.rulebook_dir)

    stats = prd.stats()
    print(f"{Colors.GREEN}Ralph initialized!{Colors.NC}")
    print(f"{Colors.CYAN}PRD:{Colors.NC} {manager.prd_path.relative_to(project_root)}")
    print(
        f"{Colors.CYAN}Stories:{Colors.NC} {stats['total']} total, "
        f"{stats['completed']} complete, {stats['pending']} pending"
    )
    print(f"{Colors.CYAN}Tool:{Colors.NC} {state.tool}, max iterations {state.max_iterations}")
    print(f"{Colors.CYAN}Scripts:{Colors.NC} {len(scripts)} installed in {config.rulebook_dir}/scripts/")
    if not prd.user_stories:
        print(
            f"{Colors.YELLOW}No tasks found in {tasks_dir.relative_to(project_root)}. "
            f"Create one with 'rulebook task create <task-id>' and re-run 'rulebook ralph init'.{Colors.NC}"
        )
    return 0


def cmd_ralph_run(project_root: Path, config: ProjectConfig, args: argparse.Namespace) -> int:
    """Run the loop with options from the command line, the project and the global config."""
    if not config.ralph.enabled:
        print(f"{Colors.YELLOW}Ralph is disabled for this project (ralph.enabled = false){Colors.NC}")
        return 1

    gcfg = get_global_config()
    tool = args.tool or config.ralph.tool
    if tool not in SUPPORTED_TOOLS:
        print(f"{Colors.RED}Unsupported tool '{tool}'. Use one of: {', '.join(SUPPORTED_TOOLS)}{Colors.NC}")
        return 1

    available, error = check_tool_available(tool)
    if not available:
        print(f"{Colors.RED}Error: {error}{Colors.NC}")
        return 1

    if is_git_repo(project_root) and has_uncommitted_changes(project_root):
        print(f"{Colors.YELLOW}Warning: working tree has uncommitted changes{Colors.NC}")

    non_interactive = args.yes or not sys.stdin.isatty()
    loop = RalphLoop(project_root, config, tool_args=gcfg.tool_args)
    summary = loop.run(
        max_iterations=args.max_iterations,
        tool=tool,
        parallel=args.parallel,
        non_interactive=non_interactive,
    )

    print()
    print(f"{Colors.BOLD}Ralph finished:{Colors.NC} {summary.stop_reason}")
    print(
        f"  {summary.iterations} iterations, "
        f"{Colors.GREEN}{summary.completed} completed{Colors.NC}, "
        f"{Colors.RED}{summary.failed} failed{Colors.NC}"
    )
    return 0


def cmd_ralph_status(project_root: Path, config: ProjectConfig) -> int:
    manager = RalphManager(project_root, config.rulebook_dir)
    state = manager.load_state()
    if state is None:
        print(f"{Colors.YELLOW}Ralph not initialized. Run 'rulebook ralph init' first.{Colors.NC}")
        return 1

    stats = manager.get_task_stats()
    if state.paused:
        run_state = f"{Colors.YELLOW}paused{Colors.NC} since {state.paused_at}"
    elif manager.is_running():
        run_state = f"{Colors.GREEN}running{Colors.NC}"
    else:
        run_state = "idle"
    print(f"{Colors.CYAN}State:{Colors.NC} {run_state}")
    print(f"{Colors.CYAN}Tool:{Colors.NC} {state.tool}")
    print(
        f"{Colors.CYAN}Iterations:{Colors.NC} {state.current_iteration}/{state.max_iterations} "
        f"this run, {state.total_iterations} total"
    )
    print(
        f"{Colors.CYAN}Stories:{Colors.NC} {stats['completed']}/{stats['total']} complete, "
        f"{stats['pending']} pending"
    )
    if state.current_task_id:
        print(f"{Colors.CYAN}Current story:{Colors.NC} {state.current_task_id}")

    next_story = manager.get_next_task()
    if next_story:
        print(f"{Colors.CYAN}Next story:{Colors.NC} {next_story.id} - {next_story.title}")

    lock = manager.get_lock_info()
    if lock is not None:
        alive = "alive" if is_pid_alive(lock.pid) else f"{Colors.YELLOW}stale{Colors.NC}"
        detail = f", iteration {lock.iteration}" if lock.iteration is not None else ""
        print(f"{Colors.CYAN}Lock:{Colors.NC} pid {lock.pid} ({alive}), since {lock.started_at}{detail}")
    return 0


def cmd_ralph_pause(project_root: Path, config: ProjectConfig, resume: bool = False) -> int:
    manager = RalphManager(project_root, config.rulebook_dir)
    changed = manager.resume() if resume else manager.pause()
    if not changed:
        print(f"{Colors.YELLOW}Ralph not initialized. Run 'rulebook ralph init' first.{Colors.NC}")
        return 1
    if resume:
        print(f"{Colors.GREEN}Ralph resumed{Colors.NC}")
    else:
        print(f"{Colors.YELLOW}Ralph paused{Colors.NC} (the current iteration finishes first)")
    return 0


def cmd_ralph_history(project_root: Path, config: ProjectConfig, limit: Optional[int] = None) -> int:
    """Print the iteration history, newest first, followed by statistics."""
    manager = RalphManager(project_root, config.rulebook_dir)
    history = manager.get_iteration_history(limit=limit)
    if not history:
        print(f"{Colors.YELLOW}No iterations recorded yet{Colors.NC}")
        return 0

    for meta in history:
        color = STATUS_COLORS.get(meta.status, Colors.YELLOW)
        checks = meta.quality_checks
        gates = (
            f"types {_mark(checks.type_check)} lint {_mark(checks.lint)} "
            f"tests {_mark(checks.tests)} coverage {_mark(checks.coverage_met)}"
        )
        commit = f" {Colors.DIM}{meta.git_commit[:7]}{Colors.NC}" if meta.git_commit else ""
        print(
            f"{Colors.BOLD}#{meta.iteration}{Colors.NC} {meta.task_id} {color}{meta.status}{Colors.NC} "
            f"{format_duration(meta.duration_ms)}{commit}"
        )
        print(f"    {meta.task_title}")
        print(f"    {gates}")
        if meta.errors:
            print(f"    {Colors.RED}{meta.errors[0]}{Colors.NC}")

    stats = manager.tracker.get_statistics()
    breakdown = stats["quality_breakdown"]
    print()
    print(f"{Colors.CYAN}Statistics:{Colors.NC}")
    print(
        f"  {stats['total_iterations']} iterations, {stats['successful_iterations']} successful, "
        f"{stats['failed_iterations']} failed ({stats['success_rate']:.0%} success)"
    )
    print(f"  Average duration: {format_duration(stats['average_duration_ms'])}")
    print(
        f"  Gates passed: types {breakdown['type_check']}, lint {breakdown['lint']}, "
        f"tests {breakdown['tests']}, coverage {breakdown['coverage']}"
    )
    return 0


def cmd_ralph(project_root: Path, action: Optional[str], args: argparse.Namespace) -> int:
    """Dispatch ``rulebook ralph <action>``.

    Args:
        project_root: Project root directory.
        action: Subcommand name.
        args: Parsed command line.

    Returns:
        Exit code.
    """
    if not action:
        print(f"{Colors.RED}{RALPH_USAGE}{Colors.NC}")
        return 1

    try:
        config = ConfigManager(project_root).load()

        if action == "init":
            return cmd_ralph_init(project_root, config)
        if action == "run":
            return cmd_ralph_run(project_root, config, args)
        if action == "status":
            return cmd_ralph_status(project_root, config)
        if action == "pause":
            return cmd_ralph_pause(project_root, config)
        if action == "resume":
            return cmd_ralph_pause(project_root, config, resume=True)
        if action == "history":
            return cmd_ralph_history(project_root, config, args.limit)
        if action == "watch":
            from rulebook.commands.watch import cmd_watch

            return cmd_watch(project_root, config, no_ui=args.no_ui)
    except RulebookError as e:
        print(f"{Colors.RED}Error: {e}{Colors.NC}")
        return 1

    print(f"{Colors.RED}Unknown ralph action: {action}{Colors.NC}")
    print(RALPH_USAGE)
    return 1
