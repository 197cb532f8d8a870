"""rulebook task command."""

from pathlib import Path
from typing import Optional

from rulebook.config import ConfigManager
from rulebook.errors import RulebookError
from rulebook.prd import parse_checklist
from rulebook.tasks import TASK_STATUSES, TaskManager
from rulebook.utils import Colors

__all__ = ["cmd_task"]

TASK_USAGE = "Usage: rulebook task [create|list|show|validate|archive|status] <task-id>"

STATUS_COLORS = {
    "pending": Colors.YELLOW,
    "in-progress": Colors.CYAN,
    "completed": Colors.GREEN,
    "blocked": Colors.RED,
}


def _show(manager: TaskManager, task_id: str) -> int:
    task = manager.get_task(task_id)
    checked, total = manager.checklist_progress(task_id)
    color = STATUS_COLORS.get(task.status, Colors.NC)
    print(f"{Colors.BOLD}{task.title}{Colors.NC} ({task.id})")
    print(f"{Colors.CYAN}Status:{Colors.NC} {color}{task.status}{Colors.NC}")
    if task.archived_at:
        print(f"{Colors.CYAN}Archived:{Colors.NC} {task.archived_at}")
    print(f"{Colors.CYAN}Checklist:{Colors.NC} {checked}/{total}")
    print(f"{Colors.CYAN}Specs:{Colors.NC} {', '.join(task.specs) or 'none'}")
    print(f"{Colors.CYAN}Path:{Colors.NC} {task.path}")
    return 0


def _list(manager: TaskManager, include_archived: bool) -> int:
    tasks = manager.list_tasks(include_archived=include_archived)
    if not tasks:
        print(f"{Colors.YELLOW}No tasks. Create one with 'rulebook task create <task-id>'.{Colors.NC}")
        return 0
    for task in tasks:
        items = parse_checklist(task.tasks or "")
        checked, total = sum(1 for done, _ in items if done), len(items)
        color = STATUS_COLORS.get(task.status, Colors.NC)
        archived = f" {Colors.DIM}(archived {task.archived_at}){Colors.NC}" if task.archived_at else ""
        progress = f" {checked}/{total}" if total else ""
        print(f"  {color}{task.status:<12}{Colors.NC} {task.id}{progress}{archived}")
    return 0


def _validate(manager: TaskManager, task_id: str) -> int:
    result = manager.validate_task(task_id)
    for error in result.errors:
        print(f"{Colors.RED}✗ {error}{Colors.NC}")
    for warning in result.warnings:
        print(f"{Colors.YELLOW}! {warning}{Colors.NC}")
    if result.valid:
        print(f"{Colors.GREEN}Task {task_id} is valid{Colors.NC}")
        return 0
    return 1


def cmd_task(
    project_root: Path,
    action: Optional[str],
    task_id: Optional[str] = None,
    value: Optional[str] = None,
    include_archived: bool = False,
    force: bool = False,
) -> int:
    """Handle task subcommands.

    Args:
        project_root: Project root directory.
        action: create, list, show, validate, archive or status.
        task_id: Task the action applies to.
        value: New status for ``status``.
        include_archived: For list: include archived tasks.
        force: For archive: skip validation.

    Returns:
        Exit code.
    """
    if not action:
        print(f"{Colors.RED}{TASK_USAGE}{Colors.NC}")
        return 1

    try:
        config = ConfigManager(project_root).load()
        manager = TaskManager(project_root, config.rulebook_dir)

        if action == "list":
            return _list(manager, include_archived)

        if not task_id:
            print(f"{Colors.RED}Usage: rulebook task {action} <task-id>{Colors.NC}")
            return 1

        if action == "create":
            path = manager.create_task(task_id)
            print(f"{Colors.GREEN}Task created:{Colors.NC} {path.relative_to(project_root)}")
            print("Fill in proposal.md and tasks.md, then run 'rulebook task validate "
                  f"{task_id}'.")
            return 0

        if action == "show":
            return _show(manager, task_id)

        if action == "validate":
            return _validate(manager, task_id)

        if action == "archive":
            target = manager.archive_task(task_id, force=force)
            print(f"{Colors.GREEN}Archived:{Colors.NC} {target.relative_to(project_root)}")
            return 0

        if action == "status":
            if not value:
                print(f"{Colors.CYAN}Status:{Colors.NC} {manager.get_task(task_id).status}")
                print(f"Set with: rulebook task status {task_id} [{'|'.join(TASK_STATUSES)}]")
                return 0
            task = manager.update_status(task_id, value)
            print(f"{Colors.GREEN}Task {task.id}:{Colors.NC} {task.status}")
            return 0
    except RulebookError as e:
        print(f"{Colors.RED}Error: {e}{Colors.NC}")
        return 1

    print(f"{Colors.RED}Unknown task action: {action}{Colors.NC}")
    print(TASK_USAGE)
    return 1
