"""Task directories: proposals, checklists and spec deltas.

A task lives in ``<rulebook_dir>/tasks/<task-id>/``::

    proposal.md       why and what
    tasks.md          "- [ ]" checklist
    design.md         optional
    specs/<module>/spec.md
    .metadata.json    {status, createdAt, updatedAt}

Archived tasks move to ``tasks/archive/YYYY-MM-DD-<task-id>/``.
"""

import json
import logging
import re
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from rulebook.errors import TaskError
from rulebook.prd import parse_checklist
from rulebook.utils import today, utc_now_iso

logger = logging.getLogger(__name__)

ARCHIVE_DIR = "archive"
SPECS_DIR = "specs"
TASK_STATUSES = ("pending", "in-progress", "completed", "blocked")

_TASK_ID_RE = re.compile(r"^[a-z0-9]+(?:-[a-z0-9]+)*$")
_ARCHIVE_NAME_RE = re.compile(r"^(\d{4}-\d{2}-\d{2})-(.+)$")
_WHY_RE = re.compile(r"^##\s+Why\s*\n(.*?)(?=^##\s|\Z)", re.MULTILINE | re.DOTALL)
_WHAT_RE = re.compile(r"^##\s+What Changes\b", re.MULTILINE)
_REQUIREMENT_RE = re.compile(r"^###\s+Requirement:.*$", re.MULTILINE)
_SCENARIO3_RE = re.compile(r"^###\s+Scenario:", re.MULTILINE)
_SCENARIO4_RE = re.compile(r"^####\s+Scenario:.*?(?=^#{2,4}\s|\Z)", re.MULTILINE | re.DOTALL)

PROPOSAL_TEMPLATE = """# Proposal: {task_id}

## Why
[Explain why this change is needed - minimum 20 characters]

## What Changes
[Describe what will change]

## Impact
- Affected specs: [list]
- Affected code: [list]
- Breaking change: YES/NO
- User benefit: [describe]
"""

TASKS_TEMPLATE = """## 1. Implementation
- [ ] 1.1 First task
- [ ] 1.2 Second task

## 2. Testing
- [ ] 2.1 Write tests
- [ ] 2.2 Verify coverage

## 3. Documentation
- [ ] 3.1 Update README
- [ ] 3.2 Update CHANGELOG
"""


@dataclass
class RulebookTask:
    """A task directory loaded from disk."""

    id: str
    path: Path
    status: str = "pending"
    created_at: str = ""
    updated_at: str = ""
    proposal: Optional[str] = None
    tasks: Optional[str] = None
    design: Optional[str] = None
    specs: Dict[str, str] = field(default_factory=dict)
    archived_at: Optional[str] = None

    @property
    def title(self) -> str:
        if self.proposal:
            for line in self.proposal.splitlines():
                if line.startswith("# "):
                    title = line[2:].strip()
                    if title.lower().startswith("proposal:"):
                        title = title[len("proposal:"):].strip()
                    return title or self.id
        return self.id


@dataclass
class TaskValidation:
    valid: bool
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)


class TaskManager:
    """Creates, reads, validates and archives task directories.

    Args:
        project_root: Project root directory.
        rulebook_dir: Directory (relative to the root) holding rulebook data.
    """

    def __init__(self, project_root: Path, rulebook_dir: str = "rulebook") -> None:
        self.tasks_dir = project_root / rulebook_dir / "tasks"
        self.archive_dir = self.tasks_dir / ARCHIVE_DIR

    def initialize(self) -> None:
        self.archive_dir.mkdir(parents=True, exist_ok=True)

    def task_path(self, task_id: str) -> Path:
        return self.tasks_dir / task_id

    def create_task(self, task_id: str) -> Path:
        """Create a task directory from the templates.

        Args:
            task_id: Kebab-case identifier, e.g. 'add-user-auth'.

        Returns:
            Path of the new task directory.

        Raises:
            TaskError: If the id is invalid or the task already exists.
        """
        if not _TASK_ID_RE.match(task_id):
            raise TaskError(
                f"Invalid task id '{task_id}': use lowercase kebab-case, e.g. add-user-auth"
            )
        self.initialize()
        path = self.task_path(task_id)
        if path.exists():
            raise TaskError(f"Task {task_id} already exists")

        (path / SPECS_DIR).mkdir(parents=True)
        (path / "proposal.md").write_text(PROPOSAL_TEMPLATE.format(task_id=task_id))
        (path / "tasks.md").write_text(TASKS_TEMPLATE)
        now = utc_now_iso()
        self._write_metadata(path, {"status": "pending", "createdAt": now, "updatedAt": now})
        logger.info("Created task %s", task_id)
        return path

    def _write_metadata(self, path: Path, metadata: Dict[str, str]) -> None:
        (path / ".metadata.json").write_text(json.dumps(metadata, indent=2) + "\n")

    def load_task(self, task_id: str, archived: bool = False) -> Optional[RulebookTask]:
        """Load a task, or None if its directory does not exist."""
        base = self.archive_dir if archived else self.tasks_dir
        path = base / task_id
        if not path.is_dir():
            return None

        real_id, archived_at = task_id, None
        if archived:
            match = _ARCHIVE_NAME_RE.match(task_id)
            if match:
                archived_at, real_id = match.group(1), match.group(2)

        task = RulebookTask(id=real_id, path=path, archived_at=archived_at)
        meta_path = path / ".metadata.json"
        if meta_path.is_file():
            try:
                meta = json.loads(meta_path.read_text())
                task.status = meta.get("status", task.status)
                task.created_at = meta.get("createdAt", "")
                task.updated_at = meta.get("updatedAt", "")
            except ValueError as e:
                logger.warning("Ignoring invalid metadata for task %s: %s", task_id, e)

        for name in ("proposal", "tasks", "design"):
            file = path / f"{name}.md"
            if file.is_file():
                setattr(task, name, file.read_text())

        specs_dir = path / SPECS_DIR
        if specs_dir.is_dir():
            for module_dir in sorted(specs_dir.iterdir()):
                spec = module_dir / "spec.md"
                if module_dir.is_dir() and spec.is_file():
                    task.specs[module_dir.name] = spec.read_text()
        return task

    def get_task(self, task_id: str) -> RulebookTask:
        """Load an active task, falling back to the archive.

        Raises:
            TaskError: If the task does not exist.
        """
        task = self.load_task(task_id)
        if task is None and self.archive_dir.is_dir():
            for entry in sorted(self.archive_dir.iterdir(), reverse=True):
                match = _ARCHIVE_NAME_RE.match(entry.name)
                if match and match.group(2) == task_id:
                    task = self.load_task(entry.name, archived=True)
                    break
        if task is None:
            raise TaskError(f"Task {task_id} not found")
        return task

    def list_tasks(self, include_archived: bool = False) -> List[RulebookTask]:
        tasks = []
        if self.tasks_dir.is_dir():
            for entry in sorted(self.tasks_dir.iterdir()):
                if entry.is_dir() and entry.name != ARCHIVE_DIR:
                    task = self.load_task(entry.name)
                    if task:
                        tasks.append(task)
        if include_archived and self.archive_dir.is_dir():
            for entry in sorted(self.archive_dir.iterdir()):
                if entry.is_dir():
                    task = self.load_task(entry.name, archived=True)
                    if task:
                        tasks.append(task)
        return tasks

    def update_status(self, task_id: str, status: str) -> RulebookTask:
        """Persist a new status in ``.metadata.json``.

        Raises:
            TaskError: If the status is unknown or the task does not exist.
        """
        if status not in TASK_STATUSES:
            raise TaskError(f"Invalid status '{status}'. Use one of: {', '.join(TASK_STATUSES)}")
        task = self.load_task(task_id)
        if task is None:
            raise TaskError(f"Task {task_id} not found")
        now = utc_now_iso()
        task.status = status
        task.updated_at = now
        self._write_metadata(
            task.path,
            {"status": status, "createdAt": task.created_at or now, "updatedAt": now},
        )
        return task

    def validate_task(self, task_id: str) -> TaskValidation:
        """Check a task's structure.

        Errors: missing proposal, a ``## Why`` shorter than 20 characters, a
        missing ``## What Changes``, a tasks.md without checkboxes, spec
        requirements without SHALL/MUST, scenarios with three hashes.
        Warnings: no spec deltas, scenarios without Given/When/Then.
        """
        task = self.load_task(task_id)
        if task is None:
            return TaskValidation(valid=False, errors=[f"Task {task_id} not found"])

        errors: List[str] = []
        warnings: List[str] = []

        if not task.proposal:
            errors.append("Missing proposal.md")
        else:
            why = _WHY_RE.search(task.proposal)
            if not why or len(why.group(1).strip()) < 20:
                errors.append("Purpose section (## Why) must have at least 20 characters")
            if not _WHAT_RE.search(task.proposal):
                errors.append("Missing '## What Changes' section in proposal.md")

        if not task.tasks:
            errors.append("Missing tasks.md")
        elif not parse_checklist(task.tasks):
            errors.append("tasks.md has no checklist items (- [ ] ...)")

        if not task.specs:
            warnings.append("No spec files found (specs/*/spec.md)")
        for module, content in task.specs.items():
            errors.extend(_validate_spec(module, content))
            for scenario in _SCENARIO4_RE.findall(content):
                if not all(re.search(word, scenario, re.IGNORECASE) for word in ("given", "when", "then")):
                    warnings.append(f"Scenario in {module}/spec.md should use Given/When/Then structure")

        return TaskValidation(valid=not errors, errors=errors, warnings=warnings)

    def archive_task(self, task_id: str, force: bool = False) -> Path:
        """Move a task to ``archive/YYYY-MM-DD-<id>``.

        Args:
            task_id: Task to archive.
            force: Archive even if validation fails.

        Returns:
            The archive path.

        Raises:
            TaskError: If the task is missing, invalid (without force) or the
                archive target exists.
        """
        if self.load_task(task_id) is None:
            raise TaskError(f"Task {task_id} not found")
        if not force:
            validation = self.validate_task(task_id)
            if not validation.valid:
                raise TaskError("Task validation failed:\n" + "\n".join(validation.errors))

        target = self.archive_dir / f"{today()}-{task_id}"
        if target.exists():
            raise TaskError(f"Archive {target.name} already exists")
        self.archive_dir.mkdir(parents=True, exist_ok=True)
        shutil.move(str(self.task_path(task_id)), str(target))
        logger.info("Archived task %s to %s", task_id, target)
        return target

    def checklist_progress(self, task_id: str) -> Tuple[int, int]:
        """Return (checked, total) checklist items for a task."""
        task = self.get_task(task_id)
        items = parse_checklist(task.tasks or "")
        return sum(1 for checked, _ in items if checked), len(items)


def _validate_spec(module: str, content: str) -> List[str]:
    errors = []
    for match in _REQUIREMENT_RE.finditer(content):
        body = content[match.end():]
        next_heading = re.search(r"^#{3,4}\s", body, re.MULTILINE)
        if next_heading:
            body = body[: next_heading.start()]
        if not re.search(r"\b(SHALL|MUST)\b", body):
            errors.append(
                f"Requirement in {module}/spec.md missing SHALL or MUST keyword: {match.group(0).strip()}"
            )
        section = content[match.end():]
        next_section = re.search(r"^#{2,3}\s", section, re.MULTILINE)
        if next_section:
            section = section[: next_section.start()]
        if not re.search(r"^####\s+Scenario:", section, re.MULTILINE):
            errors.append(
                f"Requirement in {module}/spec.md has no '#### Scenario:': {match.group(0).strip()}"
            )
    if _SCENARIO3_RE.search(content):
        errors.append(f"Scenarios in {module}/spec.md must use 4 hashtags (####), not 3 (###)")
    return errors


__all__ = [
    "TASK_STATUSES",
    "RulebookTask",
    "TaskValidation",
    "TaskManager",
]
