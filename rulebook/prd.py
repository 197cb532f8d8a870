"""PRD backlog storage and generation.

The PRD (``prd.json``) is the backlog the Ralph loop works through. It is
either written by hand or generated from the task directories under
``rulebook/tasks`` by ``PRDGenerator``. The file is plain pretty-printed JSON
so it diffs cleanly in git.
"""

import json
import logging
import re
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from rulebook.errors import PRDError
from rulebook.models import PRD, UserStory
from rulebook.utils import slugify

logger = logging.getLogger(__name__)

MAX_CRITERIA = 10
MAX_DESCRIPTION = 500

_HEADING_RE = re.compile(r"^#\s+(.+?)\s*$", re.MULTILINE)
_WHAT_CHANGES_RE = re.compile(r"^##\s+What Changes\s*\n(.*?)(?=^##\s|\Z)", re.MULTILINE | re.DOTALL)
_CHECKBOX_RE = re.compile(r"^\s*[-*]\s+\[([ xX])\]\s+(.+?)\s*$")
_NUMBERING_RE = re.compile(r"^\d+(\.\d+)*\.?\s+")


def load_prd(path: Path) -> Optional[PRD]:
    """Load a PRD from disk.

    Args:
        path: Path to prd.json.

    Returns:
        The PRD, or None if the file does not exist.

    Raises:
        PRDError: If the file cannot be parsed.
    """
    if not path.exists():
        return None
    try:
        data = json.loads(path.read_text())
    except (OSError, json.JSONDecodeError) as e:
        raise PRDError(f"Cannot read PRD {path}: {e}") from e
    if not isinstance(data, dict):
        raise PRDError(f"PRD {path} must contain a JSON object")
    try:
        return PRD.from_dict(data)
    except (KeyError, TypeError, ValueError) as e:
        raise PRDError(f"Malformed PRD {path}: {e}") from e


def save_prd(prd: PRD, path: Path) -> None:
    """Write a PRD as indented JSON, creating parent directories."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(prd.to_json())


def parse_checklist(content: str) -> List[Tuple[bool, str]]:
    """Parse ``- [ ]`` / ``- [x]`` lines from a tasks.md file.

    Returns:
        List of (checked, text) tuples with leading numbering like '1.1' removed.
    """
    items = []
    for line in content.splitlines():
        match = _CHECKBOX_RE.match(line)
        if not match:
            continue
        text = _NUMBERING_RE.sub("", match.group(2)).strip()
        if text:
            items.append((match.group(1).lower() == "x", text))
    return items


def extract_title(proposal: str) -> str:
    match = _HEADING_RE.search(proposal)
    if not match:
        return ""
    title = match.group(1).strip()
    if title.lower().startswith("proposal:"):
        title = title[len("proposal:"):].strip()
    return title


def extract_description(proposal: str) -> str:
    """Return the 'What Changes' section, or the first three prose lines."""
    match = _WHAT_CHANGES_RE.search(proposal)
    if match and match.group(1).strip():
        return match.group(1).strip()[:MAX_DESCRIPTION]
    lines = [
        line.strip()
        for line in proposal.splitlines()
        if line.strip() and not line.lstrip().startswith("#")
    ]
    return "\n".join(lines[:3])[:MAX_DESCRIPTION]


class PRDGenerator:
    """Builds a PRD from the task directories of a project.

    Each task directory that holds a ``proposal.md`` becomes one user story.
    Directories are visited in name order; the archive is skipped.
    """

    def __init__(self, tasks_dir: Path) -> None:
        self.tasks_dir = tasks_dir

    def _task_dirs(self) -> List[Path]:
        if not self.tasks_dir.is_dir():
            logger.warning("Tasks directory not found: %s", self.tasks_dir)
            return []
        return [
            d
            for d in sorted(self.tasks_dir.iterdir())
            if d.is_dir() and d.name != "archive" and (d / "proposal.md").is_file()
        ]

    def story_from_task(self, task_dir: Path, index: int) -> UserStory:
        """Convert one task directory into a user story.

        Args:
            task_dir: Directory containing proposal.md and optionally tasks.md.
            index: 1-based position; used for the id and the priority.

        Returns:
            The generated UserStory.
        """
        proposal = (task_dir / "proposal.md").read_text()
        checklist: List[Tuple[bool, str]] = []
        tasks_md = task_dir / "tasks.md"
        if tasks_md.is_file():
            checklist = parse_checklist(tasks_md.read_text())

        criteria = [text for _, text in checklist][:MAX_CRITERIA]
        return UserStory(
            id=f"US-{index:03d}",
            title=extract_title(proposal) or task_dir.name,
            description=extract_description(proposal)
            or "Task extracted from rulebook proposal",
            acceptance_criteria=criteria or ["Implementation complete"],
            priority=index,
            passes=bool(checklist) and all(checked for checked, _ in checklist),
            notes="",
            source_task_id=task_dir.name,
        )

    def generate(self, project_name: str) -> PRD:
        """Generate a PRD for every task directory.

        Args:
            project_name: Project name used for the PRD and branch name.

        Returns:
            A new PRD.
        """
        stories = []
        for index, task_dir in enumerate(self._task_dirs(), start=1):
            try:
                stories.append(self.story_from_task(task_dir, index))
            except OSError as e:
                logger.warning("Skipping task %s: %s", task_dir.name, e)
        logger.info("Generated PRD with %d user stories", len(stories))
        return PRD(
            project=project_name,
            branch_name=f"ralph/{slugify(project_name)}",
            description=f"Ralph autonomous loop for {project_name} - {len(stories)} user stories",
            user_stories=stories,
        )


def merge_with_existing(new: PRD, old: Optional[PRD]) -> PRD:
    """Carry progress from an existing PRD into a regenerated one.

    Stories are matched on ``source_task_id``. A story that passed before
    keeps passing, and notes are kept.

    Args:
        new: Freshly generated PRD.
        old: Previously saved PRD, or None.

    Returns:
        ``new``, updated in place.
    """
    if old is None:
        return new
    previous: Dict[str, UserStory] = {
        s.source_task_id: s for s in old.user_stories if s.source_task_id
    }
    for story in new.user_stories:
        prior = previous.get(story.source_task_id or "")
        if prior is None:
            continue
        story.passes = story.passes or prior.passes
        if prior.notes:
            story.notes = prior.notes
    return new


__all__ = [
    "load_prd",
    "save_prd",
    "parse_checklist",
    "extract_title",
    "extract_description",
    "PRDGenerator",
    "merge_with_existing",
]
