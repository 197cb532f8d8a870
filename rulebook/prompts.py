"""Prompt building for Ralph iterations.

Prompt bodies live in ``templates/prompts/*.md`` inside the package and use
``{{NAME}}`` placeholders. This module fills them in with the current story,
the backlog and the learnings from earlier iterations, and prepends the
project's own rules (AGENTS.md or CLAUDE.md).
"""

import re
from pathlib import Path
from typing import Dict, Optional

from rulebook.models import PRD, UserStory
from rulebook.parser import COMPLETION_PROMISE

_PLACEHOLDER_RE = re.compile(r"\{\{([A-Z_]+)\}\}")


def get_templates_dir() -> Path:
    """Directory holding the packaged templates."""
    return Path(__file__).parent / "templates"


def load_prompt(name: str) -> str:
    """Load a prompt template by name.

    Args:
        name: Template name without extension (e.g. 'iteration', 'plan').

    Returns:
        The template text.

    Raises:
        FileNotFoundError: If the template doesn't exist.
    """
    path = get_templates_dir() / "prompts" / f"{name.lower()}.md"
    if not path.exists():
        raise FileNotFoundError(f"Prompt file not found: {path}")
    return path.read_text()


def render(template: str, values: Dict[str, str]) -> str:
    """Replace ``{{NAME}}`` placeholders; unknown names are left as-is."""
    return _PLACEHOLDER_RE.sub(lambda m: values.get(m.group(1), m.group(0)), template)


def find_project_rules(repo_root: Path) -> Optional[str]:
    """Find and load project rules from AGENTS.md or CLAUDE.md.

    Searches for rules files in order of precedence (first found wins):
    1. AGENTS.md in repo root
    2. CLAUDE.md in repo root

    Args:
        repo_root: The repository root directory.

    Returns:
        The content of the rules file, or None if no rules file found.
    """
    for path in (repo_root / "AGENTS.md", repo_root / "CLAUDE.md"):
        if path.is_file():
            try:
                return path.read_text()
            except OSError:
                continue
    return None


def build_prompt_with_rules(prompt_content: str, project_rules: Optional[str]) -> str:
    """Prepend project rules to a prompt.

    Args:
        prompt_content: The Ralph prompt.
        project_rules: Content of AGENTS.md/CLAUDE.md, if any.

    Returns:
        The combined prompt, or the original prompt if no rules provided.
    """
    if not project_rules:
        return prompt_content

    return f"""# Project Rules (from AGENTS.md)

The following rules are MANDATORY for this repository. Follow them strictly.

{project_rules.strip()}

---

# Ralph Task

{prompt_content}
"""


def format_story(story: UserStory) -> str:
    lines = [f"**{story.id}: {story.title}**", ""]
    if story.description:
        lines.extend([story.description, ""])
    lines.append("Acceptance criteria:")
    lines.extend(f"- {c}" for c in story.acceptance_criteria or ["Implementation complete"])
    if story.notes:
        lines.extend(["", "Notes from previous attempts:", story.notes])
    return "\n".join(lines)


def format_backlog(prd: PRD, current: Optional[UserStory] = None) -> str:
    lines = []
    for story in sorted(prd.user_stories, key=lambda s: s.priority):
        mark = "x" if story.passes else " "
        suffix = "  <- current" if current is not None and story.id == current.id else ""
        lines.append(f"- [{mark}] {story.id}: {story.title}{suffix}")
    return "\n".join(lines) or "(empty)"


def build_iteration_prompt(
    prd: PRD,
    story: UserStory,
    progress_context: str = "",
    project_rules: Optional[str] = None,
    coverage_threshold: float = 95.0,
    plan: Optional[str] = None,
) -> str:
    """Render the prompt for one Ralph iteration.

    Args:
        prd: The backlog.
        story: Story to work on in this iteration.
        progress_context: Compressed history and recent ledger entries.
        project_rules: Project rules to prepend, if any.
        coverage_threshold: Coverage percentage the tests must reach.
        plan: Approved implementation plan, if the plan checkpoint ran.

    Returns:
        The full prompt text.
    """
    stats = prd.stats()
    plan_section = ""
    if plan:
        plan_section = f"## Approved Plan\n\nFollow this plan, which the user approved:\n\n{plan.strip()}\n"

    values = {
        "PROJECT": prd.project,
        "PROJECT_DESCRIPTION": prd.description or "",
        "BRANCH": prd.branch_name or "(current branch)",
        "STORY": format_story(story),
        "STORY_ID": story.id,
        "BACKLOG": format_backlog(prd, story),
        "COMPLETED": str(stats["completed"]),
        "TOTAL": str(stats["total"]),
        "PROGRESS": progress_context.strip() or "No previous iterations.",
        "PLAN": plan_section,
        "COVERAGE_THRESHOLD": f"{coverage_threshold:g}",
        "COMPLETION_PROMISE": COMPLETION_PROMISE,
    }
    prompt = render(load_prompt("iteration"), values)
    return build_prompt_with_rules(prompt, project_rules)


def build_plan_prompt(story: UserStory) -> str:
    """Render the planning-only prompt for the plan checkpoint."""
    criteria = "\n".join(f"- {c}" for c in story.acceptance_criteria)
    return render(
        load_prompt("plan"),
        {
            "STORY_TITLE": story.title,
            "STORY_DESCRIPTION": story.description,
            "CRITERIA": criteria or "- Implementation complete",
        },
    )


__all__ = [
    "get_templates_dir",
    "load_prompt",
    "render",
    "find_project_rules",
    "build_prompt_with_rules",
    "format_story",
    "format_backlog",
    "build_iteration_prompt",
    "build_plan_prompt",
]
