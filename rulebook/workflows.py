"""GitHub Actions workflow generation.

Each configured language gets a ``<language>-test.yml`` workflow and, in
full mode, a ``<language>-lint.yml`` one; full mode also adds
``codespell.yml``. Workflows already present in ``.github/workflows`` are
left untouched.
"""

import logging
import shutil
from pathlib import Path
from typing import List

from rulebook.config import ProjectConfig
from rulebook.prompts import get_templates_dir

logger = logging.getLogger(__name__)

WORKFLOWS_DIR = Path(".github") / "workflows"


def workflow_names(config: ProjectConfig) -> List[str]:
    """Workflow file names for a config, in generation order."""
    names = []
    available = {p.name for p in (get_templates_dir() / "workflows").glob("*.yml")}
    for language in config.languages:
        kinds = ["test"] if config.mode == "minimal" else ["test", "lint"]
        for kind in kinds:
            name = f"{language.lower()}-{kind}.yml"
            if name in available:
                names.append(name)
            else:
                logger.warning("No %s workflow for '%s', skipping", kind, language)
    if config.mode != "minimal":
        names.append("codespell.yml")
    return names


def generate_workflows(project_root: Path, config: ProjectConfig) -> List[str]:
    """Copy the workflows for ``config`` into ``.github/workflows``.

    Args:
        project_root: Project root directory.
        config: Project config naming the languages and mode.

    Returns:
        Paths of newly written workflows, relative to the project root, with
        forward slashes. Existing files are not listed.
    """
    source_dir = get_templates_dir() / "workflows"
    target_dir = project_root / WORKFLOWS_DIR
    target_dir.mkdir(parents=True, exist_ok=True)

    written = []
    for name in workflow_names(config):
        destination = target_dir / name
        if destination.exists():
            logger.debug("Workflow %s exists, keeping it", name)
            continue
        shutil.copyfile(source_dir / name, destination)
        written.append(f"{WORKFLOWS_DIR.as_posix()}/{name}")
    return written


__all__ = ["WORKFLOWS_DIR", "workflow_names", "generate_workflows"]
