"""rulebook workflows command.

Writes GitHub Actions workflows for the project's languages. Languages come
from ``.rulebook`` when the project is initialized and from detection
otherwise.
"""

from pathlib import Path

from rulebook.config import ConfigManager, ProjectConfig
from rulebook.detector import detect_languages
from rulebook.utils import Colors
from rulebook.workflows import generate_workflows

__all__ = ["cmd_workflows"]


def cmd_workflows(project_root: Path, minimal: bool = False) -> int:
    """Generate ``.github/workflows`` files.

    Args:
        project_root: Project root directory.
        minimal: Only the test workflows, no lint or codespell.

    Returns:
        Exit code.
    """
    manager = ConfigManager(project_root)
    if manager.exists():
        config = manager.load()
    else:
        config = ProjectConfig(languages=[d.language for d in detect_languages(project_root)])
    if minimal:
        config.mode = "minimal"

    if not config.languages:
        print(f"{Colors.YELLOW}No languages detected. Cannot generate workflows.{Colors.NC}")
        return 1

    written = generate_workflows(project_root, config)
    if not written:
        print(f"{Colors.YELLOW}All workflows already exist, nothing written{Colors.NC}")
        return 0
    print(f"{Colors.GREEN}Workflows generated:{Colors.NC}")
    for path in written:
        print(f"  {path}")
    return 0
