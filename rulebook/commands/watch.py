"""rulebook ralph watch command.

Live progress dashboard for a running (or finished) Ralph loop.
"""

import sys
from pathlib import Path

from rulebook.config import ProjectConfig
from rulebook.ralph import RalphManager

__all__ = ["cmd_watch"]


def cmd_watch(project_root: Path, config: ProjectConfig, no_ui: bool = False) -> int:
    """Show the Ralph dashboard until the user quits.

    Args:
        project_root: Project root directory.
        config: Project configuration.
        no_ui: Use the plain ANSI dashboard instead of the Textual app.

    Returns:
        Exit code (0 for success).
    """
    manager = RalphManager(project_root, config.rulebook_dir)
    if no_ui or not sys.stdout.isatty():
        from rulebook.tui.fallback import FallbackDashboard

        FallbackDashboard(manager).run_loop()
        return 0

    from rulebook.tui.dashboard import RalphDashboard

    RalphDashboard(manager).run()
    return 0
