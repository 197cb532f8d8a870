"""rulebook config command.

Without arguments shows the project config and the global config. With a
key prints one value; with a key and a value stores it.
"""

import json
from pathlib import Path
from typing import Optional

from rulebook.config import ConfigManager, get_global_config
from rulebook.errors import RulebookError
from rulebook.utils import Colors

__all__ = ["cmd_config"]


def _show_global() -> None:
    gcfg = get_global_config()
    print(f"{Colors.CYAN}Global Configuration:{Colors.NC}")
    print(f"  Profile: {gcfg._profile_name}")
    print(f"  Tool: {gcfg.tool}")
    print(f"  Max iterations: {gcfg.max_iterations}")
    print(f"  Max failures: {gcfg.max_failures}")
    print(f"  Iteration timeout: {gcfg.iteration_timeout_s:,}s")
    print(f"  Coverage threshold: {gcfg.coverage_threshold:g}%")
    print(f"  Rulebook dir: {gcfg.rulebook_dir}")
    if gcfg.tool_args:
        print(f"  Tool args: {' '.join(gcfg.tool_args)}")


def cmd_config(project_root: Path, key: Optional[str] = None, value: Optional[str] = None) -> int:
    """Show or change configuration.

    Args:
        project_root: Project root directory.
        key: Dotted camelCase key, e.g. ``ralph.maxIterations``.
        value: New value; JSON literals are decoded.

    Returns:
        Exit code.
    """
    manager = ConfigManager(project_root)
    try:
        if key is None:
            if manager.exists():
                print(f"{Colors.CYAN}Project Configuration ({manager.config_path.name}):{Colors.NC}")
                print(json.dumps(manager.load().to_dict(), indent=2))
            else:
                print(f"{Colors.YELLOW}No project config. Run 'rulebook init' first.{Colors.NC}")
            _show_global()
            return 0

        if value is None:
            current = manager.get(key)
            print(json.dumps(current, indent=2) if isinstance(current, (dict, list)) else current)
            return 0

        manager.set(key, value)
        print(f"{Colors.GREEN}{key}{Colors.NC} = {json.dumps(manager.get(key))}")
        return 0
    except RulebookError as e:
        print(f"{Colors.RED}Error: {e}{Colors.NC}")
        return 1
