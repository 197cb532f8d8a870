"""Installation of the Ralph helper scripts into a project."""

import os
import shutil
import sys
from pathlib import Path
from typing import List

from rulebook.prompts import get_templates_dir

RALPH_SCRIPTS = ("ralph-init", "ralph-run", "ralph-status", "ralph-pause", "ralph-history")
SCRIPT_EXTENSIONS = (".sh", ".bat")


def install_ralph_scripts(project_root: Path, rulebook_dir: str = "rulebook") -> List[str]:
    """Copy the ``ralph-*.sh``/``.bat`` scripts into ``<rulebook_dir>/scripts``.

    Existing scripts are overwritten. ``.sh`` files are made executable
    except on Windows.

    Args:
        project_root: Project root directory.
        rulebook_dir: Directory (relative to the root) holding rulebook data.

    Returns:
        Installed paths, relative to the project root, with forward slashes.
    """
    source_dir = get_templates_dir() / "ralph"
    target_dir = project_root / rulebook_dir / "scripts"
    target_dir.mkdir(parents=True, exist_ok=True)

    installed = []
    for name in RALPH_SCRIPTS:
        for ext in SCRIPT_EXTENSIONS:
            filename = f"{name}{ext}"
            destination = target_dir / filename
            shutil.copyfile(source_dir / filename, destination)
            if ext == ".sh" and not sys.platform.startswith("win"):
                os.chmod(destination, 0o755)
            installed.append(f"{rulebook_dir}/scripts/{filename}")
    return installed


__all__ = ["RALPH_SCRIPTS", "install_ralph_scripts"]
