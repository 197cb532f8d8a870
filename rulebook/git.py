"""Git queries used by rulebook.

The loop records the commit an iteration produced and ``ralph status``
shows the current branch. All functions tolerate running outside a git
repository.
"""

import subprocess
from pathlib import Path
from typing import Optional


def _git(repo_root: Path, *args: str) -> subprocess.CompletedProcess:
    try:
        return subprocess.run(
            ["git", *args],
            capture_output=True,
            text=True,
            cwd=repo_root,
        )
    except FileNotFoundError:
        return subprocess.CompletedProcess(["git", *args], 127, "", "git not found")


def is_git_repo(repo_root: Path) -> bool:
    result = _git(repo_root, "rev-parse", "--is-inside-work-tree")
    return result.returncode == 0 and result.stdout.strip() == "true"


def get_current_commit(repo_root: Path) -> Optional[str]:
    """Get current HEAD commit hash (short).

    Args:
        repo_root: The repository root directory.

    Returns:
        The short commit hash, or None if there is no commit or no repository.
    """
    result = _git(repo_root, "rev-parse", "--short", "HEAD")
    return result.stdout.strip() if result.returncode == 0 else None


def get_current_branch(repo_root: Path) -> Optional[str]:
    """Get the current git branch name.

    Args:
        repo_root: The repository root directory.

    Returns:
        The branch name, or None on a detached HEAD or outside a repository.
    """
    result = _git(repo_root, "rev-parse", "--abbrev-ref", "HEAD")
    if result.returncode != 0:
        return None
    branch = result.stdout.strip()
    return None if branch == "HEAD" else branch


def has_uncommitted_changes(repo_root: Path, path: Optional[Path] = None) -> bool:
    """Check for staged or unstaged changes, optionally limited to one path.

    Args:
        repo_root: The repository root directory.
        path: Only consider this file or directory.

    Returns:
        True if ``git status --porcelain`` reports anything.
    """
    args = ["status", "--porcelain"]
    if path is not None:
        args.append(str(path))
    result = _git(repo_root, *args)
    return result.returncode == 0 and bool(result.stdout.strip())


__all__ = [
    "is_git_repo",
    "get_current_commit",
    "get_current_branch",
    "has_uncommitted_changes",
]
