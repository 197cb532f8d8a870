"""Logging setup for rulebook.

Every module logs through ``logging.getLogger(__name__)``. The CLI calls
:func:`setup_logging` once per invocation to route records to a daily log
file under the project's rulebook directory and to a rich console handler
on stderr. User-facing output does not go through logging.
"""

import logging
from pathlib import Path
from typing import Optional

from rich.console import Console
from rich.logging import RichHandler

from rulebook.utils import today

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

_HANDLER_MARK = "_rulebook_handler"


def get_log_dir(project_root: Path, rulebook_dir: str = "rulebook") -> Path:
    """Directory holding the daily log files for a project."""
    return project_root / rulebook_dir / "logs"


def setup_logging(
    project_root: Optional[Path] = None,
    verbose: bool = False,
    rulebook_dir: str = "rulebook",
) -> Optional[Path]:
    """Configure the ``rulebook`` logger hierarchy.

    Safe to call more than once: handlers installed by a previous call are
    replaced rather than duplicated.

    Args:
        project_root: Project root; when given and its rulebook directory
            exists, records are also written to
            ``<rulebook_dir>/logs/rulebook-YYYY-MM-DD.log``.
        verbose: Show DEBUG records on the console instead of WARNING+.
        rulebook_dir: Name of the rulebook directory inside the project.

    Returns:
        Path of the log file, or None when logging to console only.
    """
    root_logger = logging.getLogger("rulebook")
    root_logger.setLevel(logging.DEBUG)
    root_logger.propagate = False

    for handler in list(root_logger.handlers):
        if getattr(handler, _HANDLER_MARK, False):
            root_logger.removeHandler(handler)
            handler.close()

    console_handler = RichHandler(
        console=Console(stderr=True),
        show_time=False,
        show_path=False,
        markup=False,
    )
    console_handler.setLevel(logging.DEBUG if verbose else logging.WARNING)
    setattr(console_handler, _HANDLER_MARK, True)
    root_logger.addHandler(console_handler)

    if project_root is None or not (project_root / rulebook_dir).is_dir():
        return None

    log_dir = get_log_dir(project_root, rulebook_dir)
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / f"rulebook-{today()}.log"

    file_handler = logging.FileHandler(log_file, encoding="utf-8")
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
    setattr(file_handler, _HANDLER_MARK, True)
    root_logger.addHandler(file_handler)
    return log_file


__all__ = ["LOG_FORMAT", "get_log_dir", "setup_logging"]
