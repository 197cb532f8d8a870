"""ANSI color utilities, timestamps, slugs and miscellaneous helpers."""

import re
from datetime import datetime, timezone


class Colors:
    """ANSI color codes for terminal output."""

    RED = "\033[0;31m"
    GREEN = "\033[0;32m"
    YELLOW = "\033[1;33m"
    BLUE = "\033[0;34m"
    MAGENTA = "\033[0;35m"
    CYAN = "\033[0;36m"
    WHITE = "\033[0;37m"
    NC = "\033[0m"  # No Color
    BOLD = "\033[1m"
    DIM = "\033[2m"


def strip_ansi(text: str) -> str:
    """Remove ANSI escape codes from text.

    Args:
        text: Text potentially containing ANSI escape sequences.

    Returns:
        The text with all ANSI escape codes removed.
    """
    return re.sub(r"\x1b\[[0-9;]*m", "", text)


def utc_now_iso() -> str:
    """Current UTC time as an ISO-8601 string with millisecond precision."""
    now = datetime.now(timezone.utc)
    return now.strftime("%Y-%m-%dT%H:%M:%S.") + f"{now.microsecond // 1000:03d}Z"


def today() -> str:
    """Current local date as YYYY-MM-DD."""
    return datetime.now().strftime("%Y-%m-%d")


def slugify(text: str) -> str:
    """Lowercase kebab-case slug of text.

    Runs of non-alphanumeric characters collapse to a single dash and
    leading/trailing dashes are dropped.

    Args:
        text: Free-form text such as a project name.

    Returns:
        The slug, or "project" when nothing alphanumeric remains.
    """
    slug = re.sub(r"[^a-z0-9]+", "-", text.lower()).strip("-")
    return slug or "project"


def truncate(text: str, width: int) -> str:
    """Shorten text to width characters, marking the cut with '...'."""
    if len(text) <= width:
        return text
    if width <= 3:
        return text[:width]
    return text[: width - 3] + "..."


def format_duration(ms: int) -> str:
    """Format a millisecond duration as e.g. '850ms', '12.3s' or '4m05s'."""
    if ms < 1000:
        return f"{ms}ms"
    seconds = ms / 1000
    if seconds < 60:
        return f"{seconds:.1f}s"
    minutes, secs = divmod(int(seconds), 60)
    return f"{minutes}m{secs:02d}s"
