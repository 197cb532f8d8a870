"""Exception hierarchy for rulebook.

Library modules raise these; CLI commands catch RulebookError, print the
message and return a nonzero exit code.
"""


class RulebookError(Exception):
    """Base class for all rulebook errors."""


class ConfigError(RulebookError):
    """The project or global configuration could not be read or written."""


class PRDError(RulebookError):
    """The PRD backlog file is missing required data or is not valid JSON."""


class TaskError(RulebookError):
    """A task directory operation failed (duplicate, missing, invalid)."""


class LockError(RulebookError):
    """Another Ralph runner holds the loop lock."""


class AgentNotFoundError(RulebookError):
    """The requested AI CLI tool is not installed or not on PATH."""


__all__ = [
    "RulebookError",
    "ConfigError",
    "PRDError",
    "TaskError",
    "LockError",
    "AgentNotFoundError",
]
