"""rulebook CLI commands package.

Each command module exports its main command function.
"""

from rulebook.commands.config_cmd import cmd_config
from rulebook.commands.coverage import cmd_check_coverage
from rulebook.commands.init import cmd_init, cmd_update, cmd_validate
from rulebook.commands.ralph import cmd_ralph
from rulebook.commands.task import cmd_task
from rulebook.commands.watch import cmd_watch
from rulebook.commands.workflows import cmd_workflows

__all__ = [
    "cmd_check_coverage",
    "cmd_config",
    "cmd_init",
    "cmd_ralph",
    "cmd_task",
    "cmd_update",
    "cmd_validate",
    "cmd_watch",
    "cmd_workflows",
]
