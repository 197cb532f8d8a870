"""rulebook CLI - Argparse setup and command dispatch.

This module provides the main command-line interface for rulebook,
setting up all subcommands and routing to the appropriate handlers.
"""

import argparse
import logging
import sys
from typing import List, Optional

from rulebook.config import CONFIG_FILE, ConfigManager, find_project_root, get_global_config
from rulebook.errors import RulebookError
from rulebook.logger import setup_logging
from rulebook.utils import Colors

logger = logging.getLogger(__name__)

COMMANDS = (
    "init",
    "update",
    "validate",
    "task",
    "ralph",
    "config",
    "workflows",
    "check-coverage",
    "help",
)


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser with all subcommands.

    Returns:
        Configured ArgumentParser instance.
    """
    parser = argparse.ArgumentParser(
        prog="rulebook",
        description="rulebook - AGENTS.md rules, task checklists and the Ralph autonomous loop",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  rulebook init                     Detect languages and generate AGENTS.md
  rulebook init --yes --minimal     Non-interactive, core and language rules only
  rulebook update                   Regenerate AGENTS.md blocks from .rulebook
  rulebook validate                 Check AGENTS.md and every task
  rulebook task create add-auth     Create a task (proposal.md, tasks.md, specs/)
  rulebook task list --archived     List tasks, including archived ones
  rulebook task status add-auth in-progress
  rulebook task archive add-auth    Validate and archive a finished task
  rulebook ralph init               Generate the PRD from the tasks
  rulebook ralph run --max-iterations 5 --tool claude
  rulebook ralph status             Show loop state and story progress
  rulebook ralph pause              Pause after the current iteration
  rulebook ralph history --limit 10 Show recent iterations and statistics
  rulebook ralph watch              Live dashboard
  rulebook config ralph.maxIterations 20
  rulebook workflows                GitHub Actions workflows for the detected languages
  rulebook check-coverage --threshold 90
        """,
    )

    parser.add_argument(
        "command",
        nargs="?",
        default="help",
        help="Command: init, update, validate, task, ralph, config, workflows, check-coverage, help",
    )
    parser.add_argument("arg", nargs="?", default=None, help="Subcommand or argument")
    parser.add_argument(
        "arg2",
        nargs="?",
        default=None,
        help="Additional argument (e.g., task id or config key)",
    )
    parser.add_argument(
        "arg3", nargs="?", default=None, help="Third argument (e.g., task status or config value)"
    )
    parser.add_argument(
        "--yes", "-y", action="store_true", help="Non-interactive: accept defaults, skip plan approval"
    )
    parser.add_argument(
        "--minimal",
        action="store_true",
        help="For init: only core and language rules; for workflows: only test workflows",
    )
    parser.add_argument(
        "--max-iterations",
        type=int,
        default=None,
        help="For ralph run: iteration budget (default: ralph.maxIterations)",
    )
    parser.add_argument(
        "--tool",
        type=str,
        default=None,
        help="For ralph run: AI tool - claude, amp or gemini (default: ralph.tool)",
    )
    parser.add_argument(
        "--parallel",
        type=int,
        default=None,
        help="For ralph run: max stories run concurrently (default: ralph.parallel)",
    )
    parser.add_argument(
        "--threshold",
        type=float,
        default=None,
        help="For check-coverage: required percentage (default: coverageThreshold)",
    )
    parser.add_argument(
        "--limit", type=int, default=None, help="For ralph history: show the last N iterations"
    )
    parser.add_argument(
        "--no-ui", action="store_true", help="For ralph watch: plain ANSI output instead of the TUI"
    )
    parser.add_argument(
        "--archived", action="store_true", help="For task list: include archived tasks"
    )
    parser.add_argument(
        "--force", action="store_true", help="For task archive: archive even if validation fails"
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Show debug logging")
    parser.add_argument("--version", action="store_true", help="Show version and exit")

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for the rulebook CLI.

    Parses arguments and dispatches to the appropriate command handler.

    Returns:
        Exit code.
    """
    parser = create_parser()
    args = parser.parse_args(argv)

    if args.version:
        from rulebook import __version__

        print(f"rulebook {__version__}")
        return 0

    if args.command == "help":
        parser.print_help()
        return 0

    if args.command not in COMMANDS:
        print(f"{Colors.RED}Unknown command: {args.command}{Colors.NC}")
        parser.print_help()
        return 1

    project_root = find_project_root()
    rulebook_dir = get_global_config().rulebook_dir
    try:
        if (project_root / CONFIG_FILE).is_file():
            rulebook_dir = ConfigManager(project_root).load().rulebook_dir
    except RulebookError as e:
        print(f"{Colors.RED}Error: {e}{Colors.NC}")
        return 1
    log_file = setup_logging(project_root, verbose=args.verbose, rulebook_dir=rulebook_dir)
    logger.debug("rulebook %s in %s (log: %s)", args.command, project_root, log_file)

    try:
        if args.command == "init":
            from rulebook.commands import cmd_init

            return cmd_init(project_root, yes=args.yes, minimal=args.minimal)

        if args.command == "update":
            from rulebook.commands import cmd_update

            return cmd_update(project_root)

        if args.command == "validate":
            from rulebook.commands import cmd_validate

            return cmd_validate(project_root)

        if args.command == "task":
            from rulebook.commands import cmd_task

            return cmd_task(
                project_root,
                args.arg,
                args.arg2,
                args.arg3,
                include_archived=args.archived,
                force=args.force,
            )

        if args.command == "ralph":
            from rulebook.commands import cmd_ralph

            return cmd_ralph(project_root, args.arg, args)

        if args.command == "config":
            from rulebook.commands import cmd_config

            return cmd_config(project_root, args.arg, args.arg2)

        if args.command == "workflows":
            from rulebook.commands import cmd_workflows

            return cmd_workflows(project_root, minimal=args.minimal)

        if args.command == "check-coverage":
            from rulebook.commands import cmd_check_coverage

            return cmd_check_coverage(project_root, threshold=args.threshold)
    except RulebookError as e:
        logger.debug("Command failed", exc_info=True)
        print(f"{Colors.RED}Error: {e}{Colors.NC}")
        return 1

    return 1


if __name__ == "__main__":
    sys.exit(main())
