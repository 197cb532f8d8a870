"""rulebook init, update and validate commands.

``init`` detects the project's languages and integrations, writes the
``.rulebook`` config, creates the tasks directory and AGENTS.override.md, and
generates (or merges into) AGENTS.md. ``update`` regenerates the AGENTS.md
blocks from the saved config. ``validate`` checks AGENTS.md blocks and every
active task.
"""

from pathlib import Path
from typing import Callable, List

from rulebook.config import ConfigManager, RalphSettings, get_global_config
from rulebook.detector import DetectionResult, detect_project, parse_agent_blocks
from rulebook.errors import RulebookError
from rulebook.generator import (
    CORE_BLOCK,
    OVERRIDE_BLOCK,
    OVERRIDE_FILE,
    available_templates,
    block_name,
    init_override,
    read_override_content,
    write_agents_file,
)
from rulebook.tasks import TaskManager
from rulebook.utils import Colors

__all__ = ["cmd_init", "cmd_update", "cmd_validate"]


def _print_detection(detection: DetectionResult) -> None:
    if detection.languages:
        print(f"{Colors.CYAN}Languages:{Colors.NC}")
        for lang in detection.languages:
            print(f"  {lang.language:<12} {lang.confidence:.0%}  ({', '.join(lang.indicators)})")
    else:
        print(f"{Colors.YELLOW}No languages detected{Colors.NC}")
    if detection.modules:
        print(f"{Colors.CYAN}Modules:{Colors.NC}")
        for module in detection.modules:
            print(f"  {module.module:<12} from {module.source}")
    if detection.existing_agents:
        names = ", ".join(detection.existing_agents.block_names()) or "no blocks"
        print(f"{Colors.CYAN}Existing AGENTS.md:{Colors.NC} {names}")


def _confirm(question: str, input_fn: Callable[[str], str]) -> bool:
    """Ask a yes/no question; anything but 'n'/'no' counts as yes."""
    try:
        answer = input_fn(f"{question} [Y/n]: ").strip().lower()
    except (EOFError, KeyboardInterrupt):
        return False
    return answer not in ("n", "no")


def _ask_list(label: str, detected: List[str], input_fn: Callable[[str], str]) -> List[str]:
    """Let the user edit a detected list; an empty answer keeps it."""
    shown = ", ".join(detected) or "none"
    try:
        answer = input_fn(f"{label} [{shown}]: ").strip()
    except (EOFError, KeyboardInterrupt):
        return detected
    if not answer:
        return detected
    return [item.strip().lower() for item in answer.split(",") if item.strip()]


def cmd_init(
    project_root: Path,
    yes: bool = False,
    minimal: bool = False,
    input_fn: Callable[[str], str] = input,
) -> int:
    """Initialize rulebook in a project.

    Args:
        project_root: Project root directory.
        yes: Accept the detected languages and modules without asking.
        minimal: Generate only the core and language blocks.
        input_fn: Reads user answers in interactive mode.

    Returns:
        Exit code (0 for success).
    """
    manager = ConfigManager(project_root)
    is_update = manager.exists()
    print(f"{'Re-initializing' if is_update else 'Initializing'} rulebook in {project_root}")

    detection = detect_project(project_root)
    _print_detection(detection)

    languages = detection.language_names
    modules = detection.module_names
    if not yes:
        languages = _ask_list("Languages (comma separated)", languages, input_fn)
        if not minimal:
            modules = _ask_list("Modules (comma separated)", modules, input_fn)
        if not _confirm("Write .rulebook and AGENTS.md?", input_fn):
            print(f"{Colors.YELLOW}Aborted{Colors.NC}")
            return 1

    try:
        if is_update:
            config = manager.load()
            config.languages = languages
            config.modules = modules
            config.mode = "minimal" if minimal else "full"
            manager.save(config)
        else:
            gcfg = get_global_config()
            config = manager.initialize(
                languages=languages,
                modules=modules,
                mode="minimal" if minimal else "full",
                coverage_threshold=gcfg.coverage_threshold,
                rulebook_dir=gcfg.rulebook_dir,
                ralph=RalphSettings(
                    tool=gcfg.tool,
                    max_iterations=gcfg.max_iterations,
                    max_failures=gcfg.max_failures,
                    iteration_timeout=gcfg.iteration_timeout_s,
                ),
            )
        TaskManager(project_root, config.rulebook_dir).initialize()
        created_override = init_override(project_root)
        agents_path = write_agents_file(project_root, config)
    except (RulebookError, OSError) as e:
        print(f"{Colors.RED}Error: {e}{Colors.NC}")
        return 1

    action = "merged into" if detection.existing_agents else "written to"
    print(f"\n{Colors.GREEN}Rulebook initialized!{Colors.NC} Rules {action} {agents_path.name}")
    if created_override:
        print(f"Project-specific rules go in {OVERRIDE_FILE}; it is never overwritten.")
    print(f"""
Next steps:
  1. Create a task:        rulebook task create <task-id>
  2. Fill in proposal.md and tasks.md under {config.rulebook_dir}/tasks/<task-id>/
  3. Generate the backlog: rulebook ralph init
  4. Run the loop:         rulebook ralph run
""")
    return 0


def cmd_update(project_root: Path) -> int:
    """Regenerate the AGENTS.md blocks from the saved config.

    Returns:
        Exit code (0 for success).
    """
    manager = ConfigManager(project_root)
    if not manager.exists():
        print(f"{Colors.YELLOW}Rulebook not initialized. Run 'rulebook init' first.{Colors.NC}")
        return 1
    try:
        config = manager.load()
        path = write_agents_file(project_root, config)
        manager.save(config)
    except (RulebookError, OSError) as e:
        print(f"{Colors.RED}Error: {e}{Colors.NC}")
        return 1
    print(f"{Colors.GREEN}Updated {path.name}{Colors.NC} (version {config.version})")
    return 0


def cmd_validate(project_root: Path) -> int:
    """Check AGENTS.md blocks and the structure of every active task.

    Returns:
        0 when nothing is wrong, 1 when any error was found.
    """
    manager = ConfigManager(project_root)
    if not manager.exists():
        print(f"{Colors.YELLOW}Rulebook not initialized. Run 'rulebook init' first.{Colors.NC}")
        return 1
    try:
        config = manager.load()
    except RulebookError as e:
        print(f"{Colors.RED}Error: {e}{Colors.NC}")
        return 1

    errors = 0
    agents_path = project_root / "AGENTS.md"
    if not agents_path.is_file():
        print(f"{Colors.RED}✗ AGENTS.md missing{Colors.NC} (run 'rulebook update')")
        errors += 1
    else:
        present = {b.name for b in parse_agent_blocks(agents_path.read_text())}
        expected = [CORE_BLOCK] + [
            block_name(lang) for lang in config.languages if lang in available_templates("languages")
        ]
        if config.mode != "minimal":
            expected += [
                block_name(m) for m in config.modules if m in available_templates("modules")
            ]
        if read_override_content(project_root):
            expected.append(OVERRIDE_BLOCK)
        missing = [name for name in expected if name not in present]
        if missing:
            print(f"{Colors.RED}✗ AGENTS.md missing blocks:{Colors.NC} {', '.join(missing)}")
            errors += 1
        else:
            print(f"{Colors.GREEN}✓ AGENTS.md{Colors.NC} ({len(present)} blocks)")

    task_manager = TaskManager(project_root, config.rulebook_dir)
    for task in task_manager.list_tasks():
        result = task_manager.validate_task(task.id)
        if result.valid:
            print(f"{Colors.GREEN}✓ {task.id}{Colors.NC}")
        else:
            errors += 1
            print(f"{Colors.RED}✗ {task.id}{Colors.NC}")
            for error in result.errors:
                print(f"    {Colors.RED}{error}{Colors.NC}")
        for warning in result.warnings:
            print(f"    {Colors.YELLOW}{warning}{Colors.NC}")

    return 1 if errors else 0
